from typing import Optional


class AssistantHubError(Exception):
    """Base class for errors raised by assistant_hub"""


class TransportError(AssistantHubError):
    """Network, HTTP or response-decoding failure while talking to the provider"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ConfigurationError(AssistantHubError):
    pass


class UnsupportedProviderError(ConfigurationError):
    def __init__(self, provider: str):
        super().__init__(f"AI provider '{provider}' is not supported")
        self.provider = provider
