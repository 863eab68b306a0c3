from typing import AsyncGenerator, Tuple

import pytest_asyncio
from assistant_hub.models import PollingConfig
from assistant_hub.openai_client import OpenAi, OpenAiHttp
from runs_server import RunsServer

BASE_URL_TEMPLATE = "http://localhost:{}/v1"


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[Tuple[RunsServer, int], None]:
    """Start and yield a fake Assistants API server on a random port."""
    port = unused_tcp_port_factory()
    server_instance = RunsServer()
    await server_instance.start(port=port)
    try:
        yield server_instance, port
    finally:
        await server_instance.stop()


@pytest_asyncio.fixture
async def ai(server) -> AsyncGenerator[OpenAi, None]:
    """Client wired to the fake server with a fast polling schedule."""
    _, port = server
    client = OpenAi(
        OpenAiHttp(api_key="test-key", base_url=BASE_URL_TEMPLATE.format(port)),
        polling=PollingConfig(max_attempts=5, delay=0),
    )
    try:
        yield client
    finally:
        await client.close()
