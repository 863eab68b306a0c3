import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Protocol

from assistant_hub.errors import TransportError
from assistant_hub.models import (
    ActionRequired,
    AnyOutcome,
    Cancelled,
    Failure,
    JobHandle,
    PollingConfig,
    Run,
    RunStatus,
    StatusCategory,
    Success,
    ThreadMessage,
    Timeout,
    classify_status,
)


class RemoteJobClient(Protocol):
    async def fetch_status(self, handle: JobHandle) -> Run: ...

    async def fetch_result(self, handle: JobHandle) -> Optional[ThreadMessage]: ...


class JobPoller:
    """Polls a remote run until it reaches a terminal state or the attempt budget runs out.

    The poller keeps no state between calls to ``poll``; the attempt counter and
    the last observed status live only for the duration of one call.
    """

    def __init__(
        self,
        client: RemoteJobClient,
        config: Optional[PollingConfig] = None,
        on_status_change: Optional[Callable[[Run], Awaitable[Any]]] = None,
    ):
        self.client = client
        self.config = config or PollingConfig()
        self.on_status_change = on_status_change

    async def _fetch(self, fetch: Callable[[JobHandle], Awaitable[Any]], handle: JobHandle):
        try:
            return await fetch(handle)
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"Error fetching run {handle.run_id}: {e}") from e

    def _calculate_delay(self, attempt: int) -> float:
        """Fixed delay unless a backoff factor or jitter has been configured"""
        delay = min(
            self.config.delay * (self.config.backoff_factor**attempt),
            max(self.config.delay, self.config.max_delay),
        )

        # Add random jitter between 0-20% of the delay
        if self.config.jitter:
            delay *= 1 + 0.2 * random.random()
        return delay

    async def _handle_status_change(
        self, run: Run, last_status: Optional[RunStatus]
    ) -> None:
        if last_status != run.status and self.on_status_change is not None:
            await self.on_status_change(run)

    async def poll(
        self, handle: JobHandle, cancel_event: Optional[asyncio.Event] = None
    ) -> AnyOutcome:
        attempts = 0
        last_status = None

        while attempts < self.config.max_attempts:
            if cancel_event is not None and cancel_event.is_set():
                return Cancelled(handle=handle, attempts=attempts)

            run = await self._fetch(self.client.fetch_status, handle)
            await self._handle_status_change(run, last_status)
            last_status = run.status

            category = classify_status(run.status)

            if category is StatusCategory.success:
                message = await self._fetch(self.client.fetch_result, handle)
                if message is None:
                    return Failure(
                        handle=handle,
                        attempts=attempts + 1,
                        reason="empty result",
                        status=run.status,
                    )
                return Success(handle=handle, attempts=attempts + 1, result=message)

            if category is StatusCategory.failure:
                return Failure(
                    handle=handle,
                    attempts=attempts + 1,
                    reason=run.status.value,
                    status=run.status,
                )

            if category is StatusCategory.action_required:
                return ActionRequired(
                    handle=handle,
                    attempts=attempts + 1,
                    raw_status=run.status,
                    run=run,
                )

            await asyncio.sleep(self._calculate_delay(attempts))
            attempts += 1

        return Timeout(handle=handle, attempts=attempts)
