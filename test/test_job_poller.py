import asyncio
from typing import List, Optional, Union

import pytest
from assistant_hub.errors import TransportError
from assistant_hub.job_poller import JobPoller
from assistant_hub.models import (
    ActionRequired,
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

HANDLE = JobHandle(thread_id="thread_1", run_id="run_1")

REPLY = ThreadMessage(
    id="msg_1",
    thread_id="thread_1",
    role="assistant",
    content=[{"type": "text", "text": {"value": "42", "annotations": []}}],
)


class ScriptedClient:
    """Returns the scripted statuses in order; the last one repeats."""

    def __init__(
        self,
        statuses: List[Union[str, Exception]],
        result: Optional[ThreadMessage] = REPLY,
    ):
        self.statuses = statuses
        self.result = result
        self.status_calls = 0
        self.result_calls = 0

    async def fetch_status(self, handle: JobHandle) -> Run:
        status = self.statuses[min(self.status_calls, len(self.statuses) - 1)]
        self.status_calls += 1
        if isinstance(status, Exception):
            raise status
        return Run(id=handle.run_id, thread_id=handle.thread_id, status=status)

    async def fetch_result(self, handle: JobHandle) -> Optional[ThreadMessage]:
        self.result_calls += 1
        return self.result


def make_poller(client, max_attempts: int = 30, **kwargs) -> JobPoller:
    return JobPoller(client, config=PollingConfig(max_attempts=max_attempts, delay=0), **kwargs)


@pytest.mark.parametrize(
    "status, category",
    [
        ("queued", StatusCategory.pending),
        ("in_progress", StatusCategory.pending),
        ("cancelling", StatusCategory.pending),
        ("completed", StatusCategory.success),
        ("cancelled", StatusCategory.failure),
        ("failed", StatusCategory.failure),
        ("expired", StatusCategory.failure),
        ("requires_action", StatusCategory.action_required),
    ],
)
def test_classify_status(status, category):
    assert classify_status(RunStatus(status)) is category


@pytest.mark.asyncio
@pytest.mark.parametrize("max_attempts", [1, 2, 5])
async def test_pending_until_budget_exhausted(max_attempts):
    client = ScriptedClient(["in_progress"])

    outcome = await make_poller(client, max_attempts).poll(HANDLE)

    assert isinstance(outcome, Timeout)
    assert outcome.attempts == max_attempts
    assert client.status_calls == max_attempts
    assert client.result_calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("k", [1, 2, 4])
async def test_completed_on_kth_fetch(k):
    client = ScriptedClient(["queued"] * (k - 1) + ["completed"])

    outcome = await make_poller(client, max_attempts=5).poll(HANDLE)

    assert isinstance(outcome, Success)
    assert outcome.result.text == "42"
    assert client.status_calls == k
    assert client.result_calls == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["cancelled", "failed", "expired"])
async def test_remote_failure_stops_immediately(status):
    client = ScriptedClient(["queued", status, "completed"])

    outcome = await make_poller(client).poll(HANDLE)

    assert isinstance(outcome, Failure)
    assert outcome.reason == status
    assert outcome.status == RunStatus(status)
    assert client.status_calls == 2
    assert client.result_calls == 0


@pytest.mark.asyncio
async def test_requires_action_is_returned_without_result_fetch():
    client = ScriptedClient(["requires_action"])

    outcome = await make_poller(client).poll(HANDLE)

    assert isinstance(outcome, ActionRequired)
    assert outcome.raw_status is RunStatus.requires_action
    assert outcome.run.id == HANDLE.run_id
    assert client.status_calls == 1
    assert client.result_calls == 0


@pytest.mark.asyncio
async def test_empty_result_is_a_failure():
    client = ScriptedClient(["completed"], result=None)

    outcome = await make_poller(client).poll(HANDLE)

    assert isinstance(outcome, Failure)
    assert outcome.reason == "empty result"
    assert client.result_calls == 1


@pytest.mark.asyncio
async def test_fetch_error_raises_transport_error_without_retry():
    client = ScriptedClient(["queued", RuntimeError("connection reset"), "completed"])

    with pytest.raises(TransportError):
        await make_poller(client).poll(HANDLE)

    assert client.status_calls == 2


@pytest.mark.asyncio
async def test_transport_error_propagates_unchanged():
    error = TransportError("bad gateway", status=502)
    client = ScriptedClient([error])

    with pytest.raises(TransportError) as excinfo:
        await make_poller(client).poll(HANDLE)

    assert excinfo.value is error
    assert client.status_calls == 1


@pytest.mark.asyncio
async def test_result_fetch_error_raises_transport_error():
    class BrokenResult(ScriptedClient):
        async def fetch_result(self, handle):
            raise ValueError("undecodable body")

    with pytest.raises(TransportError):
        await make_poller(BrokenResult(["completed"])).poll(HANDLE)


@pytest.mark.asyncio
async def test_polling_twice_gives_identical_results():
    client = ScriptedClient(["completed"])
    poller = make_poller(client)

    first = await poller.poll(HANDLE)
    second = await poller.poll(HANDLE)

    assert isinstance(first, Success) and isinstance(second, Success)
    assert first == second
    assert client.status_calls == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "statuses, max_attempts, expected, fetches",
    [
        (["queued", "in_progress", "completed"], 3, Success, 3),
        (["queued", "queued"], 2, Timeout, 2),
        (["failed"], 30, Failure, 1),
        (["requires_action"], 30, ActionRequired, 1),
    ],
)
async def test_scenarios(statuses, max_attempts, expected, fetches):
    client = ScriptedClient(statuses)

    outcome = await make_poller(client, max_attempts).poll(HANDLE)

    assert isinstance(outcome, expected)
    assert client.status_calls == fetches


@pytest.mark.asyncio
async def test_cancel_before_first_fetch():
    client = ScriptedClient(["queued"])
    cancel = asyncio.Event()
    cancel.set()

    outcome = await make_poller(client).poll(HANDLE, cancel_event=cancel)

    assert isinstance(outcome, Cancelled)
    assert client.status_calls == 0


@pytest.mark.asyncio
async def test_cancel_between_attempts():
    client = ScriptedClient(["queued"])
    cancel = asyncio.Event()

    async def cancel_on_first_status(run):
        cancel.set()

    poller = make_poller(client, on_status_change=cancel_on_first_status)
    outcome = await poller.poll(HANDLE, cancel_event=cancel)

    assert isinstance(outcome, Cancelled)
    assert outcome.attempts == 1
    assert client.status_calls == 1


@pytest.mark.asyncio
async def test_status_change_callback_fires_once_per_status():
    seen = []

    async def record(run):
        seen.append(run.status)

    client = ScriptedClient(["queued", "queued", "in_progress", "in_progress", "completed"])
    await make_poller(client, on_status_change=record).poll(HANDLE)

    assert seen == [RunStatus.queued, RunStatus.in_progress, RunStatus.completed]


@pytest.mark.asyncio
async def test_concurrent_polls_do_not_share_state():
    clients = [ScriptedClient(["queued", "completed"]) for _ in range(3)]
    handles = [JobHandle(thread_id=f"thread_{i}", run_id=f"run_{i}") for i in range(3)]

    outcomes = await asyncio.gather(
        *[make_poller(client).poll(handle) for client, handle in zip(clients, handles)]
    )

    for outcome, handle in zip(outcomes, handles):
        assert isinstance(outcome, Success)
        assert outcome.handle == handle
    assert all(client.status_calls == 2 for client in clients)


def test_delay_is_fixed_by_default():
    poller = JobPoller(ScriptedClient(["queued"]))

    assert [poller._calculate_delay(attempt) for attempt in range(4)] == [1.0] * 4


def test_backoff_is_capped_at_max_delay():
    config = PollingConfig(delay=0.5, backoff_factor=2.0, max_delay=4.0)
    poller = JobPoller(ScriptedClient(["queued"]), config=config)

    assert [poller._calculate_delay(attempt) for attempt in range(6)] == [
        0.5,
        1.0,
        2.0,
        4.0,
        4.0,
        4.0,
    ]


def test_jitter_adds_at_most_twenty_percent():
    config = PollingConfig(delay=1.0, jitter=True)
    poller = JobPoller(ScriptedClient(["queued"]), config=config)

    for attempt in range(10):
        assert 1.0 <= poller._calculate_delay(attempt) <= 1.2


def test_polling_config_rejects_non_positive_budget():
    with pytest.raises(ValueError):
        PollingConfig(max_attempts=0)
