import pytest
from assistant_hub.models import (
    ActionRequired,
    Cancelled,
    Failure,
    JobHandle,
    Run,
    RunStatus,
    Success,
    ThreadMessage,
    Timeout,
)
from assistant_hub.orchestrator import ConversationOrchestrator, describe_outcome

HANDLE = JobHandle(thread_id="thread_1", run_id="run_1")


@pytest.mark.asyncio
async def test_send_returns_assistant_reply(server, ai):
    thread = await ai.threads.create()

    turn = await ConversationOrchestrator(ai).send(thread.id, "asst_test", "Hi there")

    assert turn.user_message.text == "Hi there"
    assert turn.run.thread_id == thread.id
    assert turn.reply is not None
    assert turn.reply.text == "Hello from the assistant"


@pytest.mark.asyncio
async def test_send_without_reply_keeps_outcome(server, ai):
    server_instance, _ = server
    server_instance.statuses = ["queued", "expired"]
    thread = await ai.threads.create()

    turn = await ConversationOrchestrator(ai).send(thread.id, "asst_test", "Hi there")

    assert turn.reply is None
    assert isinstance(turn.outcome, Failure)
    assert turn.outcome.reason == "expired"


def test_timeout_and_failure_messages_are_distinct():
    timeout = describe_outcome(Timeout(handle=HANDLE, attempts=30))
    failure = describe_outcome(
        Failure(handle=HANDLE, attempts=2, reason="failed", status=RunStatus.failed)
    )

    assert "try again later" in timeout
    assert "do not retry" in failure
    assert timeout != failure


def test_describe_other_outcomes():
    reply = ThreadMessage(
        id="msg_1",
        thread_id="thread_1",
        role="assistant",
        content=[{"type": "text", "text": {"value": "Done.", "annotations": []}}],
    )
    run = Run(id="run_1", thread_id="thread_1", status="requires_action")

    assert describe_outcome(Success(handle=HANDLE, attempts=1, result=reply)) == "Done."
    assert "requires_action" in describe_outcome(
        ActionRequired(handle=HANDLE, attempts=1, raw_status=RunStatus.requires_action, run=run)
    )
    assert "Stopped waiting" in describe_outcome(Cancelled(handle=HANDLE, attempts=0))
