import asyncio
from typing import Optional

from loguru import logger
from pydantic import BaseModel

from assistant_hub.models import (
    ActionRequired,
    AnyOutcome,
    Cancelled,
    Failure,
    Run,
    Success,
    ThreadMessage,
    Timeout,
)
from assistant_hub.openai_client import OpenAi


class ConversationTurn(BaseModel):
    user_message: ThreadMessage
    run: Run
    outcome: AnyOutcome

    @property
    def reply(self) -> Optional[ThreadMessage]:
        if isinstance(self.outcome, Success):
            return self.outcome.result
        return None


def describe_outcome(outcome: AnyOutcome) -> str:
    """Human readable summary of a poll outcome"""
    run_id = outcome.handle.run_id
    if isinstance(outcome, Success):
        return outcome.result.text
    if isinstance(outcome, Timeout):
        return (
            f"Run {run_id} is still running after {outcome.attempts} checks; "
            "try again later."
        )
    if isinstance(outcome, Failure):
        return f"Run {run_id} failed ({outcome.reason}); do not retry this run."
    if isinstance(outcome, ActionRequired):
        return (
            f"Run {run_id} is waiting for an action ({outcome.raw_status.value}) "
            "that must be resolved by the caller."
        )
    if isinstance(outcome, Cancelled):
        return f"Stopped waiting for run {run_id}."
    raise TypeError(f"Unknown poll outcome: {type(outcome).__name__}")


class ConversationOrchestrator:
    """Sends a user message, starts a run and waits for the assistant's reply"""

    def __init__(self, ai: OpenAi):
        self.ai = ai

    async def send(
        self,
        thread_id: str,
        assistant_id: str,
        content: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ConversationTurn:
        message = await self.ai.threads.add_message(thread_id, content)
        run = await self.ai.threads.run_assistant(thread_id, assistant_id)
        outcome = await self.ai.threads.wait_for_response(
            thread_id, run.id, cancel_event=cancel_event
        )

        if not isinstance(outcome, Success):
            logger.warning(f"No reply for message {message.id}: {describe_outcome(outcome)}")
        return ConversationTurn(user_message=message, run=run, outcome=outcome)
