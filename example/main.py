import asyncio

from assistant_hub.logging_config import configure_logging
from assistant_hub.models import PollingConfig
from assistant_hub.openai_client import OpenAi, OpenAiHttp
from assistant_hub.orchestrator import ConversationOrchestrator, describe_outcome
from runs_server import RunsServer


async def main():
    PORT = 8000
    configure_logging("DEBUG")
    server = RunsServer(statuses=["queued", "in_progress", "in_progress", "completed"])
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    polling = PollingConfig(max_attempts=10, delay=0.5)

    async with OpenAi(
        OpenAiHttp(api_key="test-key", base_url=f"http://localhost:{PORT}/v1"),
        polling=polling,
        company_slug="acme",
    ) as ai:
        assistant = await ai.assistants.create(name="Demo", instructions="Answer briefly")
        thread = await ai.threads.create()

        try:
            turn = await ConversationOrchestrator(ai).send(
                thread.id, assistant.id, "What can you do?"
            )
            print(f"Outcome: {type(turn.outcome).__name__} after {turn.outcome.attempts} checks")
            print(describe_outcome(turn.outcome))
        except Exception as e:
            print(f"Error occurred: {e}")

    await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
