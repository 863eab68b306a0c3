"""Command line entry point: ``assistant-hub <command> [options]``."""

import argparse
import asyncio
import sys
from typing import List, Optional

from loguru import logger

from assistant_hub.errors import AssistantHubError
from assistant_hub.factory import create_client
from assistant_hub.logging_config import configure_logging
from assistant_hub.models import Success
from assistant_hub.openai_client import OpenAi
from assistant_hub.orchestrator import ConversationOrchestrator, describe_outcome
from assistant_hub.settings import get_settings


def _print_rows(rows: List[tuple], headers: tuple) -> None:
    widths = [
        max(len(str(value)) for value in column) for column in zip(headers, *rows)
    ]
    for row in (headers, *rows):
        print("  ".join(str(value).ljust(width) for value, width in zip(row, widths)))


async def assistant_create(ai: OpenAi, args) -> int:
    assistant = await ai.assistants.create(
        name=args.name,
        instructions=args.instructions,
        model=args.model,
        vector_store_ids=args.vector_store or None,
    )
    print(f"Assistant created: {assistant.id} ({assistant.name}, {assistant.model})")
    return 0


async def assistant_list(ai: OpenAi, args) -> int:
    page = await ai.assistants.list(limit=args.limit)
    if not page.data:
        print("No assistants found.")
        return 0
    _print_rows(
        [(a.id, a.name or "", a.model) for a in page.data], ("ID", "Name", "Model")
    )
    return 0


async def assistant_update(ai: OpenAi, args) -> int:
    if args.name is None and args.instructions is None and args.model is None:
        print("Nothing to update: pass --name, --instructions or --model.", file=sys.stderr)
        return 1
    assistant = await ai.assistants.modify(
        args.assistant_id, name=args.name, instructions=args.instructions, model=args.model
    )
    print(f"Assistant updated: {assistant.id} ({assistant.name}, {assistant.model})")
    return 0


async def assistant_delete(ai: OpenAi, args) -> int:
    if await ai.assistants.delete(args.assistant_id):
        print(f"Assistant {args.assistant_id} deleted.")
        return 0
    print(f"Could not delete assistant {args.assistant_id}.", file=sys.stderr)
    return 1


async def thread_create(ai: OpenAi, args) -> int:
    thread = await ai.threads.create()
    print(f"Thread created: {thread.id}")
    return 0


async def chat_send(ai: OpenAi, args) -> int:
    orchestrator = ConversationOrchestrator(ai)
    turn = await orchestrator.send(args.thread_id, args.assistant, args.message)

    if isinstance(turn.outcome, Success):
        print(f"Assistant: {describe_outcome(turn.outcome)}")
        return 0
    print(describe_outcome(turn.outcome), file=sys.stderr)
    return 1


async def messages_list(ai: OpenAi, args) -> int:
    page = await ai.threads.list_messages(args.thread_id, order="desc", limit=args.limit)
    for message in reversed(page.data):
        print(f"[{message.role}] {message.text}")
    return 0


async def vector_create(ai: OpenAi, args) -> int:
    vector_store = await ai.vector_stores.create(args.name, file_ids=args.file or None)
    print(f"Vector store created: {vector_store.id} ({vector_store.name})")
    return 0


async def vector_list(ai: OpenAi, args) -> int:
    page = await ai.vector_stores.list(limit=args.limit)
    if not page.data:
        print("No vector stores found.")
        return 0
    _print_rows(
        [(v.id, v.name or "", v.status or "") for v in page.data],
        ("ID", "Name", "Status"),
    )
    return 0


async def vector_delete(ai: OpenAi, args) -> int:
    if await ai.vector_stores.delete(args.vector_store_id):
        print(f"Vector store {args.vector_store_id} deleted.")
        return 0
    print(f"Could not delete vector store {args.vector_store_id}.", file=sys.stderr)
    return 1


async def vector_attach(ai: OpenAi, args) -> int:
    assistant = await ai.assistants.attach_vector_stores(
        args.assistant_id, args.vector_store_ids
    )
    print(f"Vector stores attached to assistant {assistant.id}: {', '.join(args.vector_store_ids)}")
    return 0


async def file_upload(ai: OpenAi, args) -> int:
    uploaded = await ai.files.upload(args.path, purpose=args.purpose)
    print(f"File uploaded: {uploaded.id} ({uploaded.filename})")
    if args.vector_store:
        await ai.vector_stores.add_files(args.vector_store, [uploaded.id])
        print(f"File added to vector store {args.vector_store}")
    return 0


async def file_list(ai: OpenAi, args) -> int:
    page = await ai.files.list(purpose=args.purpose)
    if not page.data:
        print("No files found.")
        return 0
    _print_rows(
        [(f.id, f.filename, f.purpose) for f in page.data], ("ID", "Filename", "Purpose")
    )
    return 0


async def file_delete(ai: OpenAi, args) -> int:
    failed = [file_id for file_id in args.file_ids if not await ai.files.delete(file_id)]
    for file_id in args.file_ids:
        if file_id not in failed:
            print(f"File {file_id} deleted.")
    if failed:
        print(f"Could not delete files: {', '.join(failed)}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="assistant-hub", description="Manage OpenAI assistants, threads and vector stores"
    )
    parser.add_argument("--provider", help="AI provider (defaults to AI_PROVIDER)")
    parser.add_argument("--company", help="Company slug recorded on created resources")
    commands = parser.add_subparsers(dest="command", required=True)

    cmd = commands.add_parser("assistant-create", help="Create an assistant")
    cmd.add_argument("--name", required=True)
    cmd.add_argument("--instructions", required=True)
    cmd.add_argument("--model")
    cmd.add_argument("--vector-store", action="append", default=[])
    cmd.set_defaults(handler=assistant_create)

    cmd = commands.add_parser("assistant-list", help="List assistants")
    cmd.add_argument("--limit", type=int, default=20)
    cmd.set_defaults(handler=assistant_list)

    cmd = commands.add_parser("assistant-update", help="Update an assistant")
    cmd.add_argument("assistant_id")
    cmd.add_argument("--name")
    cmd.add_argument("--instructions")
    cmd.add_argument("--model")
    cmd.set_defaults(handler=assistant_update)

    cmd = commands.add_parser("assistant-delete", help="Delete an assistant")
    cmd.add_argument("assistant_id")
    cmd.set_defaults(handler=assistant_delete)

    cmd = commands.add_parser("thread-create", help="Open a conversation thread")
    cmd.set_defaults(handler=thread_create)

    cmd = commands.add_parser("chat-send", help="Send a message and wait for the reply")
    cmd.add_argument("thread_id")
    cmd.add_argument("--assistant", required=True)
    cmd.add_argument("--message", required=True)
    cmd.set_defaults(handler=chat_send)

    cmd = commands.add_parser("messages-list", help="Print the messages of a thread")
    cmd.add_argument("thread_id")
    cmd.add_argument("--limit", type=int, default=20)
    cmd.set_defaults(handler=messages_list)

    cmd = commands.add_parser("vector-create", help="Create a vector store")
    cmd.add_argument("--name", required=True)
    cmd.add_argument("--file", action="append", default=[])
    cmd.set_defaults(handler=vector_create)

    cmd = commands.add_parser("vector-list", help="List vector stores")
    cmd.add_argument("--limit", type=int, default=20)
    cmd.set_defaults(handler=vector_list)

    cmd = commands.add_parser("vector-delete", help="Delete a vector store")
    cmd.add_argument("vector_store_id")
    cmd.set_defaults(handler=vector_delete)

    cmd = commands.add_parser("vector-attach", help="Attach vector stores to an assistant")
    cmd.add_argument("assistant_id")
    cmd.add_argument("vector_store_ids", nargs="+")
    cmd.set_defaults(handler=vector_attach)

    cmd = commands.add_parser("file-upload", help="Upload a document")
    cmd.add_argument("path")
    cmd.add_argument("--purpose", default="assistants")
    cmd.add_argument("--vector-store")
    cmd.set_defaults(handler=file_upload)

    cmd = commands.add_parser("file-list", help="List uploaded files")
    cmd.add_argument("--purpose")
    cmd.set_defaults(handler=file_list)

    cmd = commands.add_parser("file-delete", help="Delete uploaded files")
    cmd.add_argument("file_ids", nargs="+")
    cmd.set_defaults(handler=file_delete)

    return parser


async def run_command(args, ai: Optional[OpenAi] = None) -> int:
    ai = ai or create_client(args.provider, args.company)
    async with ai:
        try:
            return await args.handler(ai, args)
        except (AssistantHubError, FileNotFoundError) as e:
            logger.error(f"{args.command} failed: {e}")
            print(f"Error: {e}", file=sys.stderr)
            return 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(get_settings().aihub_log_level)
    try:
        return asyncio.run(run_command(args))
    except AssistantHubError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
