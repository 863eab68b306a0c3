import itertools
import time
from typing import Dict, List, Optional

from aiohttp import web
from loguru import logger


class RunsServer:
    """In-process stand-in for the Assistants REST API.

    Every retrieval of a run advances it through ``statuses``; once the list is
    exhausted the last status sticks. When a run first reports ``completed``
    the server appends ``reply`` as an assistant message (unless it is None).
    Setting ``raw_body`` makes every authorized request answer with that text
    as an application/json body.
    """

    def __init__(
        self,
        statuses: Optional[List[str]] = None,
        reply: Optional[str] = "Hello from the assistant",
        api_key: str = "test-key",
        run_error_status: Optional[int] = None,
    ):
        self.statuses = statuses or ["queued", "in_progress", "completed"]
        self.reply = reply
        self.api_key = api_key
        self.run_error_status = run_error_status
        self.raw_body: Optional[str] = None
        self.run_fetches = 0
        self.message_fetches = 0

        self.assistants: Dict[str, dict] = {}
        self.threads: Dict[str, dict] = {}
        self.messages: Dict[str, List[dict]] = {}
        self.runs: Dict[str, dict] = {}
        self.vector_stores: Dict[str, dict] = {}
        self.vector_store_files: Dict[str, Dict[str, dict]] = {}
        self.files: Dict[str, dict] = {}
        self._ids = itertools.count(1)
        self.runner: Optional[web.AppRunner] = None

        self.app = web.Application(middlewares=[self.check_auth])
        self.app.router.add_post("/v1/assistants", self.create_assistant)
        self.app.router.add_get("/v1/assistants", self.list_assistants)
        self.app.router.add_get("/v1/assistants/{assistant_id}", self.get_assistant)
        self.app.router.add_post("/v1/assistants/{assistant_id}", self.modify_assistant)
        self.app.router.add_delete("/v1/assistants/{assistant_id}", self.delete_assistant)
        self.app.router.add_post("/v1/threads", self.create_thread)
        self.app.router.add_get("/v1/threads/{thread_id}", self.get_thread)
        self.app.router.add_delete("/v1/threads/{thread_id}", self.delete_thread)
        self.app.router.add_post("/v1/threads/{thread_id}/messages", self.create_message)
        self.app.router.add_get("/v1/threads/{thread_id}/messages", self.list_messages)
        self.app.router.add_post("/v1/threads/{thread_id}/runs", self.create_run)
        self.app.router.add_get("/v1/threads/{thread_id}/runs/{run_id}", self.retrieve_run)
        self.app.router.add_post("/v1/vector_stores", self.create_vector_store)
        self.app.router.add_get("/v1/vector_stores", self.list_vector_stores)
        self.app.router.add_get("/v1/vector_stores/{vector_store_id}", self.get_vector_store)
        self.app.router.add_delete("/v1/vector_stores/{vector_store_id}", self.delete_vector_store)
        self.app.router.add_get("/v1/vector_stores/{vector_store_id}/files", self.list_vector_store_files)
        self.app.router.add_post("/v1/vector_stores/{vector_store_id}/files", self.add_vector_store_file)
        self.app.router.add_delete(
            "/v1/vector_stores/{vector_store_id}/files/{file_id}", self.remove_vector_store_file
        )
        self.app.router.add_post("/v1/files", self.upload_file)
        self.app.router.add_get("/v1/files", self.list_files)
        self.app.router.add_get("/v1/files/{file_id}", self.get_file)
        self.app.router.add_delete("/v1/files/{file_id}", self.delete_file)
        self.logger = logger

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    @web.middleware
    async def check_auth(self, request, handler):
        if request.headers.get("Authorization") != f"Bearer {self.api_key}":
            self.logger.info("Rejecting request without a valid API key")
            return web.json_response({"error": {"message": "Invalid API key"}}, status=401)
        if self.raw_body is not None:
            return web.Response(text=self.raw_body, content_type="application/json")
        return await handler(request)

    def _not_found(self, what: str):
        return web.json_response({"error": {"message": f"No such {what}"}}, status=404)

    def _get(self, store: Dict[str, dict], key: str, what: str):
        if key not in store:
            return self._not_found(what)
        return web.json_response(store[key])

    def _deleted(self, object_id: str, kind: str, deleted: bool = True):
        return web.json_response({"id": object_id, "object": f"{kind}.deleted", "deleted": deleted})

    async def create_assistant(self, request):
        body = await request.json()
        assistant = {
            "id": self._new_id("asst"),
            "object": "assistant",
            "created_at": int(time.time()),
            "tools": [],
            **body,
        }
        self.assistants[assistant["id"]] = assistant
        return web.json_response(assistant)

    async def list_assistants(self, request):
        return web.json_response({"object": "list", "data": list(self.assistants.values())})

    async def get_assistant(self, request):
        return self._get(self.assistants, request.match_info["assistant_id"], "assistant")

    async def modify_assistant(self, request):
        assistant = self.assistants.get(request.match_info["assistant_id"])
        if assistant is None:
            return self._not_found("assistant")
        assistant.update(await request.json())
        return web.json_response(assistant)

    async def delete_assistant(self, request):
        assistant_id = request.match_info["assistant_id"]
        if self.assistants.pop(assistant_id, None) is None:
            return self._not_found("assistant")
        return self._deleted(assistant_id, "assistant")

    async def create_thread(self, request):
        body = await request.json()
        thread = {
            "id": self._new_id("thread"),
            "object": "thread",
            "created_at": int(time.time()),
            "metadata": body.get("metadata") or {},
        }
        self.threads[thread["id"]] = thread
        self.messages[thread["id"]] = []
        return web.json_response(thread)

    async def get_thread(self, request):
        return self._get(self.threads, request.match_info["thread_id"], "thread")

    async def delete_thread(self, request):
        thread_id = request.match_info["thread_id"]
        if self.threads.pop(thread_id, None) is None:
            return self._not_found("thread")
        return self._deleted(thread_id, "thread")

    def _add_message(self, thread_id: str, role: str, text: str, run_id: Optional[str] = None) -> dict:
        message = {
            "id": self._new_id("msg"),
            "object": "thread.message",
            "created_at": int(time.time()),
            "thread_id": thread_id,
            "role": role,
            "run_id": run_id,
            "content": [{"type": "text", "text": {"value": text, "annotations": []}}],
        }
        self.messages[thread_id].append(message)
        return message

    async def create_message(self, request):
        thread_id = request.match_info["thread_id"]
        if thread_id not in self.threads:
            return self._not_found("thread")
        body = await request.json()
        return web.json_response(self._add_message(thread_id, body["role"], body["content"]))

    async def list_messages(self, request):
        thread_id = request.match_info["thread_id"]
        if thread_id not in self.threads:
            return self._not_found("thread")
        self.message_fetches += 1

        messages = list(self.messages[thread_id])
        if request.query.get("order", "desc") == "desc":
            messages.reverse()
        messages = messages[: int(request.query.get("limit", 20))]
        return web.json_response({"object": "list", "data": messages, "has_more": False})

    async def create_run(self, request):
        thread_id = request.match_info["thread_id"]
        if thread_id not in self.threads:
            return self._not_found("thread")
        body = await request.json()
        run = {
            "id": self._new_id("run"),
            "object": "thread.run",
            "created_at": int(time.time()),
            "thread_id": thread_id,
            "assistant_id": body["assistant_id"],
            "status": "queued",
            "_fetches": 0,
        }
        self.runs[run["id"]] = run
        return web.json_response({k: v for k, v in run.items() if not k.startswith("_")})

    async def retrieve_run(self, request):
        self.run_fetches += 1
        if self.run_error_status is not None:
            self.logger.info(f"Returning HTTP {self.run_error_status} for run retrieval")
            return web.json_response({"error": {"message": "boom"}}, status=self.run_error_status)

        run = self.runs.get(request.match_info["run_id"])
        if run is None:
            return self._not_found("run")

        status = self.statuses[min(run["_fetches"], len(self.statuses) - 1)]
        run["_fetches"] += 1
        if status == "completed" and run["status"] != "completed" and self.reply is not None:
            self._add_message(run["thread_id"], "assistant", self.reply, run_id=run["id"])
        run["status"] = status
        if status == "requires_action":
            run["required_action"] = {"type": "submit_tool_outputs", "submit_tool_outputs": {"tool_calls": []}}

        self.logger.info(f"Returning run status {status}")
        return web.json_response({k: v for k, v in run.items() if not k.startswith("_")})

    async def create_vector_store(self, request):
        body = await request.json()
        vector_store = {
            "id": self._new_id("vs"),
            "object": "vector_store",
            "created_at": int(time.time()),
            "name": body.get("name"),
            "status": "completed",
            "metadata": body.get("metadata") or {},
        }
        self.vector_stores[vector_store["id"]] = vector_store
        self.vector_store_files[vector_store["id"]] = {}
        for file_id in body.get("file_ids", []):
            self._attach_file(vector_store["id"], file_id)
        return web.json_response(vector_store)

    async def list_vector_stores(self, request):
        return web.json_response({"object": "list", "data": list(self.vector_stores.values())})

    async def get_vector_store(self, request):
        return self._get(self.vector_stores, request.match_info["vector_store_id"], "vector store")

    async def list_vector_store_files(self, request):
        files = self.vector_store_files.get(request.match_info["vector_store_id"])
        if files is None:
            return self._not_found("vector store")
        return web.json_response({"object": "list", "data": list(files.values())})

    async def delete_vector_store(self, request):
        vector_store_id = request.match_info["vector_store_id"]
        if self.vector_stores.pop(vector_store_id, None) is None:
            return self._not_found("vector store")
        return self._deleted(vector_store_id, "vector_store")

    def _attach_file(self, vector_store_id: str, file_id: str) -> dict:
        entry = {
            "id": file_id,
            "object": "vector_store.file",
            "vector_store_id": vector_store_id,
            "status": "completed",
        }
        self.vector_store_files[vector_store_id][file_id] = entry
        return entry

    async def add_vector_store_file(self, request):
        vector_store_id = request.match_info["vector_store_id"]
        if vector_store_id not in self.vector_stores:
            return self._not_found("vector store")
        body = await request.json()
        return web.json_response(self._attach_file(vector_store_id, body["file_id"]))

    async def remove_vector_store_file(self, request):
        vector_store_id = request.match_info["vector_store_id"]
        file_id = request.match_info["file_id"]
        if self.vector_store_files.get(vector_store_id, {}).pop(file_id, None) is None:
            return self._not_found("vector store file")
        return self._deleted(file_id, "vector_store.file")

    async def upload_file(self, request):
        form = await request.post()
        upload = form["file"]
        content = upload.file.read()
        uploaded = {
            "id": self._new_id("file"),
            "object": "file",
            "created_at": int(time.time()),
            "filename": upload.filename,
            "purpose": form["purpose"],
            "bytes": len(content),
        }
        self.files[uploaded["id"]] = uploaded
        return web.json_response(uploaded)

    async def list_files(self, request):
        purpose = request.query.get("purpose")
        files = [f for f in self.files.values() if purpose is None or f["purpose"] == purpose]
        return web.json_response({"object": "list", "data": files})

    async def get_file(self, request):
        return self._get(self.files, request.match_info["file_id"], "file")

    async def delete_file(self, request):
        file_id = request.match_info["file_id"]
        if self.files.pop(file_id, None) is None:
            return self._not_found("file")
        return self._deleted(file_id, "file")

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
