import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar

import aiohttp
from loguru import logger
from pydantic import BaseModel, ValidationError

from assistant_hub.errors import TransportError
from assistant_hub.job_poller import JobPoller
from assistant_hub.models import (
    ActionRequired,
    AnyOutcome,
    Assistant,
    Cancelled,
    DeletionStatus,
    Failure,
    FileObject,
    JobHandle,
    Page,
    PollingConfig,
    Run,
    Success,
    Thread,
    ThreadMessage,
    Timeout,
    VectorStore,
    VectorStoreFile,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _drop_none(params: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


class OpenAiHttp:
    """Thin aiohttp transport for the OpenAI REST API (Assistants v2)"""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "OpenAI-Beta": "assistants=v2",
        }
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        data: Any = None,
    ) -> dict:
        url = f"{self.base_url}/{path.lstrip('/')}"
        if params:
            params = {key: str(value) for key, value in _drop_none(params).items()}

        try:
            async with self._get_session().request(
                method, url, json=json, params=params, data=data, headers=self.headers
            ) as response:
                if response.status >= 400:
                    body = await response.text()
                    logger.error(f"HTTP error {response.status} at {url}: {body}")
                    raise TransportError(
                        f"{method} {url} failed with HTTP {response.status}",
                        status=response.status,
                    )
                try:
                    return await response.json()
                except ValueError as e:
                    logger.error(f"Undecodable response from {url}: {e}")
                    raise TransportError(
                        f"{method} {url} returned an undecodable body",
                        status=response.status,
                    ) from e
        except aiohttp.ClientError as e:
            logger.error(f"Error calling {method} {url}: {e}")
            raise TransportError(f"{method} {url} failed: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error(f"Timed out calling {method} {url}")
            raise TransportError(f"{method} {url} timed out") from e

    @staticmethod
    def parse(model: Type[ModelT], data: dict) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"Unexpected {model.__name__} payload: {e}") from e


class _Resource:
    def __init__(self, http: OpenAiHttp, company_slug: Optional[str] = None):
        self.http = http
        self.company_slug = company_slug

    def _metadata(self, metadata: Optional[dict]) -> Optional[dict]:
        if self.company_slug is None:
            return metadata
        return {**(metadata or {}), "company": self.company_slug}

    async def _delete(self, path: str, label: str) -> bool:
        try:
            data = await self.http.request("DELETE", path)
            status = self.http.parse(DeletionStatus, data)
        except TransportError as e:
            logger.error(f"Error deleting {label}: {e}")
            return False

        if status.deleted:
            logger.info(f"{label} deleted")
            return True
        logger.warning(f"Failed to delete {label}. Response: {data}")
        return False


class OpenAiAssistants(_Resource):
    def __init__(self, http: OpenAiHttp, default_model: str, company_slug: Optional[str] = None):
        super().__init__(http, company_slug)
        self.default_model = default_model

    async def create(
        self,
        name: str,
        instructions: str,
        model: Optional[str] = None,
        tools: Optional[List[dict]] = None,
        vector_store_ids: Optional[List[str]] = None,
        metadata: Optional[dict] = None,
    ) -> Assistant:
        payload = _drop_none(
            {
                "name": name,
                "instructions": instructions,
                "model": model or self.default_model,
                "tools": tools if tools is not None else [{"type": "file_search"}],
                "metadata": self._metadata(metadata),
            }
        )
        if vector_store_ids:
            payload["tool_resources"] = {"file_search": {"vector_store_ids": vector_store_ids}}

        try:
            assistant = self.http.parse(
                Assistant, await self.http.request("POST", "assistants", json=payload)
            )
        except TransportError as e:
            logger.error(f"Error creating OpenAI assistant: {e}")
            raise
        logger.info(f"OpenAI assistant created: {assistant.id}")
        return assistant

    async def retrieve(self, assistant_id: str) -> Assistant:
        return self.http.parse(
            Assistant, await self.http.request("GET", f"assistants/{assistant_id}")
        )

    async def list(self, limit: int = 20, order: str = "desc") -> Page[Assistant]:
        data = await self.http.request(
            "GET", "assistants", params={"limit": limit, "order": order}
        )
        return self.http.parse(Page[Assistant], data)

    async def modify(self, assistant_id: str, **params: Any) -> Assistant:
        try:
            assistant = self.http.parse(
                Assistant,
                await self.http.request(
                    "POST", f"assistants/{assistant_id}", json=_drop_none(params)
                ),
            )
        except TransportError as e:
            logger.error(f"Error modifying OpenAI assistant {assistant_id}: {e}")
            raise
        logger.info(f"OpenAI assistant {assistant_id} modified")
        return assistant

    async def attach_vector_stores(
        self, assistant_id: str, vector_store_ids: List[str]
    ) -> Assistant:
        return await self.modify(
            assistant_id,
            tool_resources={"file_search": {"vector_store_ids": vector_store_ids}},
        )

    async def delete(self, assistant_id: str) -> bool:
        return await self._delete(
            f"assistants/{assistant_id}", f"OpenAI assistant {assistant_id}"
        )


class OpenAiThreads(_Resource):
    def __init__(
        self,
        http: OpenAiHttp,
        company_slug: Optional[str] = None,
        polling: Optional[PollingConfig] = None,
    ):
        super().__init__(http, company_slug)
        self.polling = polling or PollingConfig()

    async def create(
        self, messages: Optional[List[dict]] = None, metadata: Optional[dict] = None
    ) -> Thread:
        payload = _drop_none({"messages": messages, "metadata": self._metadata(metadata)})
        try:
            thread = self.http.parse(
                Thread, await self.http.request("POST", "threads", json=payload)
            )
        except TransportError as e:
            logger.error(f"Error creating OpenAI thread: {e}")
            raise
        logger.info(f"OpenAI thread created: {thread.id}")
        return thread

    async def retrieve(self, thread_id: str) -> Thread:
        return self.http.parse(Thread, await self.http.request("GET", f"threads/{thread_id}"))

    async def add_message(
        self, thread_id: str, content: str, role: str = "user", **params: Any
    ) -> ThreadMessage:
        payload = {"role": role, "content": content, **_drop_none(params)}
        try:
            message = self.http.parse(
                ThreadMessage,
                await self.http.request("POST", f"threads/{thread_id}/messages", json=payload),
            )
        except TransportError as e:
            logger.error(f"Error adding message to OpenAI thread {thread_id}: {e}")
            raise
        logger.info(f"Message added to thread {thread_id}. Message ID: {message.id}")
        return message

    async def list_messages(
        self,
        thread_id: str,
        order: str = "desc",
        limit: int = 20,
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> Page[ThreadMessage]:
        data = await self.http.request(
            "GET",
            f"threads/{thread_id}/messages",
            params={"order": order, "limit": limit, "after": after, "before": before},
        )
        return self.http.parse(Page[ThreadMessage], data)

    async def run_assistant(self, thread_id: str, assistant_id: str, **params: Any) -> Run:
        payload = {"assistant_id": assistant_id, **_drop_none(params)}
        try:
            run = self.http.parse(
                Run, await self.http.request("POST", f"threads/{thread_id}/runs", json=payload)
            )
        except TransportError as e:
            logger.error(f"Error starting run in OpenAI thread {thread_id}: {e}")
            raise
        logger.info(
            f"Run started in thread {thread_id} with assistant {assistant_id}. Run ID: {run.id}"
        )
        return run

    async def retrieve_run(self, thread_id: str, run_id: str) -> Run:
        return self.http.parse(
            Run, await self.http.request("GET", f"threads/{thread_id}/runs/{run_id}")
        )

    async def fetch_status(self, handle: JobHandle) -> Run:
        return await self.retrieve_run(handle.thread_id, handle.run_id)

    async def fetch_result(self, handle: JobHandle) -> Optional[ThreadMessage]:
        page = await self.list_messages(handle.thread_id, order="desc", limit=1)
        return page.data[0] if page.data else None

    async def _log_status(self, run: Run) -> None:
        logger.debug(f"Run {run.id} in thread {run.thread_id} is now '{run.status.value}'")

    async def wait_for_response(
        self,
        thread_id: str,
        run_id: str,
        max_attempts: Optional[int] = None,
        delay: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AnyOutcome:
        """Poll a run until it settles and return the classified outcome"""
        config = PollingConfig.model_validate(
            {
                **self.polling.model_dump(),
                **_drop_none({"max_attempts": max_attempts, "delay": delay}),
            }
        )
        poller = JobPoller(self, config=config, on_status_change=self._log_status)
        outcome = await poller.poll(JobHandle(thread_id=thread_id, run_id=run_id), cancel_event)

        if isinstance(outcome, Success):
            logger.info(f"Run {run_id} completed")
        elif isinstance(outcome, ActionRequired):
            logger.warning(f"Run {run_id} requires action. Status: {outcome.raw_status.value}")
        elif isinstance(outcome, Failure):
            logger.error(f"Run {run_id} ended without a reply: {outcome.reason}")
        elif isinstance(outcome, Timeout):
            logger.warning(
                f"Polling for run {run_id} reached the maximum of {config.max_attempts} attempts"
            )
        elif isinstance(outcome, Cancelled):
            logger.info(f"Polling for run {run_id} cancelled")
        return outcome

    async def delete(self, thread_id: str) -> bool:
        return await self._delete(f"threads/{thread_id}", f"OpenAI thread {thread_id}")


class OpenAiVectorStores(_Resource):
    async def create(
        self,
        name: str,
        file_ids: Optional[List[str]] = None,
        metadata: Optional[dict] = None,
    ) -> VectorStore:
        payload = _drop_none(
            {"name": name, "file_ids": file_ids or None, "metadata": self._metadata(metadata)}
        )
        try:
            vector_store = self.http.parse(
                VectorStore, await self.http.request("POST", "vector_stores", json=payload)
            )
        except TransportError as e:
            logger.error(f"Error creating OpenAI vector store: {e}")
            raise
        logger.info(f"OpenAI vector store created: {vector_store.id}")
        return vector_store

    async def retrieve(self, vector_store_id: str) -> VectorStore:
        return self.http.parse(
            VectorStore, await self.http.request("GET", f"vector_stores/{vector_store_id}")
        )

    async def list(self, limit: int = 20, order: str = "desc") -> Page[VectorStore]:
        data = await self.http.request(
            "GET", "vector_stores", params={"limit": limit, "order": order}
        )
        return self.http.parse(Page[VectorStore], data)

    async def delete(self, vector_store_id: str) -> bool:
        return await self._delete(
            f"vector_stores/{vector_store_id}", f"OpenAI vector store {vector_store_id}"
        )

    async def add_files(self, vector_store_id: str, file_ids: List[str]) -> List[VectorStoreFile]:
        # No batch endpoint is used; files are attached one by one
        results = []
        for file_id in file_ids:
            try:
                data = await self.http.request(
                    "POST", f"vector_stores/{vector_store_id}/files", json={"file_id": file_id}
                )
            except TransportError as e:
                logger.error(f"Error adding file {file_id} to vector store {vector_store_id}: {e}")
                raise
            results.append(self.http.parse(VectorStoreFile, data))
        return results

    async def remove_files(self, vector_store_id: str, file_ids: List[str]) -> Dict[str, bool]:
        """Detach files one by one; returns per-file success"""
        results = {}
        for file_id in file_ids:
            results[file_id] = await self._delete(
                f"vector_stores/{vector_store_id}/files/{file_id}",
                f"file {file_id} of vector store {vector_store_id}",
            )
        return results

    async def list_files(self, vector_store_id: str, limit: int = 20) -> Page[VectorStoreFile]:
        data = await self.http.request(
            "GET", f"vector_stores/{vector_store_id}/files", params={"limit": limit}
        )
        return self.http.parse(Page[VectorStoreFile], data)


class OpenAiFiles(_Resource):
    async def upload(self, file_path: str, purpose: str = "assistants") -> FileObject:
        path = Path(file_path)
        if not path.is_file():
            raise FileNotFoundError(f"File not found for upload: {file_path}")

        with path.open("rb") as handle:
            form = aiohttp.FormData()
            form.add_field("purpose", purpose)
            form.add_field("file", handle, filename=path.name)
            try:
                data = await self.http.request("POST", "files", data=form)
            except TransportError as e:
                logger.error(f"Error uploading file {file_path} to OpenAI: {e}")
                raise

        uploaded = self.http.parse(FileObject, data)
        logger.info(f"File uploaded to OpenAI: {uploaded.id} ({uploaded.filename})")
        return uploaded

    async def retrieve(self, file_id: str) -> FileObject:
        return self.http.parse(FileObject, await self.http.request("GET", f"files/{file_id}"))

    async def list(self, purpose: Optional[str] = None) -> Page[FileObject]:
        data = await self.http.request("GET", "files", params={"purpose": purpose})
        return self.http.parse(Page[FileObject], data)

    async def delete(self, file_id: str) -> bool:
        return await self._delete(f"files/{file_id}", f"OpenAI file {file_id}")


class OpenAi:
    """Groups the OpenAI resource clients behind one object sharing a single HTTP session"""

    def __init__(
        self,
        http: OpenAiHttp,
        default_model: str = "gpt-4o",
        polling: Optional[PollingConfig] = None,
        company_slug: Optional[str] = None,
    ):
        self.http = http
        self.default_model = default_model
        self.polling = polling or PollingConfig()
        self.set_company(company_slug)

    def set_company(self, company_slug: Optional[str]) -> "OpenAi":
        self.company_slug = company_slug
        self.assistants = OpenAiAssistants(self.http, self.default_model, company_slug)
        self.threads = OpenAiThreads(self.http, company_slug, self.polling)
        self.vector_stores = OpenAiVectorStores(self.http, company_slug)
        self.files = OpenAiFiles(self.http)
        return self

    async def close(self) -> None:
        await self.http.close()

    async def __aenter__(self) -> "OpenAi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
