from enum import Enum
from typing import Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field


class RunStatus(str, Enum):
    queued = "queued"
    in_progress = "in_progress"
    cancelling = "cancelling"
    completed = "completed"
    cancelled = "cancelled"
    failed = "failed"
    expired = "expired"
    requires_action = "requires_action"


class StatusCategory(str, Enum):
    pending = "pending"
    success = "success"
    failure = "failure"
    action_required = "action_required"


STATUS_CATEGORIES = {
    RunStatus.queued: StatusCategory.pending,
    RunStatus.in_progress: StatusCategory.pending,
    RunStatus.cancelling: StatusCategory.pending,
    RunStatus.completed: StatusCategory.success,
    RunStatus.cancelled: StatusCategory.failure,
    RunStatus.failed: StatusCategory.failure,
    RunStatus.expired: StatusCategory.failure,
    RunStatus.requires_action: StatusCategory.action_required,
}


def classify_status(status: RunStatus) -> StatusCategory:
    """Maps a remote run status onto the category the poller acts on"""
    return STATUS_CATEGORIES[RunStatus(status)]


class JobHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    thread_id: str
    run_id: str


class ApiObject(BaseModel):
    """Base for provider entities; unknown response fields are kept"""

    model_config = ConfigDict(extra="allow")

    id: str
    object: Optional[str] = None
    created_at: Optional[int] = None
    metadata: Optional[dict] = None


class Run(ApiObject):
    thread_id: str
    assistant_id: Optional[str] = None
    status: RunStatus
    last_error: Optional[dict] = None
    required_action: Optional[dict] = None


class ThreadMessage(ApiObject):
    thread_id: str
    role: str
    content: List[dict] = Field(default_factory=list)
    run_id: Optional[str] = None
    assistant_id: Optional[str] = None

    @property
    def text(self) -> str:
        return "\n".join(
            block["text"]["value"]
            for block in self.content
            if block.get("type") == "text"
        ).strip()


class Thread(ApiObject):
    tool_resources: Optional[dict] = None


class Assistant(ApiObject):
    name: Optional[str] = None
    model: str
    instructions: Optional[str] = None
    tools: List[dict] = Field(default_factory=list)
    tool_resources: Optional[dict] = None


class VectorStore(ApiObject):
    name: Optional[str] = None
    status: Optional[str] = None
    file_counts: Optional[dict] = None


class VectorStoreFile(ApiObject):
    vector_store_id: str
    status: Optional[str] = None


class FileObject(ApiObject):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    filename: str
    purpose: str
    size: Optional[int] = Field(default=None, alias="bytes")


class DeletionStatus(BaseModel):
    id: str
    deleted: bool = False


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    data: List[T] = Field(default_factory=list)
    first_id: Optional[str] = None
    last_id: Optional[str] = None
    has_more: bool = False


class PollingConfig(BaseModel):
    max_attempts: int = Field(default=30, gt=0)
    delay: float = Field(default=1.0, ge=0)
    backoff_factor: float = Field(default=1.0, ge=1.0)
    max_delay: float = 32.0
    jitter: bool = False


class PollOutcome(BaseModel):
    handle: JobHandle
    attempts: int


class Success(PollOutcome):
    result: ThreadMessage


class Failure(PollOutcome):
    reason: str
    status: Optional[RunStatus] = None


class Timeout(PollOutcome):
    pass


class ActionRequired(PollOutcome):
    raw_status: RunStatus
    run: Run


class Cancelled(PollOutcome):
    pass


AnyOutcome = Union[Success, Failure, Timeout, ActionRequired, Cancelled]
