from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

SUCCESS_CODE = 200
UNKNOWN_USAGE = "unknown"


class TaskStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    staged = "staged"
    completed = "completed"
    failed = "failed"

    @classmethod
    def parse(cls, label: Optional[str]) -> "TaskStatus":
        """Map a provider status label onto a member; unknown labels are still running"""
        try:
            return cls(label)
        except ValueError:
            return cls.pending

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.completed, TaskStatus.failed)


class JobConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(gt=0)
    timeout_seconds: float = Field(gt=0)

    @property
    def poll_interval(self) -> float:
        return self.timeout_seconds / self.max_attempts


class ProgressSignal(BaseModel):
    progress: float = Field(ge=0, le=100)
    total: float = 100


class StatusSnapshot(BaseModel):
    task_id: str
    status: TaskStatus
    raw_response: dict
    elapsed_time: float


class TaskResult(BaseModel):
    task_id: str
    usage_cost: str = UNKNOWN_USAGE
    raw_output: Any


# Provider wire envelopes


class TaskHandleData(BaseModel):
    task_id: Optional[str] = None


class SubmitEnvelope(BaseModel):
    code: int
    message: Optional[str] = None
    data: Optional[TaskHandleData] = None


class TaskError(BaseModel):
    message: Optional[str] = None


class TaskUsage(BaseModel):
    consume: Optional[str | int | float] = None


class TaskMeta(BaseModel):
    usage: Optional[TaskUsage] = None


class TaskData(BaseModel):
    status: Optional[str] = None
    output: Optional[Any] = None
    error: Optional[TaskError] = None
    meta: Optional[TaskMeta] = None

    @property
    def usage_cost(self) -> str:
        if self.meta is None or self.meta.usage is None:
            return UNKNOWN_USAGE
        consume = self.meta.usage.consume
        if consume is None or consume == "":
            return UNKNOWN_USAGE
        return str(consume)


class StatusEnvelope(BaseModel):
    code: int
    message: Optional[str] = None
    data: Optional[TaskData] = None
