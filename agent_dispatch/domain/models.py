from dataclasses import dataclass, field
from typing import Optional, Any

from agent_dispatch.domain.states import Priority
from agent_dispatch.utils.timeutil import utcnow


@dataclass
class AgentTask:
    """Task descriptor handed to an orchestrator: `{type, priority?, data}`."""
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    priority: Priority = Priority.MEDIUM


@dataclass
class TaskResult:
    """Normalized envelope returned by every orchestrator dispatch."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: utcnow().isoformat())
    # Set for programming errors (unknown task type); workers must not retry these
    retryable: bool = True

    @classmethod
    def ok(cls, data: Any) -> "TaskResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, retryable: bool = True) -> "TaskResult":
        return cls(success=False, error=error, retryable=retryable)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success, "timestamp": self.timestamp}
        if self.success:
            body["data"] = self.data
        else:
            body["error"] = self.error
        return body


@dataclass
class JobSnapshot:
    """Read model served by the job-status endpoints."""
    id: str
    name: str
    state: str
    progress: int
    result: Optional[Any]
    error: Optional[str]
    processed_on: Optional[str]
    finished_on: Optional[str]
    attempts: int = 0
    priority: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state,
            "progress": self.progress,
            "result": self.result,
            "error": self.error,
            "processedOn": self.processed_on,
            "finishedOn": self.finished_on,
            "attempts": self.attempts,
            "priority": self.priority,
        }
