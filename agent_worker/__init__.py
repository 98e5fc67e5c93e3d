from .runner import ClaimedJob, WorkerRunner

__all__ = [
    "ClaimedJob",
    "WorkerRunner",
]
