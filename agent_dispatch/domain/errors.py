class JobError(Exception):
    """Base exception for queue and job lifecycle errors."""
    pass


class ConfigurationError(JobError):
    pass


class JobNotFoundError(JobError):
    def __init__(self, job_id):
        super().__init__(f"Job {job_id} not found")


class InvalidJobStateError(JobError):
    def __init__(self, current_state, target_state):
        super().__init__(f"Cannot transition from {current_state} to {target_state}")


class LeaseError(JobError):
    pass


class LeaseExpiredError(LeaseError):
    pass


class LeaseNotFoundError(LeaseError):
    pass


class AgentError(Exception):
    """Business failure raised by an agent service; normalized by the orchestrator."""
    pass


class NotFoundError(AgentError):
    pass


class UnknownTaskTypeError(AgentError):
    def __init__(self, task_type, domain: str):
        self.task_type = task_type
        super().__init__(f"Unknown task type: {task_type!r} is not a {domain} task")


class TaskFailedError(JobError):
    """Raised by the worker when a dispatch returns an unsuccessful TaskResult."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
