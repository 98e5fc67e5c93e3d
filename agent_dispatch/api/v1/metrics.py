from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions
QUEUE_DEPTH = Gauge('agent_queue_depth', 'Number of jobs waiting or delayed', ['queue'])
JOBS_ACTIVE = Gauge('agent_jobs_active', 'Number of jobs currently claimed by workers', ['queue'])

JOB_ENQUEUED_TOTAL = Counter('agent_jobs_enqueued_total', 'Jobs added to a queue', ['queue', 'priority'])
JOB_COMPLETE_TOTAL = Counter('agent_jobs_completed_total', 'Jobs that finished successfully', ['queue'])
JOB_FAILURES = Counter('agent_job_failures_total', 'Total job failures', ['queue', 'kind'])  # kind=retryable|final
JOB_STALLED_TOTAL = Counter('agent_jobs_stalled_total', 'Jobs recovered after their lease expired', ['queue'])
JOB_PURGED_TOTAL = Counter('agent_jobs_purged_total', 'Terminal jobs removed by retention', ['queue'])

JOB_START_DELAY = Histogram('agent_job_start_delay_seconds', 'Time from available_at to claim', buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0])
JOB_DURATION = Histogram('agent_job_duration_seconds', 'Time from claim to completion', buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 60.0, 120.0])

TASK_DISPATCH_TOTAL = Counter(
    "agent_task_dispatch_total",
    "Orchestrator dispatches",
    ["domain", "type", "outcome"]  # outcome=success|failure
)

TASK_DISPATCH_DURATION = Histogram(
    "agent_task_dispatch_duration_seconds",
    "Orchestrator dispatch duration",
    ["domain", "type"],
    buckets=[0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0]
)

LEADER_STATUS = Gauge(
    "agent_scheduler_leader_status",
    "Whether this instance currently runs maintenance (1 for leader, 0 for follower)"
)


@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
