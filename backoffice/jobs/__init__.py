"""Job records, payload models and the waiting queue."""

from backoffice.jobs.models import JobKind, JobRecord, JobSnapshot, JobStatus
from backoffice.jobs.payloads import DistributionPayload, DistributionSettings, IngestionPayload
from backoffice.jobs.queue import PriorityQueue

__all__ = [
    "DistributionPayload",
    "DistributionSettings",
    "IngestionPayload",
    "JobKind",
    "JobRecord",
    "JobSnapshot",
    "JobStatus",
    "PriorityQueue",
]
