"""Engine components: identity, dedup, jobs and subscription leases."""

from .dedup import DeduplicationEngine
from .identity import IdentityResolver
from .jobs import BatchReport, JobProcessor, JobStateMachine
from .leases import RenewalResult, SubscriptionLeaseManager
from .thread_pool import ThreadPoolManager

__all__ = [
    "BatchReport",
    "DeduplicationEngine",
    "IdentityResolver",
    "JobProcessor",
    "JobStateMachine",
    "RenewalResult",
    "SubscriptionLeaseManager",
    "ThreadPoolManager",
]
