# Services package
from roverfeed.services.data_service import DataService
from roverfeed.services.ingestion_processor import IngestionProcessor
from roverfeed.services.rate_limiter import RateLimiter, build_rate_limiter
from roverfeed.services.runner import BackgroundRunner
from roverfeed.services.scheduler import IncrementalScheduler, RunOutcome

__all__ = [
    "DataService",
    "IngestionProcessor",
    "RateLimiter",
    "build_rate_limiter",
    "BackgroundRunner",
    "IncrementalScheduler",
    "RunOutcome",
]
