from roverfeed.models.base import Base
from roverfeed.models.api_keys import ApiKey
from roverfeed.models.cameras import Camera
from roverfeed.models.cursors import ScraperCursor
from roverfeed.models.photos import Photo
from roverfeed.models.rate_limits import RateWindowCounter
from roverfeed.models.runs import IngestionRun

__all__ = [
    "Base",
    "ApiKey",
    "Camera",
    "ScraperCursor",
    "Photo",
    "RateWindowCounter",
    "IngestionRun",
]
