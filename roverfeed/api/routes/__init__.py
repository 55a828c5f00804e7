from roverfeed.api.routes.health import router as health_router
from roverfeed.api.routes.photos import router as photos_router
from roverfeed.api.routes.scraper import router as scraper_router

__all__ = ["health_router", "photos_router", "scraper_router"]
