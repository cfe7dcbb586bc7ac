from app.services.analytics.tracking import GrowthTracker

__all__ = ["GrowthTracker"]
