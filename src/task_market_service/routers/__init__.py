"""API routers."""

from task_market_service.routers import bids, health, payments, profiles, progress, reviews, tasks

__all__ = ["bids", "health", "payments", "profiles", "progress", "reviews", "tasks"]
