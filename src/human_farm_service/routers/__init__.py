"""API routers."""

from human_farm_service.routers import auth, escrow, health, humans, skills, stats, tasks, users

__all__ = ["auth", "escrow", "health", "humans", "skills", "stats", "tasks", "users"]
