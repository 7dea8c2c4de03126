"""Service layer components."""

from human_farm_service.services.accounts import AccountManager
from human_farm_service.services.authenticator import Authenticator
from human_farm_service.services.database import Database
from human_farm_service.services.escrow_tracker import EscrowTracker
from human_farm_service.services.listing import ListingService
from human_farm_service.services.messages import MessageService
from human_farm_service.services.stats import StatsService
from human_farm_service.services.task_manager import TaskManager
from human_farm_service.services.task_store import TaskStore
from human_farm_service.services.user_store import UserStore

__all__ = [
    "AccountManager",
    "Authenticator",
    "Database",
    "EscrowTracker",
    "ListingService",
    "MessageService",
    "StatsService",
    "TaskManager",
    "TaskStore",
    "UserStore",
]
