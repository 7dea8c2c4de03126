"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from human_farm_service.services.accounts import AccountManager
    from human_farm_service.services.authenticator import Authenticator
    from human_farm_service.services.database import Database
    from human_farm_service.services.escrow_tracker import EscrowTracker
    from human_farm_service.services.listing import ListingService
    from human_farm_service.services.messages import MessageService
    from human_farm_service.services.stats import StatsService
    from human_farm_service.services.task_manager import TaskManager


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    database: Database | None = None
    authenticator: Authenticator | None = None
    account_manager: AccountManager | None = None
    task_manager: TaskManager | None = None
    escrow_tracker: EscrowTracker | None = None
    listing_service: ListingService | None = None
    message_service: MessageService | None = None
    stats_service: StatsService | None = None

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
