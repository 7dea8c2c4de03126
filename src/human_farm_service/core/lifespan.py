"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from human_farm_service.config import get_settings
from human_farm_service.core.state import init_app_state
from human_farm_service.logging import get_logger, setup_logging
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

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    # One connection shared by both stores so multi-table writes stay atomic
    database = Database(settings.database.path)
    state.database = database
    task_store = TaskStore(database)
    user_store = UserStore(database)

    authenticator = Authenticator(
        user_store=user_store,
        jwt_secret=settings.auth.jwt_secret,
        token_ttl_seconds=settings.auth.token_ttl_seconds,
        verification_ttl_seconds=settings.auth.verification_ttl_seconds,
        admin_secret=settings.auth.admin_secret,
    )
    state.authenticator = authenticator

    state.account_manager = AccountManager(user_store=user_store, authenticator=authenticator)
    state.task_manager = TaskManager(store=task_store)
    state.escrow_tracker = EscrowTracker(store=task_store, escrow_config=settings.escrow)
    state.listing_service = ListingService(
        task_store=task_store,
        user_store=user_store,
        default_limit=settings.listing.default_limit,
        max_limit=settings.listing.max_limit,
    )
    state.message_service = MessageService(store=task_store)
    state.stats_service = StatsService(task_store=task_store, user_store=user_store)

    if settings.auth.admin_secret is None:
        logger.warning("Admin secret not configured; admin endpoints are disabled")

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "escrow_contract": settings.escrow.contract_address,
            "chain_id": settings.escrow.chain_id,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})
    database.close()
