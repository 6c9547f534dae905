"""
Service Factory
Centralizes the logic for selecting the storage adapter and wiring services.
"""

from dataclasses import dataclass

from revisit.application.card_service import CardService
from revisit.application.config import AppConfig
from revisit.application.scheduler import Scheduler
from revisit.application.session_manager import SessionManager, SessionStore
from revisit.domain.clock import Clock, utc_now
from revisit.domain.ports import CardRepository
from revisit.infrastructure.adapters.json_store import JsonCardRepository
from revisit.infrastructure.adapters.memory_store import InMemoryCardRepository


@dataclass
class Services:
    cards: CardService
    sessions: SessionManager


def get_card_repository(config: AppConfig) -> CardRepository:
    """
    Returns the CardRepository implementation selected by config.
    """
    if config.backend == "memory":
        return InMemoryCardRepository()
    return JsonCardRepository(config.data_dir)


def build_services(
    config: AppConfig,
    repository: CardRepository | None = None,
    clock: Clock = utc_now,
) -> Services:
    """
    Wire a CardService and SessionManager from config.
    """
    repo = repository if repository is not None else get_card_repository(config)
    cards = CardService(
        repo,
        scheduler=Scheduler(max_easiness_factor=config.max_easiness_factor, clock=clock),
        clock=clock,
        archive_after_days=config.archive_after_days,
        due_limit=config.due_limit,
    )
    store = SessionStore(ttl=config.session_ttl, max_sessions=config.max_sessions, clock=clock)
    sessions = SessionManager(
        cards,
        store=store,
        clock=clock,
        default_target_cards=config.default_target_cards,
        default_max_new_cards=config.default_max_new_cards,
    )
    return Services(cards=cards, sessions=sessions)
