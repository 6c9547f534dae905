# Application Package
from .card_service import CardService
from .due_selector import DueSelector
from .scheduler import Scheduler, calculate_quality
from .session_manager import SessionManager, SessionStore

__all__ = [
    "CardService",
    "DueSelector",
    "Scheduler",
    "SessionManager",
    "SessionStore",
    "calculate_quality",
]
