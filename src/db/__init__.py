"""Database client and repository layer."""

from src.db.change_repository import ChangeRepository
from src.db.integration_repository import IntegrationRepository
from src.db.page_repository import PageRepository
from src.db.profile_repository import ProfileRepository
from src.db.query_executor import fetch_all, is_unique_violation, timed_query
from src.db.scan_repository import ScanRepository
from src.db.suggestion_repository import SuggestionRepository

__all__ = [
    "ChangeRepository",
    "IntegrationRepository",
    "PageRepository",
    "ProfileRepository",
    "ScanRepository",
    "SuggestionRepository",
    "fetch_all",
    "is_unique_violation",
    "timed_query",
]
