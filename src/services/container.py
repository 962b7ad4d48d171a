"""Wiring of repositories and services around one Supabase client."""

from dataclasses import dataclass

from supabase import Client

from src.config import Settings
from src.db.change_repository import ChangeRepository
from src.db.integration_repository import IntegrationRepository
from src.db.page_repository import PageRepository
from src.db.profile_repository import ProfileRepository
from src.db.scan_repository import ScanRepository
from src.db.suggestion_repository import SuggestionRepository
from src.services.analytics_adapter import AnalyticsAdapterResolver
from src.services.backup_runner import BackupRunner
from src.services.change_lifecycle import ChangeLifecycleStore
from src.services.checkpoint_engine import CheckpointEngine
from src.services.event_queue import EventQueue, get_event_queue
from src.services.page_service import PageService
from src.services.scan_lifecycle import ScanLifecycle
from src.services.scan_scheduler import ScanScheduler
from src.services.suggestion_service import SuggestionService


@dataclass
class ServiceContainer:
    """Everything a request handler or CLI command needs."""

    settings: Settings
    queue: EventQueue
    scheduler: ScanScheduler
    backup: BackupRunner
    lifecycle: ChangeLifecycleStore
    checkpoints: CheckpointEngine
    pages: PageService
    scans: ScanLifecycle
    suggestions: SuggestionService


def build_container(
    settings: Settings,
    supabase: Client,
    queue: EventQueue | None = None,
) -> ServiceContainer:
    """
    Build the service graph.

    Args:
        settings: Application settings
        supabase: Service-role Supabase client shared by all repositories
        queue: Work queue (defaults to the configured HTTP queue)
    """
    queue = queue or get_event_queue(settings)

    page_repo = PageRepository(supabase)
    profile_repo = ProfileRepository(supabase)
    scan_repo = ScanRepository(supabase)
    change_repo = ChangeRepository(supabase)
    suggestion_repo = SuggestionRepository(supabase)
    integration_repo = IntegrationRepository(supabase)

    scheduler = ScanScheduler(page_repo, profile_repo, scan_repo, queue)
    lifecycle = ChangeLifecycleStore(change_repo)

    return ServiceContainer(
        settings=settings,
        queue=queue,
        scheduler=scheduler,
        backup=BackupRunner(
            scheduler,
            scan_repo,
            queue,
            weekly_weekday=settings.weekly_scan_weekday,
            stale_threshold_hours=settings.stale_scan_threshold_hours,
            stale_lookback_hours=settings.stale_scan_lookback_hours,
        ),
        lifecycle=lifecycle,
        checkpoints=CheckpointEngine(
            change_repo,
            page_repo,
            profile_repo,
            lifecycle,
            AnalyticsAdapterResolver(integration_repo, settings),
            settings,
        ),
        pages=PageService(
            page_repo,
            profile_repo,
            scan_repo,
            change_repo,
            suggestion_repo,
            queue,
        ),
        scans=ScanLifecycle(scan_repo, page_repo),
        suggestions=SuggestionService(suggestion_repo, page_repo),
    )
