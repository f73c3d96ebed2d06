"""
Sync orchestration engine
Runs one sync per (user, contact, provider) and reports a full SyncProgress

State machine:
    idle -> token_ready -> paging -> finalizing -> completed | partially_completed | failed

Credential failures end the run before any page is fetched. After that,
failures are data: they are counted on the progress report and the caller
never sees a raw exception.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple

from artifact_sync.core.config import settings
from artifact_sync.services.sync.database import SyncStateStore, sync_state_from_progress
from artifact_sync.services.sync.dedup import DuplicateGuard
from artifact_sync.services.sync.errors import (
    CredentialInvalid,
    NormalizationError,
    PersistenceError,
    ProviderAuthError,
    ProviderRequestFailed,
    RateLimitExceeded,
    SyncError,
)
from artifact_sync.services.sync.models import (
    NormalizationContext,
    RawRecord,
    RunState,
    SyncMode,
    SyncProgress,
    SyncState,
    SyncStatus,
    SyncWindow,
    UpsertOutcome,
)
from artifact_sync.services.sync.oauth import TokenManager
from artifact_sync.services.sync.pagination import PaginatedFetcher, end_of_results_reason
from artifact_sync.services.sync.persistence import ArtifactUpsertSink
from artifact_sync.services.sync.providers import PROVIDERS, ProviderAdapter, get_provider
from artifact_sync.services.sync.transport import RateLimitedTransport

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_window(
    terms: Iterable[str],
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    max_results: Optional[int] = None,
) -> SyncWindow:
    """Window with configured defaults: the last SYNC_BACKFILL_DAYS days, SYNC_DEFAULT_MAX_RESULTS records."""
    return SyncWindow(
        start_date=start_date or _utcnow() - timedelta(days=settings.sync_backfill_days),
        end_date=end_date,
        max_results=max_results or settings.sync_default_max_results,
        provider_query_terms=tuple(terms),
    )


class SyncOrchestrator:
    """
    Composes token management, paginated fetching, duplicate suppression,
    normalization and persistence into a single sequential sync run.

    Pages are processed strictly in order; duplicate decisions depend on the
    ids accumulated from earlier pages.
    """

    def __init__(
        self,
        token_manager: TokenManager,
        transport: RateLimitedTransport,
        sink: ArtifactUpsertSink,
        state_store: SyncStateStore,
        providers: Optional[Dict[str, ProviderAdapter]] = None,
        page_size: Optional[int] = None,
        page_delay: Optional[float] = None,
        page_retries: Optional[int] = None,
        ratio_threshold: Optional[float] = None,
        streak_limit: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.token_manager = token_manager
        self.transport = transport
        self.sink = sink
        self.state_store = state_store
        self.providers = providers if providers is not None else PROVIDERS
        self.page_size = page_size or settings.sync_page_size
        self.page_delay = settings.sync_page_delay_seconds if page_delay is None else page_delay
        self.page_retries = settings.sync_page_retries if page_retries is None else page_retries
        self.ratio_threshold = settings.duplicate_ratio_threshold if ratio_threshold is None else ratio_threshold
        self.streak_limit = streak_limit or settings.duplicate_streak_limit
        self._sleep = sleep
        self._clock = clock
        # Cancel events of in-flight runs, keyed by (user, contact, provider)
        self._active_runs: Dict[Tuple[str, str, str], asyncio.Event] = {}

    def _adapter(self, provider: str) -> ProviderAdapter:
        return get_provider(provider, self.providers)

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def get_sync_state(self, user_id: str, provider: str) -> Optional[SyncState]:
        """Persisted summary of the most recent run for (user, provider)."""
        return await self.state_store.get(user_id, provider)

    async def is_connected(self, user_id: str, provider: str) -> bool:
        """Whether a sync could authenticate. API-key providers are always connected."""
        adapter = self._adapter(provider)
        if not adapter.requires_oauth:
            return True
        return await self.token_manager.is_connected(user_id, adapter.name)

    async def disconnect(self, user_id: str, provider: str) -> bool:
        """
        Drop the user's stored grant for an OAuth provider.

        Returns:
            False when the user had nothing connected

        Raises:
            ValueError: unknown provider, or one that holds no per-user credential
        """
        adapter = self._adapter(provider)
        if not adapter.requires_oauth:
            raise ValueError(f"{adapter.name} uses a service API key and has no per-user credential")
        return await self.token_manager.disconnect(user_id, adapter.name)

    def cancel(self, user_id: str, contact_id: str, provider: str) -> bool:
        """Ask a running sync to stop after its current page. Returns False when no such run is active."""
        event = self._active_runs.get((user_id, contact_id, provider.lower()))
        if event is None:
            return False
        logger.info(f"🛑 Cancellation requested for contact {contact_id} ({provider})")
        event.set()
        return True

    async def start_sync(
        self,
        user_id: str,
        contact_id: str,
        provider: str,
        window: SyncWindow,
        contact_name: Optional[str] = None,
        known_ids: Optional[Iterable[str]] = None,
        mode: SyncMode = SyncMode.REFRESH,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncProgress:
        """
        Run one sync to completion.

        Args:
            user_id: Owner of the provider credential
            contact_id: Contact the artifacts are attached to
            provider: Provider name ("gmail", "linkedin")
            window: Date range, result cap and query terms
            contact_name: Used for name-based relevance when structured fields don't match
            known_ids: External ids the caller already holds
            mode: Where known ids come from and whether early stop applies
            cancel_event: Checked between pages; when set the run ends as partially completed

        Returns:
            SyncProgress for the run, whatever the outcome

        Raises:
            ValueError: unknown provider
        """
        adapter = self._adapter(provider)
        progress = SyncProgress(
            user_id=user_id,
            contact_id=contact_id,
            provider=adapter.name,
            mode=mode,
            started_at=self._clock(),
        )

        run_key = (user_id, contact_id, adapter.name)
        if run_key in self._active_runs:
            logger.warning(f"⚠️  Sync already running for contact {contact_id} ({adapter.name}), refusing overlap")
            progress.state = RunState.FAILED
            progress.status = SyncStatus.FAILED
            progress.message = f"A {adapter.name} sync is already running for this contact"
            progress.finished_at = self._clock()
            return progress

        cancel_event = cancel_event or asyncio.Event()
        self._active_runs[run_key] = cancel_event
        try:
            return await self._run(adapter, progress, window, contact_name, known_ids, mode, cancel_event)
        finally:
            self._active_runs.pop(run_key, None)

    # ========================================================================
    # RUN
    # ========================================================================

    async def _run(
        self,
        adapter: ProviderAdapter,
        progress: SyncProgress,
        window: SyncWindow,
        contact_name: Optional[str],
        known_ids: Optional[Iterable[str]],
        mode: SyncMode,
        cancel_event: Optional[asyncio.Event],
    ) -> SyncProgress:
        logger.info(f"🚀 Starting {adapter.name} sync for contact {progress.contact_id} (user {progress.user_id}, mode {mode.value})")
        await self._save_state(SyncState(user_id=progress.user_id, provider=adapter.name, status="syncing"))

        # Idle -> TokenReady
        get_token = None
        if adapter.requires_oauth:
            try:
                credential = await self.token_manager.load_credential(progress.user_id, adapter.name)
                get_token = self.token_manager.token_getter(credential)
                await get_token()
            except (CredentialInvalid, ProviderAuthError) as e:
                logger.error(f"❌ {adapter.name} credential unusable for user {progress.user_id}: {e}")
                progress.record_error(str(e))
                progress.requires_reauth = True
                return await self._fail(progress, f"Reconnect your {adapter.name} account to resume syncing ({e})")
            except PersistenceError as e:
                progress.record_error(str(e))
                return await self._fail(progress, f"Could not load {adapter.name} credentials: {e}")

        try:
            fetcher = adapter.build_fetcher(self.transport, get_token, self.page_size)
        except ValueError as e:
            progress.record_error(str(e))
            return await self._fail(progress, f"{adapter.name} sync is not configured: {e}")

        progress.state = RunState.TOKEN_READY
        known = await self._initial_known_ids(adapter, progress, known_ids, mode)
        guard = DuplicateGuard(self.ratio_threshold, self.streak_limit, enabled=mode != SyncMode.FULL_RESYNC)
        context = NormalizationContext(
            owner_user_id=progress.user_id,
            owner_contact_id=progress.contact_id,
            contact_name=contact_name,
            tracked_terms=list(window.provider_query_terms),
            synced_at=self._clock(),
        )

        # TokenReady -> Paging
        progress.state = RunState.PAGING
        cancelled = False
        page_errors = 0
        try:
            cancelled, page_errors = await self._page_through(
                adapter, fetcher, progress, window, known, guard, context, cancel_event
            )
        except (CredentialInvalid, ProviderAuthError) as e:
            # Token refresh failed mid-run; keep what was already stored
            logger.error(f"❌ {adapter.name} credential revoked mid-sync for user {progress.user_id}: {e}")
            progress.record_error(str(e))
            progress.requires_reauth = True
            progress.stop_reason = "credential_revoked"
            page_errors += 1

        # Paging -> Finalizing
        progress.state = RunState.FINALIZING
        return await self._finalize(adapter, progress, cancelled, page_errors)

    async def _initial_known_ids(
        self,
        adapter: ProviderAdapter,
        progress: SyncProgress,
        known_ids: Optional[Iterable[str]],
        mode: SyncMode,
    ) -> Set[str]:
        if mode == SyncMode.FULL_RESYNC:
            return set()

        known = set(known_ids or ())
        if mode == SyncMode.INCREMENTAL:
            try:
                known |= await self.sink.lookup_known_ids(progress.contact_id, adapter.artifact_kind)
            except PersistenceError as e:
                logger.warning(f"⚠️  Known id lookup failed, syncing without stored ids: {e}")
                progress.record_error(str(e))
        return known

    async def _page_through(
        self,
        adapter: ProviderAdapter,
        fetcher: PaginatedFetcher,
        progress: SyncProgress,
        window: SyncWindow,
        known: Set[str],
        guard: DuplicateGuard,
        context: NormalizationContext,
        cancel_event: Optional[asyncio.Event],
    ) -> Tuple[bool, int]:
        """Fetch and process pages until a stop condition. Returns (cancelled, page errors)."""
        cursor = None
        page_errors = 0
        page_attempts = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"🛑 Sync cancelled after {progress.pages_fetched} pages")
                progress.stop_reason = "cancelled"
                return True, page_errors

            page_number = progress.pages_fetched + 1
            try:
                page = await fetcher.fetch(window, cursor, limit=window.max_results - progress.total_seen)
            except RateLimitExceeded as e:
                page_errors += 1
                progress.record_error(f"page {page_number}: {e}")
                if page_attempts < self.page_retries:
                    page_attempts += 1
                    logger.warning(f"⚠️  Page {page_number} throttled, retrying ({page_attempts}/{self.page_retries})")
                    await self._sleep(self.page_delay)
                    continue
                logger.error(f"❌ Page {page_number} still throttled, stopping pagination")
                progress.stop_reason = "rate_limited"
                return False, page_errors
            except ProviderRequestFailed as e:
                page_errors += 1
                progress.record_error(f"page {page_number}: {e}")
                logger.error(f"❌ Page {page_number} failed, stopping pagination: {e}")
                progress.stop_reason = "request_failed"
                return False, page_errors
            except PersistenceError as e:
                # Credential store failed during a mid-run token refresh
                page_errors += 1
                progress.record_error(f"page {page_number}: {e}")
                logger.error(f"❌ Credential store failed before page {page_number}, stopping pagination: {e}")
                progress.stop_reason = "credential_store_failed"
                return False, page_errors

            page_attempts = 0
            progress.pages_fetched += 1

            # Never hand more than max_results records to the sink
            records = page.records[:max(window.max_results - progress.total_seen, 0)]
            progress.total_seen += len(records)

            fresh, ratio = guard.filter(records, known)
            progress.duplicates_skipped += len(records) - len(fresh)
            known.update(record.external_id for record in records)

            for record in fresh:
                await self._process_record(adapter, fetcher, record, context, progress)

            logger.info(
                f"   📄 Page {page_number}: {len(records)} records, {len(fresh)} new, "
                f"duplicates {ratio:.0%} (created {progress.created}, updated {progress.updated}, errors {progress.errors})"
            )

            reason = end_of_results_reason(page, progress.total_seen, window.max_results)
            if reason is None and guard.should_stop:
                reason = "duplicate_streak"
            if reason:
                progress.stop_reason = reason
                return False, page_errors

            cursor = page.next_cursor
            await self._sleep(self.page_delay)

    async def _process_record(
        self,
        adapter: ProviderAdapter,
        fetcher: PaginatedFetcher,
        record: RawRecord,
        context: NormalizationContext,
        progress: SyncProgress,
    ) -> None:
        """Hydrate, normalize and store one record. Record-level failures are counted, not raised."""
        try:
            full_record = await fetcher.hydrate(record)
            try:
                artifact = adapter.normalize(full_record, context)
            except (ValueError, TypeError, AttributeError, KeyError) as e:
                # Malformed payload shapes, pydantic ValidationError included
                raise NormalizationError(record.external_id, f"{type(e).__name__}: {e}") from e
            outcome = await self.sink.upsert(artifact)
        except (CredentialInvalid, ProviderAuthError):
            raise
        except SyncError as e:
            logger.warning(f"   ⚠️  Skipping {record.external_id}: {e}")
            progress.record_error(f"{record.external_id}: {e}")
            return

        progress.processed += 1
        if outcome == UpsertOutcome.CREATED:
            progress.created += 1
        else:
            progress.updated += 1

    # ========================================================================
    # FINALIZATION
    # ========================================================================

    async def _finalize(self, adapter: ProviderAdapter, progress: SyncProgress, cancelled: bool, page_errors: int) -> SyncProgress:
        record_errors = progress.errors - page_errors
        counts = f"{progress.created} new, {progress.updated} updated, {progress.duplicates_skipped} already known"

        if cancelled:
            progress.state = RunState.PARTIALLY_COMPLETED
            progress.status = SyncStatus.PARTIAL
            progress.message = f"Sync cancelled after {progress.pages_fetched} pages ({counts})"
        elif progress.errors == 0:
            progress.state = RunState.COMPLETED
            progress.status = SyncStatus.OK
            progress.message = f"Synced {progress.total_seen} {adapter.artifact_kind.value} records ({counts})"
        elif progress.processed > 0 or (progress.pages_fetched > 0 and record_errors == 0):
            progress.state = RunState.PARTIALLY_COMPLETED
            progress.status = SyncStatus.PARTIAL
            progress.message = f"Completed with {progress.errors} issues ({counts})"
        else:
            progress.state = RunState.FAILED
            progress.status = SyncStatus.FAILED
            progress.message = f"Sync failed with {progress.errors} errors and nothing stored"

        if progress.requires_reauth:
            progress.message += f". Reconnect your {adapter.name} account to resume syncing"

        progress.finished_at = self._clock()
        await self._save_state(sync_state_from_progress(progress))

        logger.info(f"✅ {adapter.name} sync finished for contact {progress.contact_id}: {progress.status.value}")
        logger.info(f"   📊 Seen: {progress.total_seen}, created: {progress.created}, updated: {progress.updated}")
        logger.info(f"   🔁 Duplicates skipped: {progress.duplicates_skipped}, errors: {progress.errors}, stop: {progress.stop_reason}")
        return progress

    async def _fail(self, progress: SyncProgress, message: str) -> SyncProgress:
        progress.state = RunState.FAILED
        progress.status = SyncStatus.FAILED
        progress.message = message
        progress.finished_at = self._clock()
        await self._save_state(sync_state_from_progress(progress))
        return progress

    async def _save_state(self, state: SyncState) -> None:
        try:
            await self.state_store.save(state)
        except PersistenceError as e:
            # The run's own result is still returned to the caller
            logger.error(f"Failed to persist sync state for user {state.user_id} ({state.provider}): {e}")
