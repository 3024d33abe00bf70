"""Per-page sync context and the dashboard synchronization pipeline.

A :class:`SyncContext` is created when a page is entered and discarded when
it is left; it owns the page's clients, its verification machine and the
in-flight/initialized latch that keeps repeated lifecycle events from
re-running the pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from uuid import uuid4

import httpx
from pydantic import BaseModel, Field

from .activities import (
    ActivityOfTheWeek,
    ActivitySelector,
    CatalogueFetch,
    activity_history_key,
    catalogue_fetcher,
)
from .aggregators import (
    LeitnerSummary,
    TaskBoardSummary,
    WeeklyPlannerSummary,
    summarize_flashcards,
    summarize_task_board,
    summarize_weekly_plan,
)
from .cache import LocalStore, SharedCacheClient, TieredCache
from .config import Settings
from .data_sources import DashboardDataSource
from .profile_sync import ProfileSynchronizer
from .records import RemoteRecord
from .retry import RequestExecutor
from .scores import ScoresSummary, summarize_scores
from .store_client import KnackRecordStore, RecordStore
from .telemetry import emit_event
from .verification import AccountVerificationStateMachine, VerificationStatus

logger = logging.getLogger(__name__)

PROFILE_ERROR = "Unable to load or create your user profile."

T = TypeVar("T")

Closer = Callable[[], Awaitable[None]]


class UserIdentity(BaseModel):
    user_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    token: Optional[str] = None
    school_id: Optional[str] = None
    account_values: Dict[str, Any] = Field(default_factory=dict)


class DashboardSnapshot(BaseModel):
    verification: VerificationStatus
    profile: Optional[Dict[str, Any]] = None
    flashcards: LeitnerSummary = Field(default_factory=LeitnerSummary)
    planner: WeeklyPlannerSummary = Field(default_factory=WeeklyPlannerSummary)
    taskboard: TaskBoardSummary = Field(default_factory=TaskBoardSummary)
    scores: ScoresSummary = Field(default_factory=ScoresSummary)
    activity: Optional[ActivityOfTheWeek] = None
    error: Optional[str] = None
    initialized: bool = False


@dataclass
class SyncContext:
    identity: UserIdentity
    store: RecordStore
    cache: TieredCache
    synchronizer: ProfileSynchronizer
    data_source: DashboardDataSource
    activity_selector: Optional[ActivitySelector] = None
    session_id: str = field(default_factory=lambda: uuid4().hex)
    verification: Optional[AccountVerificationStateMachine] = None
    snapshot: Optional[DashboardSnapshot] = None
    initialized: bool = False
    in_flight: Optional["asyncio.Task[DashboardSnapshot]"] = None
    closers: List[Closer] = field(default_factory=list)
    last_seen: Optional[datetime] = None

    async def aclose(self) -> None:
        await self.synchronizer.drain()
        for closer in self.closers:
            try:
                await closer()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Closing a client for session %s failed: %s", self.session_id, exc)
        self.closers.clear()


class DashboardPipeline:
    """Verification gate, profile resolution, then concurrent domain fetches."""

    def __init__(
        self,
        settings: Settings,
        local_store: LocalStore,
        *,
        store_factory: Optional[Callable[[UserIdentity], RecordStore]] = None,
        shared_cache: Optional[SharedCacheClient] = None,
        activity_fetch: Optional[CatalogueFetch] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.settings = settings
        self.local_store = local_store
        self._store_factory = store_factory
        self._shared_cache = shared_cache
        self._activity_fetch = activity_fetch
        self._rng = rng
        self._clock = clock
        self._today = today or date.today

    def create_context(self, identity: UserIdentity) -> SyncContext:
        closers: List[Closer] = []
        if self._store_factory is not None:
            store = self._store_factory(identity)
        else:
            knack = KnackRecordStore(self.settings, user_token=identity.token)
            closers.append(knack.aclose)
            store = knack

        shared_cache = self._shared_cache
        if shared_cache is None and self.settings.shared_cache_url:
            shared_cache = SharedCacheClient(
                self.settings.shared_cache_url,
                timeout_seconds=self.settings.request_timeout_seconds,
            )
            closers.append(shared_cache.aclose)

        cache = TieredCache(self.local_store, shared_cache, clock=self._clock)

        fetch = self._activity_fetch
        if fetch is None and self.settings.activities_url:
            client = httpx.AsyncClient(timeout=self.settings.request_timeout_seconds)
            closers.append(client.aclose)
            executor = RequestExecutor(
                self.settings.request_max_attempts,
                self.settings.request_base_delay_ms,
            )
            fetch = catalogue_fetcher(self.settings.activities_url, executor, client)
        selector = None
        if fetch is not None:
            selector = ActivitySelector(
                fetch,
                self.local_store,
                self._rng,
                self._clock,
                history_key=activity_history_key(
                    self.settings.cache_prefix,
                    identity.user_id or identity.email or "anonymous",
                ),
            )

        return SyncContext(
            identity=identity,
            store=store,
            cache=cache,
            synchronizer=ProfileSynchronizer(store, clock=self._clock),
            data_source=DashboardDataSource(store, cache, self.settings),
            activity_selector=selector,
            closers=closers,
        )

    async def run(self, ctx: SyncContext) -> DashboardSnapshot:
        """Run once per context; repeat calls share the in-flight run or its result."""
        if ctx.initialized and ctx.snapshot is not None:
            return ctx.snapshot
        if ctx.in_flight is not None:
            return await asyncio.shield(ctx.in_flight)

        ctx.in_flight = asyncio.get_running_loop().create_task(self._run(ctx))
        try:
            return await asyncio.shield(ctx.in_flight)
        finally:
            ctx.in_flight = None

    async def refresh_all(self, ctx: SyncContext) -> DashboardSnapshot:
        if ctx.in_flight is not None:
            await asyncio.shield(ctx.in_flight)
        removed = ctx.cache.invalidate(
            ctx.data_source.cache_keys(ctx.identity.user_id, ctx.identity.email)
        )
        emit_event("dashboard_refresh", session_id=ctx.session_id, removed=removed)
        ctx.initialized = False
        return await self.run(ctx)

    async def _run(self, ctx: SyncContext) -> DashboardSnapshot:
        identity = ctx.identity
        if ctx.verification is None:
            ctx.verification = await AccountVerificationStateMachine.load(
                ctx.store, identity.user_id, identity.email
            )
        if not ctx.verification.cleared:
            logger.info("Verification pending for %s; deferring initialization", identity.user_id)
            ctx.snapshot = DashboardSnapshot(verification=ctx.verification.status())
            return ctx.snapshot

        profile = await ctx.synchronizer.resolve_profile(
            identity.user_id,
            identity.name,
            identity.email,
            school_id=identity.school_id,
        )
        if profile is None:
            ctx.snapshot = DashboardSnapshot(
                verification=ctx.verification.status(),
                error=PROFILE_ERROR,
                initialized=True,
            )
            ctx.initialized = True
            return ctx.snapshot

        today = self._today()
        source = ctx.data_source
        flashcards, planner, taskboard, scores, activity = await asyncio.gather(
            self._guard(
                "flashcards",
                self._flashcards(source, identity.user_id, today),
                LeitnerSummary(),
            ),
            self._guard(
                "planner",
                self._planner(source, identity.user_id, today),
                WeeklyPlannerSummary(),
            ),
            self._guard(
                "taskboard",
                self._taskboard(source, identity.user_id),
                TaskBoardSummary(),
            ),
            self._guard(
                "scores",
                self._scores(source, identity),
                summarize_scores(None, identity.account_values),
            ),
            self._guard("activity", self._activity(ctx.activity_selector), None),
        )

        ctx.snapshot = DashboardSnapshot(
            verification=ctx.verification.status(),
            profile=profile,
            flashcards=flashcards,
            planner=planner,
            taskboard=taskboard,
            scores=scores,
            activity=activity,
            initialized=True,
        )
        ctx.initialized = True
        logger.info("Dashboard initialized for %s", identity.user_id)
        return ctx.snapshot

    @staticmethod
    async def _guard(domain: str, work: Awaitable[T], fallback: T) -> T:
        try:
            return await work
        except Exception as exc:  # noqa: BLE001
            logger.warning("Dashboard %s domain failed; using empty summary: %s", domain, exc)
            emit_event("dashboard_domain_failed", domain=domain, error=exc)
            return fallback

    @staticmethod
    async def _flashcards(source: DashboardDataSource, user_id: Optional[str], today: date) -> LeitnerSummary:
        record: Optional[RemoteRecord] = await source.flashcard_record(user_id)
        return summarize_flashcards(record, today)

    @staticmethod
    async def _planner(source: DashboardDataSource, user_id: Optional[str], today: date) -> WeeklyPlannerSummary:
        return summarize_weekly_plan(await source.planner_payload(user_id), today)

    @staticmethod
    async def _taskboard(source: DashboardDataSource, user_id: Optional[str]) -> TaskBoardSummary:
        return summarize_task_board(await source.taskboard_payload(user_id))

    @staticmethod
    async def _scores(source: DashboardDataSource, identity: UserIdentity) -> ScoresSummary:
        return summarize_scores(await source.scores_record(identity.email), identity.account_values)

    @staticmethod
    async def _activity(selector: Optional[ActivitySelector]) -> Optional[ActivityOfTheWeek]:
        if selector is None:
            return None
        return await selector.pick()


class SessionRegistry:
    """Live sync contexts keyed by session id.

    Pages that close without leaving are evicted once idle for longer than
    ``idle_timeout``: ``get`` stops returning them and the next ``enter``
    closes their clients.
    """

    def __init__(
        self,
        pipeline: DashboardPipeline,
        *,
        idle_timeout: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.pipeline = pipeline
        self.idle_timeout = (
            idle_timeout if idle_timeout is not None else timedelta(minutes=pipeline.settings.session_idle_minutes)
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._contexts: Dict[str, SyncContext] = {}

    def __len__(self) -> int:
        return len(self._contexts)

    async def enter(self, identity: UserIdentity) -> SyncContext:
        await self.evict_idle()
        ctx = self.pipeline.create_context(identity)
        ctx.last_seen = self._clock()
        self._contexts[ctx.session_id] = ctx
        logger.info("Session %s entered for user %s", ctx.session_id, identity.user_id)
        return ctx

    def get(self, session_id: str) -> Optional[SyncContext]:
        ctx = self._contexts.get(session_id)
        if ctx is None:
            return None
        now = self._clock()
        if self._idle(ctx, now):
            return None
        ctx.last_seen = now
        return ctx

    async def evict_idle(self) -> int:
        now = self._clock()
        idle = [session_id for session_id, ctx in self._contexts.items() if self._idle(ctx, now)]
        for session_id in idle:
            await self.leave(session_id)
        if idle:
            logger.info("Evicted %s idle sessions", len(idle))
            emit_event("sessions_evicted", count=len(idle))
        return len(idle)

    async def leave(self, session_id: str) -> bool:
        ctx = self._contexts.pop(session_id, None)
        if ctx is None:
            return False
        if ctx.in_flight is not None:
            await asyncio.gather(ctx.in_flight, return_exceptions=True)
        await ctx.aclose()
        logger.info("Session %s left", session_id)
        return True

    async def close_all(self) -> None:
        for session_id in list(self._contexts):
            await self.leave(session_id)

    def _idle(self, ctx: SyncContext, now: datetime) -> bool:
        if ctx.in_flight is not None or ctx.last_seen is None:
            return False
        return now - ctx.last_seen >= self.idle_timeout


__all__ = [
    "DashboardPipeline",
    "DashboardSnapshot",
    "PROFILE_ERROR",
    "SessionRegistry",
    "SyncContext",
    "UserIdentity",
]
