"""
Execution engine

Owns Playwright, the browser and every authenticated session, and runs claim
attempts concurrently. Each attempt is one coroutine of strictly sequential
portal steps; attempts race each other with no ordering between them.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    Route,
)

from .adapter import CALENDAR_ROUTE, SiteAdapter, with_mock_unlock
from .session import SessionHandle
from .urls import WebPages
from ..common.classifier import normalize
from ..common.config import Config
from ..common.errors import AuthError, CourtBotError, SessionInvalidated
from ..common.logs import format_ms, success
from ..common.models import (
    AttemptRecord,
    AttemptState,
    ClaimRequest,
    ClaimStatus,
    FallbackEvent,
    FallbackReason,
    NavigationState,
    PhaseTimings,
    SessionMode,
    SessionSignal,
)
from ..common.scheduler import PhaseTimer, UnlockClock

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
]
BLOCKED_RESOURCE_TYPES = {"image", "font", "stylesheet", "media"}
BLOCKED_DOMAINS = (
    "google-analytics.com",
    "googletagmanager.com",
    "facebook.com",
    "doubleclick.net",
)
AUTH_LOSS_PHRASES = (
    "unauthorized",
    "sesion expirada",
    "sesion ha expirado",
    "sesion ha caducado",
    "sesion invalida",
    "inicie sesion",
    "vuelva a iniciar sesion",
)


@dataclass
class PlannedAttempt:
    """One unit of concurrent work and what to report if it blows up"""
    resource_id: str
    resource_name: str
    run: Callable[[], Awaitable[AttemptRecord]]
    request: Optional[ClaimRequest] = None
    target_date: Optional[date] = None
    time_window: Optional[str] = None


async def run_concurrent(attempts: Sequence[PlannedAttempt], stagger_ms: int = 100) -> List[AttemptRecord]:
    """
    Run every attempt at once and return one record per attempt, in order.

    An exception inside one attempt becomes that attempt's FAILURE record and
    never touches its siblings. Launches are staggered by `stagger_ms` so two
    attempts don't open the portal's modal in the same instant. Cancelling
    the caller cancels every attempt.
    """

    async def guarded(index: int, attempt: PlannedAttempt) -> AttemptRecord:
        if index and stagger_ms:
            await asyncio.sleep(index * stagger_ms / 1000)
        try:
            return await attempt.run()
        except Exception as e:
            logger.error(f"❌ {attempt.resource_name} failed: {type(e).__name__}: {e}")
            return AttemptRecord.failure(
                attempt.resource_id,
                attempt.resource_name,
                e,
                request=attempt.request,
                target_date=attempt.target_date,
                time_window=attempt.time_window,
            )

    if not attempts:
        return []
    logger.info(f"🚀 Launching {len(attempts)} attempt(s)")
    return list(await asyncio.gather(*(guarded(i, a) for i, a in enumerate(attempts))))


def session_failure_reason(signal: SessionSignal) -> Optional[FallbackReason]:
    """
    Auth-loss signal in a page's URL or text, if any.

    Logged-in pages carry a "Cerrar sesión" link, so the body has to say the
    session is gone, not just mention one.
    """
    url = signal.url.lower()
    if "login" in url or "signin" in url:
        return FallbackReason.LOGIN_REDIRECT

    body = normalize(signal.body_text)
    if any(phrase in body for phrase in AUTH_LOSS_PHRASES):
        return FallbackReason.AUTH_ERROR
    if "csrf" in body:
        return FallbackReason.CSRF_ERROR
    return None


class ExecutionEngine:
    """
    Browser lifecycle plus claim dispatch.

    Use as an async context manager; sessions opened through it are closed
    on exit.
    """

    def __init__(self, config: Config, adapter: Optional[SiteAdapter] = None, clock: Optional[UnlockClock] = None):
        self.config = config
        self.timing = config.timing
        self.run = config.run
        debug_dir = Path(config.browser.debug_dir) if config.run.debug else None
        self.adapter = adapter or SiteAdapter(config.timing, WebPages(config.site.base_url), debug_dir=debug_dir)
        self.clock = clock

        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.sessions: List[SessionHandle] = []

        self.fallback_events: List[FallbackEvent] = []
        self.recommended_mode: Optional[SessionMode] = None

    async def start(self):
        logger.info("Starting browser...")
        if self.config.browser.mock_unlock_ms > 0:
            logger.warning(
                f"🧪 MOCK UNLOCK: calendar days stay locked {self.config.browser.mock_unlock_ms}ms after each load"
            )
        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(
            headless=self.config.browser.headless,
            args=LAUNCH_ARGS,
        )
        logger.info("Browser started")

    async def stop(self):
        for handle in self.sessions:
            await handle.close()
        self.sessions = []
        if self.browser:
            await self.browser.close()
        if self.playwright:
            await self.playwright.stop()
        logger.info("Browser stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *args):
        await self.stop()

    # ========================================
    # Sessions
    # ========================================

    async def _new_context(self) -> BrowserContext:
        context = await self.browser.new_context(
            user_agent=self.config.browser.user_agent,
            viewport={"width": 1280, "height": 720},
        )
        if self.config.browser.block_resources:
            await context.route("**/*", self._filter_route)
        if self.config.browser.mock_unlock_ms > 0:
            # registered last so it runs before the resource filter
            await context.route(CALENDAR_ROUTE, self._mock_unlock)
        return context

    @staticmethod
    async def _filter_route(route: Route):
        request = route.request
        if request.resource_type in BLOCKED_RESOURCE_TYPES or any(d in request.url for d in BLOCKED_DOMAINS):
            await route.abort()
        else:
            await route.continue_()

    async def _mock_unlock(self, route: Route):
        response = await route.fetch()
        body = await response.text()
        await route.fulfill(response=response, body=with_mock_unlock(body, self.config.browser.mock_unlock_ms))

    async def open_session(self, mode: SessionMode) -> SessionHandle:
        """New context, logged in. AuthError propagates after cleanup."""
        context = await self._new_context()
        page = await context.new_page()
        try:
            dashboard_url = await self.adapter.authenticate(page, self.config.credentials)
        except AuthError:
            await context.close()
            raise
        handle = SessionHandle(context, page, mode, dashboard_url)
        self.sessions.append(handle)
        return handle

    async def pages_for(self, count: int, mode: SessionMode) -> List[Tuple[SessionHandle, Page]]:
        """
        One page per attempt.

        Shared: a single login, extra pages on the same context. Isolated: a
        separate login per attempt.
        """
        if count <= 0:
            return []
        logger.info(f"Preparing {count} page(s) in {mode.value} session mode")

        first = await self.open_session(mode)
        pairs = [(first, first.page)]
        for _ in range(count - 1):
            if mode == SessionMode.SHARED:
                pairs.append((first, await first.new_page(self.timing.nav_ms)))
            else:
                handle = await self.open_session(mode)
                pairs.append((handle, handle.page))
        return pairs

    # ========================================
    # Attempts
    # ========================================

    async def run_concurrent(self, attempts: Sequence[PlannedAttempt]) -> List[AttemptRecord]:
        return await run_concurrent(attempts, stagger_ms=self.timing.stagger_ms)

    def _offset_ms(self, timer: PhaseTimer, t0: Optional[datetime]) -> float:
        if t0 is not None and self.clock is not None:
            return self.clock.ms_since(t0)
        return timer.elapsed_ms()

    async def execute_attempt(
        self,
        page: Page,
        request: ClaimRequest,
        t0: Optional[datetime] = None,
        handle: Optional[SessionHandle] = None,
    ) -> AttemptRecord:
        """
        Walk one claim from the dashboard to a classified result.

        Portal and Playwright errors end the attempt as a FAILURE record that
        keeps the last state reached and the timings gathered so far.
        Only those errors trigger a session-loss check; a classified result
        means the portal answered on a live session.
        """
        timer = PhaseTimer()
        timings = PhaseTimings()
        state = NavigationState.DASHBOARD
        selected: Optional[str] = None
        name = request.resource_name
        last_second = -1

        def on_tick(elapsed_ms: float):
            nonlocal last_second
            if int(elapsed_ms // 1000) != last_second:
                last_second = int(elapsed_ms // 1000)
                logger.debug(f"  {name}: polling... {format_ms(elapsed_ms)}s elapsed")

        def record(attempt_state: AttemptState, **fields) -> AttemptRecord:
            return AttemptRecord(
                resource_id=request.resource_id,
                resource_name=name,
                target_date=request.target_date,
                time_window=request.time_window,
                request=request,
                state=attempt_state,
                selected_value=selected,
                timings=timings,
                **fields,
            )

        logger.info(
            f"🎾 Reserving {name} on {request.day_name} {request.target_date.isoformat()} "
            f"at {request.time_window} (slot {request.slot_id})"
        )
        if t0 is not None:
            logger.debug(f"⏱️  {name}: T0 offset +{format_ms(self._offset_ms(timer, t0))}s")

        try:
            modal = await self.adapter.open_claim_surface(page)
            state = NavigationState.CLAIM_SURFACE_OPEN

            await self.adapter.select_resource_and_continue(modal, request.resource_id)
            state = NavigationState.RESOURCE_SELECTED

            calendar = await self.adapter.load_calendar(page, request.target_date, request.resource_id)
            state = NavigationState.CALENDAR_LOADED

            state = NavigationState.DATE_UNLOCK_PENDING
            await self.adapter.poll_for_unlock(
                calendar,
                request.target_date,
                poll_interval_ms=self.timing.poll_interval_ms,
                max_wait_ms=self.timing.unlock_max_ms,
                on_tick=on_tick,
                resource_id=request.resource_id,
            )
            timings.unlock_ms = self._offset_ms(timer, t0)
            success(logger, f"✅ {name}: date unlocked at T+{format_ms(timings.unlock_ms)}s")

            await self.adapter.select_date(calendar, request.target_date)
            state = NavigationState.DATE_SELECTED

            form = await self.adapter.open_form(page)
            state = NavigationState.FORM_OPEN
            timings.form_ready_ms = self._offset_ms(timer, t0)
            success(logger, f"✅ {name}: form ready at T+{format_ms(timings.form_ready_ms)}s")

            selected = await self.adapter.select_slot(form, request.slot_id, request.time_window)
            state = NavigationState.SLOT_SELECTED
            logger.debug(f"{name}: selected slot value {selected}")

            if not self.run.shadow and not self.run.allow_booking:
                timings.submit_ms = self._offset_ms(timer, t0)
                logger.warning(f"⚠️  {name}: allow_booking not set - submission withheld by dead-man switch")
                logger.warning("Pass --allow-booking or set ALLOW_BOOKING=1 to make real bookings")
                return record(AttemptState.WITHHELD, last_state=state)

            result = await self.adapter.submit(form, dry_run=self.run.shadow)
            timings.submit_ms = self._offset_ms(timer, t0)
            selected = result.slot_value or selected
            if not result.submitted:
                logger.warning(f"🔮 {name}: shadow run, would have submitted at T+{format_ms(timings.submit_ms)}s")
                return record(AttemptState.SHADOW, last_state=state)

            state = NavigationState.SUBMITTED
            success(logger, f"✅ {name}: submitted at T+{format_ms(timings.submit_ms)}s")

            outcome = await self.adapter.await_result(page, self.timing.result_timeout_ms)
        except (CourtBotError, PlaywrightError) as e:
            logger.error(f"❌ {name} failed in {state.value}: {type(e).__name__}: {e}")
            await self.adapter.screenshot(page, f"error-{request.resource_id}")
            reason = await self.check_session(page, request.resource_id, handle)
            return AttemptRecord.failure(
                request.resource_id,
                name,
                e,
                request=request,
                last_state=state,
                timings=timings,
                session_reason=reason,
            )

        if outcome.is_success:
            success(logger, f"✅ SUCCESS: Reserved {name} on {request.target_date.isoformat()} at {request.time_window}")
            return record(AttemptState.SUCCESS, outcome=outcome, last_state=NavigationState.SUCCESS)

        logger.error(f"❌ {name}: {outcome.status.value} - {outcome.message}")
        if outcome.status == ClaimStatus.UNKNOWN and self.adapter.debug_dir is not None:
            await self.adapter.dump_frames(page, self.adapter.debug_dir / f"frames-{request.resource_id}.txt")
        return record(
            AttemptState.FAILURE,
            outcome=outcome,
            error_kind=outcome.status.value,
            last_state=NavigationState.FAILURE,
        )

    # ========================================
    # Session loss
    # ========================================

    async def check_session(
        self,
        page: Page,
        resource_id: str,
        handle: Optional[SessionHandle] = None,
    ) -> Optional[FallbackReason]:
        signal = await self.adapter.session_signal(page)
        reason = self.detect_session_invalidation(signal, resource_id, handle)
        if reason is not None and handle is not None and self.adapter.debug_dir is not None:
            await handle.save_storage_state(self.adapter.debug_dir / f"session-{resource_id}.json")
        return reason

    def detect_session_invalidation(
        self,
        signal: SessionSignal,
        resource_id: str,
        handle: Optional[SessionHandle] = None,
    ) -> Optional[FallbackReason]:
        """
        Record a fallback event if `signal` shows the session was lost.

        Nothing is retried; the event only recommends isolated sessions for
        the next run.
        """
        reason = session_failure_reason(signal)
        if reason is None:
            return None

        error = SessionInvalidated(reason.value, resource_id, detail=signal.url)
        self.fallback_events.append(FallbackEvent(resource_id=resource_id, reason=reason, detail=str(error)))
        self.recommended_mode = SessionMode.ISOLATED
        if handle is not None:
            handle.invalidate(reason.value)
        logger.warning(f"⚠️  SESSION FAILURE DETECTED for {resource_id}: {error}")
        logger.warning("Consider --session-mode isolated for the next run")
        return reason
