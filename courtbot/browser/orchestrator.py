"""
Run orchestration

One run, in order:

1. plan which resources need a claim (no network)
2. measure the portal's clock skew
3. log in shortly before the unlock
4. wait for the unlock instant (T0)
5. recompute target dates from the portal's new "today" and resolve slot ids
6. race one attempt per resource
7. send one report

Only a failed login aborts the run; everything else ends up as a per-resource
record in the report.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from functools import partial
from typing import List, Optional

from .engine import ExecutionEngine, PlannedAttempt, run_concurrent
from ..api.client import MobileAPIClient
from ..common.config import Config, ResourceConfig
from ..common.errors import AuthError, CourtBotError, SlotResolutionError
from ..common.logs import success
from ..common.models import (
    AttemptRecord,
    AttemptState,
    ClaimRequest,
    NavigationState,
    PhaseTimings,
    RunReport,
    day_name,
)
from ..common.notifications import NotificationManager
from ..common.schedule import DEFAULT_SCHEDULE, ScheduleTable
from ..common.scheduler import UnlockClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedClaim:
    resource: ResourceConfig
    target_date: date
    time_window: str


class ClaimOrchestrator:
    """Sequences one run; all settings come from the frozen Config"""

    def __init__(
        self,
        config: Config,
        engine: Optional[ExecutionEngine] = None,
        clock: Optional[UnlockClock] = None,
        table: Optional[ScheduleTable] = None,
        notifier: Optional[NotificationManager] = None,
        api_client: Optional[MobileAPIClient] = None,
    ):
        self.config = config
        self.clock = clock or UnlockClock(
            timezone_name=config.schedule.timezone,
            unlock_time=config.schedule.unlock_clock_time,
            progress_interval_s=config.schedule.progress_interval_s,
        )
        self.table = table or DEFAULT_SCHEDULE
        self.notifier = notifier or NotificationManager(config.notifications)
        # built lazily so dry runs never launch a browser
        self.engine = engine
        self.api_client = api_client

    # ========================================
    # Planning
    # ========================================

    def plan(self, reference: date) -> List[PlannedClaim]:
        """Resources that need a claim when the portal's day is `reference`"""
        run = self.config.run
        planned = []
        for resource in self.config.resources:
            if resource.id in run.skip:
                logger.info(f"Skipping {resource.name} (--skip)")
                continue

            target = run.target or reference + timedelta(days=resource.days_ahead)
            window = run.time_overrides.get(resource.id) or resource.window_for(day_name(target))
            if not window:
                logger.info(f"{resource.name}: no slot configured for {day_name(target)} {target.isoformat()}")
                continue
            if resource.id not in self.table:
                logger.warning(f"{resource.name}: no slot ids known for area {resource.id}, the attempt will fail")
            elif not self.table.has_slot(resource.id, day_name(target), window):
                logger.warning(f"{resource.name}: no slot id for {window} on {day_name(target)}, the attempt will fail")
            planned.append(PlannedClaim(resource, target, window))
        return planned

    def build_request(self, claim: PlannedClaim) -> ClaimRequest:
        """Resolve the slot id; SlotResolutionError propagates"""
        slot_id = self.table.resolve(claim.resource.id, claim.target_date, claim.time_window)
        return ClaimRequest(
            resource_id=claim.resource.id,
            resource_name=claim.resource.name,
            target_date=claim.target_date,
            time_window=claim.time_window,
            slot_id=slot_id,
        )

    def _unresolved(self, claim: PlannedClaim, error: SlotResolutionError) -> AttemptRecord:
        logger.error(f"❌ {claim.resource.name}: {error}")
        return AttemptRecord.failure(
            claim.resource.id,
            claim.resource.name,
            error,
            target_date=claim.target_date,
            time_window=claim.time_window,
            last_state=NavigationState.LOGGED_OUT,
        )

    def _unprepared(self, claim: PlannedClaim) -> AttemptRecord:
        logger.error(f"❌ {claim.resource.name}: no page prepared after replanning")
        return AttemptRecord.failure(
            claim.resource.id,
            claim.resource.name,
            CourtBotError("No page prepared for this claim"),
            target_date=claim.target_date,
            time_window=claim.time_window,
        )

    def _new_report(self) -> RunReport:
        run = self.config.run
        return RunReport(
            session_mode=run.session_mode,
            shadow=run.shadow,
            dry_run=run.dry_run,
            allow_booking=run.allow_booking,
        )

    # ========================================
    # Run
    # ========================================

    async def run(self) -> RunReport:
        run = self.config.run
        waiting = run.wait_for_unlock
        unlock_at: Optional[datetime] = self.clock.next_unlock() if waiting else None
        reference = unlock_at.date() if unlock_at else self.clock.today()

        report = self._new_report()
        planned = self.plan(reference)
        if not planned:
            logger.info("No reservations needed for these dates")
            return report

        for claim in planned:
            logger.info(
                f"Planned: {claim.resource.name} on {day_name(claim.target_date)} "
                f"{claim.target_date.isoformat()} at {claim.time_window}"
            )

        if run.dry_run:
            logger.info("=== DRY RUN MODE - NO ACTUAL RESERVATIONS WILL BE MADE ===")
            report.records = [self._dry_run_record(claim) for claim in planned]
            await self.notifier.notify_report(report)
            return report

        logger.info("Checking server time skew...")
        report.skew_ms = await self.clock.remote_skew(self.config.site.base_url)
        if waiting:
            # the first pick ran on the uncorrected local clock
            corrected = self.clock.next_unlock()
            if corrected != unlock_at:
                logger.warning(f"Unlock moved to {corrected.isoformat()} after skew correction")
                unlock_at = corrected
                planned = self.plan(unlock_at.date())
                if not planned:
                    logger.info("No reservations needed for these dates")
                    return report

        if self.config.site.session_required:
            await self._run_browser(report, planned, unlock_at)
        else:
            await self._run_api(report, planned, unlock_at)

        self._log_summary(report)
        await self.notifier.notify_report(report)
        return report

    def _dry_run_record(self, claim: PlannedClaim) -> AttemptRecord:
        try:
            request = self.build_request(claim)
        except SlotResolutionError as e:
            return self._unresolved(claim, e)
        logger.info(
            f"Would reserve: {request.resource_name} on {request.target_date.isoformat()} "
            f"at {request.time_window} (slot {request.slot_id})"
        )
        return AttemptRecord(
            resource_id=request.resource_id,
            resource_name=request.resource_name,
            target_date=request.target_date,
            time_window=request.time_window,
            request=request,
            state=AttemptState.DRY_RUN,
        )

    async def _run_browser(self, report: RunReport, planned: List[PlannedClaim], unlock_at: Optional[datetime]):
        engine = self.engine or ExecutionEngine(self.config, clock=self.clock)
        async with engine:
            try:
                if unlock_at is not None:
                    await self.clock.wait_until_lead(self.config.schedule.login_lead_ms, unlock_at)
                slots = await engine.pages_for(len(planned), self.config.run.session_mode)
            except AuthError as e:
                logger.error(f"❌ Login failed: {e}")
                await self.notifier.notify_fatal(e)
                raise
            success(logger, "✅ Phase 1 complete: logged in")

            if unlock_at is not None:
                report.t0 = await self.clock.wait_until_unlock(unlock_at)
                planned = self._replan(planned)

            if len(planned) > len(slots):
                logger.warning(f"Only {len(slots)} page(s) ready for {len(planned)} claim(s)")

            records: List[Optional[AttemptRecord]] = []
            attempts: List[PlannedAttempt] = []
            for claim, (handle, page) in zip(planned, slots):
                try:
                    request = self.build_request(claim)
                except SlotResolutionError as e:
                    records.append(self._unresolved(claim, e))
                    continue
                records.append(None)
                attempts.append(PlannedAttempt(
                    resource_id=request.resource_id,
                    resource_name=request.resource_name,
                    run=partial(engine.execute_attempt, page, request, report.t0, handle),
                    request=request,
                ))
            records += [self._unprepared(claim) for claim in planned[len(slots):]]

            dispatched = iter(await engine.run_concurrent(attempts))
            report.records = [r if r is not None else next(dispatched) for r in records]
            report.fallback_events = list(engine.fallback_events)
            report.recommended_session_mode = engine.recommended_mode

    async def _run_api(self, report: RunReport, planned: List[PlannedClaim], unlock_at: Optional[datetime]):
        """Browserless path: one credentialed request per claim"""
        client = self.api_client or MobileAPIClient.from_config(self.config)
        try:
            if unlock_at is not None:
                report.t0 = await self.clock.wait_until_unlock(unlock_at)
                planned = self._replan(planned)

            records: List[Optional[AttemptRecord]] = []
            attempts: List[PlannedAttempt] = []
            for claim in planned:
                try:
                    request = self.build_request(claim)
                except SlotResolutionError as e:
                    records.append(self._unresolved(claim, e))
                    continue
                records.append(None)
                attempts.append(PlannedAttempt(
                    resource_id=request.resource_id,
                    resource_name=request.resource_name,
                    run=partial(self._api_attempt, client, request, report.t0),
                    request=request,
                ))

            dispatched = iter(await run_concurrent(attempts, stagger_ms=self.config.timing.stagger_ms))
            report.records = [r if r is not None else next(dispatched) for r in records]
        finally:
            if self.api_client is None:
                await client.close()

    async def _api_attempt(self, client: MobileAPIClient, request: ClaimRequest, t0: Optional[datetime]) -> AttemptRecord:
        run = self.config.run
        fields = dict(
            resource_id=request.resource_id,
            resource_name=request.resource_name,
            target_date=request.target_date,
            time_window=request.time_window,
            request=request,
            selected_value=request.slot_id,
        )
        if run.shadow:
            logger.warning(f"🔮 {request.resource_name}: shadow run, API call skipped")
            return AttemptRecord(state=AttemptState.SHADOW, **fields)
        if not run.allow_booking:
            logger.warning(f"⚠️  {request.resource_name}: allow_booking not set - API call withheld")
            return AttemptRecord(state=AttemptState.WITHHELD, **fields)

        outcome = await client.reserve(request)
        timings = PhaseTimings(submit_ms=self.clock.ms_since(t0) if t0 else None)
        if outcome.is_success:
            success(logger, f"✅ SUCCESS: Reserved {request.resource_name} on {request.target_date.isoformat()}")
            return AttemptRecord(state=AttemptState.SUCCESS, outcome=outcome, timings=timings, **fields)
        logger.error(f"❌ {request.resource_name}: {outcome.status.value} - {outcome.message}")
        return AttemptRecord(
            state=AttemptState.FAILURE,
            outcome=outcome,
            error_kind=outcome.status.value,
            timings=timings,
            **fields,
        )

    def _replan(self, planned: List[PlannedClaim]) -> List[PlannedClaim]:
        """
        Recompute target dates from the portal's day after the unlock. A
        pre-midnight plan can be a day off if the wait ran long or short.
        """
        replanned = self.plan(self.clock.today())
        before = [(c.resource.id, c.target_date) for c in planned]
        after = [(c.resource.id, c.target_date) for c in replanned]
        if before != after:
            logger.warning(f"Targets changed after unlock: {before} -> {after}")
        return replanned

    def _log_summary(self, report: RunReport):
        done = len(report.records) - len(report.failures)
        logger.info(f"=== Run finished: {done}/{len(report.records)} without failure ===")
        for record in report.records:
            logger.info(f"  {record.resource_name}: {record.state.value} - {record.summary}")
        if report.recommended_session_mode:
            logger.warning(f"Recommended session mode for next run: {report.recommended_session_mode.value}")
