"""
Tests for run orchestration (courtbot/browser/orchestrator.py)
"""
import logging
from datetime import date, datetime, timedelta
from datetime import time as clock_time
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytz

from conftest import MONDAY
from courtbot.browser.engine import run_concurrent
from courtbot.browser.orchestrator import ClaimOrchestrator
from courtbot.common.config import Config, CredentialsConfig, SiteConfig
from courtbot.common.errors import AuthError
from courtbot.common.models import (
    AttemptRecord,
    AttemptState,
    ClaimOutcome,
    ClaimStatus,
    FallbackEvent,
    FallbackReason,
    SessionMode,
)
from courtbot.common.scheduler import UnlockClock

UNLOCK_AT = pytz.timezone("America/Costa_Rica").localize(datetime(2030, 8, 5, 0, 0))
SUNDAY_UNLOCK = pytz.timezone("America/Costa_Rica").localize(datetime(2030, 8, 4, 0, 0))


def fake_clock(today: date = MONDAY):
    return SimpleNamespace(
        next_unlock=MagicMock(return_value=UNLOCK_AT),
        today=MagicMock(return_value=today),
        remote_skew=AsyncMock(return_value=12.0),
        wait_until_lead=AsyncMock(),
        wait_until_unlock=AsyncMock(return_value=UNLOCK_AT),
        ms_since=MagicMock(return_value=5.0),
    )


def fake_notifier():
    return SimpleNamespace(notify_report=AsyncMock(), notify_fatal=AsyncMock())


class FakeEngine:
    """Records requests instead of driving a browser"""

    def __init__(self, fail_resource=None):
        self.fail_resource = fail_resource
        self.requests = []
        self.entered = False
        self.fallback_events = []
        self.recommended_mode = None
        self.pages_for = AsyncMock(side_effect=lambda count, mode: [("handle", f"page-{i}") for i in range(count)])

    async def __aenter__(self):
        self.entered = True
        return self

    async def __aexit__(self, *args):
        pass

    async def execute_attempt(self, page, request, t0=None, handle=None):
        self.requests.append((page, request, t0))
        if request.resource_id == self.fail_resource:
            raise RuntimeError("page crashed")
        return AttemptRecord(
            resource_id=request.resource_id,
            resource_name=request.resource_name,
            target_date=request.target_date,
            time_window=request.time_window,
            request=request,
            state=AttemptState.SUCCESS,
        )

    async def run_concurrent(self, attempts):
        return await run_concurrent(attempts, stagger_ms=0)


def orchestrator(config, engine=None, clock=None, **kwargs):
    return ClaimOrchestrator(
        config,
        engine=engine or FakeEngine(),
        clock=clock or fake_clock(),
        notifier=kwargs.pop("notifier", None) or fake_notifier(),
        **kwargs,
    )


class TestPlan:

    def test_days_ahead_per_resource(self, config):
        planned = orchestrator(config).plan(MONDAY)
        assert [(c.resource.id, c.target_date, c.time_window) for c in planned] == [
            ("5", date(2030, 8, 14), "06:00 AM - 07:00 AM"),
            ("7", date(2030, 8, 13), "07:00 AM - 08:00 AM"),
        ]

    def test_no_slot_that_day(self, config):
        # Thursday: court 1 lands on Saturday (09:00), court 2 on Friday
        planned = orchestrator(config).plan(date(2030, 8, 8))
        assert [(c.resource.id, c.time_window) for c in planned] == [
            ("5", "09:00 AM - 10:00 AM"),
            ("7", "07:00 AM - 08:00 AM"),
        ]
        # Friday: court 1 lands on Sunday (no slot), court 2 on Saturday (no slot)
        assert orchestrator(config).plan(date(2030, 8, 9)) == []

    def test_skip_target_date_and_override(self, config):
        config = config.with_run(skip=["7"], target_date="2030-08-12", time_overrides={"5": "06:00 PM - 07:00 PM"})
        planned = orchestrator(config).plan(MONDAY)
        assert [(c.resource.id, c.target_date, c.time_window) for c in planned] == [
            ("5", date(2030, 8, 12), "06:00 PM - 07:00 PM"),
        ]


class TestBrowserRun:

    @pytest.mark.asyncio
    async def test_full_run(self, config):
        engine = FakeEngine()
        clock = fake_clock()
        notifier = fake_notifier()

        report = await orchestrator(config, engine=engine, clock=clock, notifier=notifier).run()

        assert [r.state for r in report.records] == [AttemptState.SUCCESS, AttemptState.SUCCESS]
        assert [(req.resource_id, req.slot_id) for _, req, _ in engine.requests] == [("5", "241"), ("7", "345")]
        assert [page for page, _, _ in engine.requests] == ["page-0", "page-1"]
        assert all(t0 == UNLOCK_AT for _, _, t0 in engine.requests)
        assert report.t0 == UNLOCK_AT
        assert report.skew_ms == 12.0
        engine.pages_for.assert_called_once_with(2, SessionMode.SHARED)
        clock.wait_until_lead.assert_called_once_with(config.schedule.login_lead_ms, UNLOCK_AT)
        notifier.notify_report.assert_called_once_with(report)

    @pytest.mark.asyncio
    async def test_one_attempt_fails(self, config):
        engine = FakeEngine(fail_resource="5")
        report = await orchestrator(config, engine=engine).run()

        assert [r.resource_id for r in report.records] == ["5", "7"]
        assert report.records[0].state == AttemptState.FAILURE
        assert report.records[0].error_kind == "RuntimeError"
        assert report.records[1].state == AttemptState.SUCCESS
        assert report.subject == "Partial Success (1/2)"

    @pytest.mark.asyncio
    async def test_unresolvable_slot_keeps_order(self, config):
        config = config.with_run(time_overrides={"5": "11:00 PM - 12:00 AM"})
        engine = FakeEngine()

        report = await orchestrator(config, engine=engine).run()

        assert [r.resource_id for r in report.records] == ["5", "7"]
        assert report.records[0].error_kind == "SlotResolutionError"
        assert report.records[1].state == AttemptState.SUCCESS
        assert [req.resource_id for _, req, _ in engine.requests] == ["7"]

    @pytest.mark.asyncio
    async def test_login_failure_is_fatal(self, config):
        engine = FakeEngine()
        engine.pages_for = AsyncMock(side_effect=AuthError("Login timed out"))
        notifier = fake_notifier()

        with pytest.raises(AuthError):
            await orchestrator(config, engine=engine, notifier=notifier).run()

        notifier.notify_fatal.assert_called_once()
        notifier.notify_report.assert_not_called()
        assert engine.requests == []

    @pytest.mark.asyncio
    async def test_run_now_skips_waits(self, config):
        clock = fake_clock(today=MONDAY)
        engine = FakeEngine()

        report = await orchestrator(config.with_run(wait_for_unlock=False), engine=engine, clock=clock).run()

        assert report.t0 is None
        clock.next_unlock.assert_not_called()
        clock.wait_until_lead.assert_not_called()
        clock.wait_until_unlock.assert_not_called()
        assert len(report.records) == 2

    @pytest.mark.asyncio
    async def test_fallback_events_reach_report(self, config):
        engine = FakeEngine()
        engine.fallback_events = [FallbackEvent(resource_id="5", reason=FallbackReason.LOGIN_REDIRECT)]
        engine.recommended_mode = SessionMode.ISOLATED

        report = await orchestrator(config, engine=engine).run()

        assert report.fallback_events[0].reason == FallbackReason.LOGIN_REDIRECT
        assert report.recommended_session_mode == SessionMode.ISOLATED

    @pytest.mark.asyncio
    async def test_nothing_to_reserve_is_silent(self, config):
        engine = FakeEngine()
        clock = fake_clock()
        notifier = fake_notifier()

        report = await orchestrator(config.with_run(skip=["5", "7"]), engine=engine, clock=clock, notifier=notifier).run()

        assert report.records == []
        assert not engine.entered
        clock.remote_skew.assert_not_called()
        notifier.notify_report.assert_not_called()

    @pytest.mark.asyncio
    async def test_claim_added_after_unlock_still_gets_a_record(self, config):
        # Sunday plan only needs court 1; Monday's adds court 2
        clock = fake_clock(today=MONDAY)
        clock.next_unlock = MagicMock(return_value=SUNDAY_UNLOCK)
        engine = FakeEngine()

        report = await orchestrator(config, engine=engine, clock=clock).run()

        engine.pages_for.assert_called_once_with(1, SessionMode.SHARED)
        assert [r.resource_id for r in report.records] == ["5", "7"]
        assert report.records[0].state == AttemptState.SUCCESS
        assert report.records[0].target_date == date(2030, 8, 14)
        assert report.records[1].state == AttemptState.FAILURE
        assert report.records[1].error_kind == "CourtBotError"
        assert report.records[1].target_date == date(2030, 8, 13)
        assert report.records[1].time_window == "07:00 AM - 08:00 AM"

    @pytest.mark.asyncio
    async def test_unlock_recomputed_after_skew(self, config):
        clock = fake_clock()
        clock.next_unlock = MagicMock(side_effect=[SUNDAY_UNLOCK, UNLOCK_AT])
        engine = FakeEngine()

        report = await orchestrator(config, engine=engine, clock=clock).run()

        clock.wait_until_lead.assert_called_once_with(config.schedule.login_lead_ms, UNLOCK_AT)
        clock.wait_until_unlock.assert_called_once_with(UNLOCK_AT)
        engine.pages_for.assert_called_once_with(2, SessionMode.SHARED)
        assert len(report.records) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("portal_offset,days_later", [
        # portal still 2s before the midnight our clock already passed
        (timedelta(seconds=-2), 0),
        # portal already 2s past the midnight our clock is approaching
        (timedelta(days=1, seconds=2), 2),
    ])
    async def test_unlock_follows_portal_clock(self, config, portal_offset, days_later):
        clock = UnlockClock("America/Costa_Rica")
        local = datetime.now(clock.tz)
        midnight = clock.tz.localize(datetime.combine(local.date(), clock_time(0, 0)))
        skew_ms = (midnight + portal_offset - local).total_seconds() * 1000

        async def measure(base_url):
            clock.skew_ms = skew_ms
            return skew_ms

        clock.remote_skew = measure
        clock.wait_until_lead = AsyncMock()
        clock.wait_until_unlock = AsyncMock(side_effect=lambda at: at)
        config = config.with_run(target_date="2030-08-14")

        report = await orchestrator(config, clock=clock).run()

        expected = clock.tz.localize(datetime.combine(local.date() + timedelta(days=days_later), clock_time(0, 0)))
        clock.wait_until_unlock.assert_called_once_with(expected)
        assert report.t0 == expected

    def test_unmapped_window_is_flagged_while_planning(self, config, caplog):
        config = config.with_run(time_overrides={"5": "11:00 PM - 12:00 AM"})
        with caplog.at_level(logging.WARNING):
            planned = orchestrator(config).plan(MONDAY)

        assert [c.resource.id for c in planned] == ["5", "7"]
        assert "no slot id for 11:00 PM - 12:00 AM on Wednesday" in caplog.text


class TestDryRun:

    @pytest.mark.asyncio
    async def test_plans_without_browser(self, config):
        engine = FakeEngine()
        clock = fake_clock()
        notifier = fake_notifier()

        report = await orchestrator(config.with_run(dry_run=True), engine=engine, clock=clock, notifier=notifier).run()

        assert [r.state for r in report.records] == [AttemptState.DRY_RUN, AttemptState.DRY_RUN]
        assert [r.request.slot_id for r in report.records] == ["241", "345"]
        assert report.subject.startswith("[TEST]")
        assert not engine.entered
        clock.remote_skew.assert_not_called()
        notifier.notify_report.assert_called_once()


class TestApiRun:

    def api_config(self, **run):
        config = Config(
            credentials=CredentialsConfig(username="1234", password="secret"),
            site=SiteConfig(session_required=False),
        )
        return config.with_run(**run) if run else config

    def client(self, status=ClaimStatus.SUCCESS):
        return SimpleNamespace(reserve=AsyncMock(return_value=ClaimOutcome(status=status, message=status.value)))

    @pytest.mark.asyncio
    async def test_reserves_without_browser(self):
        engine = FakeEngine()
        client = self.client()

        report = await orchestrator(self.api_config(allow_booking=True), engine=engine, api_client=client).run()

        assert [r.state for r in report.records] == [AttemptState.SUCCESS, AttemptState.SUCCESS]
        assert [c.args[0].slot_id for c in client.reserve.call_args_list] == ["241", "345"]
        assert report.records[0].timings.submit_ms == 5.0
        assert not engine.entered

    @pytest.mark.asyncio
    async def test_rejection(self):
        report = await orchestrator(
            self.api_config(allow_booking=True), api_client=self.client(ClaimStatus.LIMIT_EXCEEDED)
        ).run()
        assert all(r.error_kind == "LIMIT_EXCEEDED" for r in report.records)

    @pytest.mark.asyncio
    async def test_dead_man_switch(self):
        client = self.client()
        report = await orchestrator(self.api_config(), api_client=client).run()

        assert [r.state for r in report.records] == [AttemptState.WITHHELD, AttemptState.WITHHELD]
        client.reserve.assert_not_called()

    @pytest.mark.asyncio
    async def test_shadow(self):
        client = self.client()
        report = await orchestrator(self.api_config(shadow=True), api_client=client).run()

        assert [r.state for r in report.records] == [AttemptState.SHADOW, AttemptState.SHADOW]
        client.reserve.assert_not_called()
