"""
Unlock clock for the court reservation bot

Everything time-critical goes through here: the portal's clock skew, the next
unlock instant in the portal's timezone, and the single wait up to it.
"""
import asyncio
import time
import logging
from datetime import datetime, date, timedelta, timezone
from datetime import time as clock_time
from typing import Optional

import httpx
import pytz
from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

SKEW_WARNING_MS = 1000


class UnlockClock:
    """
    Skew-corrected clock in the portal's timezone.

    `now()` is local time shifted by the skew measured with `remote_skew()`,
    so waits line up with the portal's own midnight rather than ours.
    """

    def __init__(
        self,
        timezone_name: str = "America/Costa_Rica",
        unlock_time: clock_time = clock_time(0, 0),
        skew_ms: float = 0.0,
        progress_interval_s: float = 10.0,
    ):
        self.tz = pytz.timezone(timezone_name)
        self.unlock_time = unlock_time
        self.skew_ms = skew_ms
        self.progress_interval_s = progress_interval_s

    def now(self) -> datetime:
        """Current portal time in the configured timezone"""
        return datetime.now(self.tz) + timedelta(milliseconds=self.skew_ms)

    def today(self) -> date:
        """Portal's calendar day. Only meaningful once the unlock boundary has passed."""
        return self.now().date()

    def localize(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return self.tz.localize(value)
        return value.astimezone(self.tz)

    async def remote_skew(self, url: str, client: Optional[httpx.AsyncClient] = None) -> float:
        """
        Measure `server - local` in ms from the portal's Date header.

        Any failure gives 0 skew; a bad measurement must never stop a run.
        """
        before = time.monotonic()
        local = datetime.now(timezone.utc)
        try:
            if client is not None:
                response = await client.head(url)
            else:
                async with httpx.AsyncClient(timeout=5.0, follow_redirects=True) as http:
                    response = await http.head(url)
        except httpx.HTTPError as e:
            logger.warning(f"Skew check failed ({e}), assuming 0ms")
            self.skew_ms = 0.0
            return self.skew_ms

        header = response.headers.get("Date")
        if not header:
            logger.warning("Server sent no Date header, assuming 0ms skew")
            self.skew_ms = 0.0
            return self.skew_ms

        try:
            server = date_parser.parse(header)
        except (ValueError, OverflowError):
            logger.warning(f"Unparseable Date header {header!r}, assuming 0ms skew")
            self.skew_ms = 0.0
            return self.skew_ms

        if server.tzinfo is None:
            server = server.replace(tzinfo=timezone.utc)

        # compare against the midpoint of the request
        rtt = time.monotonic() - before
        local_mid = local + timedelta(seconds=rtt / 2)
        self.skew_ms = (server - local_mid).total_seconds() * 1000

        logger.debug(f"Server time: {server.isoformat()}, local time: {local_mid.isoformat()}")
        logger.info(f"Server skew: {self.skew_ms:.0f}ms")
        if abs(self.skew_ms) > SKEW_WARNING_MS:
            logger.warning(f"⚠️  Significant time skew detected: {self.skew_ms:.0f}ms")
        return self.skew_ms

    def next_unlock(self, after: Optional[datetime] = None) -> datetime:
        """Next unlock instant strictly after `after` (default: now)"""
        now = self.localize(after) if after else self.now()
        candidate = self.tz.localize(datetime.combine(now.date(), self.unlock_time))
        if candidate <= now:
            candidate = self.tz.localize(
                datetime.combine(now.date() + timedelta(days=1), self.unlock_time)
            )
        return candidate

    def ms_until(self, target: datetime) -> float:
        return (self.localize(target) - self.now()).total_seconds() * 1000

    def ms_until_unlock(self, unlock_at: Optional[datetime] = None) -> float:
        """Milliseconds from now until the unlock instant"""
        return self.ms_until(unlock_at or self.next_unlock())

    def ms_since(self, instant: datetime) -> float:
        return -self.ms_until(instant)

    async def wait_until(self, target: datetime, label: str = "unlock"):
        """
        Block until `target`.

        One sleep for the whole interval; a side task logs the countdown. The
        loop only runs again if the event loop woke us early.
        """
        target = self.localize(target)
        if self.ms_until(target) <= 0:
            return

        logger.info(f"Waiting until {target.isoformat()} for {label}")
        progress = asyncio.create_task(self._report_progress(target, label))
        try:
            while True:
                remaining = self.ms_until(target)
                if remaining <= 0:
                    break
                await asyncio.sleep(remaining / 1000)
        finally:
            progress.cancel()

        logger.info(f"🕛 {label.capitalize()} reached at {self.now().isoformat()}")

    async def wait_until_unlock(self, unlock_at: Optional[datetime] = None) -> datetime:
        """Wait for the unlock instant and return it"""
        unlock_at = unlock_at or self.next_unlock()
        await self.wait_until(unlock_at, label="unlock")
        return unlock_at

    async def wait_until_lead(self, lead_ms: int, unlock_at: Optional[datetime] = None):
        """Wait until `lead_ms` before the unlock instant (pre-login window)"""
        unlock_at = unlock_at or self.next_unlock()
        login_at = unlock_at - timedelta(milliseconds=lead_ms)
        if self.ms_until(login_at) > 0:
            logger.info(f"Waiting until {lead_ms / 1000:.0f}s before unlock to log in...")
            await self.wait_until(login_at, label="login window")

    async def _report_progress(self, target: datetime, label: str):
        while True:
            remaining_s = self.ms_until(target) / 1000
            if remaining_s <= 0:
                return
            logger.info(
                f"⏰ {self.format_countdown(target)} until {label} "
                f"(portal time {self.now().strftime('%H:%M:%S')})"
            )
            step = self.progress_interval_s if remaining_s > self.progress_interval_s else 1.0
            await asyncio.sleep(min(step, remaining_s))

    def time_until(self, target: datetime) -> timedelta:
        """Get timedelta until target"""
        return self.localize(target) - self.now()

    def format_countdown(self, target: datetime) -> str:
        """Format remaining time as human-readable string"""
        delta = self.time_until(target)
        total_seconds = int(delta.total_seconds())

        if total_seconds < 0:
            return "NOW!"

        days = total_seconds // 86400
        hours = (total_seconds % 86400) // 3600
        minutes = (total_seconds % 3600) // 60
        seconds = total_seconds % 60

        parts = []
        if days > 0:
            parts.append(f"{days}d")
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
        parts.append(f"{seconds}s")

        return " ".join(parts)


class PhaseTimer:
    """Monotonic stopwatch for per-attempt telemetry"""

    def __init__(self):
        self.start = time.monotonic()

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start) * 1000
