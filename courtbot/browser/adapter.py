"""
SASWeb portal adapter

Every selector, URL pattern and piece of Spanish page text the bot depends on
lives in this module. Each public coroutine is one step through the portal:

    login -> dashboard -> reservations modal -> area picker -> calendar
          -> day view -> reservation form -> result frame

Steps raise instead of returning flags; the engine turns exceptions into
per-attempt records.
"""
import asyncio
import logging
import re
import time
from datetime import date, datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from playwright.async_api import (
    Error as PlaywrightError,
    Frame,
    Page,
    TimeoutError as PlaywrightTimeout,
)

from .frames import find_frame, frame_urls, locate_frame, url_matches, wait_for_frame
from .urls import WebPages, url_date
from ..common.classifier import classify, extract_result_text, normalize
from ..common.config import CredentialsConfig, TimingConfig
from ..common.errors import AuthError, FrameNotFoundError, SlotSelectionError, UnlockTimeoutError
from ..common.logs import format_ms, success
from ..common.models import ClaimOutcome, SessionSignal, SubmitResult, UnlockPollState
from ..common.schedule import window_start

logger = logging.getLogger(__name__)

SELECTORS = {
    "username": 'input[name="number"]',
    "password": 'input[name="pass"]',
    "username_fallback": 'input[type="text"]',
    "password_fallback": 'input[type="password"]',
    "login_submit": 'button[type="submit"], input[type="submit"]',
    "reservations_link": 'a[href="pre_reservations.php"]',
    "area": "#area",
    "continue": "input#btn_cont",
    "clickable_day": "td.calendar-day_clickable",
    "request_link": 'a[href*="new_reservation.php"]',
    "schedule": "#schedule",
    "save": "#save_btn",
}

MODAL_URL = re.compile(r"pre_reservations\.php")
CALENDAR_URL = re.compile(r"(?<!pre_)reservations\.php")
DAY_VIEW_URL = re.compile(r"day\.php")
FORM_URL = re.compile(r"new_reservation\.php")
RESULT_URL = re.compile(r"(display_reservation|add_reservation)\.php")

DAY_VIEW_TEXT = "Solicitar Reserva"
NOT_YET_TEXTS = ("aun no esta disponible", "no se encuentra habilitada")

MONTHS = [
    "ENERO", "FEBRERO", "MARZO", "ABRIL", "MAYO", "JUNIO",
    "JULIO", "AGOSTO", "SEPTIEMBRE", "OCTUBRE", "NOVIEMBRE", "DICIEMBRE",
]
MONTH_HEADER = re.compile(r"(" + "|".join(MONTHS) + r")\s+(\d{4})", re.IGNORECASE)

BODY_TEXT = "() => document.body ? document.body.innerText : ''"
CLICKABLE_DAYS = """
els => els.map(el => ({
    text: (el.textContent || '').trim(),
    onclick: el.getAttribute('onclick') || ''
}))
"""
SCHEDULE_OPTIONS = "opts => opts.map(o => ({value: o.value, text: (o.textContent || '').trim()}))"

# readyState wait on the result frame; the page is read either way
RESULT_READY_MS = 3000

# Rehearsal mode: clickable days lose their onclick on load and get it back
# after the delay, so the poll sees a "locked" date turn clickable
CALENDAR_ROUTE = "**/reservations.php*"
MOCK_UNLOCK_SCRIPT = """<script>
(() => {
    const cells = () => document.querySelectorAll('%(selector)s');
    const lock = () => {
        cells().forEach(cell => {
            cell.dataset.lockedOnclick = cell.getAttribute('onclick') || '';
            cell.removeAttribute('onclick');
        });
        setTimeout(() => cells().forEach(cell => {
            cell.setAttribute('onclick', cell.dataset.lockedOnclick);
        }), %(delay)d);
    };
    if (document.readyState === 'loading') {
        document.addEventListener('DOMContentLoaded', lock);
    } else {
        lock();
    }
})();
</script>"""


def clickable_day(target: date) -> str:
    """Selector for the calendar cell of `target` once it can be clicked"""
    return f'{SELECTORS["clickable_day"]}[onclick*="{url_date(target)}"]'


def with_mock_unlock(html: str, delay_ms: int) -> str:
    """Calendar page whose clickable days stay locked for `delay_ms` after load"""
    script = MOCK_UNLOCK_SCRIPT % {"selector": SELECTORS["clickable_day"], "delay": delay_ms}
    if "</body>" in html:
        return html.replace("</body>", f"{script}</body>", 1)
    return html + script


def parse_month_header(text: str) -> Optional[Tuple[int, int]]:
    """(month, year) from a calendar header such as 'MARZO 2025'"""
    match = MONTH_HEADER.search(text or "")
    if not match:
        return None
    return MONTHS.index(match.group(1).upper()) + 1, int(match.group(2))


def pick_option(options: Sequence[dict], slot_id: str, fallback_text: str) -> Optional[str]:
    """
    Value of the <option> to select.

    Exact slot id first; otherwise the first option whose label contains the
    window's start time ("06:00 AM" for "06:00 AM - 07:00 AM").
    """
    for option in options:
        if option.get("value") == slot_id:
            return slot_id

    start = window_start(fallback_text) if fallback_text else ""
    if start:
        for option in options:
            if start in (option.get("text") or ""):
                return option.get("value")
    return None


def shows_not_yet_available(text: str) -> bool:
    normalized = normalize(text or "")
    return any(marker in normalized for marker in NOT_YET_TEXTS)


class SiteAdapter:
    """
    Stateless portal operations. One instance is shared by every attempt;
    all per-attempt state lives in the Page/Frame handles passed in.
    """

    settle_ms = 500

    def __init__(self, timing: TimingConfig, pages: WebPages, debug_dir: Optional[Path] = None):
        self.timing = timing
        self.pages = pages
        self.debug_dir = Path(debug_dir) if debug_dir else None

    # ========================================
    # Login
    # ========================================

    async def authenticate(self, page: Page, credentials: CredentialsConfig) -> str:
        """
        Log in and wait for the dashboard.

        Returns the dashboard URL so extra pages on the same context can be
        pointed at it.
        """
        logger.info(f"Logging in as {credentials.username}...")
        try:
            await page.goto(
                self.pages.login(),
                wait_until="domcontentloaded",
                timeout=self.timing.login_timeout_ms,
            )
            await page.wait_for_selector(
                f'{SELECTORS["username"]}, {SELECTORS["username_fallback"]}',
                timeout=self.timing.login_timeout_ms,
            )
            username = await self._first_element(page, SELECTORS["username"], SELECTORS["username_fallback"])
            password = await self._first_element(page, SELECTORS["password"], SELECTORS["password_fallback"])
            if username is None or password is None:
                raise AuthError(f"Login form inputs not found on {page.url}")

            await username.fill(credentials.username)
            await password.fill(credentials.password)
            await page.click(SELECTORS["login_submit"])

            await page.wait_for_selector(
                SELECTORS["reservations_link"],
                timeout=self.timing.login_timeout_ms,
            )
        except PlaywrightTimeout as e:
            raise AuthError(f"Login timed out ({page.url}): {e}") from e
        except PlaywrightError as e:
            raise AuthError(f"Login failed: {e}") from e

        success(logger, "✅ Logged in, dashboard ready")
        return page.url

    async def _first_element(self, page: Page, *selectors: str):
        for selector in selectors:
            element = await page.query_selector(selector)
            if element is not None:
                return element
        return None

    # ========================================
    # Modal and area picker
    # ========================================

    async def open_claim_surface(self, page: Page) -> Frame:
        """Open the reservations modal from the dashboard and return its frame"""
        await page.wait_for_selector(SELECTORS["reservations_link"], timeout=self.timing.selector_ms)
        # the link opens a lightbox; a DOM click avoids overlay hit-testing
        await page.eval_on_selector(SELECTORS["reservations_link"], "link => link.click()")
        return await locate_frame(
            page,
            url_matches(MODAL_URL),
            timeout_ms=self.timing.nav_ms,
            description="reservations modal",
        )

    async def select_resource_and_continue(self, frame: Frame, resource_id: str):
        await frame.wait_for_selector(SELECTORS["area"], timeout=self.timing.selector_ms)
        await frame.select_option(SELECTORS["area"], resource_id)
        # the continue button reads the area after its change handler runs
        await asyncio.sleep(self.settle_ms / 1000)
        await frame.wait_for_selector(SELECTORS["continue"], timeout=self.timing.selector_ms)
        await frame.click(SELECTORS["continue"])

    # ========================================
    # Calendar
    # ========================================

    async def load_calendar(self, page: Page, target: date, resource_id: str) -> Frame:
        """Find the calendar frame and make sure it shows the target's month"""
        frame = await locate_frame(
            page,
            url_matches(CALENDAR_URL),
            timeout_ms=self.timing.nav_ms,
            description="calendar frame",
        )
        await frame.wait_for_load_state("domcontentloaded")

        shown = parse_month_header(await frame.evaluate(BODY_TEXT))
        wanted = (target.month, target.year)
        logger.debug(f"Calendar showing {shown}, target {wanted}")
        if shown != wanted:
            logger.debug(f"Navigating calendar to {target.month}/{target.year}")
            await frame.goto(
                self.pages.calendar(resource_id, target),
                wait_until="domcontentloaded",
                timeout=self.timing.nav_ms,
            )
        return frame

    async def available_days(self, frame: Frame) -> List[str]:
        """Clickable calendar cells as 'text (onclick)' strings, for diagnostics"""
        try:
            cells = await frame.eval_on_selector_all(SELECTORS["clickable_day"], CLICKABLE_DAYS)
        except PlaywrightError as e:
            logger.debug(f"Could not enumerate clickable days: {e}")
            return []
        return [f'{cell["text"]} ({cell["onclick"]})' for cell in cells]

    async def poll_for_unlock(
        self,
        frame: Frame,
        target: date,
        poll_interval_ms: int,
        max_wait_ms: int,
        on_tick: Optional[Callable[[float], None]] = None,
        resource_id: Optional[str] = None,
    ) -> float:
        """
        Poll the calendar until the target day becomes clickable.

        Returns the elapsed ms, always below `max_wait_ms`. Raises
        UnlockTimeoutError with the first poll's snapshot of clickable days
        once the deadline passes.
        """
        selector = clickable_day(target)
        state = UnlockPollState(
            target_date=target,
            selector=selector,
            max_wait_ms=max_wait_ms,
            resource_id=resource_id,
        )
        start = time.monotonic()

        while True:
            state.advance((time.monotonic() - start) * 1000)
            if on_tick:
                on_tick(state.elapsed_ms)

            if state.attempt_count == 1:
                state.available = await self.available_days(frame)
                logger.debug(f"Polling {frame.url} for {selector}")
                logger.debug(f"{len(state.available)} clickable days: {state.available}")

            if state.timed_out:
                raise UnlockTimeoutError(
                    f"Date {url_date(target)} not clickable after {max_wait_ms}ms "
                    f"({state.attempt_count} attempts) - selector: {selector}",
                    attempt_count=state.attempt_count,
                    available=state.available,
                    selector=selector,
                    frame_url=frame.url,
                )

            if await frame.query_selector(selector) is not None:
                logger.debug(f"Date found after {state.attempt_count} attempts ({state.elapsed_ms:.0f}ms)")
                return state.elapsed_ms

            if state.attempt_count % 10 == 0:
                logger.debug(f"Poll {state.attempt_count}: still locked ({state.elapsed_ms:.0f}ms)")

            await asyncio.sleep(poll_interval_ms / 1000)

    async def select_date(self, frame: Frame, target: date):
        """Click the day cell. Only valid after poll_for_unlock returned."""
        await frame.click(clickable_day(target), timeout=self.timing.selector_ms)

    # ========================================
    # Day view and form
    # ========================================

    async def _is_day_view(self, frame: Frame) -> bool:
        if DAY_VIEW_URL.search(frame.url):
            return True
        return DAY_VIEW_TEXT in (await frame.evaluate(BODY_TEXT) or "")

    async def open_form(self, page: Page) -> Frame:
        """
        From the day view, follow "Solicitar Reserva" and return the form frame.

        A day that is still locked shows a notice instead of the day view;
        that is reported as UnlockTimeoutError.
        """
        started = time.monotonic()
        try:
            day_view = await locate_frame(
                page,
                self._is_day_view,
                timeout_ms=self.timing.day_view_timeout_ms,
                poll_ms=120,
                description="day view",
            )
        except FrameNotFoundError:
            notice = await find_frame(page, self._shows_not_yet)
            if notice is not None:
                raise UnlockTimeoutError(
                    "Date not available for reservation yet",
                    frame_url=notice.url,
                )
            raise

        logger.debug(f"Found day view after {format_ms((time.monotonic() - started) * 1000)}s: {day_view.url}")
        await day_view.wait_for_selector(SELECTORS["request_link"], timeout=self.timing.selector_ms)
        await day_view.click(SELECTORS["request_link"])

        return await locate_frame(
            page,
            url_matches(FORM_URL),
            timeout_ms=self.timing.nav_ms,
            description="reservation form",
        )

    async def _shows_not_yet(self, frame: Frame) -> bool:
        return shows_not_yet_available(await frame.evaluate(BODY_TEXT))

    async def select_slot(self, frame: Frame, slot_id: str, fallback_text: str) -> str:
        """Select the time slot by id, else by start time; returns the chosen value"""
        await frame.wait_for_selector(SELECTORS["schedule"], timeout=self.timing.selector_ms)
        options = await frame.eval_on_selector_all(f'{SELECTORS["schedule"]} option', SCHEDULE_OPTIONS)

        value = pick_option(options, slot_id, fallback_text)
        if value is None:
            labels = ", ".join(o.get("text", "") for o in options if o.get("value"))
            raise SlotSelectionError(
                f'No option for slot {slot_id} or "{fallback_text}" (form offers: {labels or "nothing"})'
            )
        if value != slot_id:
            logger.warning(f"Slot id {slot_id} not in form, matched {value} by start time")

        await frame.select_option(SELECTORS["schedule"], value=value)
        return value

    async def submit(self, frame: Frame, dry_run: bool) -> SubmitResult:
        """Click save, or in a dry run only report what would have been sent"""
        await frame.wait_for_selector(SELECTORS["save"], timeout=self.timing.selector_ms)
        value = await frame.eval_on_selector(SELECTORS["schedule"], "el => el.value")

        if dry_run:
            logger.warning(f"🔮 Dry-run submit: would have sent slot {value}")
            return SubmitResult(submitted=False, slot_value=value)

        await frame.eval_on_selector(SELECTORS["save"], "btn => btn.click()")
        return SubmitResult(submitted=True, slot_value=value)

    # ========================================
    # Result
    # ========================================

    async def await_result(self, page: Page, timeout_ms: int) -> ClaimOutcome:
        """Wait for the result frame to navigate in, then classify its message"""
        frame = await wait_for_frame(
            page,
            lambda url: bool(RESULT_URL.search(url)),
            timeout_ms=timeout_ms,
            description="reservation result frame",
        )
        try:
            await frame.wait_for_function("() => document.readyState === 'complete'", timeout=RESULT_READY_MS)
        except PlaywrightTimeout:
            logger.debug(f"Result frame not complete after {RESULT_READY_MS}ms, reading it anyway")

        html = await frame.content()
        text = await frame.evaluate(BODY_TEXT)
        raw = extract_result_text(html, text)
        outcome = classify(raw, source=frame.url)
        logger.debug(f"Result frame {frame.url}: {outcome.status.value} - {outcome.message}")
        return outcome

    async def session_signal(self, page: Page) -> SessionSignal:
        """Current URL and visible text, for session-loss checks"""
        try:
            text = await page.evaluate(BODY_TEXT)
        except PlaywrightError as e:
            logger.debug(f"Could not read page text: {e}")
            text = ""
        return SessionSignal(url=page.url, body_text=text or "")

    # ========================================
    # Debug artifacts
    # ========================================

    async def screenshot(self, page: Page, name: str) -> Optional[Path]:
        if self.debug_dir is None:
            return None
        self.debug_dir.mkdir(parents=True, exist_ok=True)
        path = self.debug_dir / f"{datetime.now().strftime('%Y%m%d-%H%M%S')}-{name}.png"
        try:
            await page.screenshot(path=str(path), full_page=True)
        except PlaywrightError as e:
            logger.debug(f"Screenshot {name} failed: {e}")
            return None
        logger.debug(f"Screenshot saved to {path}")
        return path

    async def dump_frames(self, page: Page, path: Path) -> Path:
        """Write URL, title and text of every frame to one file"""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        sections = [f"Frames: {len(page.frames)}", *frame_urls(page), ""]
        for index, frame in enumerate(page.frames):
            try:
                title = await frame.title()
                text = await frame.evaluate(BODY_TEXT)
                html = await frame.content()
            except PlaywrightError as e:
                sections.append(f"=== Frame {index}: {frame.url} (unreadable: {e}) ===\n")
                continue
            sections.append(f"=== Frame {index}: {frame.url} ===")
            sections.append(f"Title: {title}")
            sections.append(text or "")
            sections.append("--- HTML (first 5000 chars) ---")
            sections.append(html[:5000])
            sections.append("")
        path.write_text("\n".join(sections), encoding="utf-8")
        logger.debug(f"Frame dump written to {path}")
        return path
