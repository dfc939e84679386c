"""
Run report delivery

One report goes out per run, through every configured channel. A channel
that fails is logged and never stops the others.
"""
import asyncio
import html
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from .classifier import status_icon
from .config import NotificationsConfig
from .logs import format_ms
from .models import AttemptRecord, AttemptState, NotificationPayload, RunReport

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


class NotificationProvider(ABC):
    """One delivery channel"""

    name = "provider"

    @abstractmethod
    async def send(self, payload: NotificationPayload) -> bool:
        """Deliver `payload`; False when the channel refused it"""


class EmailNotifier(NotificationProvider):
    """Email through the Resend HTTP API"""

    name = "email"

    def __init__(self, api_key: str, to_address: str, from_address: str, client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.to_address = to_address
        self.from_address = from_address
        self.client = client or httpx.AsyncClient(timeout=15.0)

    def body(self, payload: NotificationPayload) -> dict:
        return {
            "from": self.from_address,
            "to": [self.to_address],
            "subject": f"🎾 {payload.title}",
            "text": payload.message,
            "html": (
                '<pre style="font-family: monospace; font-size: 13px;">'
                f"{html.escape(payload.message)}</pre>"
            ),
        }

    async def send(self, payload: NotificationPayload) -> bool:
        try:
            response = await self.client.post(
                RESEND_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=self.body(payload),
            )
        except httpx.HTTPError as e:
            logger.error(f"Email to {self.to_address} not sent: {e}")
            return False

        if response.status_code not in (200, 202):
            logger.error(f"Resend rejected email: HTTP {response.status_code} {response.text}")
            return False
        logger.info(f"Email sent to {self.to_address}")
        return True


class WebhookNotifier(NotificationProvider):
    """
    JSON POST of the summary. `text` keeps it readable in Slack or Discord;
    `report` carries the full run for anything that parses it.
    """

    name = "webhook"

    def __init__(self, url: str, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.client = client or httpx.AsyncClient(timeout=15.0)

    async def send(self, payload: NotificationPayload) -> bool:
        body = {"text": f"*{payload.title}*\n```{payload.message}```", "urgency": payload.urgency}
        if payload.report is not None:
            body["report"] = payload.report.model_dump(mode="json")
        try:
            response = await self.client.post(self.url, json=body)
        except httpx.HTTPError as e:
            logger.error(f"Webhook not delivered: {e}")
            return False
        return response.is_success


class ConsoleNotifier(NotificationProvider):
    """Summary panel on the terminal"""

    name = "console"

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    async def send(self, payload: NotificationPayload) -> bool:
        style = "red" if payload.urgency == "high" and payload.report is None else "blue"
        self.console.print(Panel(Text(payload.message), title=Text(f"📢 {payload.title}"), style=style))
        return True


def _record_line(record: AttemptRecord) -> str:
    when = record.target_date.strftime("%a %b %d %Y") if record.target_date else "?"
    return f"{record.resource_name} - {when} at {record.time_window or '?'}"


def _timing_lines(record: AttemptRecord) -> List[str]:
    t = record.timings
    marks = [(label, value) for label, value in (
        ("Unlock", t.unlock_ms),
        ("Form ready", t.form_ready_ms),
        ("Submit", t.submit_ms),
    ) if value is not None]
    if not marks:
        return []
    return ["   📊 Performance:", *(f"      {label}: T+{format_ms(value)}s" for label, value in marks)]


def format_report(report: RunReport) -> str:
    """Human-readable run summary, one block per attempted resource"""
    lines = ["=== Tennis Court Reservation Summary ===", ""]

    done = [r for r in report.records if not r.is_failure]
    if done:
        if report.is_test:
            lines += ["🔮 SHADOW MODE - WOULD HAVE RESERVED:", "(No actual bookings were made - this was a test run)"]
        else:
            lines.append("✅ REAL BOOKINGS CONFIRMED:")
        lines.append("")
        for record in done:
            prefix = "🧪" if record.state in (AttemptState.SHADOW, AttemptState.DRY_RUN) else "✅"
            lines += [f"{prefix} {_record_line(record)}", *_timing_lines(record), ""]

    if report.failures:
        lines.append("FAILED RESERVATIONS:")
        for record in report.failures:
            icon = status_icon(record.outcome.status) if record.outcome else "❌"
            lines += [f"{icon} {_record_line(record)}", f"   Error: {record.summary}"]
            if record.session_reason:
                lines.append(f"   Session lost: {record.session_reason.value}")
            if record.outcome and record.outcome.raw_message:
                lines.append(f"   Raw: {record.outcome.raw_message}")
            lines += [*_timing_lines(record), ""]

    if report.fallback_events:
        lines.append("⚠️  SESSION FAILURES DETECTED:")
        lines += [
            f"   {event.resource_id}: {event.reason.value} at {event.timestamp.isoformat()}"
            for event in report.fallback_events
        ]
        if report.recommended_session_mode:
            lines.append(f"   Next run should use session mode: {report.recommended_session_mode.value}")
        lines.append("")

    lines.append(f"📅 Run time: {datetime.now().isoformat()}")
    if report.t0:
        lines.append(f"⏱️  T0 (unlock): {report.t0.isoformat()}")
    lines.append(f"🕰️  Server skew: {report.skew_ms:.0f}ms")
    if report.shadow:
        lines.append("🔮 Mode: SHADOW (no actual submissions)")
    if report.dry_run:
        lines.append("🔮 Mode: DRY RUN (no browser actions)")
    return "\n".join(lines)


def build_providers(config: NotificationsConfig) -> List[NotificationProvider]:
    """Console always; email and webhook when fully configured"""
    providers: List[NotificationProvider] = [ConsoleNotifier()]

    email = config.email
    if email.enabled and email.resend_api_key and email.address:
        providers.append(EmailNotifier(email.resend_api_key, email.address, email.from_address))
    elif email.enabled:
        logger.warning("Email enabled but address or Resend API key missing, skipping it")

    webhook = config.webhook
    if webhook.enabled and webhook.url:
        providers.append(WebhookNotifier(webhook.url))
    elif webhook.enabled:
        logger.warning("Webhook enabled but no URL set, skipping it")

    logger.debug(f"Notification channels: {', '.join(p.name for p in providers)}")
    return providers


class NotificationManager:
    """Sends the run report (or a fatal setup error) to every channel"""

    def __init__(self, config: NotificationsConfig, providers: Optional[List[NotificationProvider]] = None):
        self.providers = providers if providers is not None else build_providers(config)

    async def notify_report(self, report: RunReport):
        await self._send_all(NotificationPayload(
            title=report.subject,
            message=format_report(report),
            urgency="high" if report.successes else "normal",
            report=report,
        ))

    async def notify_fatal(self, error: BaseException):
        """Setup failed before any attempt ran"""
        await self._send_all(NotificationPayload(
            title="Reservation Script Error ❌",
            message=f"Fatal error occurred:\n\n{type(error).__name__}: {error}",
            urgency="high",
        ))

    async def _send_all(self, payload: NotificationPayload) -> int:
        results = await asyncio.gather(*(p.send(payload) for p in self.providers), return_exceptions=True)

        delivered = 0
        for provider, result in zip(self.providers, results):
            if isinstance(result, Exception):
                logger.error(f"{provider.name} notification failed: {type(result).__name__}: {result}")
            elif result:
                delivered += 1
        logger.info(f"Notifications sent: {delivered}/{len(self.providers)}")
        return delivered
