"""
Authenticated browser sessions

A SessionHandle is one logged-in BrowserContext plus its dashboard page. In
shared mode several attempts open their own pages on one handle and ride on
its cookies; in isolated mode each attempt gets a handle of its own.
"""
import logging
from pathlib import Path
from typing import List, Optional

from playwright.async_api import BrowserContext, Error as PlaywrightError, Page

from ..common.models import SessionMode

logger = logging.getLogger(__name__)


class SessionHandle:
    """
    Owns one authenticated context.

    Pages opened through `new_page()` share the context's cookies. No page
    may log out or navigate the context as a whole, since sibling attempts
    depend on it.
    """

    def __init__(self, context: BrowserContext, page: Page, mode: SessionMode, dashboard_url: str):
        self.context = context
        self.page = page
        self.mode = mode
        self.dashboard_url = dashboard_url
        self.valid = True
        self.invalid_reason: Optional[str] = None
        self.pages: List[Page] = [page]

    async def new_page(self, timeout_ms: int = 10000) -> Page:
        """Extra page on the same context, parked on the dashboard"""
        page = await self.context.new_page()
        await page.goto(self.dashboard_url, wait_until="domcontentloaded", timeout=timeout_ms)
        self.pages.append(page)
        logger.debug(f"Opened page {len(self.pages)} on {self.mode.value} session")
        return page

    def invalidate(self, reason: str):
        if self.valid:
            logger.warning(f"⚠️  Session marked invalid: {reason}")
        self.valid = False
        self.invalid_reason = reason

    async def save_storage_state(self, path: Path) -> Optional[Path]:
        """Write cookies and local storage for inspection after a failed run"""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await self.context.storage_state(path=str(path))
        except PlaywrightError as e:
            logger.warning(f"Could not save session state: {e}")
            return None
        logger.debug(f"Session state saved to {path}")
        return path

    async def close(self):
        try:
            await self.context.close()
        except PlaywrightError as e:
            logger.debug(f"Context already closed: {e}")
