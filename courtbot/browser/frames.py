"""
Frame lookup primitives.

The portal nests every step in an iframe (sometimes two deep), and the frame
that matters changes after each click. These helpers find a frame by
predicate with a bounded wait and know nothing about the portal itself.
"""
import asyncio
import inspect
import logging
import re
import time
from typing import Awaitable, Callable, Optional, Pattern, Union

from playwright.async_api import (
    Error as PlaywrightError,
    Frame,
    Page,
    TimeoutError as PlaywrightTimeout,
)

from ..common.errors import FrameNotFoundError

logger = logging.getLogger(__name__)

FramePredicate = Callable[[Frame], Union[bool, Awaitable[bool]]]


def frame_urls(page: Page) -> list[str]:
    return [f.url for f in page.frames]


async def _check(predicate: FramePredicate, frame: Frame) -> bool:
    result = predicate(frame)
    if inspect.isawaitable(result):
        result = await result
    return bool(result)


async def find_frame(page: Page, predicate: FramePredicate) -> Optional[Frame]:
    """First frame matching `predicate` right now, or None"""
    for frame in page.frames:
        try:
            if await _check(predicate, frame):
                return frame
        except PlaywrightError as e:
            # frame detached or still navigating; it can match on a later pass
            logger.debug(f"Skipping frame {frame.url}: {e}")
    return None


async def locate_frame(
    page: Page,
    predicate: FramePredicate,
    timeout_ms: int,
    poll_ms: int = 100,
    description: str = "frame",
) -> Frame:
    """
    Poll the page's frames until one satisfies `predicate`.

    The predicate may be sync (URL checks) or async (content checks). Raises
    FrameNotFoundError listing every frame URL seen once `timeout_ms` passes.
    """
    start = time.monotonic()
    while True:
        frame = await find_frame(page, predicate)
        if frame is not None:
            logger.debug(f"Found {description} after {(time.monotonic() - start) * 1000:.0f}ms: {frame.url}")
            return frame

        elapsed_ms = (time.monotonic() - start) * 1000
        if elapsed_ms >= timeout_ms:
            urls = frame_urls(page)
            raise FrameNotFoundError(
                f"No {description} after {timeout_ms}ms ({len(urls)} frames present)",
                frame_urls=urls,
            )
        await asyncio.sleep(min(poll_ms, timeout_ms - elapsed_ms) / 1000)


async def wait_for_frame(
    page: Page,
    url_predicate: Callable[[str], bool],
    timeout_ms: int,
    description: str = "frame",
) -> Frame:
    """
    Event-driven variant for URL predicates: returns as soon as a matching
    frame navigates instead of polling.
    """
    current = await find_frame(page, lambda f: url_predicate(f.url))
    if current is not None:
        return current

    try:
        return await page.wait_for_event(
            "framenavigated",
            predicate=lambda f: url_predicate(f.url),
            timeout=timeout_ms,
        )
    except PlaywrightTimeout:
        urls = frame_urls(page)
        raise FrameNotFoundError(
            f"No {description} navigated within {timeout_ms}ms",
            frame_urls=urls,
        )


def url_matches(pattern: Union[str, Pattern[str]]) -> Callable[[Frame], bool]:
    regex = re.compile(pattern)
    return lambda frame: bool(regex.search(frame.url))
