"""
Shared fixtures for the court reservation bot tests
"""
from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from courtbot.common.config import Config, CredentialsConfig, TimingConfig
from courtbot.common.models import ClaimRequest

# 2030-08-05 is a Monday
MONDAY = date(2030, 8, 5)


@pytest.fixture
def config():
    return Config(credentials=CredentialsConfig(username="1234", password="secret"))


@pytest.fixture
def fast_timing():
    return TimingConfig(
        poll_interval_ms=1,
        unlock_max_ms=200,
        nav_ms=50,
        selector_ms=50,
        day_view_timeout_ms=50,
        result_timeout_ms=50,
        stagger_ms=0,
    )


@pytest.fixture
def claim_request():
    return ClaimRequest(
        resource_id="5",
        resource_name="Cancha de Tenis 1",
        target_date=date(2030, 8, 14),
        time_window="06:00 AM - 07:00 AM",
        slot_id="241",
    )


def make_frame(url: str, text: str = "", **methods):
    """Stand-in for a Playwright Frame: a URL, body text and async methods"""
    frame = SimpleNamespace(
        url=url,
        evaluate=AsyncMock(return_value=text),
        wait_for_selector=AsyncMock(),
        wait_for_load_state=AsyncMock(),
        click=AsyncMock(),
        goto=AsyncMock(),
        select_option=AsyncMock(),
        query_selector=AsyncMock(return_value=None),
        eval_on_selector=AsyncMock(),
        eval_on_selector_all=AsyncMock(return_value=[]),
        content=AsyncMock(return_value=""),
        wait_for_function=AsyncMock(),
    )
    for name, value in methods.items():
        setattr(frame, name, value)
    return frame


def make_page(*frames, url: str = "https://portal.test/index.php"):
    return SimpleNamespace(
        url=url,
        frames=list(frames),
        evaluate=AsyncMock(return_value=""),
        wait_for_event=AsyncMock(),
    )
