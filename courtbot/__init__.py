"""
Court Reservation Sniper Bot

Claims tennis-court slots on a SASWeb condominium portal the moment they
unlock at midnight (America/Costa_Rica).

1. Browser Automation (courtbot.browser)
   - Playwright through the portal's nested iframes
   - Concurrent attempts on a shared or isolated login

2. Mobile API (courtbot.api)
   - The app's JSONP endpoint, credentials on every request
   - No browser session needed
"""
from .common.config import Config, load_config

__version__ = "1.0.0"

__all__ = [
    "Config",
    "load_config",
]
