"""
Portal URL helpers.
"""
import time
from datetime import date
from urllib.parse import urlencode


def url_date(value: date) -> str:
    """Date as the portal writes it in links: YYYY-M-D without padding"""
    return f"{value.year}-{value.month}-{value.day}"


class WebPages:
    """URLs for browser-based automation"""

    def __init__(self, base_url: str):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"

    def login(self) -> str:
        return self.base_url

    def calendar(self, area_id: str, target: date, cache_buster: bool = True) -> str:
        params = {"month": target.month, "year": target.year, "area": area_id}
        if cache_buster:
            params["ts"] = int(time.time() * 1000)
        return f"{self.base_url}reservations.php?{urlencode(params)}"

