"""
Direct (browserless) reservation API
"""
from .client import MobileAPIClient, parse_jsonp, password_hash

__all__ = ["MobileAPIClient", "parse_jsonp", "password_hash"]
