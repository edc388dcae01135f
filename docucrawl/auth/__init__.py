"""
Authentication Module
=====================
Form login, session-expiry recovery and login-page auto-detection.

    - ``AuthenticationHandler``: login / expiry check / re-authentication
    - ``find_login_page``:       locate the login form when no URL is given
    - ``detect_app_name``:       best-effort product name for the docs
"""

from .authenticator import AuthenticationHandler
from .login_finder import detect_app_name, find_login_page

__all__ = [
    "AuthenticationHandler",
    "find_login_page",
    "detect_app_name",
]
