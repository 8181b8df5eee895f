"""Login flows, session cookies and auth sentinels."""

from .auth_manager import AuthManager, LoginResult, harvest_form_inputs
from .cookie_store import CookieStore
from .cookies import (
    ApiKeyInjection,
    ParsedCookie,
    api_key_sentinel,
    basic_auth_sentinel,
    parse_cookie_string,
    parse_set_cookie_headers,
)

__all__ = [
    "ApiKeyInjection",
    "AuthManager",
    "CookieStore",
    "LoginResult",
    "ParsedCookie",
    "api_key_sentinel",
    "basic_auth_sentinel",
    "harvest_form_inputs",
    "parse_cookie_string",
    "parse_set_cookie_headers",
]
