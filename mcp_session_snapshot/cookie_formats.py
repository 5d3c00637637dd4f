"""Text formats for cookie-only exports."""

from __future__ import annotations

from collections.abc import Iterable

from .models import CookieRecord

NETSCAPE_HEADER = (
    "# Netscape HTTP Cookie File\n"
    "# https://curl.se/docs/http-cookies.html\n"
    "# This file was generated by mcp-session-snapshot! Edit at your own risk.\n"
)


def _flag(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def to_netscape(cookies: Iterable[CookieRecord]) -> str:
    """Format cookies as a Netscape ``cookies.txt`` document.

    Session cookies get an expiry of 0, which curl and wget read as
    "expires at end of session".
    """
    lines = [NETSCAPE_HEADER]
    for cookie in cookies:
        domain = cookie.domain
        if not cookie.host_only and not domain.startswith("."):
            domain = f".{domain}"
        if cookie.http_only:
            domain = f"#HttpOnly_{domain}"
        expiry = 0 if cookie.session else int(cookie.expiration_date or 0)
        lines.append(
            "\t".join(
                [
                    domain,
                    _flag(not cookie.host_only),
                    cookie.path,
                    _flag(cookie.secure),
                    str(expiry),
                    cookie.name,
                    cookie.value,
                ]
            )
            + "\n"
        )
    return "".join(lines)


def to_header_string(cookies: Iterable[CookieRecord]) -> str:
    """Format cookies as the value of an HTTP ``Cookie`` request header."""
    return "; ".join(f"{cookie.name}={cookie.value}" for cookie in cookies)
