"""
Playwright binding of the target-context execution facility.

``PlaywrightTarget`` adapts one Playwright ``Page`` (and its
``BrowserContext`` cookie jar) to the :class:`TargetContext` protocol the
mirrors are written against. Cookies are translated between Playwright's
shape (``expires`` = -1 for session cookies, leading-dot domains for domain
cookies) and the snapshot wire names.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError

from .config import DEFAULT_BROWSER, DEFAULT_START_URL, NAVIGATION_TIMEOUT_MS
from .exceptions import TargetUnavailableError, ValidationError

logger = logging.getLogger("mcp_session_snapshot.target")

_TO_PLAYWRIGHT_SAME_SITE = {"no_restriction": "None", "lax": "Lax", "strict": "Strict"}
_FROM_PLAYWRIGHT_SAME_SITE = {"None": "no_restriction", "Lax": "lax", "Strict": "strict"}

_CLOSED_MARKERS = ("has been closed", "Target closed", "Browser closed")


def cookie_from_playwright(cookie: dict[str, Any], store_id: str | None = None) -> dict[str, Any]:
    """Translate a Playwright cookie into the snapshot wire shape."""
    domain = cookie.get("domain", "")
    expires = cookie.get("expires", -1)
    session = expires is None or expires < 0
    return {
        "name": cookie.get("name", ""),
        "value": cookie.get("value", ""),
        "domain": domain,
        "path": cookie.get("path", "/"),
        "expirationDate": None if session else float(expires),
        "sameSite": _FROM_PLAYWRIGHT_SAME_SITE.get(cookie.get("sameSite", ""), "unspecified"),
        "hostOnly": not domain.startswith("."),
        "session": session,
        "secure": bool(cookie.get("secure", False)),
        "httpOnly": bool(cookie.get("httpOnly", False)),
        "storeId": store_id,
    }


def cookie_to_playwright(cookie: dict[str, Any]) -> dict[str, Any]:
    """Translate a wire-shaped cookie into Playwright's ``add_cookies`` shape."""
    domain = cookie.get("domain") or ""
    if not domain:
        raise ValidationError(
            "Cookie has no domain", {"name": cookie.get("name")}
        )
    path = cookie.get("path") or "/"
    secure = bool(cookie.get("secure", False))
    converted: dict[str, Any] = {
        "name": cookie["name"],
        "value": cookie.get("value", ""),
        "httpOnly": bool(cookie.get("httpOnly", False)),
        "secure": secure,
    }
    host = domain.lstrip(".")
    if cookie.get("hostOnly") and path == "/":
        # Only a url-scoped cookie stays host-only; Playwright derives path from it
        scheme = "https" if secure else "http"
        converted["url"] = f"{scheme}://{host}/"
    else:
        converted["domain"] = domain if domain.startswith(".") or cookie.get("hostOnly") else f".{host}"
        converted["path"] = path

    expiration = cookie.get("expirationDate")
    if not cookie.get("session") and expiration:
        converted["expires"] = float(expiration)

    same_site = _TO_PLAYWRIGHT_SAME_SITE.get(cookie.get("sameSite", "unspecified"))
    if same_site:
        converted["sameSite"] = same_site
    return converted


def _is_closed_error(exc: Exception) -> bool:
    message = str(exc)
    return any(marker in message for marker in _CLOSED_MARKERS)


class PlaywrightTarget:
    """A Playwright page exposed as a snapshot target context."""

    def __init__(self, page: Page, *, key: str = "main", cookie_store_id: str = "default") -> None:
        self._page = page
        self._key = key
        self._cookie_store_id = cookie_store_id

    @property
    def key(self) -> str:
        return self._key

    @property
    def url(self) -> str:
        return self._page.url

    @property
    def cookie_store_id(self) -> str:
        return self._cookie_store_id

    @property
    def page(self) -> Page:
        return self._page

    @property
    def context(self) -> BrowserContext:
        return self._page.context

    def is_attached(self) -> bool:
        return not self._page.is_closed()

    def _ensure_open(self) -> None:
        if self._page.is_closed():
            raise TargetUnavailableError("Browsing context is closed", {"target": self._key})

    def _unavailable(self, exc: PlaywrightError, action: str) -> TargetUnavailableError:
        return TargetUnavailableError(
            f"Browsing context went away during {action}", {"target": self._key, "error": str(exc)}
        )

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self._ensure_open()
        try:
            return await self._page.evaluate(script, arg)
        except PlaywrightError as exc:
            if _is_closed_error(exc):
                raise self._unavailable(exc, "evaluate") from exc
            raise

    async def get_cookies(self) -> list[dict[str, Any]]:
        self._ensure_open()
        if not self.url.startswith(("http://", "https://")):
            return []
        try:
            cookies = await self.context.cookies(urls=[self.url])
        except PlaywrightError as exc:
            if _is_closed_error(exc):
                raise self._unavailable(exc, "cookie listing") from exc
            raise
        return [cookie_from_playwright(dict(cookie), self._cookie_store_id) for cookie in cookies]

    async def set_cookie(self, cookie: dict[str, Any]) -> dict[str, Any]:
        self._ensure_open()
        converted = cookie_to_playwright(cookie)
        try:
            await self.context.add_cookies([converted])
        except PlaywrightError as exc:
            if _is_closed_error(exc):
                raise self._unavailable(exc, "cookie write") from exc
            raise
        return {**cookie, "storeId": self._cookie_store_id}

    async def remove_cookie(self, name: str) -> bool:
        matches = [cookie for cookie in await self.get_cookies() if cookie["name"] == name]
        if not matches:
            return False
        for cookie in matches:
            try:
                await self.context.clear_cookies(
                    name=name, domain=cookie["domain"], path=cookie["path"]
                )
            except PlaywrightError as exc:
                if _is_closed_error(exc):
                    raise self._unavailable(exc, "cookie removal") from exc
                raise
        return True

    async def navigate(self, url: str) -> None:
        self._ensure_open()
        logger.info("Navigating %s to %s", self._key, url)
        try:
            await self._page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
        except PlaywrightError as exc:
            if _is_closed_error(exc):
                raise self._unavailable(exc, "navigation") from exc
            raise

    async def reload(self) -> None:
        self._ensure_open()
        try:
            await self._page.reload(wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
        except PlaywrightError as exc:
            if _is_closed_error(exc):
                raise self._unavailable(exc, "reload") from exc
            raise


@dataclass
class BrowserSession:
    """Playwright objects owned by the server for its lifetime."""

    playwright: Playwright
    browser: Browser
    context: BrowserContext
    target: PlaywrightTarget
    browser_type: str
    headless: bool

    async def close(self) -> None:
        for closer, label in (
            (self.context.close, "context"),
            (self.browser.close, "browser"),
            (self.playwright.stop, "playwright"),
        ):
            try:
                await closer()
            except PlaywrightError as exc:
                logger.warning("Error closing %s: %s", label, exc)


async def launch_browser(
    browser_type: str = DEFAULT_BROWSER,
    *,
    headless: bool = True,
    start_url: str = DEFAULT_START_URL,
) -> BrowserSession:
    """Start Playwright, open one page and wrap it as the main target."""
    playwright = await async_playwright().start()
    launcher = getattr(playwright, browser_type, None)
    if launcher is None:
        await playwright.stop()
        raise ValueError(f"Unknown browser type: {browser_type}")

    browser = await launcher.launch(headless=headless)
    context = await browser.new_context()
    page = await context.new_page()
    if start_url and start_url != "about:blank":
        await page.goto(start_url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)

    logger.info("Launched %s (headless=%s) at %s", browser_type, headless, page.url)
    return BrowserSession(
        playwright=playwright,
        browser=browser,
        context=context,
        target=PlaywrightTarget(page),
        browser_type=browser_type,
        headless=headless,
    )
