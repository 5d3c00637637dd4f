"""Mirrors over the live state categories of a target context."""

from .cookies import CookieMirror, to_cookie_record
from .databases import DatabaseMirror
from .storage import KeyValueStoreMirror

__all__ = ["CookieMirror", "DatabaseMirror", "KeyValueStoreMirror", "to_cookie_record"]
