"""
Security policy for snapshot operations.

Snapshots carry live session cookies, so letting one leave the system is
guarded by a credential gate. When the gate is locked, an export is only
allowed while a verification clearance, granted by a separate step, is on
record and has not expired.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from .config import EXPORT_CLEARANCE_TTL, REQUIRE_EXPORT_VERIFICATION

logger = logging.getLogger(__name__)


class ResourceType(Enum):
    """Types of resources that can be accessed via MCP."""

    SNAPSHOT_READ = "snapshot_read"
    SNAPSHOT_WRITE = "snapshot_write"
    SNAPSHOT_RESTORE = "snapshot_restore"
    SNAPSHOT_EXPORT = "snapshot_export"
    SERVER_STATUS = "server_status"


class SecurityLevel(Enum):
    """Security levels for different operations."""

    PUBLIC = "public"           # No checks
    LOW = "low"                 # Rate limited
    MEDIUM = "medium"           # Rate limited, logged
    HIGH = "high"               # Rate limited, logged with details


@dataclass
class ConsentRecord:
    """Record of a verification clearance for one resource type."""

    resource_type: ResourceType
    user_id: str
    consent_granted: bool
    consent_timestamp: float
    expiry_timestamp: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_active(self, now: float | None = None) -> bool:
        if not self.consent_granted:
            return False
        now = time.time() if now is None else now
        return self.expiry_timestamp is None or now < self.expiry_timestamp


class SecurityManager:
    """Holds clearances and rate limits for MCP operations."""

    def __init__(self) -> None:
        self.consent_cache: dict[str, ConsentRecord] = {}
        self.rate_limits: dict[str, list[float]] = {}

    @staticmethod
    def _consent_key(resource_type: ResourceType, user_id: str) -> str:
        return f"{user_id}:{resource_type.value}"

    def grant_clearance(
        self,
        resource_type: ResourceType,
        user_id: str = "default",
        ttl_seconds: float | None = EXPORT_CLEARANCE_TTL,
        **metadata: Any,
    ) -> ConsentRecord:
        """Record a verification that was completed outside the engine."""
        now = time.time()
        record = ConsentRecord(
            resource_type=resource_type,
            user_id=user_id,
            consent_granted=True,
            consent_timestamp=now,
            expiry_timestamp=None if ttl_seconds is None else now + ttl_seconds,
            metadata=metadata,
        )
        self.consent_cache[self._consent_key(resource_type, user_id)] = record
        logger.info(f"Clearance granted for {resource_type.value} (user {user_id})")
        return record

    def revoke_clearance(self, resource_type: ResourceType, user_id: str = "default") -> bool:
        return self.consent_cache.pop(self._consent_key(resource_type, user_id), None) is not None

    def has_clearance(self, resource_type: ResourceType, user_id: str = "default") -> bool:
        key = self._consent_key(resource_type, user_id)
        record = self.consent_cache.get(key)
        if record is None:
            return False
        if not record.is_active():
            logger.info(f"Clearance for {resource_type.value} has expired")
            del self.consent_cache[key]
            return False
        return True

    def check_rate_limit(
        self,
        user_id: str,
        operation: str,
        max_requests: int = 100,
        window_seconds: int = 3600,
    ) -> bool:
        """Check if operation is within rate limits."""
        now = time.time()
        key = f"{user_id}:{operation}"

        # Clean old entries
        self.rate_limits[key] = [
            timestamp for timestamp in self.rate_limits.get(key, [])
            if now - timestamp < window_seconds
        ]

        if len(self.rate_limits[key]) >= max_requests:
            logger.warning(f"Rate limit exceeded for {user_id}:{operation}")
            return False

        self.rate_limits[key].append(now)
        return True

    def validate_url_safety(self, url: str) -> bool:
        """Only plain web URLs may be navigated to on a snapshot's behalf."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            logger.warning(f"Refusing to navigate to non-web URL: {url}")
            return False
        return True

    def reset(self) -> None:
        self.consent_cache.clear()
        self.rate_limits.clear()


# Global security manager instance
security_manager = SecurityManager()


class OpenCredentialGate:
    """Gate for installations without credential protection."""

    async def is_export_allowed(self) -> bool:
        return True


class LockedCredentialGate:
    """Gate that allows exports only while a verification clearance is active."""

    def __init__(self, manager: SecurityManager | None = None, user_id: str = "default") -> None:
        self.manager = manager or security_manager
        self.user_id = user_id

    async def is_export_allowed(self) -> bool:
        return self.manager.has_clearance(ResourceType.SNAPSHOT_EXPORT, self.user_id)


def build_credential_gate(
    require_verification: bool = REQUIRE_EXPORT_VERIFICATION,
    manager: SecurityManager | None = None,
) -> OpenCredentialGate | LockedCredentialGate:
    if require_verification:
        return LockedCredentialGate(manager)
    return OpenCredentialGate()


def secure_operation(
    resource_type: ResourceType,
    operation: str,
    security_level: SecurityLevel = SecurityLevel.MEDIUM,
    description: str = "",
) -> Callable:
    """Decorator applying rate limits and audit logging to MCP operations."""
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if security_level is not SecurityLevel.PUBLIC:
                if not security_manager.check_rate_limit("default", operation):
                    raise SecurityError(f"Rate limit exceeded for {operation}")

            if security_level in (SecurityLevel.MEDIUM, SecurityLevel.HIGH):
                logger.info(f"{operation} ({resource_type.value}): {description}")

            return await func(*args, **kwargs)
        return wrapper
    return decorator


class SecurityError(Exception):
    """Custom exception for security-related errors."""
    pass
