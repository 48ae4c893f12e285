from __future__ import annotations

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Base class for key-value store failures."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreUnavailable(StoreError):
    """Raised when a store command cannot complete (network, timeout, non-2xx)."""


class MalformedRecord(StoreError):
    """Raised when a stored value cannot be decoded as the expected JSON shape."""


__all__ = ["StoreError", "StoreUnavailable", "MalformedRecord"]
