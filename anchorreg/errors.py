# anchorreg/errors.py
"""
Error kinds raised by the anchor registry.

Every failure is detected before any state changes, so a caught error
always leaves the registry exactly as it was.
"""

from typing import Optional


class RegistryError(Exception):
    """Base class for all registry failures."""


class InvalidInput(RegistryError, ValueError):
    """Empty asset hash, self-link, null admin, bad gateway call."""


class NotFound(RegistryError, LookupError):
    """Anchor id outside the allocated range."""

    def __init__(self, anchor_id: int, message: Optional[str] = None):
        self.anchor_id = anchor_id
        super().__init__(message or f"Anchor {anchor_id} not found")


class Unauthorized(RegistryError, PermissionError):
    """Caller lacks the role the operation requires."""

    def __init__(self, caller: str, message: Optional[str] = None):
        self.caller = caller
        super().__init__(message or f"Caller {caller} is not authorized")


class AlreadyVerified(RegistryError):
    """Anchor has already been verified."""

    def __init__(self, anchor_id: int):
        self.anchor_id = anchor_id
        super().__init__(f"Anchor {anchor_id} is already verified")
