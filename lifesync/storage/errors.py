from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """A write broke a uniqueness or reference rule of the store.

    Both stores raise it for the same cases: a taken company domain, an
    email already used inside a tenant, a user pointing at a missing
    tenant, and a badge a user already holds.
    """

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    @property
    def field(self) -> Optional[str]:
        return self.detail.get("field")
