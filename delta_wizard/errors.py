from __future__ import annotations

from typing import Any


class WizardError(ValueError):
    """Raised for an intent the wizard cannot apply in its current state."""


class BackendError(Exception):
    """Non-2xx response from the backend service."""

    def __init__(self, status_code: int, message: str, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload


def error_message(payload: Any, status_code: int) -> str:
    if isinstance(payload, dict):
        for key in ("detail", "message", "error"):
            value = payload.get(key)
            if value:
                return value if isinstance(value, str) else str(value)
    return f"HTTP {status_code}"
