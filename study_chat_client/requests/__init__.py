"""Request subsystem: authenticated non-streaming calls."""

from __future__ import annotations

from .executor import AuthenticatedRequestExecutor, RequestSpec

__all__ = ["AuthenticatedRequestExecutor", "RequestSpec"]
