from __future__ import annotations


class ClientInputError(ValueError):
    """Rejected producer or settings input; surfaced to the caller as HTTP 400."""


class TranslationError(RuntimeError):
    """Upstream translation call failed or returned nothing usable."""
