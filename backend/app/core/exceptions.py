"""
Exceptions raised by the currency services.
"""


class FxError(Exception):
    """Base class for currency conversion errors."""


class InvalidPreference(FxError):
    """Currency preferences failed validation and were not saved."""


class SourceUnavailable(FxError):
    """A live rate source failed or timed out."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class RateUnavailable(FxError):
    """No override, cache entry, live source or default rate could serve the pair."""

    def __init__(self, base: str, target: str):
        super().__init__(f"No exchange rate available for {base} -> {target}")
        self.base = base
        self.target = target


class CacheWriteRace(FxError):
    """Two writers inserted the same cache key at the same time."""
