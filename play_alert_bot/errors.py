from __future__ import annotations


class DataUnavailable(RuntimeError):
    """An upstream fetch failed or returned malformed data."""


class ConfigError(ValueError):
    """Required operating parameters are missing; the tick cannot run."""
