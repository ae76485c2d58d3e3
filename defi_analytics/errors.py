"""
Error Kinds
===========

  • ValidationError      — caller supplied malformed input; always surfaced
  • UpstreamUnavailable  — price feed / completion provider unreachable
  • UnparseableResponse  — provider text held no schema-valid JSON

The last two are recovered inside the component that raised them
(static price table, fallback strategy list) and never reach the caller.
"""


class AnalyticsError(Exception):
    """Base class for all analytics errors."""


class ValidationError(AnalyticsError, ValueError):
    """Negative price, negative amount, empty portfolio, unknown tier."""


class UpstreamUnavailable(AnalyticsError, RuntimeError):
    """External service unreachable or returned a non-2xx status."""


class UnparseableResponse(AnalyticsError, ValueError):
    """External service answered, but the body could not be used."""
