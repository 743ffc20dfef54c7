"""
Error hierarchy for the context selection engine.

Token-count failures are recovered inside the selector; generation and
validation failures propagate to the caller.
"""


class ContextEngineError(Exception):
    """Base error for the context selection engine."""


class ContextValidationError(ContextEngineError, ValueError):
    """Raised when the caller supplies an unusable request."""


class OracleError(ContextEngineError):
    """A remote oracle call failed."""


class TokenCountError(OracleError):
    """The token-counting oracle failed or returned a malformed response."""


class GenerationError(OracleError):
    """The answering oracle failed. Fatal to the invocation."""


class CircuitOpenError(OracleError):
    """Raised when a circuit breaker is rejecting calls."""
