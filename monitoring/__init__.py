"""Per-invocation metrics."""
