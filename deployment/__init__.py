"""HTTP surface and resilience helpers."""
