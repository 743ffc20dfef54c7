"""Shared configuration, errors and API schemas."""
