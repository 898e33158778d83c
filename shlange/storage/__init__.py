"""Persistence: key-value backends and the persona-scoped conversation store."""
