"""Persistence layer: ORM models, engine and repositories."""
