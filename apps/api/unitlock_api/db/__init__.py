"""Persistence layer: ORM models, engine, subscription store."""
