"""Database layer: declarative base, column types and session management."""
