"""
Database Module
"""
from .connection import (
    close_database,
    create_tables,
    get_read_session,
    get_session_factory,
    init_database,
    read_session,
)
from .models import Base

__all__ = [
    "Base",
    "close_database",
    "create_tables",
    "get_read_session",
    "get_session_factory",
    "init_database",
    "read_session",
]
