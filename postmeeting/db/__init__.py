"""
Database package - engine and session management.
"""
from postmeeting.db.engine import engine, build_engine
from postmeeting.db.session import (
    async_session_maker,
    create_tables,
    drop_tables,
    close_db,
)

__all__ = [
    'engine',
    'build_engine',
    'async_session_maker',
    'create_tables',
    'drop_tables',
    'close_db',
]
