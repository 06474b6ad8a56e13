"""Database layer package.

Public re-exports so callers can write::

    from depthwise.db import get_connection, init_db, transaction
"""

from depthwise.db.connection import get_connection, transaction
from depthwise.db.migrations import init_db

__all__ = ["get_connection", "init_db", "transaction"]
