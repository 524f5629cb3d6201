"""lore storage backends.

Local-first storage using SQLite.
"""

from .schema import SCHEMA_VERSION, validate_table_name
from .sqlite import SQLiteStorage

__all__ = [
    "SCHEMA_VERSION",
    "SQLiteStorage",
    "validate_table_name",
]
