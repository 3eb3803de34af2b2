"""
Automate - Storage Layer
"""
from .database import Database, to_json, from_json, to_iso, from_iso, now_iso
from .schema import init_schema, SCHEMA_SQL, SCHEMA_VERSION

__all__ = [
    "Database",
    "to_json",
    "from_json",
    "to_iso",
    "from_iso",
    "now_iso",
    "init_schema",
    "SCHEMA_SQL",
    "SCHEMA_VERSION",
]
