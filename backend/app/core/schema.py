"""
Schema Capabilities

Some tables changed column names across releases (customers/suppliers moved
from ``open_balance`` to ``remaining_balance``). Instead of gating startup on a
migration, the engine probes each table's column set once and picks the first
supported column that actually exists.
"""
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Sequence
import logging
import threading

from sqlalchemy import inspect
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from app.core.config import settings
from app.core.exceptions import SchemaConfigurationError

logger = logging.getLogger(__name__)

BALANCE_COLUMN_DEFAULT = "remaining_balance"
BALANCE_COLUMN_CANDIDATES = ("open_balance", "remaining_balance")


class SchemaCapabilities:
    """
    Process-wide cache of table column sets.

    The cache is filled once per table and only cleared explicitly, either via
    ``invalidate()`` or when ``ensure_version()`` sees a new schema version.
    ``known_columns`` pins table shapes up front and skips introspection for
    those tables.
    """

    def __init__(self, schema_version: str = "1", db_schema: Optional[str] = None,
                 known_columns: Optional[Mapping[str, Iterable[str]]] = None):
        self.schema_version = schema_version
        self.db_schema = db_schema
        self._pinned: Dict[str, FrozenSet[str]] = {
            table: frozenset(cols) for table, cols in (known_columns or {}).items()
        }
        self._columns: Dict[str, FrozenSet[str]] = dict(self._pinned)
        self._lock = threading.Lock()

    def ensure_version(self, schema_version: str) -> None:
        if schema_version != self.schema_version:
            logger.info(
                "Schema version changed %s -> %s, clearing column cache",
                self.schema_version, schema_version
            )
            self.invalidate()
            self.schema_version = schema_version

    def invalidate(self) -> None:
        with self._lock:
            self._columns = dict(self._pinned)

    def columns(self, bind, table: str) -> FrozenSet[str]:
        cached = self._columns.get(table)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._columns.get(table)
            if cached is None:
                cached = self._probe(bind, table)
                self._columns[table] = cached
        return cached

    def resolve_column(self, bind, table: str, default: str, candidates: Sequence[str]) -> str:
        """Return the first candidate present on ``table``, else ``default``."""
        names = self.columns(bind, table)
        for candidate in candidates:
            if candidate in names:
                return candidate
        return default

    def balance_column(self, bind, table: str) -> str:
        return self.resolve_column(bind, table, BALANCE_COLUMN_DEFAULT, BALANCE_COLUMN_CANDIDATES)

    def _probe(self, bind, table: str) -> FrozenSet[str]:
        try:
            cols = inspect(bind).get_columns(table, schema=self.db_schema)
        except NoSuchTableError as exc:
            raise SchemaConfigurationError(f"Table '{table}' does not exist") from exc
        except SQLAlchemyError as exc:
            raise SchemaConfigurationError(
                f"Could not read columns of table '{table}': {exc}"
            ) from exc

        names = frozenset(col["name"] for col in cols)
        if not names:
            raise SchemaConfigurationError(f"Table '{table}' does not exist or has no columns")

        logger.info("Probed %d columns on table %s", len(names), table)
        return names


schema_capabilities = SchemaCapabilities(
    schema_version=settings.SCHEMA_VERSION,
    db_schema=settings.DB_SCHEMA,
)


def get_schema_capabilities() -> SchemaCapabilities:
    """FastAPI dependency returning the process-wide capabilities."""
    schema_capabilities.ensure_version(settings.SCHEMA_VERSION)
    return schema_capabilities
