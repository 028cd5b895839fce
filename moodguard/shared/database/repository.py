"""Base repository pattern for PostgreSQL-backed collections.

Subclasses declare their table and column list and supply the two
row/entity conversions; the base class owns connection handling and
the translation of driver errors into the store error hierarchy.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar

import psycopg2
from psycopg2 import errors as pg_errors

from .connection import ConnectionManager
from .errors import DuplicateError, NotFoundError, RepositoryError, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar('T')

__all__ = [
    "BaseRepository",
    "RepositoryError",
    "NotFoundError",
    "DuplicateError",
    "StoreUnavailableError",
]


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common operations."""

    columns: Tuple[str, ...] = ()

    def __init__(
        self,
        connection_manager: ConnectionManager,
        table_name: str,
    ):
        self.connection_manager = connection_manager
        self.table_name = table_name

        logger.info(
            "REPOSITORY_INITIALIZED",
            extra={"table_name": table_name}
        )

    @abstractmethod
    def _row_to_entity(self, row: tuple) -> T:
        """Convert a row (in `columns` order) to an entity."""
        pass

    @abstractmethod
    def _entity_to_params(self, entity: T) -> Dict[str, Any]:
        """Convert an entity to column values keyed by column name."""
        pass

    @property
    def _select_list(self) -> str:
        return ", ".join(self.columns)

    @contextmanager
    def _cursor(self, commit: bool = False):
        """Yield a cursor, translating driver errors.

        Raises:
            DuplicateError: On unique constraint violations
            StoreUnavailableError: On connectivity failures
            RepositoryError: On any other driver error
        """
        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    yield cur
                if commit:
                    conn.commit()
        except pg_errors.UniqueViolation as e:
            raise DuplicateError(f"{self.table_name}: {e}") from e
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            logger.error(
                "REPOSITORY_BACKEND_UNAVAILABLE",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise StoreUnavailableError(f"{self.table_name}: {e}") from e
        except psycopg2.Error as e:
            logger.error(
                "REPOSITORY_QUERY_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"{self.table_name}: {e}") from e

    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by ID, None if absent."""
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {self._select_list} FROM {self.table_name} WHERE id = %s",
                (entity_id,)
            )
            row = cur.fetchone()

        return self._row_to_entity(row) if row is not None else None

    def find_where(
        self,
        clause: str,
        params: Sequence[Any],
        order_by: str = "created_at DESC",
        limit: Optional[int] = None,
    ) -> List[T]:
        """Find entities matching a parameterized WHERE clause."""
        query = f"SELECT {self._select_list} FROM {self.table_name} WHERE {clause} ORDER BY {order_by}"
        values = list(params)
        if limit is not None:
            query += " LIMIT %s"
            values.append(limit)

        with self._cursor() as cur:
            cur.execute(query, values)
            rows = cur.fetchall()

        return [self._row_to_entity(row) for row in rows]

    def insert(self, entity: T) -> None:
        """Insert a new entity.

        Raises:
            DuplicateError: If the id (or another unique key) exists
        """
        params = self._entity_to_params(entity)
        columns = list(params.keys())
        placeholders = ", ".join(["%s"] * len(columns))

        with self._cursor(commit=True) as cur:
            cur.execute(
                f"INSERT INTO {self.table_name} ({', '.join(columns)}) VALUES ({placeholders})",
                list(params.values())
            )

    def update(self, entity: T) -> None:
        """Overwrite every non-id column of an existing entity.

        Raises:
            NotFoundError: If no row has the entity's id
        """
        params = self._entity_to_params(entity)
        entity_id = params.pop("id")
        assignments = ", ".join(f"{col} = %s" for col in params)

        with self._cursor(commit=True) as cur:
            cur.execute(
                f"UPDATE {self.table_name} SET {assignments} WHERE id = %s",
                [*params.values(), entity_id]
            )
            updated = cur.rowcount

        if updated == 0:
            raise NotFoundError(f"{self.table_name}: {entity_id}")

    def count(self) -> int:
        with self._cursor() as cur:
            cur.execute(f"SELECT COUNT(*) FROM {self.table_name}")
            row = cur.fetchone()

        return row[0] if row else 0
