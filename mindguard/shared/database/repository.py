"""Base repository for append-only, per-user tables.

Rows are keyed by the hashed user identifier; raw identifiers never reach
the database.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

from psycopg2 import Error as Psycopg2Error

from mindguard.shared.errors import ExternalServiceError
from .connection import ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RepositoryError(ExternalServiceError):
    """Database call failed."""

    def __init__(self, table_name: str, message: str, retryable: bool = True):
        super().__init__("postgres", f"{table_name}: {message}", code="DB_ERROR", retryable=retryable)
        self.table_name = table_name


class BaseRepository(ABC, Generic[T]):
    """Append/read/expire operations over one table.

    Subclasses map entities to rows; every table carries user_id_hash and
    created_at columns.
    """

    def __init__(self, connection_manager: ConnectionManager, table_name: str):
        self.connection_manager = connection_manager
        self.table_name = table_name

        logger.info("REPOSITORY_INITIALIZED", extra={"table_name": table_name})

    @abstractmethod
    def _row_to_entity(self, row: tuple) -> T:
        pass

    @abstractmethod
    def _entity_to_params(self, entity: T) -> Dict[str, Any]:
        pass

    @property
    @abstractmethod
    def columns(self) -> Sequence[str]:
        """Columns selected, in _row_to_entity order."""
        pass

    def append(self, user_id_hash: str, entity: T) -> None:
        params = {"user_id_hash": user_id_hash}
        params.update(self._entity_to_params(entity))
        columns = list(params.keys())
        placeholders = ", ".join(["%s"] * len(columns))
        query = (
            f"INSERT INTO {self.table_name} ({', '.join(columns)}) "
            f"VALUES ({placeholders})"
        )
        self._execute(query, tuple(params.values()), commit=True)

    def find_since(
        self,
        user_id_hash: str,
        since: datetime,
        limit: Optional[int] = None,
    ) -> List[T]:
        """Rows for one user created at or after since, oldest first."""
        select = (
            f"SELECT {', '.join(self.columns)} FROM {self.table_name} "
            f"WHERE user_id_hash = %s AND created_at >= %s"
        )
        params: tuple = (user_id_hash, since)
        if limit is None:
            query = f"{select} ORDER BY created_at ASC"
        else:
            # Newest N, still returned oldest first
            query = (
                f"SELECT * FROM ({select} ORDER BY created_at DESC LIMIT %s) recent "
                f"ORDER BY created_at ASC"
            )
            params = params + (limit,)
        rows = self._execute(query, params, fetch=True)
        return [self._row_to_entity(row) for row in rows]

    def delete_before(self, cutoff: datetime) -> int:
        """Expire rows older than cutoff; returns rows removed."""
        return self._execute(
            f"DELETE FROM {self.table_name} WHERE created_at < %s",
            (cutoff,),
            commit=True,
        )

    def count(self, user_id_hash: str) -> int:
        rows = self._execute(
            f"SELECT COUNT(*) FROM {self.table_name} WHERE user_id_hash = %s",
            (user_id_hash,),
            fetch=True,
        )
        return rows[0][0] if rows else 0

    def _execute(self, query: str, params: tuple, fetch: bool = False, commit: bool = False) -> Any:
        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    result = cur.fetchall() if fetch else cur.rowcount
                if commit:
                    conn.commit()
                return result
        except Psycopg2Error as e:
            logger.error(
                "REPOSITORY_QUERY_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(self.table_name, str(e)) from e
