"""
PostgreSQL Client for the Dispatch Service

Thin CRUD surface over an asyncpg connection pool. Callers never write SQL:
they select/insert/update by equality predicates, with an optional ORDER BY,
and group writes with ``transaction()``.

Usage:
    from core.postgres_client import get_postgres_client

    db = await get_postgres_client("dispatch_service")

    rows = await db.select("orders", predicate={"status": ["unassigned", "assigned"]},
                           order="target_time_start DESC")

    async with db.transaction() as tx:
        count = await tx.update("orders", {"status": "accepted"},
                                {"id": order_id, "status": "assigned"})
"""

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import asyncpg

from core.config import InfraConfig

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _ident(name: str) -> str:
    """Quote a table/column identifier, rejecting anything that is not a plain name"""
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def _build_where(predicate: Optional[Dict[str, Any]], start: int = 1) -> Tuple[str, List[Any]]:
    """Build a WHERE clause from an equality predicate.

    A list/tuple/set value becomes ``IN (...)`` and ``None`` becomes ``IS NULL``.
    """
    if not predicate:
        return "", []

    clauses = []
    params: List[Any] = []
    index = start
    for column, value in predicate.items():
        if value is None:
            clauses.append(f"{_ident(column)} IS NULL")
        elif isinstance(value, (list, tuple, set, frozenset)):
            values = list(value)
            if not values:
                clauses.append("FALSE")
                continue
            placeholders = []
            for item in values:
                placeholders.append(f"${index}")
                params.append(item)
                index += 1
            clauses.append(f"{_ident(column)} IN ({', '.join(placeholders)})")
        else:
            clauses.append(f"{_ident(column)} = ${index}")
            params.append(value)
            index += 1

    return " WHERE " + " AND ".join(clauses), params


def _build_order(order: Optional[str]) -> str:
    if not order:
        return ""
    parts = []
    for term in order.split(","):
        tokens = term.split()
        if not tokens or len(tokens) > 2:
            raise ValueError(f"Invalid ORDER BY term: {term!r}")
        direction = tokens[1].upper() if len(tokens) == 2 else "ASC"
        if direction not in ("ASC", "DESC"):
            raise ValueError(f"Invalid ORDER BY direction: {direction!r}")
        parts.append(f"{_ident(tokens[0])} {direction}")
    return " ORDER BY " + ", ".join(parts)


def _rowcount(status: str) -> int:
    """asyncpg returns command tags like 'UPDATE 3'"""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class _SqlSession:
    """CRUD operations bound to a single asyncpg connection"""

    def __init__(self, connection: asyncpg.Connection, schema: str):
        self._conn = connection
        self.schema = schema

    def _table(self, table: str) -> str:
        return f"{_ident(self.schema)}.{_ident(table)}"

    async def select(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        predicate: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        cols = ", ".join(_ident(c) for c in columns) if columns else "*"
        where, params = _build_where(predicate)
        query = f"SELECT {cols} FROM {self._table(table)}{where}{_build_order(order)}"
        rows = await self._conn.fetch(query, *params)
        return [dict(row) for row in rows]

    async def insert(self, table: str, record: Dict[str, Any]) -> int:
        columns = list(record.keys())
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        query = (
            f"INSERT INTO {self._table(table)} ({', '.join(_ident(c) for c in columns)}) "
            f"VALUES ({placeholders})"
        )
        status = await self._conn.execute(query, *record.values())
        return _rowcount(status)

    async def update(self, table: str, changes: Dict[str, Any], predicate: Dict[str, Any]) -> int:
        if not changes:
            return 0
        if not predicate:
            raise ValueError("update() requires a predicate")
        set_clauses = []
        params: List[Any] = []
        for index, (column, value) in enumerate(changes.items(), start=1):
            set_clauses.append(f"{_ident(column)} = ${index}")
            params.append(value)
        where, where_params = _build_where(predicate, start=len(params) + 1)
        query = f"UPDATE {self._table(table)} SET {', '.join(set_clauses)}{where}"
        status = await self._conn.execute(query, *params, *where_params)
        return _rowcount(status)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["_SqlSession"]:
        """Nested transaction (savepoint) on the same connection"""
        async with self._conn.transaction():
            yield self


class PostgresClient:
    """
    asyncpg pool exposing the select/insert/update/transaction surface.

    Every call outside ``transaction()`` runs on its own pooled connection.
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
        dsn: Optional[str] = None,
        schema: Optional[str] = None,
    ):
        config = config or InfraConfig.from_env()
        self.service_name = service_name
        self.dsn = dsn or config.postgres_dsn
        self.schema = schema or config.postgres_schema
        self.min_size = config.postgres_pool_min
        self.max_size = config.postgres_pool_max
        self._pool: Optional[asyncpg.Pool] = None

        logger.info(
            f"PostgreSQL client initialized for {service_name}: "
            f"{config.postgres_host}:{config.postgres_port}/{config.postgres_db} (schema={self.schema})"
        )

    async def connect(self) -> None:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn, min_size=self.min_size, max_size=self.max_size
            )
            logger.info(f"PostgreSQL pool opened for {self.service_name}")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed for {self.service_name}")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("PostgresClient is not connected")
        return self._pool

    async def select(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        predicate: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            return await _SqlSession(conn, self.schema).select(table, columns, predicate, order)

    async def insert(self, table: str, record: Dict[str, Any]) -> int:
        async with self.pool.acquire() as conn:
            return await _SqlSession(conn, self.schema).insert(table, record)

    async def update(self, table: str, changes: Dict[str, Any], predicate: Dict[str, Any]) -> int:
        async with self.pool.acquire() as conn:
            return await _SqlSession(conn, self.schema).update(table, changes, predicate)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_SqlSession]:
        """Acquire one connection and run everything inside a single transaction"""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield _SqlSession(conn, self.schema)


# Singleton instances per service
_postgres_clients: Dict[str, PostgresClient] = {}


async def get_postgres_client(
    service_name: str,
    config: Optional[InfraConfig] = None,
    **kwargs,
) -> PostgresClient:
    """
    Get or create a connected PostgreSQL client for a service.

    Args:
        service_name: Service name
        config: Optional infrastructure config override
        **kwargs: dsn / schema overrides

    Returns:
        PostgresClient instance
    """
    global _postgres_clients

    if service_name not in _postgres_clients:
        client = PostgresClient(service_name=service_name, config=config, **kwargs)
        await client.connect()
        _postgres_clients[service_name] = client

    return _postgres_clients[service_name]
