import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Sequence, Tuple

import asyncpg

from bakery_api.config import settings
from bakery_api.core.documents import (
    DocumentSnapshot,
    DocumentStore,
    DocumentTransaction,
    Filter,
    TransactionConflict,
    WriteOp,
    split_path,
)
from bakery_api.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)

class DatabasePool:
    _pool = None

    @classmethod
    async def create_pool(cls):
        if cls._pool is None:
            try:
                cls._pool = await asyncpg.create_pool(
                    **settings.db_connection_params,
                    min_size=settings.db_pool_min_size,
                    max_size=settings.db_pool_max_size,
                    command_timeout=settings.db_command_timeout
                )
                logger.info(f"✅ Database pool created: {settings.db_name}@{settings.db_host}")
            except Exception as e:
                logger.error(f"❌ Failed to create database pool: {e}")
                raise
        return cls._pool

    @classmethod
    async def close_pool(cls):
        if cls._pool:
            await cls._pool.close()
            cls._pool = None
            logger.info("Database pool closed")

@asynccontextmanager
async def get_db_connection():
    """
    Usage:
    async with get_db_connection() as conn:
        result = await conn.fetchrow("SELECT 1")
    """
    pool = await DatabasePool.create_pool()
    async with pool.acquire() as connection:
        async with connection.transaction():
            yield connection

# =============================================================================
# DOCUMENT STORE (documents table, one JSONB body per document)
# =============================================================================

def _snapshot(row) -> DocumentSnapshot:
    data = row['data']
    if isinstance(data, str):
        data = json.loads(data)
    return DocumentSnapshot(path=f"{row['collection']}/{row['id']}", data=data)

async def fetch_document(conn, path: str, for_update: bool = False) -> Optional[DocumentSnapshot]:
    collection, document_id = split_path(path)
    query = "SELECT collection, id, data FROM documents WHERE collection = $1 AND id = $2"
    if for_update:
        query += " FOR UPDATE"
    row = await conn.fetchrow(query, collection, document_id)
    return _snapshot(row) if row else None

async def query_documents(
    conn,
    collection: str,
    filters: Sequence[Filter] = (),
    order_by: Optional[Tuple[str, str]] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None
) -> List[DocumentSnapshot]:
    base_query = "SELECT collection, id, data FROM documents WHERE collection = $1"
    params: List[Any] = [collection]
    param_count = 2

    for f in filters:
        if f.op == "==":
            # containment on a one-key object is type aware equality
            base_query += f" AND data @> ${param_count}::jsonb"
            params.append(json.dumps({f.field: f.value}))
            param_count += 1
        elif f.op == "array-contains":
            base_query += f" AND data @> ${param_count}::jsonb"
            params.append(json.dumps({f.field: [f.value]}))
            param_count += 1
        else:
            base_query += f" AND data -> ${param_count}::text {f.op} ${param_count + 1}::jsonb"
            params.extend([f.field, json.dumps(f.value)])
            param_count += 2

    if order_by:
        order_field, direction = order_by
        direction = "DESC" if direction.lower() == "desc" else "ASC"
        base_query += f" ORDER BY data -> ${param_count}::text {direction}, id"
        params.append(order_field)
        param_count += 1
    else:
        base_query += " ORDER BY id"

    if limit is not None:
        base_query += f" LIMIT ${param_count}"
        params.append(limit)
        param_count += 1
    if offset:
        base_query += f" OFFSET ${param_count}"
        params.append(offset)
        param_count += 1

    rows = await conn.fetch(base_query, *params)
    return [_snapshot(row) for row in rows]

_ARRAY_UNION_SQL = """
    UPDATE documents
    SET data = jsonb_set(
            data,
            ARRAY[$3::text],
            COALESCE(data -> $3::text, '[]'::jsonb) || COALESCE((
                SELECT jsonb_agg(v.value ORDER BY v.ordinality)
                FROM jsonb_array_elements($4::jsonb) WITH ORDINALITY AS v(value, ordinality)
                WHERE NOT COALESCE(data -> $3::text, '[]'::jsonb) @> jsonb_build_array(v.value)
            ), '[]'::jsonb)
        ) || $5::jsonb,
        updated_at = NOW()
    WHERE collection = $1 AND id = $2
    RETURNING id
"""

_ARRAY_REMOVE_SQL = """
    UPDATE documents
    SET data = jsonb_set(
            data,
            ARRAY[$3::text],
            COALESCE((
                SELECT jsonb_agg(v.value ORDER BY v.ordinality)
                FROM jsonb_array_elements(COALESCE(data -> $3::text, '[]'::jsonb)) WITH ORDINALITY AS v(value, ordinality)
                WHERE NOT $4::jsonb @> jsonb_build_array(v.value)
            ), '[]'::jsonb)
        ) || $5::jsonb,
        updated_at = NOW()
    WHERE collection = $1 AND id = $2
    RETURNING id
"""

async def apply_write(conn, op: WriteOp) -> None:
    collection, document_id = split_path(op.path)

    if op.kind == "set":
        await conn.execute("""
            INSERT INTO documents (collection, id, data)
            VALUES ($1, $2, $3::jsonb)
            ON CONFLICT (collection, id)
            DO UPDATE SET data = EXCLUDED.data, updated_at = NOW()
        """, collection, document_id, json.dumps(op.data))
        return

    if op.kind == "delete":
        await conn.execute(
            "DELETE FROM documents WHERE collection = $1 AND id = $2",
            collection, document_id
        )
        return

    if op.kind == "update":
        updated = await conn.fetchrow("""
            UPDATE documents
            SET data = data || $3::jsonb, updated_at = NOW()
            WHERE collection = $1 AND id = $2
            RETURNING id
        """, collection, document_id, json.dumps(op.data))
    elif op.kind in ("array_union", "array_remove"):
        sql = _ARRAY_UNION_SQL if op.kind == "array_union" else _ARRAY_REMOVE_SQL
        updated = await conn.fetchrow(
            sql, collection, document_id, op.array_field,
            json.dumps(op.values), json.dumps(op.data)
        )
    else:
        raise ValueError(f"Unknown write kind: {op.kind}")

    if not updated:
        raise NotFoundError(f"Document {op.path} not found")

class PostgresTransaction(DocumentTransaction):
    def __init__(self, conn):
        super().__init__()
        self._conn = conn

    async def _read(self, path: str) -> Optional[DocumentSnapshot]:
        return await fetch_document(self._conn, path, for_update=True)

    async def _query(self, collection, filters, order_by, limit, offset) -> List[DocumentSnapshot]:
        return await query_documents(self._conn, collection, filters, order_by, limit, offset)

    async def _apply(self, writes: List[WriteOp]) -> None:
        for op in writes:
            await apply_write(self._conn, op)

class PostgresDocumentStore(DocumentStore):
    """Document store on a single `documents` table, serializable transactions"""

    def __init__(self, pool: asyncpg.Pool, max_attempts: int = 5):
        super().__init__(max_attempts=max_attempts)
        self._pool = pool

    async def get(self, path: str) -> Optional[DocumentSnapshot]:
        async with self._pool.acquire() as conn:
            return await fetch_document(conn, path)

    async def query(self, collection, filters=(), order_by=None, limit=None, offset=None) -> List[DocumentSnapshot]:
        async with self._pool.acquire() as conn:
            return await query_documents(conn, collection, filters, order_by, limit, offset)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresTransaction]:
        async with self._pool.acquire() as conn:
            try:
                async with conn.transaction(isolation="serializable"):
                    yield PostgresTransaction(conn)
            except (asyncpg.exceptions.SerializationError, asyncpg.exceptions.DeadlockDetectedError) as e:
                raise TransactionConflict(str(e)) from e

DOCUMENTS_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS documents (
        collection TEXT NOT NULL,
        id TEXT NOT NULL,
        data JSONB NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        PRIMARY KEY (collection, id)
    );
    CREATE INDEX IF NOT EXISTS documents_data_gin ON documents USING GIN (data jsonb_path_ops);
"""
