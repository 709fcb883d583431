"""Tests for the Postgres document adapter, using a connection that records SQL."""

import json

import pytest

from bakery_api.core.documents import Filter, WriteOp
from bakery_api.core.exceptions import NotFoundError
from bakery_api.database import PostgresTransaction, apply_write, fetch_document, query_documents


class RecordingConnection:
    def __init__(self, rows=None, row=None):
        self.calls = []
        self.rows = rows or []
        self.row = row

    async def fetch(self, query, *args):
        self.calls.append((query, args))
        return self.rows

    async def fetchrow(self, query, *args):
        self.calls.append((query, args))
        return self.row

    async def execute(self, query, *args):
        self.calls.append((query, args))
        return "OK"


async def test_fetch_document_decodes_json_text():
    conn = RecordingConnection(row={"collection": "bakeries/b1/recipes", "id": "r1", "data": '{"name": "Bread"}'})

    snapshot = await fetch_document(conn, "bakeries/b1/recipes/r1", for_update=True)

    query, args = conn.calls[0]
    assert query.endswith("FOR UPDATE")
    assert args == ("bakeries/b1/recipes", "r1")
    assert snapshot.id == "r1"
    assert snapshot.data == {"name": "Bread"}


async def test_fetch_missing_document():
    assert await fetch_document(RecordingConnection(), "bakeries/b1/recipes/r1") is None


async def test_query_builds_parameterized_filters():
    conn = RecordingConnection(rows=[{"collection": "bakeries/b1/products", "id": "p1", "data": {"recipeId": "r1"}}])

    snapshots = await query_documents(
        conn,
        "bakeries/b1/products",
        [Filter("recipeId", "==", "r1"), Filter("tags", "array-contains", "vegan"), Filter("price", ">=", 10)],
        order_by=("price", "desc"),
        limit=1,
        offset=5,
    )

    query, args = conn.calls[0]
    assert "data @> $2::jsonb" in query
    assert "data @> $3::jsonb" in query
    assert "data -> $4::text >= $5::jsonb" in query
    assert "ORDER BY data -> $6::text DESC, id" in query
    assert "LIMIT $7" in query and "OFFSET $8" in query
    assert args == (
        "bakeries/b1/products",
        json.dumps({"recipeId": "r1"}),
        json.dumps({"tags": ["vegan"]}),
        "price",
        "10",
        "price",
        1,
        5,
    )
    assert [s.path for s in snapshots] == ["bakeries/b1/products/p1"]


async def test_set_is_an_upsert():
    conn = RecordingConnection()

    await apply_write(conn, WriteOp("set", "bakeries/b1/recipes/r1", data={"name": "Bread"}))

    query, args = conn.calls[0]
    assert "ON CONFLICT (collection, id)" in query
    assert args == ("bakeries/b1/recipes", "r1", '{"name": "Bread"}')


async def test_update_of_missing_row_is_not_found():
    with pytest.raises(NotFoundError):
        await apply_write(RecordingConnection(row=None), WriteOp("update", "bakeries/b1/recipes/r1", data={"x": 1}))


async def test_array_union_passes_values_and_extra_fields():
    conn = RecordingConnection(row={"id": "flour"})

    await apply_write(conn, WriteOp(
        "array_union", "bakeries/b1/ingredients/flour",
        data={"updatedAt": "2024-01-01T00:00:00.000000+00:00"},
        array_field="usedInRecipes", values=["r1"],
    ))

    _, args = conn.calls[0]
    assert args == (
        "bakeries/b1/ingredients", "flour", "usedInRecipes",
        '["r1"]', '{"updatedAt": "2024-01-01T00:00:00.000000+00:00"}',
    )


async def test_transaction_applies_buffered_writes_in_order():
    conn = RecordingConnection(row={"id": "r1"})
    txn = PostgresTransaction(conn)

    txn.set("bakeries/b1/recipes/r1", {"version": 1})
    txn.delete("bakeries/b1/recipes/r0")
    assert conn.calls == []

    await txn.commit()

    assert "INSERT INTO documents" in conn.calls[0][0]
    assert conn.calls[1][0].startswith("DELETE FROM documents")
