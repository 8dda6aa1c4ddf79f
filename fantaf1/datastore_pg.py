import os
import json
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor

from .timestamps import to_iso

# Documents live in one JSONB table keyed by (collection, parent_id, doc_id).
# Child collections (submissions under a race) carry the parent's id; top-level
# collections use the empty string.

_POOL: Optional[pg_pool.AbstractConnectionPool] = None

_WHERE_OPS = {"<", "<=", ">", ">=", "="}

Where = Sequence[Tuple[str, str, Any]]


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """connect_timeout plus TCP keepalive settings read from the environment."""
    kwargs: Dict[str, Any] = {"connect_timeout": _env_int("DB_CONNECT_TIMEOUT", 10)}
    ka = os.environ.get("DB_KEEPALIVES")
    kwargs["keepalives"] = 0 if ka is not None and ka.lower() in ("0", "false") else 1
    for env_name, key in (
        ("DB_KEEPALIVES_IDLE", "keepalives_idle"),
        ("DB_KEEPALIVES_INTERVAL", "keepalives_interval"),
        ("DB_KEEPALIVES_COUNT", "keepalives_count"),
    ):
        val = _env_int(env_name)
        if val is not None:
            kwargs[key] = val
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Create the global connection pool from DATABASE_URL (idempotent)."""
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def _ping(conn) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
        if not getattr(conn, "autocommit", False):
            conn.rollback()
        return True
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        return False


def _checkout():
    """Take a live connection from the pool, replacing one stale connection."""
    for _ in range(2):
        conn = _POOL.getconn()
        if _ping(conn):
            return conn
        _POOL.putconn(conn, close=True)
    raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")


@contextmanager
def _get_conn():
    """Yield a pooled connection when a pool exists, else a direct one.

    Any exception inside the block rolls the transaction back before the
    connection is returned or closed.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    pooled = _POOL is not None
    conn = _checkout() if pooled else psycopg2.connect(url, **_connect_kwargs())
    try:
        yield conn
    except Exception:
        if getattr(conn, "closed", 0) == 0:
            conn.rollback()
        raise
    finally:
        if pooled:
            # status 1/2/3 = active / in transaction / in error
            if getattr(conn, "closed", 0) == 0 and getattr(conn, "status", 0) in (1, 2, 3):
                conn.rollback()
            _POOL.putconn(conn)
        else:
            conn.close()


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(fields: Dict[str, Any]) -> str:
    payload = {k: v for k, v in (fields or {}).items() if k != "id"}
    return json.dumps(payload, default=_json_default)


def _row_to_doc(row: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(row.get("data") or {})
    doc["id"] = row.get("doc_id")
    return doc


def create_tables() -> None:
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                collection VARCHAR(64) NOT NULL,
                parent_id VARCHAR(200) NOT NULL DEFAULT '',
                doc_id VARCHAR(200) NOT NULL,
                data JSONB NOT NULL DEFAULT '{}'::jsonb,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                PRIMARY KEY (collection, parent_id, doc_id)
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents (collection, parent_id)"
        )
        conn.commit()


def get_document(collection: str, doc_id: str, parent: str = "") -> Optional[Dict[str, Any]]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            "SELECT doc_id, data FROM documents WHERE collection = %s AND parent_id = %s AND doc_id = %s",
            (collection, parent, doc_id),
        )
        row = cur.fetchone()
    return _row_to_doc(row) if row else None


def list_documents(
    collection: str,
    parent: str = "",
    where: Optional[Where] = None,
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """List documents of one collection.

    ``where`` is a sequence of ``(field, op, value)`` filters on top-level
    fields compared as text; ``order_by`` sorts on a top-level field using
    JSONB ordering (numbers numerically, strings lexically).
    """
    sql = ["SELECT doc_id, data FROM documents WHERE collection = %s AND parent_id = %s"]
    params: List[Any] = [collection, parent]
    for field, op, value in where or []:
        if op not in _WHERE_OPS:
            raise ValueError(f"Unsupported filter operator: {op}")
        sql.append(f"AND data->>%s {op} %s")
        params.extend([field, str(value)])
    if order_by:
        sql.append(f"ORDER BY data->%s {'DESC' if descending else 'ASC'}, doc_id")
        params.append(order_by)
    else:
        sql.append("ORDER BY doc_id")
    if limit is not None:
        sql.append("LIMIT %s")
        params.append(int(limit))
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(" ".join(sql), params)
        rows = cur.fetchall() or []
    return [_row_to_doc(r) for r in rows]


def count_documents(collection: str, parent: str = "") -> int:
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(
            "SELECT count(*) FROM documents WHERE collection = %s AND parent_id = %s",
            (collection, parent),
        )
        row = cur.fetchone()
    return int(row[0]) if row else 0


def set_document(
    collection: str,
    doc_id: str,
    fields: Dict[str, Any],
    parent: str = "",
    merge: bool = True,
) -> None:
    """Upsert a document; ``merge`` shallow-merges top-level fields."""
    update = "documents.data || EXCLUDED.data" if merge else "EXCLUDED.data"
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(
            f"""
            INSERT INTO documents (collection, parent_id, doc_id, data, updated_at)
            VALUES (%s, %s, %s, %s::jsonb, now())
            ON CONFLICT (collection, parent_id, doc_id) DO UPDATE SET
                data = {update},
                updated_at = now()
            """,
            (collection, parent, doc_id, _dumps(fields)),
        )
        conn.commit()


def transact_document(
    collection: str,
    doc_id: str,
    mutate: Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]],
    parent: str = "",
) -> Optional[Dict[str, Any]]:
    """Read-modify-write one document under a row lock.

    ``mutate`` receives the current document (``None`` if absent) and returns
    the fields to merge, or ``None`` to leave it untouched. Exceptions raised
    by ``mutate`` roll the transaction back. Returns the resulting document.
    """
    with _get_conn() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT doc_id, data FROM documents
                WHERE collection = %s AND parent_id = %s AND doc_id = %s
                FOR UPDATE
                """,
                (collection, parent, doc_id),
            )
            row = cur.fetchone()
            current = _row_to_doc(row) if row else None
            patch = mutate(dict(current) if current is not None else None)
            if not patch:
                conn.rollback()
                return current
            cur.execute(
                """
                INSERT INTO documents (collection, parent_id, doc_id, data, updated_at)
                VALUES (%s, %s, %s, %s::jsonb, now())
                ON CONFLICT (collection, parent_id, doc_id) DO UPDATE SET
                    data = documents.data || EXCLUDED.data,
                    updated_at = now()
                RETURNING doc_id, data
                """,
                (collection, parent, doc_id, _dumps(patch)),
            )
            result = cur.fetchone()
        conn.commit()
    return _row_to_doc(result)


def delete_document(collection: str, doc_id: str, parent: str = "") -> None:
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(
            "DELETE FROM documents WHERE collection = %s AND parent_id = %s AND doc_id = %s",
            (collection, parent, doc_id),
        )
        conn.commit()


def health() -> Dict[str, Any]:
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute("SELECT current_user, current_database(), version()")
        user, db, ver = cur.fetchone()
    return {"user": user, "database": db, "server_version": (ver or "").split("\n")[0]}
