"""PostgreSQL persistence using asyncpg.

Every function is a single-statement write or read committed on its own; the
pipeline never spans a transaction across stages.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import asyncpg

from vooli.config import settings
from vooli.models.records import ProductRecord


_pool: asyncpg.Pool | None = None


def _db_available() -> bool:
    """Check if database is configured."""
    return bool(settings.database_url)


async def _get_pool() -> asyncpg.Pool:
    """Get or create the database connection pool."""
    global _pool
    if not _db_available():
        raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.database_pool_min_size,
            max_size=settings.database_pool_max_size,
        )
    return _pool


async def close_pool() -> None:
    """Close the database connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def _row(record: Any) -> dict[str, Any]:
    """Plain dict with UUID columns rendered as strings."""
    return {k: str(v) if isinstance(v, UUID) else v for k, v in dict(record).items()}


async def _fetchrow(query: str, *args: Any) -> dict[str, Any] | None:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        result = await conn.fetchrow(query, *args)
        return _row(result) if result else None


async def _fetch(query: str, *args: Any) -> list[dict[str, Any]]:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        results = await conn.fetch(query, *args)
        return [_row(r) for r in results]


async def _execute(query: str, *args: Any) -> None:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        await conn.execute(query, *args)


# --- Chats ---

async def create_chat(user_id: str, name: str | None = None) -> dict[str, Any]:
    return await _fetchrow(
        """
        INSERT INTO chats (user_id, name)
        VALUES ($1, $2)
        RETURNING id, user_id, name, created_at, updated_at
        """,
        user_id,
        name[:255] if name else None,
    )


async def get_chats(user_id: str) -> list[dict[str, Any]]:
    return await _fetch(
        """
        SELECT id, user_id, name, created_at, updated_at
        FROM chats
        WHERE user_id = $1
        ORDER BY created_at DESC
        """,
        user_id,
    )


async def get_chat(chat_id: str, user_id: str) -> dict[str, Any] | None:
    """Get a chat only if it belongs to `user_id`."""
    return await _fetchrow(
        """
        SELECT id, user_id, name, created_at, updated_at
        FROM chats
        WHERE id = $1 AND user_id = $2
        """,
        chat_id,
        user_id,
    )


# --- Messages ---

async def create_message(chat_id: str, role: str, content: str) -> dict[str, Any]:
    return await _fetchrow(
        """
        INSERT INTO messages (chat_id, role, content)
        VALUES ($1, $2, $3)
        RETURNING id, chat_id, role, content, created_at
        """,
        chat_id,
        role,
        content,
    )


async def update_message_content(message_id: str, content: str) -> None:
    await _execute(
        "UPDATE messages SET content = $1 WHERE id = $2",
        content,
        message_id,
    )


async def get_messages(chat_id: str) -> list[dict[str, Any]]:
    return await _fetch(
        """
        SELECT id, chat_id, role, content, created_at
        FROM messages
        WHERE chat_id = $1
        ORDER BY created_at
        """,
        chat_id,
    )


# --- Sources ---

async def create_source(
    message_id: str, url: str, description: str | None = None
) -> dict[str, Any]:
    return await _fetchrow(
        """
        INSERT INTO sources (message_id, url, description)
        VALUES ($1, $2, $3)
        RETURNING id, message_id, url, description, created_at
        """,
        message_id,
        url,
        description,
    )


async def get_sources(message_id: str) -> list[dict[str, Any]]:
    return await _fetch(
        """
        SELECT id, message_id, url, description, created_at
        FROM sources
        WHERE message_id = $1
        ORDER BY created_at
        """,
        message_id,
    )


# --- Products ---

async def create_product(record: ProductRecord) -> dict[str, Any]:
    if not record.message_id:
        raise ValueError("Product record has no owning message")
    return await _fetchrow(
        """
        INSERT INTO products (message_id, name, description, price, store_name, url, image_url)
        VALUES ($1, $2, $3, $4, $5, $6, $7)
        RETURNING id, message_id, name, description, price, store_name, url, image_url, created_at
        """,
        record.message_id,
        record.name,
        record.description,
        record.price,
        record.store_name,
        record.url,
        record.image_url,
    )


async def get_products(message_id: str) -> list[dict[str, Any]]:
    return await _fetch(
        """
        SELECT id, message_id, name, description, price, store_name, url, image_url, created_at
        FROM products
        WHERE message_id = $1
        ORDER BY created_at
        """,
        message_id,
    )


# --- Runs ---

async def create_run(
    run_id: str,
    chat_id: str,
    access_token: str,
    stage: str,
    message_id: str | None = None,
) -> dict[str, Any]:
    return await _fetchrow(
        """
        INSERT INTO runs (id, chat_id, message_id, access_token, stage)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING id, chat_id, message_id, access_token, stage, outcome, created_at, updated_at
        """,
        run_id,
        chat_id,
        message_id,
        access_token,
        stage,
    )


async def update_run(
    run_id: str,
    *,
    stage: str,
    outcome: str | None = None,
    message_id: str | None = None,
) -> None:
    await _execute(
        """
        UPDATE runs
        SET stage = $1,
            outcome = COALESCE($2, outcome),
            message_id = COALESCE($3, message_id),
            updated_at = now()
        WHERE id = $4
        """,
        stage,
        outcome,
        message_id,
        run_id,
    )
