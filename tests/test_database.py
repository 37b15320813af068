"""
tests/test_database.py
Tests for engine lifecycle, transactional scope and the query helpers.
"""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from config import database
from config.database import (
    close_db,
    get_engine,
    get_session_factory,
    query,
    query_one,
    session_scope,
    transaction,
)
from shared.models.models import User, UserRole


def _user(uid: str, email: str) -> User:
    return User(id=uid, email=email, first_name="T", last_name="U", role=UserRole.RIDER)


@pytest.mark.asyncio
async def test_accessors_fail_before_init():
    await close_db()
    with pytest.raises(RuntimeError, match="Database not initialized"):
        get_engine()
    with pytest.raises(RuntimeError, match="Database not initialized"):
        get_session_factory()


@pytest.mark.asyncio
async def test_init_is_idempotent(db):
    assert await database.init_db() is db
    assert get_engine() is db


@pytest.mark.asyncio
async def test_session_scope_commits(db):
    async with session_scope() as session:
        session.add(_user("u1", "u1@example.com"))

    async with session_scope() as session:
        rows = await query(session, select(User).where(User.id == "u1"))
    assert [u.email for u in rows] == ["u1@example.com"]


@pytest.mark.asyncio
async def test_session_scope_rolls_back_on_error(db):
    with pytest.raises(ValueError):
        async with session_scope() as session:
            session.add(_user("u2", "u2@example.com"))
            await session.flush()
            raise ValueError("abort")

    async with session_scope() as session:
        assert await query_one(session, select(User).where(User.id == "u2")) is None


@pytest.mark.asyncio
async def test_database_errors_propagate_and_roll_back(db):
    async with session_scope() as session:
        session.add(_user("u3", "dup@example.com"))

    with pytest.raises(IntegrityError):
        async with session_scope() as session:
            session.add(_user("u4", "other@example.com"))
            await session.flush()
            session.add(_user("u5", "dup@example.com"))
            await session.flush()

    async with session_scope() as session:
        ids = await query(session, select(User.id).order_by(User.id))
    assert ids == ["u3"]


@pytest.mark.asyncio
async def test_raw_sql_uses_bound_parameters(db):
    async with session_scope() as session:
        session.add(_user("u6", "u6@example.com"))

    hostile = "u6' OR '1'='1"
    async with session_scope() as session:
        rows = await query(session, "SELECT id, email FROM users WHERE id = :id", {"id": hostile})
        match = await query(session, "SELECT id, email FROM users WHERE id = :id", {"id": "u6"})

    assert rows == []
    assert match[0]["email"] == "u6@example.com"


@pytest.mark.asyncio
async def test_transaction_returns_callback_result(db):
    async def register(session):
        session.add(_user("u7", "u7@example.com"))
        return "done"

    assert await transaction(register) == "done"
    async with session_scope() as session:
        assert await query_one(session, select(User.email).where(User.id == "u7")) == "u7@example.com"
