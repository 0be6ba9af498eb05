"""
Shared fixtures.

- In-memory SQLite (aiosqlite + StaticPool) created fresh per test, with
  get_db overridden so the API runs against it.
- In-memory fake stores with call counters for service-level tests; they
  yield to the event loop between steps so concurrent verifications
  really interleave.
"""
from __future__ import annotations

import asyncio
import os
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Optional

# Settings are read at import time: configure before importing the app.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_ENV"] = "test"
for _key in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER"):
    os.environ.pop(_key, None)

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from app.core.database import Base, get_db
from app.core.exceptions import StoreError
from app.main import app
from app.models.otp_verification import OtpPurpose, OtpVerification
from app.models.user import User, UserRole


PHONE = "+15551230000"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────── database ────────────────────────────

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    async for ac in _api_client(session_factory):
        yield ac


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    # one connection per session, so concurrent requests really contend
    # on the database instead of sharing a single in-memory connection
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'otp.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def file_client(file_session_factory):
    async for ac in _api_client(file_session_factory):
        yield ac


async def _api_client(factory):
    async def _get_db():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def create_user(session_factory):
    async def _create(**overrides) -> User:
        values = {
            "email": "player@quickcourt.test",
            "full_name": "Court Player",
            "role": UserRole.CUSTOMER,
            "phone": PHONE,
            "phone_verified": False,
        }
        values.update(overrides)
        user = User(**values)
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _create


@pytest.fixture
def create_otp(session_factory):
    async def _create(**overrides) -> OtpVerification:
        record = otp_record(**overrides)
        async with session_factory() as session:
            session.add(record)
            await session.commit()
        return record

    return _create


@pytest.fixture
def load_otp(session_factory):
    async def _load(record_id: str) -> OtpVerification:
        async with session_factory() as session:
            return await session.get(OtpVerification, record_id)

    return _load


@pytest.fixture
def load_user(session_factory):
    async def _load(user_id: str) -> User:
        async with session_factory() as session:
            return await session.get(User, user_id)

    return _load


# ──────────────────────────── fakes ────────────────────────────

def otp_record(**overrides) -> OtpVerification:
    now = utcnow()
    values = {
        "phone_number": PHONE,
        "otp_code": "482913",
        "purpose": OtpPurpose.PHONE_VERIFICATION,
        "is_verified": False,
        "verified_at": None,
        "attempts": 0,
        "max_attempts": 3,
        "expires_at": now + timedelta(minutes=5),
        "created_at": now,
        "user_id": None,
    }
    values.update(overrides)
    record = OtpVerification(**values)
    if record.id is None:
        # column default only fires on flush; fakes never flush
        record.id = str(uuid.uuid4())
    return record


class FakeOtpStore:
    def __init__(self, records=()):
        self.records: list[OtpVerification] = list(records)
        self.calls: Counter = Counter()
        self.fail_on: set[str] = set()

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        await asyncio.sleep(0)
        if name in self.fail_on:
            raise StoreError(f"{name} unavailable")

    def get(self, record_id: str) -> Optional[OtpVerification]:
        return next((r for r in self.records if r.id == record_id), None)

    async def find_matching(self, phone_number, otp_code, purpose, *, now, max_attempts):
        await self._enter("find_matching")
        matches = [
            r for r in self.records
            if r.phone_number == phone_number
            and r.otp_code == otp_code
            and r.purpose == purpose
            and not r.is_verified
            and r.expires_at > now
            and r.attempts < max_attempts
        ]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        return matches[0] if matches else None

    async def increment_attempts(self, phone_number, otp_code, purpose, *, now, max_attempts):
        await self._enter("increment_attempts")
        touched = 0
        for r in self.records:
            if r.phone_number != phone_number or r.purpose != purpose or r.attempts >= max_attempts:
                continue
            live = not r.is_verified and r.expires_at > now
            if live or r.otp_code == otp_code:
                r.attempts += 1
                touched += 1
        return touched

    async def mark_verified(self, record_id, *, now, max_attempts):
        await self._enter("mark_verified")
        # check-and-set with no await in between: atomic on the event loop
        record = self.get(record_id)
        if (
            record is None
            or record.is_verified
            or record.attempts >= max_attempts
            or record.expires_at <= now
        ):
            return False
        record.is_verified = True
        record.verified_at = now
        return True

    async def count_recent(self, phone_number, *, since):
        await self._enter("count_recent")
        return sum(1 for r in self.records if r.phone_number == phone_number and r.created_at >= since)

    async def create(self, record):
        await self._enter("create")
        self.records.append(record)
        return record

    async def delete(self, record_id):
        await self._enter("delete")
        self.records = [r for r in self.records if r.id != record_id]

    async def delete_expired(self, *, older_than):
        await self._enter("delete_expired")
        keep = [
            r for r in self.records
            if r.expires_at >= older_than
            and not (r.is_verified and r.verified_at is not None and r.verified_at < older_than)
        ]
        purged = len(self.records) - len(keep)
        self.records = keep
        return purged


class FakeUserStore:
    def __init__(self, users=()):
        self.users: dict[str, User] = {u.id: u for u in users}
        self.calls: Counter = Counter()
        self.fail_on: set[str] = set()

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        await asyncio.sleep(0)
        if name in self.fail_on:
            raise StoreError(f"{name} unavailable")

    async def mark_phone_verified(self, user_id):
        await self._enter("mark_phone_verified")
        if user_id in self.users:
            self.users[user_id].phone_verified = True

    async def find_by_phone(self, phone):
        await self._enter("find_by_phone")
        return next((u for u in self.users.values() if u.phone == phone), None)

    async def touch_last_otp_sent(self, user_id, *, when):
        await self._enter("touch_last_otp_sent")
        if user_id in self.users:
            self.users[user_id].last_otp_sent = when


@pytest.fixture
def make_record():
    return otp_record


@pytest.fixture
def otp_store():
    return FakeOtpStore()


@pytest.fixture
def user_store():
    return FakeUserStore()
