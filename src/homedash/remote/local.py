"""Local development backend: keyspace and accounts in SQLite.

Each top-level key (``devices``, ``users``, ``admins``) is stored as one
JSON document. Watchers are notified in-process after every committed
write, so this backend only serves a single application process.
"""

import asyncio
import hashlib
import json
import logging
import re
import secrets
import uuid
from collections.abc import AsyncGenerator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from time import monotonic
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from homedash.errors import AuthError, RemoteError
from homedash.remote.base import Identity, IdentityService, RemoteStore
from homedash.remote.local_models import Account, StoreRoot
from homedash.remote.tree import get_at, overlaps, set_at, split_path

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PBKDF2_ITERATIONS = 120_000
_MIN_PASSWORD_LENGTH = 6
_MAX_FAILED_ATTEMPTS = 5
_LOCKOUT_SECONDS = 300


@dataclass
class _Watcher:
    parts: list[str]
    wakeups: asyncio.Queue[None] = field(default_factory=asyncio.Queue)


class LocalStore(RemoteStore):
    """RemoteStore backed by a SQLite database through SQLModel."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._watchers: list[_Watcher] = []

    def _read(self, parts: list[str]) -> Any:
        with Session(self.engine) as session:
            if not parts:
                rows = session.exec(select(StoreRoot)).all()
                return {row.key: json.loads(row.value) for row in rows} or None
            row = session.get(StoreRoot, parts[0])
            if row is None:
                return None
            return get_at(json.loads(row.value), parts[1:])

    async def get(self, path: str) -> Any:
        try:
            return self._read(split_path(path))
        except SQLAlchemyError as e:
            logger.error("Local store read failed at %s: %s", path, e)
            raise RemoteError(f"Could not read {path}") from e

    async def set(self, path: str, value: Any) -> None:
        await self.update({path: value})

    async def remove(self, path: str) -> None:
        await self.update({path: None})

    async def update(self, changes: Mapping[str, Any]) -> None:
        split = [(split_path(path), value) for path, value in changes.items()]
        if any(not parts for parts, _ in split):
            raise ValueError("Writes to the store root are not allowed")

        try:
            with Session(self.engine) as session:
                roots: dict[str, Any] = {}
                for parts, value in split:
                    key = parts[0]
                    if key not in roots:
                        row = session.get(StoreRoot, key)
                        roots[key] = json.loads(row.value) if row else None
                    # Round-trip through JSON so callers never share objects with the store
                    copied = json.loads(json.dumps(value)) if value is not None else None
                    roots[key] = set_at(roots[key], parts[1:], copied)

                now = datetime.now(UTC)
                for key, doc in roots.items():
                    row = session.get(StoreRoot, key)
                    if doc is None:
                        if row is not None:
                            session.delete(row)
                    elif row is None:
                        session.add(StoreRoot(key=key, value=json.dumps(doc), updated_at=now))
                    else:
                        row.value = json.dumps(doc)
                        row.updated_at = now
                session.commit()
        except SQLAlchemyError as e:
            logger.error("Local store write failed for %s: %s", list(changes), e)
            raise RemoteError("Could not write to the local store") from e

        logger.debug("Wrote %d path(s): %s", len(split), list(changes))
        self._notify([parts for parts, _ in split])

    def _notify(self, changed: list[list[str]]) -> None:
        for watcher in list(self._watchers):
            if any(overlaps(watcher.parts, parts) for parts in changed):
                watcher.wakeups.put_nowait(None)

    async def watch(self, path: str) -> AsyncGenerator[Any, None]:
        watcher = _Watcher(split_path(path))
        self._watchers.append(watcher)
        logger.debug("Watching %s", path or "/")
        try:
            yield await self.get(path)
            while True:
                await watcher.wakeups.get()
                # Several writes may land before the consumer asks again
                while not watcher.wakeups.empty():
                    watcher.wakeups.get_nowait()
                yield await self.get(path)
        finally:
            self._watchers.remove(watcher)
            logger.debug("Stopped watching %s", path or "/")


def _hash_password(password: str, salt: str) -> str:
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt), _PBKDF2_ITERATIONS
    )
    return digest.hex()


def _normalize_email(email: str) -> str:
    email = email.strip().lower()
    if not _EMAIL_RE.match(email):
        raise AuthError("invalid-email")
    return email


class LocalIdentity(IdentityService):
    """Email/password accounts stored as salted PBKDF2 hashes.

    After ``_MAX_FAILED_ATTEMPTS`` wrong passwords in a row an email is locked
    out until a sign-in succeeds or ``_LOCKOUT_SECONDS`` pass without another
    failure. Hashing runs in a worker thread.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        # email -> (consecutive failures, monotonic time of the last one)
        self._failures: dict[str, tuple[int, float]] = {}

    def _locked_out(self, email: str) -> bool:
        count, last_failure = self._failures.get(email, (0, 0.0))
        if count < _MAX_FAILED_ATTEMPTS:
            return False
        if monotonic() - last_failure < _LOCKOUT_SECONDS:
            return True
        logger.info("Lockout for %s expired", email)
        del self._failures[email]
        return False

    def _record_failure(self, email: str) -> None:
        count, _ = self._failures.get(email, (0, 0.0))
        self._failures[email] = (count + 1, monotonic())
        if count + 1 == _MAX_FAILED_ATTEMPTS:
            logger.warning(
                "Too many failed sign-ins for %s, locked for %ds", email, _LOCKOUT_SECONDS
            )

    async def verify_credentials(self, email: str, password: str) -> Identity:
        email = _normalize_email(email)
        if self._locked_out(email):
            raise AuthError("too-many-requests")

        try:
            with Session(self.engine) as session:
                account = session.exec(select(Account).where(Account.email == email)).first()
        except SQLAlchemyError as e:
            raise RemoteError("Identity lookup failed") from e

        if account is None:
            raise AuthError("user-not-found")
        digest = await asyncio.to_thread(_hash_password, password, account.salt)
        if not secrets.compare_digest(digest, account.password_hash):
            self._record_failure(email)
            raise AuthError("wrong-password")

        self._failures.pop(email, None)
        return Identity(uid=account.uid, email=account.email)

    async def create_account(self, email: str, password: str) -> Identity:
        email = _normalize_email(email)
        if len(password) < _MIN_PASSWORD_LENGTH:
            raise AuthError("weak-password")

        salt = secrets.token_hex(16)
        account = Account(
            uid=uuid.uuid4().hex[:28],
            email=email,
            password_hash=await asyncio.to_thread(_hash_password, password, salt),
            salt=salt,
        )
        try:
            with Session(self.engine) as session:
                session.add(account)
                session.commit()
                session.refresh(account)
        except IntegrityError as e:
            raise AuthError("email-already-in-use") from e
        except SQLAlchemyError as e:
            raise RemoteError("Account creation failed") from e

        logger.info("Created local account %s (uid=%s)", email, account.uid)
        return Identity(uid=account.uid, email=account.email)
