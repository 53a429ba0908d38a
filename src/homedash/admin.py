"""User administration: admin-only account and role management."""

import logging
import time
from typing import Any

from homedash.devices.cache import DeviceCache
from homedash.devices.status import ONLINE_THRESHOLD_SECONDS, system_stats
from homedash.errors import AuthError, AuthorizationError, ValidationError
from homedash.remote.base import IdentityService, RemoteStore
from homedash.session import Principal, Role, SessionStore

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def parse_role(role: str) -> Role:
    try:
        return Role(str(role).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown role {role!r}", field="role") from None


async def ensure_admin(
    identity: IdentityService, store: RemoteStore, email: str, password: str
) -> str:
    """Make sure an admin account exists for email; returns its id.

    Used to seed the first administrator, so it is not admin-gated.
    """
    try:
        account = await identity.create_account(email, password)
    except AuthError as e:
        if e.code != "email-already-in-use":
            raise
        account = await identity.verify_credentials(email, password)

    if not await store.get(f"admins/{account.uid}"):
        created = _now_ms()
        await store.update(
            {
                f"users/{account.uid}": {
                    "email": account.email,
                    "role": Role.admin.value,
                    "created": created,
                    "createdBy": account.uid,
                },
                f"admins/{account.uid}": {
                    "email": account.email,
                    "role": Role.admin.value,
                    "created": created,
                },
            }
        )
        logger.info("Bootstrapped admin %s (uid=%s)", account.email, account.uid)
    return account.uid


class UserAdministration:
    """Create, promote, demote and delete principals.

    Every operation re-derives the caller's role from the store before acting.
    """

    def __init__(
        self,
        identity: IdentityService,
        store: RemoteStore,
        session: SessionStore,
        cache: DeviceCache | None = None,
        online_threshold: int = ONLINE_THRESHOLD_SECONDS,
    ) -> None:
        self.identity = identity
        self.store = store
        self.session = session
        self.cache = cache
        self.online_threshold = online_threshold

    async def _require_admin(self) -> Principal:
        principal = await self.session.refresh_role()
        if principal is None or not principal.is_admin:
            raise AuthorizationError("Admin access required")
        return principal

    async def create_user(self, email: str, password: str, role: str = "user") -> str:
        """Create an account plus its directory record; returns the new id.

        If the account is created but the directory write fails, the account
        is left without a record. No rollback is attempted.
        """
        caller = await self._require_admin()
        email = email.strip()
        if not email or not password:
            raise ValidationError("Please enter both email and password")
        new_role = parse_role(role)

        identity = await self.identity.create_account(email, password)
        created = _now_ms()
        changes: dict[str, Any] = {
            f"users/{identity.uid}": {
                "email": identity.email,
                "role": new_role.value,
                "created": created,
                "createdBy": caller.id,
            }
        }
        if new_role == Role.admin:
            changes[f"admins/{identity.uid}"] = {
                "email": identity.email,
                "role": Role.admin.value,
                "created": created,
            }
        try:
            await self.store.update(changes)
        except Exception:
            logger.error(
                "Account %s (uid=%s) created but its directory record was not written",
                identity.email,
                identity.uid,
            )
            raise
        logger.info("%s created user %s as %s", caller.email, identity.email, new_role)
        return identity.uid

    async def update_user_role(self, uid: str, new_role: str) -> Role:
        """Move a user between roles and return the role written.

        The admin-registry entry and the directory role change in one atomic
        multi-path write.
        """
        caller = await self._require_admin()
        role = parse_role(new_role)
        if uid == caller.id:
            raise ValidationError("You cannot change your own role", field="uid")

        record = await self.store.get(f"users/{uid}")
        admin_entry = await self.store.get(f"admins/{uid}")
        if not isinstance(record, dict) and not admin_entry:
            raise ValidationError(f"Unknown user {uid}", field="uid")
        email = record.get("email") if isinstance(record, dict) else None
        if not email and isinstance(admin_entry, dict):
            email = admin_entry.get("email")

        changes: dict[str, Any] = {f"users/{uid}/role": role.value}
        if role == Role.admin:
            changes[f"admins/{uid}"] = {
                "email": email,
                "role": Role.admin.value,
                "created": _now_ms(),
            }
        else:
            changes[f"admins/{uid}"] = None
        if not isinstance(record, dict):
            # Admin-only accounts get a directory record on their first role change
            changes[f"users/{uid}"] = {"email": email, "role": role.value, "created": _now_ms()}
            del changes[f"users/{uid}/role"]

        await self.store.update(changes)
        logger.info("%s set role of %s to %s", caller.email, email or uid, role)
        return role

    async def delete_user(self, uid: str) -> None:
        """Remove the directory record and admin-registry entry.

        The identity account itself is not revoked.
        """
        caller = await self._require_admin()
        if uid == caller.id:
            raise ValidationError("You cannot delete your own account", field="uid")
        await self.store.update({f"admins/{uid}": None, f"users/{uid}": None})
        logger.info("%s deleted user %s", caller.email, uid)

    async def list_users(self) -> list[dict[str, Any]]:
        """Directory records merged with the admin registry, admin-only accounts included."""
        await self._require_admin()
        users = await self.store.get("users") or {}
        admins = await self.store.get("admins") or {}
        if not isinstance(users, dict):
            users = {}
        if not isinstance(admins, dict):
            admins = {}

        result: list[dict[str, Any]] = []
        for uid, record in users.items():
            if not isinstance(record, dict):
                continue
            is_admin = bool(admins.get(uid))
            result.append(
                {
                    "uid": uid,
                    "email": record.get("email"),
                    "role": Role.admin.value if is_admin else Role.user.value,
                    "created": record.get("created"),
                    "created_by": record.get("createdBy"),
                    "is_admin": is_admin,
                }
            )
        for uid, record in admins.items():
            if uid in users or not isinstance(record, dict):
                continue
            result.append(
                {
                    "uid": uid,
                    "email": record.get("email"),
                    "role": Role.admin.value,
                    "created": record.get("created"),
                    "created_by": None,
                    "is_admin": True,
                }
            )
        result.sort(key=lambda u: (u["email"] or "", u["uid"]))
        return result

    async def system_stats(self) -> dict[str, int]:
        users = await self.list_users()
        devices = self.cache.snapshot() if self.cache else {}
        return system_stats(devices, users, threshold=self.online_threshold)
