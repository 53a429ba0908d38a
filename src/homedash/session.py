"""Session store: the signed-in principal and its server-derived role."""

import asyncio
import enum
import logging
from dataclasses import dataclass

from homedash.errors import ValidationError
from homedash.events import Channel, DashboardEvent, PrincipalChanged, Subscription
from homedash.remote.base import IdentityService, RemoteStore

logger = logging.getLogger(__name__)


class Role(enum.StrEnum):
    user = "user"
    admin = "admin"


@dataclass(frozen=True)
class Principal:
    """An authenticated identity with a resolved role."""

    id: str
    email: str
    role: Role = Role.user

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin


async def resolve_role(store: RemoteStore, uid: str) -> Role:
    """Look the role up in the admin registry, then the user directory.

    Any lookup failure resolves to ``user``: errors never grant privileges.
    """
    try:
        if await store.get(f"admins/{uid}"):
            return Role.admin
        role = await store.get(f"users/{uid}/role")
    except Exception:
        logger.exception("Role lookup failed for %s, falling back to user", uid)
        return Role.user
    return Role.admin if role == Role.admin.value else Role.user


class SessionStore:
    """Holds who is asking. One instance per signed-in browser session."""

    def __init__(
        self,
        identity: IdentityService,
        store: RemoteStore,
        events: Channel[DashboardEvent] | None = None,
        role_recheck_interval: int = 0,
    ) -> None:
        self.identity = identity
        self.store = store
        self.events: Channel[DashboardEvent] = events or Channel()
        self.role_recheck_interval = role_recheck_interval
        self._principal: Principal | None = None
        self._recheck_task: asyncio.Task[None] | None = None

    def current_principal(self) -> Principal | None:
        return self._principal

    def on_change(self) -> Subscription[DashboardEvent]:
        """Subscribe to principal transitions (and whatever else shares the channel)."""
        return self.events.subscribe()

    def _transition(self, principal: Principal | None) -> None:
        previous = self._principal
        self._principal = principal
        if previous != principal:
            self.events.publish(PrincipalChanged(previous=previous, current=principal))

    async def sign_in(self, email: str, password: str) -> Principal:
        """Verify credentials and resolve the role before returning.

        Raises AuthError on bad credentials and ValidationError on empty input.
        """
        email = email.strip()
        if not email:
            raise ValidationError("Email is required", field="email")
        if not password:
            raise ValidationError("Password is required", field="password")

        identity = await self.identity.verify_credentials(email, password)
        role = await resolve_role(self.store, identity.uid)
        principal = Principal(id=identity.uid, email=identity.email.lower(), role=role)
        self._transition(principal)
        self._start_recheck()
        logger.info("User signed in: %s (%s)", principal.email, principal.role)
        return principal

    async def sign_out(self) -> None:
        await self._stop_recheck()
        if self._principal is not None:
            logger.info("User signed out: %s", self._principal.email)
        self._transition(None)

    async def refresh_role(self) -> Principal | None:
        """Re-derive the role from the store; publishes a change if it moved."""
        principal = self._principal
        if principal is None:
            return None
        role = await resolve_role(self.store, principal.id)
        # The session may have ended while the lookup was in flight
        if self._principal is None or self._principal.id != principal.id:
            return self._principal
        if role != principal.role:
            logger.info("Role for %s changed: %s -> %s", principal.email, principal.role, role)
            self._transition(Principal(id=principal.id, email=principal.email, role=role))
        return self._principal

    def _start_recheck(self) -> None:
        if self.role_recheck_interval <= 0 or self._recheck_task is not None:
            return
        self._recheck_task = asyncio.create_task(self._recheck_loop())

    async def _stop_recheck(self) -> None:
        if self._recheck_task:
            self._recheck_task.cancel()
            try:
                await self._recheck_task
            except asyncio.CancelledError:
                pass
            self._recheck_task = None

    async def _recheck_loop(self) -> None:
        while True:
            await asyncio.sleep(self.role_recheck_interval)
            try:
                await self.refresh_role()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Background role re-check failed")
