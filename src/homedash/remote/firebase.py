"""Firebase backend: Realtime Database via firebase-admin, sign-in via the Auth REST API."""

import asyncio
import base64
import copy
import json
import logging
from collections.abc import AsyncGenerator, Mapping
from typing import Any

import firebase_admin
import httpx
from firebase_admin import credentials, db
from firebase_admin.exceptions import FirebaseError

from homedash.config import Settings
from homedash.errors import AuthError, RemoteError
from homedash.remote.base import Identity, IdentityService, RemoteStore
from homedash.remote.tree import set_at, split_path

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

# Auth REST error codes -> dashboard AuthError codes
_AUTH_ERROR_CODES = {
    "EMAIL_NOT_FOUND": "user-not-found",
    "USER_DISABLED": "user-not-found",
    "INVALID_PASSWORD": "wrong-password",
    "INVALID_LOGIN_CREDENTIALS": "wrong-password",
    "INVALID_EMAIL": "invalid-email",
    "MISSING_EMAIL": "invalid-email",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "too-many-requests",
    "EMAIL_EXISTS": "email-already-in-use",
    "WEAK_PASSWORD": "weak-password",
}


def init_firebase(cfg: Settings) -> firebase_admin.App:
    """Initialize (once) and return the default firebase-admin app."""
    if firebase_admin._apps:
        return firebase_admin.get_app()

    if cfg.firebase_credentials_base64:
        cred_dict = json.loads(base64.b64decode(cfg.firebase_credentials_base64).decode("utf-8"))
        cred = credentials.Certificate(cred_dict)
    elif cfg.firebase_credentials_path:
        cred = credentials.Certificate(str(cfg.firebase_credentials_path))
    else:
        raise RuntimeError("Firebase credentials not configured")

    app = firebase_admin.initialize_app(
        cred,
        {
            "databaseURL": cfg.firebase_database_url,
            "projectId": cfg.firebase_project_id,
        },
    )
    logger.info("Firebase initialized for project %s", cfg.firebase_project_id)
    return app


def apply_event(tree: Any, event_type: str, path: str, data: Any) -> Any:
    """Fold one streamed database event into a local copy of the watched subtree."""
    parts = split_path(path)
    if event_type == "put":
        return set_at(tree, parts, copy.deepcopy(data))
    if event_type == "patch" and isinstance(data, dict):
        for key, value in data.items():
            tree = set_at(tree, parts + split_path(key), copy.deepcopy(value))
        return tree
    logger.debug("Ignoring database event %s at %s", event_type, path)
    return tree


class FirebaseStore(RemoteStore):
    """RemoteStore over the Firebase Realtime Database.

    firebase-admin is synchronous, so every call runs in a worker thread.
    """

    def __init__(self, app: firebase_admin.App | None = None) -> None:
        self.app = app

    def _ref(self, path: str) -> db.Reference:
        return db.reference("/" + "/".join(split_path(path)), app=self.app)

    async def get(self, path: str) -> Any:
        try:
            return await asyncio.to_thread(self._ref(path).get)
        except FirebaseError as e:
            logger.error("Firebase get error at %s: %s", path, e)
            raise RemoteError(f"Could not read {path}") from e

    async def set(self, path: str, value: Any) -> None:
        try:
            await asyncio.to_thread(self._ref(path).set, value)
            logger.debug("Data set at path: %s", path)
        except FirebaseError as e:
            logger.error("Firebase set error at %s: %s", path, e)
            raise RemoteError(f"Could not write {path}") from e

    async def remove(self, path: str) -> None:
        try:
            await asyncio.to_thread(self._ref(path).delete)
            logger.debug("Data deleted at path: %s", path)
        except FirebaseError as e:
            logger.error("Firebase delete error at %s: %s", path, e)
            raise RemoteError(f"Could not delete {path}") from e

    async def update(self, changes: Mapping[str, Any]) -> None:
        # A multi-location update against the root is applied atomically
        payload = {"/".join(split_path(path)): value for path, value in changes.items()}
        try:
            await asyncio.to_thread(self._ref("").update, payload)
            logger.debug("Data updated at paths: %s", list(payload))
        except FirebaseError as e:
            logger.error("Firebase update error at %s: %s", list(payload), e)
            raise RemoteError("Could not apply update") from e

    async def watch(self, path: str) -> AsyncGenerator[Any, None]:
        loop = asyncio.get_running_loop()
        events: asyncio.Queue[tuple[str, str, Any]] = asyncio.Queue()

        def _on_event(event: db.Event) -> None:
            # Called on the listener thread
            loop.call_soon_threadsafe(
                events.put_nowait, (event.event_type, event.path, event.data)
            )

        try:
            registration = await asyncio.to_thread(self._ref(path).listen, _on_event)
        except FirebaseError as e:
            logger.error("Firebase listen error at %s: %s", path, e)
            raise RemoteError(f"Could not subscribe to {path}") from e

        logger.info("Listening to %s", path or "/")
        tree: Any = None
        try:
            while True:
                tree = apply_event(tree, *(await events.get()))
                while not events.empty():
                    tree = apply_event(tree, *events.get_nowait())
                yield copy.deepcopy(tree)
        finally:
            await asyncio.to_thread(registration.close)
            logger.info("Stopped listening to %s", path or "/")


class FirebaseIdentity(IdentityService):
    """Email/password sign-in and sign-up through the Firebase Auth REST API."""

    def __init__(self, api_key: str, base_url: str = IDENTITY_TOOLKIT_URL) -> None:
        self.api_key = api_key
        self.base_url = base_url

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=10.0) as client:
                resp = await client.post(
                    f"/accounts:{endpoint}", params={"key": self.api_key}, json=payload
                )
        except httpx.HTTPError as e:
            logger.warning("Identity service unreachable: %s", e)
            raise RemoteError("Identity service unreachable") from e

        if resp.status_code == 400:
            raise self._auth_error(resp)
        if not resp.is_success:
            logger.warning("Identity service returned HTTP %d", resp.status_code)
            raise RemoteError(f"Identity service returned HTTP {resp.status_code}")
        return resp.json()

    @staticmethod
    def _auth_error(resp: httpx.Response) -> AuthError:
        try:
            message = resp.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            return AuthError("unknown", "Sign-in failed.")
        # e.g. "WEAK_PASSWORD : Password should be at least 6 characters"
        raw_code = message.split(" ")[0].strip()
        code = _AUTH_ERROR_CODES.get(raw_code)
        if code is None:
            return AuthError(raw_code.lower(), message)
        return AuthError(code)

    async def verify_credentials(self, email: str, password: str) -> Identity:
        data = await self._post(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return Identity(uid=data["localId"], email=data["email"], id_token=data.get("idToken"))

    async def create_account(self, email: str, password: str) -> Identity:
        data = await self._post(
            "signUp",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        logger.info("Created Firebase account %s (uid=%s)", data["email"], data["localId"])
        return Identity(uid=data["localId"], email=data["email"], id_token=data.get("idToken"))
