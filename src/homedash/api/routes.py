"""REST API endpoints."""

import json
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from homedash.config import Settings, save_config
from homedash.admin import parse_role
from homedash.dashboard import Dashboard, DashboardRegistry
from homedash.errors import AuthorizationError
from homedash.session import Principal

router = APIRouter(prefix="/api")


# Request models
class SignInRequest(BaseModel):
    email: str
    password: str


class BrightnessRequest(BaseModel):
    brightness: int | float | str


class CreateUserRequest(BaseModel):
    email: str
    password: str
    role: str = "user"


class UpdateRoleRequest(BaseModel):
    role: str


class SetupRequest(BaseModel):
    store_mode: str = "firebase"
    firebase_api_key: str | None = None
    firebase_database_url: str | None = None
    firebase_project_id: str | None = None
    firebase_credentials_path: str | None = None
    firebase_credentials_base64: str | None = None


def _principal_json(principal: Principal) -> dict[str, Any]:
    return {
        "id": principal.id,
        "email": principal.email,
        "role": principal.role.value,
        "is_admin": principal.is_admin,
    }


def get_config(request: Request) -> Settings:
    return request.app.state.config


def get_registry(request: Request) -> DashboardRegistry:
    registry = getattr(request.app.state, "dashboards", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Backend not configured")
    return registry


def _session_token(request: Request, cfg: Settings) -> str | None:
    return request.cookies.get(cfg.session_cookie_name)


def get_dashboard(
    request: Request,
    registry: DashboardRegistry = Depends(get_registry),
    cfg: Settings = Depends(get_config),
) -> Dashboard:
    token = _session_token(request, cfg)
    dashboard = registry.get(token) if token else None
    if dashboard is None or dashboard.principal is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return dashboard


# --- Session ---


@router.post("/session")
async def sign_in(
    request: Request,
    body: SignInRequest,
    response: Response,
    registry: DashboardRegistry = Depends(get_registry),
    cfg: Settings = Depends(get_config),
) -> dict[str, Any]:
    previous = _session_token(request, cfg)
    if previous:
        await registry.close(previous)
    token, principal = await registry.open(body.email, body.password)
    response.set_cookie(cfg.session_cookie_name, token, httponly=True, samesite="lax")
    return _principal_json(principal)


@router.get("/session")
def current_session(dashboard: Dashboard = Depends(get_dashboard)) -> dict[str, Any]:
    return _principal_json(dashboard.principal)  # type: ignore[arg-type]


@router.delete("/session")
async def sign_out(
    request: Request,
    response: Response,
    registry: DashboardRegistry = Depends(get_registry),
    cfg: Settings = Depends(get_config),
) -> dict[str, str]:
    token = _session_token(request, cfg)
    if token:
        await registry.close(token)
    response.delete_cookie(cfg.session_cookie_name)
    return {"status": "signed_out"}


# --- Devices ---


@router.get("/devices")
def list_devices(dashboard: Dashboard = Depends(get_dashboard)) -> dict[str, Any]:
    return dashboard.view_payload()


# Literal path must come before {device_id} parametric path
@router.get("/devices/stream")
async def stream_devices(dashboard: Dashboard = Depends(get_dashboard)) -> StreamingResponse:
    async def _events() -> AsyncIterator[str]:
        async for payload in dashboard.stream_views():
            yield f"data: {json.dumps(payload)}\n\n"

    return StreamingResponse(_events(), media_type="text/event-stream")


@router.get("/devices/{device_id}")
def device_detail(device_id: str, dashboard: Dashboard = Depends(get_dashboard)) -> dict[str, Any]:
    device = dashboard.access_view().get(device_id)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return dashboard.describe(device)


@router.post("/devices/{device_id}/relays/{relay_index}/toggle")
async def toggle_relay(
    device_id: str,
    relay_index: int,
    dashboard: Dashboard = Depends(get_dashboard),
) -> dict[str, Any]:
    state = await dashboard.commands.toggle_relay(device_id, relay_index)
    return {"device_id": device_id, "relay": relay_index, "state": state}


@router.put("/devices/{device_id}/brightness")
async def set_brightness(
    device_id: str,
    request: BrightnessRequest,
    dashboard: Dashboard = Depends(get_dashboard),
) -> dict[str, Any]:
    brightness = await dashboard.commands.set_brightness(device_id, request.brightness)
    return {"device_id": device_id, "brightness": brightness}


# --- User administration ---


@router.get("/admin/users")
async def list_users(dashboard: Dashboard = Depends(get_dashboard)) -> list[dict[str, Any]]:
    return await dashboard.admin.list_users()


@router.post("/admin/users", status_code=201)
async def create_user(
    request: CreateUserRequest,
    dashboard: Dashboard = Depends(get_dashboard),
) -> dict[str, str]:
    uid = await dashboard.admin.create_user(request.email, request.password, request.role)
    return {"uid": uid, "email": request.email, "role": parse_role(request.role).value}


@router.patch("/admin/users/{uid}")
async def update_user_role(
    uid: str,
    request: UpdateRoleRequest,
    dashboard: Dashboard = Depends(get_dashboard),
) -> dict[str, str]:
    role = await dashboard.admin.update_user_role(uid, request.role)
    return {"uid": uid, "role": role.value}


@router.delete("/admin/users/{uid}")
async def delete_user(uid: str, dashboard: Dashboard = Depends(get_dashboard)) -> dict[str, str]:
    await dashboard.admin.delete_user(uid)
    return {"status": "deleted"}


@router.get("/admin/stats")
async def system_stats(dashboard: Dashboard = Depends(get_dashboard)) -> dict[str, int]:
    return await dashboard.admin.system_stats()


# --- Setup ---


@router.get("/setup")
def setup_status(cfg: Settings = Depends(get_config)) -> dict[str, Any]:
    return {
        "store_mode": cfg.store_mode,
        "configured": cfg.is_configured(),
        "firebase_database_url": cfg.firebase_database_url,
        "firebase_project_id": cfg.firebase_project_id,
    }


@router.post("/setup")
async def save_setup(
    request: Request,
    body: SetupRequest,
    cfg: Settings = Depends(get_config),
) -> dict[str, Any]:
    from homedash.main import restart_backend

    # Open while nothing is configured; afterwards only an admin may change it
    if cfg.is_configured():
        dashboard = get_dashboard(request, get_registry(request), cfg)
        principal = await dashboard.session.refresh_role()
        if principal is None or not principal.is_admin:
            raise AuthorizationError("Admin access required")

    save_config({k: v for k, v in body.model_dump().items() if v is not None})
    await restart_backend(request.app)
    new_cfg: Settings = request.app.state.config
    return {"store_mode": new_cfg.store_mode, "configured": new_cfg.is_configured()}
