import asyncio
import contextlib
import logging

from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.requests import Request
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from db import init_db, DEBUG
from errors import UniRideError, ValidationError, StateConflict, NotFound, PermissionDenied, StoreUnavailable
from lifecycle import (
    SessionContext,
    create_request,
    accept_request,
    reject_request,
    cancel_request,
    pending_for_driver,
    active_for_passenger,
    matches_for,
)
from matching import filter_schedules, unique_by_owner
from models import Role
from store import SQLStore, row_dict
import profiles

logger = logging.getLogger(__name__)

store = SQLStore()

STATUS_CODES = {
    ValidationError: 400,
    PermissionDenied: 403,
    NotFound: 404,
    StateConflict: 409,
    StoreUnavailable: 503,
}


@contextlib.asynccontextmanager
async def lifespan(app):
    init_db()
    yield


async def uniride_error(request: Request, exc: UniRideError):
    status = next((code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 500)
    return JSONResponse({"error": str(exc)}, status_code=status)


async def _payload(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("body must be JSON")
    if not isinstance(payload, dict):
        raise ValidationError("body must be a JSON object")
    return payload


def _user_id(request: Request) -> int:
    raw = request.headers.get("x-user-id")
    if raw is None:
        raise PermissionDenied("missing X-User-Id header")
    try:
        return int(raw)
    except ValueError:
        raise ValidationError("X-User-Id must be an integer")


def _int_field(payload: dict, key: str) -> int:
    if payload.get(key) is None:
        raise ValidationError(f"missing {key}")
    try:
        return int(payload[key])
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer")


def _context(request: Request) -> SessionContext:
    """Build the acting user's context from the X-User-Id header."""
    profile = profiles.get_profile(_user_id(request))
    if not profile.role:
        raise PermissionDenied("select a role first")
    return SessionContext(user_id=profile.id, role=profile.role, name=profile.full_name)


def _request_result(result):
    out = row_dict(result.request)
    if result.warnings:
        out["warnings"] = [str(w) for w in result.warnings]
    return out


# ---------------------- profiles ----------------------

async def register_profile(request: Request):
    payload = await _payload(request)
    p = profiles.register_profile(
        payload.get("email"),
        payload.get("full_name"),
        phone=payload.get("phone"),
        zone=payload.get("zone"),
    )
    return JSONResponse(row_dict(p), status_code=201)


async def select_role(request: Request):
    payload = await _payload(request)
    p = profiles.select_role(_user_id(request), payload.get("role"))
    return JSONResponse(row_dict(p))


async def register_vehicle(request: Request):
    payload = await _payload(request)
    driver = profiles.get_profile(_user_id(request))
    v = profiles.register_vehicle(driver, payload)
    return JSONResponse(row_dict(v), status_code=201)


# ---------------------- schedules ----------------------

async def create_schedule(request: Request):
    ctx = _context(request)
    payload = await _payload(request)
    payload["owner_id"] = ctx.user_id
    s = store.create_schedule(ctx.role, payload)
    return JSONResponse(row_dict(s), status_code=201)


async def my_schedules(request: Request):
    ctx = _context(request)
    return JSONResponse([row_dict(s) for s in store.list_active_schedules(ctx.role, owner_id=ctx.user_id)])


def _own_schedule(ctx: SessionContext, schedule_id: int):
    s = store.get_schedule(ctx.role, schedule_id)
    if s.owner_id != ctx.user_id:
        raise NotFound("schedule not found")
    return s


async def delete_schedule(request: Request):
    ctx = _context(request)
    sid = int(request.path_params["schedule_id"])
    _own_schedule(ctx, sid)
    store.soft_delete_schedule(ctx.role, sid)
    return JSONResponse({"schedule_id": sid, "active": False})


async def replace_schedule(request: Request):
    ctx = _context(request)
    sid = int(request.path_params["schedule_id"])
    payload = await _payload(request)
    payload["owner_id"] = ctx.user_id
    s = store.replace_schedule(ctx.role, sid, payload)
    return JSONResponse(row_dict(s))


async def search_drivers(request: Request):
    q = request.query_params
    rows = filter_schedules(
        store.list_active_schedules(Role.driver),
        day=q.get("day"),
        zone=q.get("zone"),
        origin=q.get("origin"),
    )
    return JSONResponse([row_dict(s) for s in rows])


async def matches(request: Request):
    ctx = _context(request)
    found = matches_for(store, ctx)
    if request.query_params.get("unique") in ("1", "true"):
        found = unique_by_owner(found)
    return JSONResponse([{"candidate": row_dict(m.candidate), "own": row_dict(m.own)} for m in found])


# ---------------------- trip requests ----------------------

async def new_request(request: Request):
    ctx = _context(request)
    payload = await _payload(request)
    result = create_request(store, ctx, _int_field(payload, "driver_schedule_id"), payload.get("message"))
    return JSONResponse(_request_result(result), status_code=201)


async def accept(request: Request):
    result = accept_request(store, _context(request), int(request.path_params["request_id"]))
    return JSONResponse(_request_result(result))


async def reject(request: Request):
    result = reject_request(store, _context(request), int(request.path_params["request_id"]))
    return JSONResponse(_request_result(result))


async def cancel(request: Request):
    result = cancel_request(store, _context(request), int(request.path_params["request_id"]))
    return JSONResponse(_request_result(result))


async def pending_requests(request: Request):
    ctx = _context(request)
    return JSONResponse([row_dict(r) for r in pending_for_driver(store, ctx.user_id)])


async def active_requests(request: Request):
    ctx = _context(request)
    return JSONResponse([row_dict(r) for r in active_for_passenger(store, ctx.user_id)])


# ---------------------- notifications ----------------------

async def list_notifications(request: Request):
    unread_only = request.query_params.get("all") not in ("1", "true")
    rows = store.list_notifications(_user_id(request), unread_only=unread_only)
    return JSONResponse([row_dict(n) for n in rows])


async def read_notification(request: Request):
    uid = _user_id(request)
    nid = int(request.path_params["notification_id"])
    owned = {n.id for n in store.list_notifications(uid, unread_only=False)}
    if nid not in owned:
        raise NotFound("notification not found")
    n = store.mark_notification_read(nid)
    return JSONResponse(row_dict(n))


async def notifications_ws(websocket: WebSocket):
    user_id = int(websocket.path_params["user_id"])
    claimed = websocket.headers.get("x-user-id")
    try:
        profiles.get_profile(user_id)
    except NotFound:
        logger.info("notification socket refused for unknown user %s", user_id)
        await websocket.close(code=1008)
        return
    if claimed is not None and claimed != str(user_id):
        logger.info("notification socket refused: header user %s asked for %s", claimed, user_id)
        await websocket.close(code=1008)
        return
    # subscribe before accepting so nothing inserted after the handshake is missed
    sub = store.subscribe_inserts("notification", {"user_id": user_id})

    async def forward():
        try:
            async for row in sub:
                await websocket.send_json(row)
        except WebSocketDisconnect:
            return

    async def watch():
        # returns once the client goes away
        while True:
            msg = await websocket.receive()
            if msg["type"] == "websocket.disconnect":
                return

    tasks = []
    try:
        await websocket.accept()
        tasks = [asyncio.ensure_future(forward()), asyncio.ensure_future(watch())]
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for t in tasks:
            t.cancel()
        sub.close()
        logger.debug("notification socket for user %s closed", user_id)


# ---------------------- favorites & contacts ----------------------

async def toggle_favorite(request: Request):
    ctx = _context(request)
    if ctx.role is not Role.passenger:
        raise PermissionDenied("only passengers keep favorites")
    driver_id = int(request.path_params["driver_id"])
    return JSONResponse({"driver_id": driver_id, "favorite": profiles.toggle_favorite(ctx.user_id, driver_id)})


async def favorites(request: Request):
    ctx = _context(request)
    return JSONResponse([row_dict(f) for f in profiles.list_favorites(ctx.user_id)])


async def log_contact(request: Request):
    ctx = _context(request)
    if ctx.role is not Role.passenger:
        raise PermissionDenied("only passengers contact drivers")
    payload = await _payload(request)
    c = profiles.log_contact(ctx.user_id, _int_field(payload, "driver_id"), payload.get("channel", "whatsapp"))
    return JSONResponse(row_dict(c), status_code=201)


async def contacts(request: Request):
    ctx = _context(request)
    return JSONResponse([row_dict(c) for c in profiles.contact_history(ctx.user_id)])


routes = [
    Route("/profiles", register_profile, methods=["POST"]),
    Route("/profiles/role", select_role, methods=["POST"]),
    Route("/vehicles", register_vehicle, methods=["POST"]),
    Route("/schedules", create_schedule, methods=["POST"]),
    Route("/schedules", my_schedules, methods=["GET"]),
    Route("/schedules/{schedule_id:int}", delete_schedule, methods=["DELETE"]),
    Route("/schedules/{schedule_id:int}", replace_schedule, methods=["PUT"]),
    Route("/drivers", search_drivers, methods=["GET"]),
    Route("/matches", matches, methods=["GET"]),
    Route("/requests", new_request, methods=["POST"]),
    Route("/requests/pending", pending_requests, methods=["GET"]),
    Route("/requests/active", active_requests, methods=["GET"]),
    Route("/requests/{request_id:int}/accept", accept, methods=["POST"]),
    Route("/requests/{request_id:int}/reject", reject, methods=["POST"]),
    Route("/requests/{request_id:int}/cancel", cancel, methods=["POST"]),
    Route("/notifications", list_notifications, methods=["GET"]),
    Route("/notifications/{notification_id:int}/read", read_notification, methods=["POST"]),
    Route("/favorites", favorites, methods=["GET"]),
    Route("/favorites/{driver_id:int}", toggle_favorite, methods=["POST"]),
    Route("/contacts", contacts, methods=["GET"]),
    Route("/contacts", log_contact, methods=["POST"]),
    WebSocketRoute("/ws/notifications/{user_id:int}", notifications_ws),
]

app = Starlette(
    debug=DEBUG,
    routes=routes,
    exception_handlers={UniRideError: uniride_error},
    lifespan=lifespan,
)
