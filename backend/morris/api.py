"""
REST: вход, профиль, статистика, лидерборд и история комнат.
"""
import logging
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from .constants import AVATAR_URL_TEMPLATE
from .server import GameServer

logger = logging.getLogger(__name__)

router = APIRouter()

MIN_USERNAME_LENGTH = 3


class LoginRequest(BaseModel):
    firebaseUid: str | None = None
    email: str | None = None
    displayName: str | None = None
    photoURL: str | None = None


class UsernameRequest(BaseModel):
    username: str | None = None


class SetupRequest(BaseModel):
    userId: str | None = None
    username: str | None = None


class StatsRequest(BaseModel):
    userId: str | None = None


def _server(request: Request) -> GameServer:
    return request.app.state.game_server


def _check_username(username: str | None) -> str:
    if not username or len(username) < MIN_USERNAME_LENGTH:
        raise HTTPException(status_code=400, detail="Username must be at least 3 characters")
    return username


@router.post("/api/auth/login")
async def login(body: LoginRequest, request: Request):
    if not body.firebaseUid or not body.email or not body.displayName:
        raise HTTPException(status_code=400, detail="Missing required fields")
    logger.info("Login attempt: %s", body.email)
    return await _server(request).gateway.call(
        "login", body.firebaseUid, body.email, body.displayName, body.photoURL
    )


@router.get("/api/users/{firebase_uid}")
async def get_user(firebase_uid: str, request: Request):
    user = await _server(request).gateway.call("get_user_by_firebase_uid", firebase_uid)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.put("/api/users/{user_id}/username")
async def update_username(user_id: str, body: UsernameRequest, request: Request):
    username = _check_username(body.username)
    if not await _server(request).gateway.call("update_profile", user_id, username):
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Username updated for %s", user_id)
    return {"success": True, "username": username}


@router.post("/api/user/setup")
async def setup_user(body: SetupRequest, request: Request):
    if not body.userId or not body.username:
        raise HTTPException(status_code=400, detail="Missing userId or username")
    username = _check_username(body.username)
    gateway = _server(request).gateway
    photo_url = AVATAR_URL_TEMPLATE.format(seed=quote(username, safe=""))
    if not await gateway.call("update_profile", body.userId, username, photo_url):
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User setup completed: %s", body.userId)
    return {"success": True, "user": await gateway.call("get_user", body.userId)}


async def _record_result(body: StatsRequest, request: Request, won: bool):
    if not body.userId:
        raise HTTPException(status_code=400, detail="User ID is required")
    await _server(request).gateway.call("update_user_stats", body.userId, won)
    label = "Win" if won else "Lost"
    return {"success": True, "message": f"{label} stats updated"}


@router.post("/api/update_win")
async def update_win(body: StatsRequest, request: Request):
    return await _record_result(body, request, won=True)


@router.post("/api/update_lost")
async def update_lost(body: StatsRequest, request: Request):
    return await _record_result(body, request, won=False)


@router.get("/api/leaderboard")
async def leaderboard(request: Request):
    return await _server(request).gateway.call("leaderboard")


@router.get("/room/{room_id}/history")
async def room_history(room_id: str, request: Request):
    moves = await _server(request).gateway.call("room_history", room_id.upper())
    return {"roomId": room_id.upper(), "moves": moves}


@router.get("/stats")
async def stats(request: Request):
    return await _server(request).gateway.call("game_stats")


@router.get("/rooms")
def live_rooms(request: Request):
    return {"rooms": [room.summary() for room in _server(request).rooms.rooms()]}
