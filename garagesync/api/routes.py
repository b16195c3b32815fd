"""API route handlers for the backup server."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from ..sync import InvalidFormat, decode_snapshot

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import JSONResponse, Response

logger = logging.getLogger("garagesync.api.routes")

USER_HEADER = "X-User-Id"
DEFAULT_USER = "default"


def _user_id(request: "Request") -> str:
    return request.headers.get(USER_HEADER, "").strip() or DEFAULT_USER


async def health_handler(request: "Request") -> "JSONResponse":
    """Health check endpoint."""
    from starlette.responses import JSONResponse

    return JSONResponse({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "garagesync-backup",
    })


async def backup_upload_handler(request: "Request") -> "JSONResponse":
    """Store a snapshot as the caller's latest backup."""
    from starlette.responses import JSONResponse

    server = request.app.state.backup_server
    storage = server.storage
    user_id = _user_id(request)
    if not storage.valid_user_id(user_id):
        return JSONResponse({"error": "Invalid user id"}, status_code=400)

    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > server.max_body_bytes:
        return JSONResponse({"error": "Backup too large"}, status_code=413)

    body = await request.body()
    if len(body) > server.max_body_bytes:
        return JSONResponse({"error": "Backup too large"}, status_code=413)

    try:
        text = body.decode("utf-8")
        snapshot = decode_snapshot(text)
    except UnicodeDecodeError:
        return JSONResponse({"error": "Invalid backup data: body is not UTF-8"}, status_code=400)
    except InvalidFormat as e:
        return JSONResponse({"error": f"Invalid backup data: {e}"}, status_code=400)

    try:
        stored_at = await asyncio.to_thread(storage.save, user_id, text)
    except OSError as e:
        logger.exception("Failed to store backup for %s", user_id)
        return JSONResponse({"error": f"Failed to store backup: {e}"}, status_code=500)

    return JSONResponse({
        "success": True,
        "message": f"Backup stored ({snapshot.total_records} records)",
        "timestamp": stored_at.isoformat(),
    })


async def backup_download_handler(request: "Request") -> "Response":
    """Return the caller's latest backup verbatim."""
    from starlette.responses import JSONResponse, Response

    server = request.app.state.backup_server
    storage = server.storage
    user_id = _user_id(request)
    if not storage.valid_user_id(user_id):
        return JSONResponse({"error": "Invalid user id"}, status_code=400)

    try:
        text = await asyncio.to_thread(storage.load, user_id)
    except OSError as e:
        logger.exception("Failed to read backup for %s", user_id)
        return JSONResponse({"error": f"Failed to read backup: {e}"}, status_code=500)

    if text is None:
        return JSONResponse({"error": "No backup found"}, status_code=404)
    return Response(text, media_type="application/json")
