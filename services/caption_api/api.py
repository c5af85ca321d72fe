"""FastAPI service exposing caption generation, history, uploads and quota."""
from fastapi import FastAPI, Query, HTTPException, Depends, File, UploadFile, Form, Header, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from typing import Dict, Optional, Any
from datetime import datetime, timezone
import logging
import os
import time

import aiohttp

from services.caption_config import build_config
from services.caption_service import CaptionService, build_caption_service, run_blocking
from services.exceptions import (
    CaptionBotError,
    ImageDownloadError,
    OwnershipError,
    QuotaExceededError,
    RecordNotFoundError,
    StorageError,
    ValidationError,
)
from services.quota_tracker import QuotaStatus

logger = logging.getLogger(__name__)

app = FastAPI(title="Caption Bot API", version="1.0.0")

# Global service instance (initialized on startup, or injected by the launcher)
service: Optional[CaptionService] = None
started_at = time.time()

# Configuration (read from environment variables with defaults, same keys as the launcher)
CONFIG: Dict[str, Any] = build_config()


def configure(config: Dict[str, Any]):
    """Override default configuration.

    Args:
        config: Configuration dictionary
    """
    CONFIG.update(config)


def set_service(shared: CaptionService):
    """Use a service built elsewhere (the launcher shares one with the Slack agent)."""
    global service
    service = shared


def get_service() -> CaptionService:
    if service is None:
        raise HTTPException(status_code=503, detail="Caption service not initialized")
    return service


def require_admin(x_admin_token: Optional[str] = Header(None)):
    token = CONFIG.get("admin_token", "")
    if not token:
        raise HTTPException(status_code=503, detail="Admin API disabled (CAPTION_ADMIN_TOKEN not set)")
    if x_admin_token != token:
        raise HTTPException(status_code=403, detail="Invalid admin token")


async def _send_startup_notification() -> None:
    """Send a startup notification if NTFY_TOPIC is configured."""
    notification = CONFIG.get("notification", {})
    topic = (notification.get("topic") or "").strip()
    if not topic:
        return

    url = (notification.get("url") or "https://ntfy.sh").rstrip("/")
    try:
        async with aiohttp.ClientSession() as session:
            await session.post(
                f"{url}/{topic}",
                headers={"Title": "Caption Bot API", "Priority": "3"},
                data="Caption API started and ready",
                timeout=aiohttp.ClientTimeout(total=10),
            )
    except Exception as e:
        logger.warning(f"Startup notification failed: {e}")


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global service

    if service is None:
        service = build_caption_service(CONFIG)
    logger.info("Caption API started")

    await _send_startup_notification()


# ======================================================================
# Error mapping
# ======================================================================


def _error(status_code: int, error: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "message": message, **extra},
    )


@app.exception_handler(QuotaExceededError)
async def quota_exceeded_handler(request: Request, exc: QuotaExceededError):
    return _error(429, "Rate limit exceeded", str(exc), rate_limit=_rate_limit(exc.status))


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError):
    return _error(400, "Invalid request", str(exc))


@app.exception_handler(ImageDownloadError)
async def download_handler(request: Request, exc: ImageDownloadError):
    return _error(400, "Image download failed", str(exc))


@app.exception_handler(OwnershipError)
async def ownership_handler(request: Request, exc: OwnershipError):
    return _error(403, "Unauthorized", str(exc))


@app.exception_handler(RecordNotFoundError)
async def not_found_handler(request: Request, exc: RecordNotFoundError):
    return _error(404, "Not found", str(exc))


@app.exception_handler(StorageError)
async def storage_handler(request: Request, exc: StorageError):
    logger.error(f"Storage failure on {request.url.path}: {exc}")
    return _error(500, "Internal server error", "Storage is unavailable. Please try again.")


@app.exception_handler(CaptionBotError)
async def caption_error_handler(request: Request, exc: CaptionBotError):
    logger.error(f"Unhandled caption error on {request.url.path}: {exc}")
    return _error(500, "Internal server error", str(exc))


def _rate_limit(status: QuotaStatus) -> Dict[str, Any]:
    return {
        "remaining": status.remaining,
        "limit": status.limit,
        "used": status.used,
        "reset_at": status.reset_at.isoformat(),
        "whitelisted": status.whitelisted,
    }


# ======================================================================
# Health
# ======================================================================


@app.get("/")
async def root():
    """Root endpoint for health checks."""
    return {"status": "running", "service": "Caption Bot API"}


@app.get("/api/health")
async def health():
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.time() - started_at, 1),
        "version": app.version,
    }


@app.get("/api/health/detailed")
async def health_detailed(svc: CaptionService = Depends(get_service)):
    """Health check with per-component status."""
    components = await run_blocking(svc.health)
    return JSONResponse({
        "status": "OK" if all(components.values()) else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.time() - started_at, 1),
        "services": {name: "connected" if ok else "unavailable" for name, ok in components.items()},
        "quota": {
            "daily_limit": svc.tracker.daily_limit,
            "fail_open": svc.tracker.fail_open,
            "whitelisted_users": len(svc.tracker.get_whitelist()),
        },
    })


# ======================================================================
# Captions
# ======================================================================


class GenerateRequest(BaseModel):
    """Request body for caption generation."""
    user_id: str = Field(..., min_length=1, description="Requesting user")
    mood: str = Field(..., description="Target mood")
    image_url: Optional[str] = Field(None, description="http(s) URL of the image")
    image_id: Optional[str] = Field(None, description="Id returned by /api/upload/image")
    image_name: Optional[str] = Field(None, description="Original file name")
    username: Optional[str] = Field(None, description="Display name for hashtags")


class OwnerRequest(BaseModel):
    """Request body identifying the caller."""
    user_id: str = Field(..., min_length=1)


@app.post("/api/captions/generate")
async def generate(req: GenerateRequest, svc: CaptionService = Depends(get_service)):
    """Generate and save 3 captions for an image URL or an uploaded image."""
    if not req.image_url and not req.image_id:
        raise ValidationError("image_url or image_id is required")

    logger.info(f"🎯 Generating captions for {req.user_id} (mood: {req.mood})")
    record, status = await svc.create_captions(
        user_id=req.user_id,
        username=req.username or req.user_id,
        image=req.image_url,
        mood=req.mood,
        image_name=req.image_name or "",
        image_id=req.image_id,
    )
    return {
        "success": True,
        "caption": record.to_dict(),
        "captions": record.captions,
        "source": record.source,
        "rate_limit": _rate_limit(status),
        "message": "Captions generated successfully!",
    }


@app.get("/api/captions/moods/available")
async def moods(svc: CaptionService = Depends(get_service)):
    return {"success": True, "moods": svc.available_moods()}


@app.get("/api/captions/history/{user_id}")
async def history(
    user_id: str,
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=50, description="Page size"),
    svc: CaptionService = Depends(get_service),
):
    """Paged caption history, newest first."""
    records, total = await run_blocking(svc.history, user_id, page=page, limit=limit)
    pages = (total + limit - 1) // limit
    return {
        "success": True,
        "captions": [r.to_dict() for r in records],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": pages,
            "has_next": page < pages,
            "has_prev": page > 1,
        },
    }


@app.get("/api/captions/{caption_id}")
async def get_caption(
    caption_id: str,
    user_id: str = Query(..., min_length=1),
    svc: CaptionService = Depends(get_service),
):
    record = await run_blocking(svc.get_record, caption_id, user_id)
    return {"success": True, "caption": record.to_dict()}


@app.delete("/api/captions/{caption_id}")
async def delete_caption(caption_id: str, req: OwnerRequest, svc: CaptionService = Depends(get_service)):
    await run_blocking(svc.delete_record, caption_id, req.user_id)
    return {"success": True, "message": "Caption deleted successfully"}


# ======================================================================
# Uploads
# ======================================================================


@app.post("/api/upload/image")
async def upload_image(
    image: UploadFile = File(..., description="Image file"),
    user_id: str = Form("anonymous"),
    svc: CaptionService = Depends(get_service),
):
    """Store an image; its id can then be passed to /api/captions/generate."""
    content = await image.read()
    stored = await run_blocking(
        svc.image_store.store,
        content,
        name=image.filename or "",
        user_id=user_id,
        content_type=image.content_type,
    )
    return {
        "success": True,
        "image_id": stored.id,
        "image_url": stored.url,
        "size": stored.size,
        "content_type": stored.content_type,
        "message": "Image uploaded successfully!",
    }


@app.get("/api/upload/image/{image_id}")
async def image_info(image_id: str, svc: CaptionService = Depends(get_service)):
    info = await run_blocking(svc.image_store.get_info, image_id)
    if info is None:
        raise HTTPException(status_code=404, detail=f"Image not found: {image_id}")
    return {"success": True, "image": info}


@app.delete("/api/upload/image/{image_id}")
async def delete_image(
    image_id: str,
    req: Optional[OwnerRequest] = None,
    svc: CaptionService = Depends(get_service),
):
    info = await run_blocking(svc.image_store.get_info, image_id)
    if info is None:
        raise HTTPException(status_code=404, detail=f"Image not found: {image_id}")
    if req is not None and info.get("user_id") and info["user_id"] != req.user_id:
        raise OwnershipError("You can only delete your own images")
    await run_blocking(svc.image_store.delete, image_id)
    return {"success": True, "message": "Image deleted successfully"}


@app.get("/images/{image_id}")
async def serve_image(image_id: str, svc: CaptionService = Depends(get_service)):
    info = await run_blocking(svc.image_store.get_info, image_id)
    data = await run_blocking(svc.image_store.load, image_id)
    if info is None or data is None:
        raise HTTPException(status_code=404, detail=f"Image not found: {image_id}")
    return Response(content=data, media_type=info.get("content_type", "application/octet-stream"))


# ======================================================================
# Quota
# ======================================================================


@app.get("/api/quota/{user_id}")
async def quota(user_id: str, svc: CaptionService = Depends(get_service)):
    status = await run_blocking(svc.check_quota, user_id)
    approaching = await run_blocking(svc.tracker.is_approaching_limit, user_id)
    return {
        "success": True,
        "quota": status.to_dict(),
        "resets_in": svc.tracker.format_reset_time(status.reset_at),
        "approaching_limit": approaching,
    }


@app.get("/api/quota/{user_id}/history")
async def quota_history(
    user_id: str,
    days: int = Query(7, ge=1, le=90),
    svc: CaptionService = Depends(get_service),
):
    history = await run_blocking(svc.tracker.get_user_history, user_id, days=days)
    return {"success": True, "user_id": user_id, "history": history}


# ======================================================================
# Admin
# ======================================================================


@app.post("/api/admin/whitelist/{user_id}", dependencies=[Depends(require_admin)])
async def add_whitelist(user_id: str, svc: CaptionService = Depends(get_service)):
    return {"success": True, "whitelist": svc.add_whitelist(user_id)}


@app.delete("/api/admin/whitelist/{user_id}", dependencies=[Depends(require_admin)])
async def remove_whitelist(user_id: str, svc: CaptionService = Depends(get_service)):
    return {"success": True, "whitelist": svc.remove_whitelist(user_id)}


@app.delete("/api/admin/records/{user_id}", dependencies=[Depends(require_admin)])
async def clear_records(user_id: str, svc: CaptionService = Depends(get_service)):
    result = await run_blocking(svc.clear_records, user_id)
    return {"success": True, **result}


@app.get("/api/admin/stats", dependencies=[Depends(require_admin)])
async def admin_stats(svc: CaptionService = Depends(get_service)):
    stats = await run_blocking(svc.global_stats)
    return {"success": True, "stats": stats}


if __name__ == "__main__":
    import uvicorn
    from agent_platform import configure_logging

    configure_logging()

    # Run the service
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("HTTP_API_PORT", "9520")))
