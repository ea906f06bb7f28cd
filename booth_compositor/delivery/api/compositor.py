# booth_compositor/delivery/api/compositor.py
from fastapi import APIRouter, Request, HTTPException, status
from fastapi.responses import JSONResponse
import aiohttp
from booth_compositor.delivery.schemas.body import CompositeRequest
from booth_compositor.config.settings import settings
from booth_compositor.domain.errors import CaptureExhausted, TemplateNotFound
from booth_compositor.infrastructure.local_server import upload_file as local_server
import threading
import logging
import traceback
import asyncio

router = APIRouter()
logger = logging.getLogger("uvicorn.error")

def _service(request: Request):
    service = getattr(request.app.state, "composite_service", None)
    if service is None:
        logger.error("Composite service not initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is not ready. Please try again in a moment.",
        )
    return service

@router.get("/templates")
async def list_templates(request: Request):
    region_map = _service(request).region_map
    return {
        "templates": [
            {
                "id": template_id,
                "total_width": region_map.template(template_id).total_width,
                "total_height": region_map.template(template_id).total_height,
            }
            for template_id in region_map.template_ids()
        ]
    }

@router.get("/templates/{template_id}/themes")
async def list_themes(request: Request, template_id: str):
    region_map = _service(request).region_map
    try:
        themes = region_map.available_themes(template_id, settings.FRAME_SETTINGS)
    except TemplateNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return {"template_id": template_id, "themes": themes}

@router.get("/local-server/health")
async def local_server_health():
    async with aiohttp.ClientSession() as session:
        ok = await local_server.health_check(session)
    return {"status": "ok" if ok else "unreachable", "url": settings.LOCAL_SERVER_URL}

@router.post("/composite")
async def composite(request: Request, body: CompositeRequest):
    request_id = body.session_id or "-"
    logger.info(f"=== ENDPOINT START for {request_id} (threads={threading.active_count()}) ===")

    try:
        service = _service(request)

        # Abort fast if the client already closed
        if await request.is_disconnected():
            logger.warning(f"[{request_id}] Client already disconnected")
            raise HTTPException(status_code=499, detail="Client closed request")

        try:
            result = await asyncio.wait_for(
                service.process(body),
                timeout=settings.ENDPOINT_TIMEOUT_SECONDS,
            )
            logger.info(f"=== ENDPOINT SUCCESS for {request_id} ===")
            return JSONResponse(status_code=200, content={"output": result})

        except asyncio.TimeoutError:
            logger.error(f"=== ENDPOINT TIMEOUT for {request_id} after {settings.ENDPOINT_TIMEOUT_SECONDS}s ===")
            raise HTTPException(status_code=504, detail="Compositing timed out")

    except HTTPException:
        raise
    except TemplateNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except CaptureExhausted as e:
        logger.error(f"=== ENDPOINT CAPTURE EXHAUSTED for {request_id}: {e} ===")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "kind": e.kind,
                "detail": str(e),
                "attempts": [{"tier": tier, "reason": reason} for tier, reason in e.attempts],
                "retryable": True,
            },
        )
    except Exception as e:
        logger.error(f"=== ENDPOINT ERROR for {request_id}: {e} ===\n{traceback.format_exc()}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error while compositing.",
        )
