# booth_compositor/infrastructure/local_server/upload_file.py
import asyncio
import logging
from typing import Dict, Optional

import aiohttp

from booth_compositor.config.settings import settings

logger = logging.getLogger(__name__)

async def health_check(session: aiohttp.ClientSession, server_url: Optional[str] = None) -> bool:
    server_url = (server_url or settings.LOCAL_SERVER_URL).rstrip("/")
    try:
        async with session.get(f"{server_url}/health", timeout=aiohttp.ClientTimeout(total=5)) as response:
            return response.status == 200
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning(f"Local server {server_url} unreachable: {type(e).__name__}")
        return False

async def upload_original_photo(
    session: aiohttp.ClientSession,
    data: bytes,
    filename: str,
    content_type: str = "image/png",
    server_url: Optional[str] = None,
) -> Dict:
    """POST the print master to the booth's local server; returns its JSON reply (filename, size, ...)."""
    server_url = (server_url or settings.LOCAL_SERVER_URL).rstrip("/")
    form = aiohttp.FormData()
    form.add_field("photo", data, filename=filename, content_type=content_type)
    timeout = aiohttp.ClientTimeout(total=settings.REQUEST_TIMEOUT)
    async with session.post(f"{server_url}/api/upload-photo", data=form, timeout=timeout) as response:
        response.raise_for_status()
        return await response.json()
