# booth_compositor/domain/composite_service.py
import logging
from typing import Dict, List, Optional, Tuple
import base64, os, time
import asyncio
import aiohttp
import psutil
import aiofiles
import gc
from functools import partial
from concurrent.futures import ThreadPoolExecutor

from PIL import Image, UnidentifiedImageError

from booth_compositor.config.settings import settings as default_settings
from booth_compositor.delivery.schemas.body import CompositeRequest
from booth_compositor.domain.capture import CompositeSession, SessionState, build_ladders, capture_tier
from booth_compositor.domain.compositor import CompositeVisual, render_composite
from booth_compositor.domain.errors import AssetLoadTimeout
from booth_compositor.domain.region_map import RegionMap, ResolvedTheme
from booth_compositor.infrastructure.cv import image_process
from booth_compositor.infrastructure.cloudinary.upload_file import upload_image_bytes, build_qr_url
from booth_compositor.infrastructure.local_server import upload_file as local_server

BACKGROUND = "background"

# --- PENGATURAN LOGGER ---
logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False

def _is_remote(src: str) -> bool:
    return src.startswith(("http://", "https://", "data:image"))

class CompositeService:
    def __init__(self, region_map: RegionMap, cpu_executor: ThreadPoolExecutor, io_executor: ThreadPoolExecutor, settings=None):
        self.region_map = region_map
        self.cpu_executor = cpu_executor
        self.io_executor = io_executor
        self.settings = settings or default_settings
        self.ladders = build_ladders(self.settings)
        self.capture = partial(capture_tier, max_pixels=self.settings.MAX_CAPTURE_PIXELS)

    def artwork_source(self, image_name: str) -> str:
        if _is_remote(image_name) or os.path.isabs(image_name):
            return image_name
        return os.path.join(self.settings.FRAMES_DIR, image_name)

    async def _load_image_bytes_async(self, src: str, session: aiohttp.ClientSession) -> Optional[bytes]:
        try:
            if src.startswith(("http://", "https://")):
                timeout = aiohttp.ClientTimeout(total=self.settings.REQUEST_TIMEOUT)
                async with session.get(src, timeout=timeout) as response:
                    response.raise_for_status()
                    return await response.read()
            path = src[len("file://"):] if src.startswith("file://") else src
            if os.path.isfile(path):
                async with aiofiles.open(path, "rb") as f:
                    return await f.read()
            if src.startswith("data:image"):
                _, encoded = src.split(",", 1)
                return base64.b64decode(encoded + "=" * (-len(encoded) % 4))
            return base64.b64decode(src + "=" * (-len(src) % 4), validate=True)
        except Exception as e:
            logger.warning(f"Gagal memuat gambar dari sumber '{src[:70]}...': {type(e).__name__}")
            return None

    async def _gather_assets(self, sources: Dict[str, str]) -> Dict[str, Optional[bytes]]:
        """
        Load every asset concurrently and wait for all of them, at most
        ASSET_LOAD_TIMEOUT seconds. Raises AssetLoadTimeout with the partial
        results when loads are still pending; those loads are cancelled.
        """
        if not sources:
            return {}
        timeout = self.settings.ASSET_LOAD_TIMEOUT
        async with aiohttp.ClientSession() as session:
            tasks = {name: asyncio.create_task(self._load_image_bytes_async(src, session)) for name, src in sources.items()}
            try:
                done, pending = await asyncio.wait(tasks.values(), timeout=timeout)
            finally:
                # also reached when the caller abandons the request
                for task in tasks.values():
                    if not task.done():
                        task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        loaded = {name: task.result() for name, task in tasks.items() if task in done}
        if pending:
            incomplete = [name for name, task in tasks.items() if task in pending]
            raise AssetLoadTimeout(incomplete, loaded, timeout)
        return loaded

    def _asset_sources(self, resolved: ResolvedTheme, photos: List[Optional[str]]) -> Dict[str, str]:
        sources = {BACKGROUND: self.artwork_source(resolved.theme.image_name)}
        for region in resolved.regions:
            pos = region.position
            if pos < len(photos) and photos[pos]:
                sources[f"photo:{pos}"] = photos[pos]
                overlay = resolved.theme.overlay_for(pos)
                if overlay:
                    sources[f"overlay:{pos}"] = self.artwork_source(overlay)
        return sources

    def _decode_artwork(self, name: str, b: Optional[bytes]) -> Optional[Image.Image]:
        try:
            return image_process.open_artwork(b)
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"Artwork '{name}' tidak bisa di-decode: {type(e).__name__}")
            return None

    def _build_visual(self, resolved: ResolvedTheme, loaded: Dict[str, Optional[bytes]],
                      with_preview: bool = True) -> Tuple[CompositeVisual, Dict]:
        photos: List[Optional[Image.Image]] = [None] * len(resolved.regions)
        overlays: Dict[int, Image.Image] = {}
        for region in resolved.regions:
            pos = region.position
            b = loaded.get(f"photo:{pos}")
            if b is not None:
                photos[pos] = image_process.decode_photo(b, max_side=self.settings.PHOTO_MAX_SIDE)
                if photos[pos] is None:
                    logger.warning(f"Gagal decode foto untuk posisi {pos}, slot dibiarkan kosong.")
            overlay = self._decode_artwork(f"overlay:{pos}", loaded.get(f"overlay:{pos}"))
            if overlay is not None:
                overlays[pos] = overlay

        background = self._decode_artwork(BACKGROUND, loaded.get(BACKGROUND))
        if background is None:
            logger.warning(f"Frame '{resolved.theme.image_name}' tidak tersedia, memakai kanvas putih.")

        # an unmeasured (0, 0) surface builds the visual without drawing a preview
        preview_size = (self.settings.PREVIEW_WIDTH, self.settings.PREVIEW_HEIGHT) if with_preview else (0, 0)
        rendered = render_composite(
            resolved.regions,
            photos,
            preview_size,
            (resolved.total_width, resolved.total_height),
            background=background,
            overlays=overlays,
            overscale=self.settings.REGION_OVERSCALE,
        )
        filled = sum(1 for photo in photos if photo is not None)
        layout = {
            "photo_slots": filled,
            "empty_slots": len(photos) - filled,
            "preview": rendered.image,
        }
        return rendered.visual, layout

    async def _deliver(self, session: CompositeSession, results: Dict, tiers: Dict) -> Optional[str]:
        loop = asyncio.get_running_loop()
        archive = results.get("archive")
        if archive is not None:
            filename = f"{session.session_id}.{archive.tier.format}"
            try:
                async with aiohttp.ClientSession() as http:
                    reply = await local_server.upload_original_photo(http, archive.data, filename, content_type=f"image/{archive.tier.format}")
                tiers["archive"]["filename"] = reply.get("filename", filename)
                logger.info(f"[{session.session_id}] Master cetak tersimpan di server lokal: {tiers['archive']['filename']}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                # the print master is optional; delivery continues without it
                logger.error(f"[{session.session_id}] Upload ke server lokal gagal (lanjut): {type(e).__name__}: {e}")

        delivery = results.get("delivery")
        if delivery is None:
            return None
        uploaded = await loop.run_in_executor(
            self.io_executor,
            partial(upload_image_bytes, delivery.data, public_id=f"photo_{session.session_id}", fmt=delivery.tier.format),
        )
        tiers["delivery"]["url"] = uploaded["secure_url"]
        tiers["delivery"]["public_id"] = uploaded["public_id"]
        return build_qr_url(uploaded["secure_url"], self.settings.QR_LANDING_URL)

    async def process(self, request: CompositeRequest) -> Dict:
        session = CompositeSession(session_id=request.session_id) if request.session_id else CompositeSession()
        run_id = session.session_id
        logger.info(f"=== START COMPOSITING Session: {run_id} ({request.template_id}/{request.theme_id}) ===")
        process = psutil.Process(os.getpid())
        overall_start_time = time.perf_counter()
        loop = asyncio.get_running_loop()

        try:
            # TAHAP 1: Region
            resolved = self.region_map.resolve(request.template_id, request.theme_id)
            session.advance(SessionState.REGIONS_RESOLVED, resolved.theme_id)

            # TAHAP 2: Susun visual
            session.advance(SessionState.RENDERING_VISUAL)
            sources = self._asset_sources(resolved, request.photos)
            if len(request.photos) > len(resolved.regions):
                logger.warning(f"[{run_id}] {len(request.photos) - len(resolved.regions)} foto di luar jumlah region diabaikan.")

            # TAHAP 3: Tunggu aset
            session.advance(SessionState.AWAITING_ASSET_LOAD)
            incomplete: List[str] = []
            try:
                loaded = await self._gather_assets(sources)
            except AssetLoadTimeout as e:
                logger.warning(f"[{run_id}] {e}. Melanjutkan dengan aset parsial.")
                loaded, incomplete = e.loaded, e.incomplete
            failed = [name for name in sources if name not in incomplete and loaded.get(name) is None]
            logger.info(f"[{run_id}] Aset dimuat: {len(sources) - len(incomplete) - len(failed)}/{len(sources)}")

            visual, layout = await loop.run_in_executor(
                self.cpu_executor, self._build_visual, resolved, loaded, not request.deliver,
            )
            del loaded

            # TAHAP 4: Capture
            logger.info(f"[{run_id}] Memory sebelum capture: {process.memory_info().rss / 1024 / 1024:.1f}MB")
            results = await loop.run_in_executor(self.cpu_executor, session.capture, visual, self.ladders, self.capture)
            logger.info(f"[{run_id}] Memory setelah capture: {process.memory_info().rss / 1024 / 1024:.1f}MB")

            tiers = {
                name: {
                    "tier": r.tier.name,
                    "width": r.tier.width,
                    "height": r.tier.height,
                    "format": r.tier.format,
                    "degraded": r.degraded,
                    "notice": r.notice,
                }
                for name, r in results.items()
            }
            output = {
                "session_id": run_id,
                "template_id": resolved.template_id,
                "theme_id": resolved.theme_id,
                "theme_fell_back": resolved.fell_back,
                "photo_slots": layout["photo_slots"],
                "empty_slots": layout["empty_slots"],
                "incomplete_assets": incomplete,
                "failed_assets": failed,
                "tiers": tiers,
                "qr_url": None,
                "state_history": [state.value for state, _ in session.history],
            }

            # TAHAP 5: Pengiriman
            if request.deliver:
                output["qr_url"] = await self._deliver(session, results, tiers)
            else:
                for name, r in results.items():
                    tiers[name]["data"] = base64.b64encode(r.data).decode("ascii")
                preview = layout["preview"]
                if preview is not None:
                    output["preview"] = base64.b64encode(image_process.encode_image(preview, "jpeg", 80)).decode("ascii")

            if layout["preview"] is not None:
                layout["preview"].close()
            del visual, results
            gc.collect()

            overall_duration = time.perf_counter() - overall_start_time
            logger.info(f"=== COMPLETED COMPOSITING Session: {run_id} dalam {overall_duration:.2f} detik ===")
            return output

        except asyncio.CancelledError:
            # a capture already running in cpu_executor stops before its next tier
            session.cancel()
            logger.warning(f"=== CANCELLED COMPOSITING Session {run_id} (state={session.state.value}) ===")
            raise

        except Exception as e:
            if not session.is_terminal:
                session.fail(e)
            logger.error(f"=== FAILED COMPOSITING Session {run_id}: {type(e).__name__}: {e} (state={session.state.value}) ===")
            raise
