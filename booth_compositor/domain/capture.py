# booth_compositor/domain/capture.py
"""
Resolution tiers, the capture fallback ladder and the compositing session.

Each ladder is tried top-down, one tier at a time: rasterizing a print-size
composite can exhaust memory, so a failed attempt is released before the next,
smaller tier is drawn. Only the last tier of a ladder is reported to the user
as a quality downgrade.
"""
import gc
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import psutil
from PIL import Image

from booth_compositor.domain.compositor import CompositeVisual
from booth_compositor.domain.errors import CaptureCancelled, CaptureExhausted, CaptureFailed, SessionStateError
from booth_compositor.infrastructure.cv import image_process

DEGRADED_NOTICE = "Foto dicetak dengan resolusi lebih rendah karena keterbatasan memori perangkat."

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] [CAPTURE] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False


@dataclass(frozen=True)
class ResolutionTier:
    name: str
    width: int
    height: int
    format: str = "png"
    quality: int = 88

    @classmethod
    def from_scale(cls, ladder: str, scale: float, base_width: float, base_height: float,
                   fmt: str = "png", quality: int = 88) -> "ResolutionTier":
        return cls(
            name=f"{ladder}@{scale:g}x",
            width=int(round(base_width * scale)),
            height=int(round(base_height * scale)),
            format=fmt,
            quality=quality,
        )


@dataclass(frozen=True)
class Ladder:
    name: str
    tiers: Tuple[ResolutionTier, ...]


@dataclass
class CaptureResult:
    ladder: str
    tier: ResolutionTier
    data: bytes
    degraded: bool = False
    notice: Optional[str] = None


def build_ladders(settings) -> List[Ladder]:
    """archive (local print master) and delivery (cloud / QR download) ladders."""
    base_w, base_h = settings.BASE_UNIT_WIDTH, settings.BASE_UNIT_HEIGHT
    archive = tuple(ResolutionTier.from_scale("archive", s, base_w, base_h, fmt="png")
                    for s in settings.ARCHIVE_SCALES)
    delivery = tuple(ResolutionTier.from_scale("delivery", s, base_w, base_h, fmt="jpeg",
                                               quality=settings.DELIVERY_JPEG_QUALITY)
                     for s in settings.DELIVERY_SCALES)
    return [Ladder("archive", archive), Ladder("delivery", delivery)]


def capture_resolution_tier(visual: CompositeVisual, width: int, height: int, fmt: str = "png",
                            quality: int = 88, max_pixels: Optional[int] = None, tier: str = "custom") -> bytes:
    """Rasterize the visual at an absolute pixel size and encode it."""
    if max_pixels and width * height > max_pixels:
        raise CaptureFailed(tier, f"{width}x{height} exceeds the {max_pixels} pixel budget")
    image = None
    try:
        image = visual.draw(width, height)
        return image_process.encode_image(image, fmt, quality)
    except (MemoryError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise CaptureFailed(tier, f"{type(e).__name__}: {e}") from None
    finally:
        if image is not None:
            image.close()


def capture_tier(visual: CompositeVisual, tier: ResolutionTier, max_pixels: Optional[int] = None) -> bytes:
    return capture_resolution_tier(visual, tier.width, tier.height, tier.format, tier.quality,
                                   max_pixels=max_pixels, tier=tier.name)


def _rss_mb() -> float:
    try:
        return psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024
    except psutil.Error:
        return -1.0


def capture_with_fallback(
    visual: CompositeVisual,
    ladder: Ladder,
    capture: Callable[[CompositeVisual, ResolutionTier], bytes] = capture_tier,
    on_attempt: Optional[Callable[[ResolutionTier], None]] = None,
) -> CaptureResult:
    attempts: List[Tuple[str, str]] = []
    last_index = len(ladder.tiers) - 1

    for index, tier in enumerate(ladder.tiers):
        if on_attempt is not None:
            on_attempt(tier)
        start = time.perf_counter()
        logger.info(f"[{ladder.name}] Capture {tier.name} ({tier.width}x{tier.height} {tier.format}), memory {_rss_mb():.1f}MB")
        data = None
        try:
            data = capture(visual, tier)
        except CaptureFailed as e:
            # keep only the message: the exception's traceback pins the failed attempt's buffers
            attempts.append((tier.name, e.reason))
            logger.warning(f"[{ladder.name}] {e}")
        if data is None:
            gc.collect()
            continue

        elapsed = time.perf_counter() - start
        degraded = index == last_index and index > 0
        if index > 0:
            logger.warning(f"[{ladder.name}] Fallback ke {tier.name} berhasil setelah {index} kegagalan ({elapsed:.2f}s).")
        else:
            logger.info(f"[{ladder.name}] Capture {tier.name} selesai dalam {elapsed:.2f}s ({len(data)} bytes).")
        return CaptureResult(
            ladder=ladder.name,
            tier=tier,
            data=data,
            degraded=degraded,
            notice=DEGRADED_NOTICE if degraded else None,
        )

    logger.error(f"[{ladder.name}] Semua tier gagal: {attempts}")
    raise CaptureExhausted(ladder.name, attempts)


class SessionState(str, Enum):
    IDLE = "idle"
    REGIONS_RESOLVED = "regions_resolved"
    RENDERING_VISUAL = "rendering_visual"
    AWAITING_ASSET_LOAD = "awaiting_asset_load"
    CAPTURING = "capturing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TRANSITIONS = {
    SessionState.IDLE: {SessionState.REGIONS_RESOLVED},
    SessionState.REGIONS_RESOLVED: {SessionState.RENDERING_VISUAL},
    SessionState.RENDERING_VISUAL: {SessionState.AWAITING_ASSET_LOAD},
    SessionState.AWAITING_ASSET_LOAD: {SessionState.CAPTURING},
    # CAPTURING -> CAPTURING: next fallback tier, or the next ladder
    SessionState.CAPTURING: {SessionState.CAPTURING, SessionState.SUCCEEDED},
    SessionState.SUCCEEDED: set(),
    SessionState.FAILED: set(),
}
_TERMINAL = {SessionState.SUCCEEDED, SessionState.FAILED}


@dataclass
class CompositeSession:
    """One compositing pass. Owns its photos and visual; not shared between requests."""

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: SessionState = SessionState.IDLE
    history: List[Tuple[SessionState, Optional[str]]] = field(default_factory=list)
    tier: Optional[str] = None
    results: Dict[str, CaptureResult] = field(default_factory=dict)
    error: Optional[Exception] = None
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Ask a capture running in another thread to stop before its next tier."""
        self._cancelled.set()

    @property
    def error_kind(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL

    def advance(self, state: SessionState, detail: Optional[str] = None) -> None:
        if state is SessionState.FAILED:
            allowed = not self.is_terminal
        else:
            allowed = state in _TRANSITIONS[self.state]
        if not allowed:
            raise SessionStateError(f"Session {self.session_id}: illegal transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append((state, detail))

    def fail(self, error: Exception) -> None:
        self.error = error
        self.advance(SessionState.FAILED, type(error).__name__)

    def capture(self, visual: CompositeVisual, ladders: Sequence[Ladder],
                capture: Optional[Callable[[CompositeVisual, ResolutionTier], bytes]] = None) -> Dict[str, CaptureResult]:
        """Capture every ladder in order; the session fails on the first exhausted ladder."""
        capture = capture or capture_tier

        def _enter(tier: ResolutionTier) -> None:
            if self.cancelled:
                raise CaptureCancelled(self.session_id, tier.name)
            self.tier = tier.name
            self.advance(SessionState.CAPTURING, tier.name)

        for ladder in ladders:
            try:
                self.results[ladder.name] = capture_with_fallback(visual, ladder, capture=capture, on_attempt=_enter)
            except (CaptureExhausted, CaptureCancelled) as e:
                logger.warning(f"Session {self.session_id} berhenti: {e}")
                self.fail(e)
                raise
        self.advance(SessionState.SUCCEEDED)
        return self.results
