# booth_compositor/domain/compositor.py
"""
Overlay rendering for a frame template.

A CompositeVisual is the scene: background artwork, the template's regions
and the photos bound to them by position. It can be drawn at any pixel size;
regions are re-scaled on every draw so the on-screen preview and the export
tiers all come from the same placement.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import Image

from booth_compositor.domain.region_map import Region, scale_region
from booth_compositor.infrastructure.cv import image_process

DEFAULT_OVERSCALE = 1.02
EMPTY_CANVAS_COLOR = (255, 255, 255, 255)


def photo_at(photos: Sequence[Optional[Image.Image]], position: int) -> Optional[Image.Image]:
    if 0 <= position < len(photos):
        return photos[position]
    return None


@dataclass
class CompositeVisual:
    template_size: Tuple[float, float]
    regions: List[Region]
    photos: List[Optional[Image.Image]]
    background: Optional[Image.Image] = None
    overlays: Dict[int, Image.Image] = field(default_factory=dict)
    overscale: float = DEFAULT_OVERSCALE

    def layout(self, width: float, height: float) -> Optional[List[Tuple[Region, bool]]]:
        """
        Scaled regions for a surface, each flagged with whether a photo fills it.
        None while the surface has no measured size.
        """
        total_w, total_h = self.template_size
        if not width or not height or width <= 0 or height <= 0:
            return None
        placed = []
        for region in self.regions:
            scaled = scale_region(region, total_w, total_h, width, height)
            placed.append((scaled, photo_at(self.photos, region.position) is not None))
        return placed

    def draw(self, width: int, height: int) -> Image.Image:
        if width <= 0 or height <= 0:
            raise ValueError(f"Cannot draw a composite at {width}x{height}")
        if self.background is not None:
            canvas = self.background.resize((width, height), Image.Resampling.LANCZOS).convert("RGBA")
        else:
            canvas = Image.new("RGBA", (width, height), EMPTY_CANVAS_COLOR)

        for scaled, filled in self.layout(width, height):
            if not filled:
                image_process.draw_placeholder(canvas, scaled.box)
                continue
            box = image_process.overscaled_box(scaled.x, scaled.y, scaled.width, scaled.height, self.overscale)
            image_process.paste_cover(canvas, photo_at(self.photos, scaled.position), box)
            overlay = self.overlays.get(scaled.position)
            if overlay is not None:
                image_process.paste_cover(canvas, overlay, box)
        return canvas


@dataclass
class RenderedComposite:
    visual: CompositeVisual
    image: Optional[Image.Image]
    photo_boxes: List[Region]
    placeholder_boxes: List[Region]

    @property
    def ready(self) -> bool:
        return self.image is not None


def render_composite(
    regions: Sequence[Region],
    photos: Sequence[Optional[Image.Image]],
    render_size: Tuple[int, int],
    template_size: Tuple[float, float],
    background: Optional[Image.Image] = None,
    overlays: Optional[Dict[int, Image.Image]] = None,
    overscale: float = DEFAULT_OVERSCALE,
) -> RenderedComposite:
    """
    Place photos into their regions and draw the result at render_size.

    photos is index-aligned with Region.position; None entries, or a list
    shorter than the region count, yield placeholder boxes. When render_size
    is not yet measured (a zero dimension) nothing is drawn and the returned
    composite is not ready; its visual can still be drawn at any size later.
    """
    visual = CompositeVisual(
        template_size=template_size,
        regions=list(regions),
        photos=list(photos),
        background=background,
        overlays=dict(overlays or {}),
        overscale=overscale,
    )
    width, height = render_size
    placed = visual.layout(width, height)
    if placed is None:
        return RenderedComposite(visual=visual, image=None, photo_boxes=[], placeholder_boxes=[])

    return RenderedComposite(
        visual=visual,
        image=visual.draw(int(round(width)), int(round(height))),
        photo_boxes=[r for r, filled in placed if filled],
        placeholder_boxes=[r for r, filled in placed if not filled],
    )
