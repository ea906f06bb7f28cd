# booth_compositor/domain/region_map.py
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from booth_compositor.domain.errors import RegionMapError, TemplateNotFound, ThemeNotFound

DEFAULT_THEME_ID = "classic"

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False


class Region(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    position: int = Field(ge=0)
    x: float
    y: float
    width: float
    height: float
    name: Optional[str] = None

    @field_validator("width", "height")
    @classmethod
    def _positive_size(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("region width/height must be positive")
        return v

    @property
    def box(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.x + self.width, self.y + self.height)


class Theme(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_name: str = Field(alias="imageName")
    regions: List[Region]
    # artwork drawn over the photo at the same index (by position)
    overlays: List[Optional[str]] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_positions(self):
        positions = sorted(r.position for r in self.regions)
        if positions != list(range(len(self.regions))):
            raise ValueError(f"region positions must be exactly 0..{len(self.regions) - 1}, got {positions}")
        ids = [r.id for r in self.regions]
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate region ids: {ids}")
        return self

    def overlay_for(self, position: int) -> Optional[str]:
        if position < len(self.overlays):
            return self.overlays[position]
        return None


class Template(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_width: float = Field(alias="totalWidth", gt=0)
    total_height: float = Field(alias="totalHeight", gt=0)
    themes: Dict[str, Theme]

    @field_validator("themes")
    @classmethod
    def _has_themes(cls, v: Dict[str, Theme]) -> Dict[str, Theme]:
        if not v:
            raise ValueError("template must declare at least one theme")
        return v


@dataclass(frozen=True)
class ResolvedTheme:
    template_id: str
    theme_id: str
    theme: Theme
    total_width: float
    total_height: float
    fell_back: bool = False

    @property
    def regions(self) -> List[Region]:
        return self.theme.regions


def scale_region(region: Region, total_width: float, total_height: float,
                 render_width: float, render_height: float) -> Optional[Region]:
    """
    Map a region from template coordinates into a render surface.

    X and Y are scaled independently; no aspect correction is applied.
    Returns None while the render surface has no measured size yet, in which
    case the caller must hold off drawing photos.
    """
    if not render_width or not render_height or render_width <= 0 or render_height <= 0:
        return None
    scale_x = render_width / total_width
    scale_y = render_height / total_height
    return region.model_copy(update={
        "x": region.x * scale_x,
        "y": region.y * scale_y,
        "width": region.width * scale_x,
        "height": region.height * scale_y,
    })


class RegionMap:
    """Read-only lookup over the frame templates; safe to share between sessions."""

    def __init__(self, templates: Mapping[str, Template]):
        self._templates = dict(templates)

    @classmethod
    def from_dict(cls, data: Mapping) -> "RegionMap":
        templates = {}
        for template_id, raw in data.items():
            try:
                templates[template_id] = Template.model_validate(raw)
            except ValidationError as e:
                raise RegionMapError(f"Template '{template_id}' is malformed: {e}") from e
        return cls(templates)

    @classmethod
    def load(cls, path) -> "RegionMap":
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        region_map = cls.from_dict(data)
        logger.info(f"Region map dimuat dari {path}: {len(region_map._templates)} template.")
        return region_map

    def template_ids(self) -> List[str]:
        return list(self._templates)

    def template(self, template_id: str) -> Template:
        try:
            return self._templates[template_id]
        except KeyError:
            raise TemplateNotFound(template_id) from None

    def theme_ids(self, template_id: str) -> List[str]:
        return list(self.template(template_id).themes)

    def get_regions(self, template_id: str, theme_id: str) -> Tuple[List[Region], float, float]:
        template = self.template(template_id)
        theme = template.themes.get(theme_id)
        if theme is None:
            raise ThemeNotFound(template_id, theme_id)
        return list(theme.regions), template.total_width, template.total_height

    def resolve(self, template_id: str, theme_id: Optional[str]) -> ResolvedTheme:
        """Like get_regions, but an unknown theme falls back to the template default."""
        template = self.template(template_id)
        fell_back = False
        if theme_id not in template.themes:
            fallback = DEFAULT_THEME_ID if DEFAULT_THEME_ID in template.themes else next(iter(template.themes))
            logger.warning(f"Theme '{theme_id}' tidak ada di '{template_id}', memakai '{fallback}'.")
            theme_id, fell_back = fallback, True
        return ResolvedTheme(
            template_id=template_id,
            theme_id=theme_id,
            theme=template.themes[theme_id],
            total_width=template.total_width,
            total_height=template.total_height,
            fell_back=fell_back,
        )

    def available_themes(self, template_id: str, frame_settings: Optional[Mapping[str, bool]] = None) -> List[str]:
        frame_settings = frame_settings or {}
        return [t for t in self.theme_ids(template_id) if frame_settings.get(t, True)]
