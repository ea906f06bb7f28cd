"""
Tests for domain.region_map

Test Coverage:
- get_regions(): lookup, declared order, NotFound errors
- resolve(): default-theme fallback
- scale_region(): linear scaling, identity idempotence, unmeasured surfaces
- Validation of malformed maps
- available_themes(): frame settings filter
"""
import json
import pytest

from booth_compositor.domain.errors import NotFound, RegionMapError, TemplateNotFound, ThemeNotFound
from booth_compositor.domain.region_map import Region, RegionMap, scale_region


def test_get_regions_returns_regions_and_total_size(region_map):
    regions, total_w, total_h = region_map.get_regions("frame", "classic")

    assert (total_w, total_h) == (800, 1200)
    assert [r.id for r in regions] == ["r3", "r1", "r2", "r4"]  # declared order kept
    assert sorted(r.position for r in regions) == [0, 1, 2, 3]


def test_get_regions_unknown_template(region_map):
    with pytest.raises(TemplateNotFound) as exc:
        region_map.get_regions("nope", "classic")
    assert isinstance(exc.value, NotFound)
    assert isinstance(exc.value, LookupError)


def test_get_regions_unknown_theme(region_map):
    with pytest.raises(ThemeNotFound):
        region_map.get_regions("frame", "sparkly")


def test_resolve_falls_back_to_classic(region_map):
    resolved = region_map.resolve("frame", "sparkly")

    assert resolved.theme_id == "classic"
    assert resolved.fell_back is True
    assert len(resolved.regions) == 4


def test_resolve_falls_back_to_first_theme_without_classic(region_map):
    resolved = region_map.resolve("strip", None)

    assert resolved.theme_id == "mono"
    assert resolved.fell_back is True


def test_resolve_known_theme_does_not_fall_back(region_map):
    resolved = region_map.resolve("frame", "alt")

    assert resolved.theme_id == "alt"
    assert resolved.fell_back is False
    assert (resolved.total_width, resolved.total_height) == (800, 1200)


def test_resolve_unknown_template_still_raises(region_map):
    with pytest.raises(TemplateNotFound):
        region_map.resolve("nope", "classic")


class TestScaleRegion:
    def test_scales_to_half_size(self):
        region = Region(id="r", position=0, x=100, y=100, width=200, height=300)

        scaled = scale_region(region, 800, 1200, 400, 600)

        assert (scaled.x, scaled.y, scaled.width, scaled.height) == (50, 50, 100, 150)
        assert scaled.id == "r" and scaled.position == 0

    def test_axes_scale_independently(self):
        region = Region(id="r", position=0, x=100, y=100, width=200, height=300)

        scaled = scale_region(region, 800, 1200, 800, 600)

        assert (scaled.x, scaled.width) == (100, 200)
        assert (scaled.y, scaled.height) == (50, 150)

    def test_identity_rescale_is_idempotent(self):
        region = Region(id="r", position=1, x=123, y=457, width=211, height=299)

        scaled = scale_region(region, 800, 1200, 333, 517)
        again = scale_region(scaled, 333, 517, 333, 517)

        assert again == scaled

    @pytest.mark.parametrize("render_size", [(0, 600), (400, 0), (0, 0)])
    def test_unmeasured_surface_is_not_ready(self, render_size):
        region = Region(id="r", position=0, x=100, y=100, width=200, height=300)

        assert scale_region(region, 800, 1200, *render_size) is None


class TestValidation:
    def test_gap_in_positions_rejected(self, region_map_data):
        region_map_data["frame"]["themes"]["classic"]["regions"][0]["position"] = 5

        with pytest.raises(RegionMapError):
            RegionMap.from_dict(region_map_data)

    def test_duplicate_positions_rejected(self, region_map_data):
        region_map_data["frame"]["themes"]["classic"]["regions"][0]["position"] = 0

        with pytest.raises(RegionMapError):
            RegionMap.from_dict(region_map_data)

    def test_duplicate_region_ids_rejected(self, region_map_data):
        region_map_data["frame"]["themes"]["classic"]["regions"][0]["id"] = "r1"

        with pytest.raises(RegionMapError):
            RegionMap.from_dict(region_map_data)

    def test_zero_sized_region_rejected(self, region_map_data):
        region_map_data["frame"]["themes"]["classic"]["regions"][0]["width"] = 0

        with pytest.raises(RegionMapError):
            RegionMap.from_dict(region_map_data)

    def test_template_without_themes_rejected(self, region_map_data):
        region_map_data["frame"]["themes"] = {}

        with pytest.raises(RegionMapError):
            RegionMap.from_dict(region_map_data)

    def test_zero_total_size_rejected(self, region_map_data):
        region_map_data["strip"]["totalWidth"] = 0

        with pytest.raises(RegionMapError):
            RegionMap.from_dict(region_map_data)


def test_load_from_json_file(tmp_path, region_map_data):
    path = tmp_path / "regions.json"
    path.write_text(json.dumps(region_map_data), encoding="utf-8")

    region_map = RegionMap.load(path)

    assert region_map.template_ids() == ["frame", "strip"]
    assert region_map.theme_ids("frame") == ["classic", "alt"]


def test_available_themes_honours_frame_settings(region_map):
    assert region_map.available_themes("frame") == ["classic", "alt"]
    assert region_map.available_themes("frame", {"classic": False}) == ["alt"]
    assert region_map.available_themes("frame", {"alt": True, "unknown": True}) == ["classic", "alt"]


def test_overlay_for_position(region_map):
    theme = region_map.resolve("frame", "alt").theme

    assert theme.overlay_for(0) == "frame/overlay.png"
    assert theme.overlay_for(1) is None
