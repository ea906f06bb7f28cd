import pytest
from pathlib import Path
from PIL import Image

from booth_compositor.domain.region_map import RegionMap


# 800x1200 template; the classic theme lists its regions out of position order
REGION_MAP_DATA = {
    "frame": {
        "totalWidth": 800,
        "totalHeight": 1200,
        "themes": {
            "classic": {
                "imageName": "frame/classic.png",
                "regions": [
                    {"id": "r3", "position": 2, "x": 100, "y": 700, "width": 200, "height": 300},
                    {"id": "r1", "position": 0, "x": 100, "y": 100, "width": 200, "height": 300},
                    {"id": "r2", "position": 1, "x": 500, "y": 100, "width": 200, "height": 300},
                    {"id": "r4", "position": 3, "x": 500, "y": 700, "width": 200, "height": 300},
                ],
            },
            "alt": {
                "imageName": "frame/alt.png",
                "overlays": ["frame/overlay.png"],
                "regions": [
                    {"id": "a1", "position": 0, "x": 0, "y": 0, "width": 800, "height": 600},
                    {"id": "a2", "position": 1, "x": 0, "y": 600, "width": 800, "height": 600},
                ],
            },
        },
    },
    "strip": {
        "totalWidth": 600,
        "totalHeight": 1800,
        "themes": {
            "mono": {
                "imageName": "strip/mono.png",
                "regions": [
                    {"id": "s1", "position": 0, "x": 30, "y": 30, "width": 540, "height": 400},
                ],
            },
        },
    },
}


@pytest.fixture
def region_map_data():
    """Fresh copy of the test region map (safe to mutate)."""
    import copy
    return copy.deepcopy(REGION_MAP_DATA)


@pytest.fixture
def region_map(region_map_data):
    return RegionMap.from_dict(region_map_data)


@pytest.fixture
def solid():
    """Factory for solid-colour images."""
    def _make(color, size=(120, 160), mode="RGB"):
        return Image.new(mode, size, color=color)
    return _make


@pytest.fixture
def frames_dir(tmp_path: Path):
    """Frame artwork on disk, laid out like FRAMES_DIR."""
    root = tmp_path / "frames"
    (root / "frame").mkdir(parents=True)
    Image.new("RGBA", (800, 1200), (0, 0, 255, 255)).save(root / "frame" / "classic.png")
    Image.new("RGBA", (800, 1200), (0, 0, 255, 255)).save(root / "frame" / "alt.png")
    Image.new("RGBA", (100, 100), (0, 255, 0, 255)).save(root / "frame" / "overlay.png")
    return root


@pytest.fixture
def photo_files(tmp_path: Path):
    """Four red JPEG 'camera' photos on disk."""
    paths = []
    for i in range(4):
        path = tmp_path / f"photo_{i}.jpg"
        Image.new("RGB", (300, 400), (255, 0, 0)).save(path, format="JPEG")
        paths.append(str(path))
    return paths
