# booth_compositor/infrastructure/cv/image_process.py
import io
import math
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw

PLACEHOLDER_FILL = (255, 255, 255, 26)
PLACEHOLDER_OUTLINE = (255, 255, 255, 51)

def decode_photo(b: bytes, max_side: int = 2400) -> Optional[Image.Image]:
    # cv2 applies EXIF orientation on decode, which camera JPEGs rely on
    if b is None: return None
    arr = np.frombuffer(b, np.uint8)
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if img is None: return None
    h, w = img.shape[:2]
    m = max(h, w)
    if m > max_side:
        scale = max_side / m
        img = cv2.resize(img, (int(w*scale), int(h*scale)), interpolation=cv2.INTER_AREA)
    return Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))

def open_artwork(b: bytes) -> Optional[Image.Image]:
    if b is None: return None
    img = Image.open(io.BytesIO(b))
    img.load()
    return img.convert("RGBA")

def crop_to_fill(image_pil: Image.Image, target_w: int, target_h: int) -> Image.Image:
    source_w, source_h = image_pil.size
    target_ratio = target_w / target_h
    source_ratio = source_w / source_h

    if source_ratio > target_ratio:
        scale_factor = target_h / source_h
        scaled_w = max(target_w, math.ceil(source_w * scale_factor))
        scaled_h = target_h
        resized_image = image_pil.resize((scaled_w, scaled_h), Image.Resampling.LANCZOS)
        crop_x = (scaled_w - target_w) // 2
        return resized_image.crop((crop_x, 0, crop_x + target_w, scaled_h))
    else:
        scale_factor = target_w / source_w
        scaled_w = target_w
        scaled_h = max(target_h, math.ceil(source_h * scale_factor))
        resized_image = image_pil.resize((scaled_w, scaled_h), Image.Resampling.LANCZOS)
        crop_y = (scaled_h - target_h) // 2
        return resized_image.crop((0, crop_y, scaled_w, crop_y + target_h))

def overscaled_box(x: float, y: float, w: float, h: float, factor: float) -> Tuple[int, int, int, int]:
    """Grow a box about its centre and snap outwards to whole pixels."""
    cx, cy = x + w / 2, y + h / 2
    half_w, half_h = w * factor / 2, h * factor / 2
    return (math.floor(cx - half_w), math.floor(cy - half_h), math.ceil(cx + half_w), math.ceil(cy + half_h))

def paste_cover(canvas: Image.Image, source: Image.Image, box: Tuple[int, int, int, int]) -> None:
    left, top, right, bottom = box
    target_w, target_h = right - left, bottom - top
    if target_w <= 0 or target_h <= 0:
        return
    fitted = crop_to_fill(source, target_w, target_h)
    if fitted.mode == "RGBA":
        canvas.alpha_composite(_clip_layer(fitted, left, top, canvas.size), (0, 0))
    else:
        canvas.paste(fitted, (left, top))
    fitted.close()

def _clip_layer(layer: Image.Image, left: int, top: int, size: Tuple[int, int]) -> Image.Image:
    # alpha_composite does not accept negative offsets; place on a full-size layer instead
    result = Image.new("RGBA", size, (0, 0, 0, 0))
    result.paste(layer, (left, top))
    return result

def draw_placeholder(canvas: Image.Image, box: Tuple[float, float, float, float]) -> None:
    left, top, right, bottom = (round(v) for v in box)
    if right <= left or bottom <= top:
        return
    layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    radius = max(1, round(min(right - left, bottom - top) * 0.03))
    draw.rounded_rectangle((left, top, right - 1, bottom - 1), radius=radius,
                           fill=PLACEHOLDER_FILL, outline=PLACEHOLDER_OUTLINE, width=1)
    canvas.alpha_composite(layer)

def encode_image(img: Image.Image, fmt: str = "png", quality: int = 88) -> bytes:
    fmt = (fmt or "png").lower()
    # Map to a valid Pillow format string
    if fmt in ("jpg", "jpeg"):
        # JPEG can't have alpha
        if img.mode != "RGB":
            img = img.convert("RGB")
        save_kwargs = dict(format="JPEG", quality=quality, optimize=True)
    elif fmt == "png":
        save_kwargs = dict(format="PNG", optimize=True)
    else:
        save_kwargs = dict(format=fmt.upper())

    buf = io.BytesIO()
    img.save(buf, **save_kwargs)
    return buf.getvalue()
