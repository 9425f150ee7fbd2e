"""
LeadPost OCR Utils — image decoding, Tesseract discovery, box geometry.

- Envelope photos come straight from phones: apply EXIF orientation before
  anything looks at pixels.
- Vision returns polygons (boundingPoly.vertices); Tesseract returns
  left/top/width/height. Both are folded into BoundingBox here.
- Small numeric helper (median) for the segmenter debug summary.
"""

from __future__ import annotations

import io
import os
import shutil
from typing import Any, Dict, Iterable, List, Mapping, Optional

from PIL import Image, ImageOps, UnidentifiedImageError
import pytesseract

from .ocr_types import BoundingBox


# =============================
# Tesseract
# =============================

_COMMON_TESSERACT_PATHS = [
    r"C:\Program Files\Tesseract-OCR\tesseract.exe",
    r"C:\Program Files (x86)\Tesseract-OCR\tesseract.exe",
    "/usr/bin/tesseract",
    "/usr/local/bin/tesseract",
    "/opt/homebrew/bin/tesseract",
]


def configure_tesseract_from_env() -> Optional[str]:
    """
    Point pytesseract at a binary: TESSERACT_CMD first, then PATH, then
    common install locations. Returns the resolved command or None.
    """
    cmd = os.environ.get("TESSERACT_CMD")
    if cmd and os.path.isfile(cmd):
        pytesseract.pytesseract.tesseract_cmd = cmd
        return cmd

    found = shutil.which("tesseract") or shutil.which("tesseract.exe")
    if found:
        pytesseract.pytesseract.tesseract_cmd = found
        return found

    for p in _COMMON_TESSERACT_PATHS:
        if os.path.isfile(p):
            pytesseract.pytesseract.tesseract_cmd = p
            return p
    return None


def check_tesseract() -> dict:
    try:
        configure_tesseract_from_env()
        ver = pytesseract.get_tesseract_version()
        return {"found_on_disk": True, "version": str(ver)}
    except Exception as e:
        return {"found_on_disk": False, "version": None, "error": str(e)}


# =============================
# Image decoding
# =============================

def apply_exif_orientation(img: Image.Image) -> Image.Image:
    """
    Rotate pixels according to EXIF Orientation, then strip EXIF so
    downstream consumers can't rotate again. Returns RGB image.
    """
    try:
        fixed = ImageOps.exif_transpose(img)
        buf = io.BytesIO()
        fixed.save(buf, format="PNG")  # Save to PNG to drop EXIF
        buf.seek(0)
        return Image.open(buf).convert("RGB")
    except Exception:
        return img.convert("RGB")


def load_image_bytes(content: bytes) -> Image.Image:
    """
    Decode uploaded bytes into an upright RGB image.
    Raises ValueError for empty or undecodable payloads.
    """
    if not content:
        raise ValueError("empty image payload")
    try:
        img = Image.open(io.BytesIO(content))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"cannot decode image: {e}") from e
    return apply_exif_orientation(img)


# =============================
# Geometry
# =============================

def bbox_from_vertices(vertices: Iterable[Mapping[str, Any]]) -> Optional[BoundingBox]:
    """
    Vision polygons omit zero coordinates ({"y": 10} means x=0), so missing
    keys default to 0. Returns None when there are no vertices.
    """
    xs: List[float] = []
    ys: List[float] = []
    for v in vertices or []:
        xs.append(float(v.get("x", 0) or 0))
        ys.append(float(v.get("y", 0) or 0))
    if not xs:
        return None
    return BoundingBox(x_min=min(xs), x_max=max(xs), y_min=min(ys), y_max=max(ys))


def bbox_from_ltwh(left: Any, top: Any, width: Any, height: Any) -> BoundingBox:
    """Tesseract image_to_data box → BoundingBox (negative sizes clamp to 0)."""
    x = float(left)
    y = float(top)
    w = max(0.0, float(width))
    h = max(0.0, float(height))
    return BoundingBox(x_min=x, x_max=x + w, y_min=y, y_max=y + h)


def union_bbox(boxes: Iterable[BoundingBox]) -> Optional[BoundingBox]:
    out: Optional[BoundingBox] = None
    for b in boxes:
        if out is None:
            out = b
            continue
        out = BoundingBox(
            x_min=min(out.x_min, b.x_min),
            x_max=max(out.x_max, b.x_max),
            y_min=min(out.y_min, b.y_min),
            y_max=max(out.y_max, b.y_max),
        )
    return out


def median(values: List[float]) -> float:
    if not values:
        return 0.0
    vals = sorted(values)
    n = len(vals)
    mid = n // 2
    if n % 2:
        return float(vals[mid])
    return float((vals[mid - 1] + vals[mid]) / 2.0)


def describe_boxes(boxes: Iterable[BoundingBox]) -> Dict[str, float]:
    """Small numeric summary for debug logging."""
    bs = list(boxes)
    if not bs:
        return {"count": 0, "median_height": 0.0, "max_x": 0.0}
    return {
        "count": len(bs),
        "median_height": median([b.height for b in bs]),
        "max_x": max(b.x_max for b in bs),
    }
