# storage/ocr_facade.py
"""
OCR façade — one contract, two engines.

Public API:
- get_ocr_engine(name=None) -> engine with .annotate(content, timeout=...) -> OcrResponse
- response_from_annotations(textAnnotations) -> OcrResponse   (Vision JSON shape)
- response_from_tesseract_data(data) -> OcrResponse            (image_to_data DICT)
- health() -> engine + configuration state

Engines:
- "vision"    Google Cloud Vision TEXT_DETECTION over REST (default).
              Needs GOOGLE_VISION_API_KEY.
- "tesseract" local Tesseract via pytesseract. Needs the tesseract binary.

Errors:
- ConfigurationError  engine cannot be built (missing key / binary). Raised by
                      get_ocr_engine() before any image is touched.
- OcrFailure          one image could not be read (provider error, HTTP error,
                      timeout, undecodable bytes). Never retried here.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import time
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import httpx
import pytesseract
from PIL import ImageOps

from . import ocr_utils
from .ocr_types import OcrResponse, WordAnnotation

log = logging.getLogger(__name__)

# -----------------------------
# Config
# -----------------------------

VISION_API_URL = os.getenv("VISION_API_URL") or "https://vision.googleapis.com/v1/images:annotate"
TESSERACT_LANG = os.getenv("TESSERACT_LANG") or "nld+fra+eng"
TESSERACT_CONFIG = os.getenv("TESSERACT_CONFIG") or "--oem 3 --psm 11"
DEFAULT_TIMEOUT_S = 20.0
LOW_CONF_DROP = 40.0  # drop Tesseract words with conf < 40

ENGINE_NAMES = ("vision", "tesseract")


class ConfigurationError(RuntimeError):
    """Required OCR credentials/binaries are missing; fatal for a whole batch."""


class OcrFailure(RuntimeError):
    """OCR could not produce text for a single image."""


class OcrEngine(Protocol):
    name: str

    def annotate(self, content: bytes, *, timeout: float = DEFAULT_TIMEOUT_S) -> OcrResponse:
        ...


# -----------------------------
# Response conversion
# -----------------------------

def response_from_annotations(annotations: Sequence[Mapping[str, Any]]) -> OcrResponse:
    """
    Vision textAnnotations → OcrResponse.
    [0] is the whole-image text; the rest are words. Words without a
    boundingPoly are kept out of the geometry (full text still has them).
    """
    if not annotations:
        return OcrResponse()

    full_text = str(annotations[0].get("description") or "")
    words: List[WordAnnotation] = []
    for ann in annotations[1:]:
        text = str(ann.get("description") or "").strip()
        if not text:
            continue
        poly = ann.get("boundingPoly") or {}
        bb = ocr_utils.bbox_from_vertices(poly.get("vertices") or [])
        if bb is None:
            continue
        words.append(WordAnnotation(text=text, bounding_box=bb))

    return OcrResponse(full_text=full_text, words=tuple(words))


def _as_float(v: Any, default: float = -1.0) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def response_from_tesseract_data(
    data: Mapping[str, List[Any]],
    *,
    conf_floor: float = LOW_CONF_DROP,
) -> OcrResponse:
    """
    pytesseract.image_to_data(output_type=DICT) → OcrResponse.
    Full text is rebuilt line by line from Tesseract's own
    (block, paragraph, line) numbering.
    """
    texts = data.get("text") or []
    n = len(texts)

    def col(key: str) -> List[Any]:
        vals = data.get(key)
        return list(vals) if vals is not None and len(vals) == n else [0] * n

    confs, lefts, tops, widths, heights = col("conf"), col("left"), col("top"), col("width"), col("height")
    blocks, pars, line_nums = col("block_num"), col("par_num"), col("line_num")

    words: List[WordAnnotation] = []
    lines: Dict[Tuple[Any, Any, Any], List[str]] = {}

    for i in range(n):
        raw = str(texts[i] or "").strip()
        if not raw:
            continue
        if _as_float(confs[i]) < conf_floor:
            continue
        bb = ocr_utils.bbox_from_ltwh(lefts[i], tops[i], widths[i], heights[i])
        # Skip zero / 1-pixel "ghost" words
        if bb.width <= 1 or bb.height <= 1:
            continue
        words.append(WordAnnotation(text=raw, bounding_box=bb))
        lines.setdefault((blocks[i], pars[i], line_nums[i]), []).append(raw)

    full_text = "\n".join(" ".join(parts) for parts in lines.values())
    return OcrResponse(full_text=full_text, words=tuple(words))


# -----------------------------
# Engines
# -----------------------------

class VisionOcrEngine:
    """
    Vision TEXT_DETECTION over REST.

    `timeout` is a wall-clock budget for the whole call. httpx only applies it
    per phase (connect, send, each read), so the body is streamed and checked
    against the deadline after every chunk and once the response is read. A
    single stalled phase can still run up to `timeout` past the deadline.
    """

    name = "vision"

    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = VISION_API_URL,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self._client = client or httpx.Client()

    def close(self) -> None:
        self._client.close()

    def annotate(self, content: bytes, *, timeout: float = DEFAULT_TIMEOUT_S) -> OcrResponse:
        if not content:
            raise OcrFailure("empty image payload")

        body = {
            "requests": [
                {
                    "image": {"content": base64.b64encode(content).decode("ascii")},
                    "features": [{"type": "TEXT_DETECTION"}],
                }
            ]
        }

        # a trickling response would reset the per-read timeout forever
        deadline = time.monotonic() + timeout
        try:
            with self._client.stream(
                "POST",
                self.api_url,
                params={"key": self.api_key},
                json=body,
                timeout=timeout,
            ) as resp:
                chunks: List[bytes] = []
                for chunk in resp.iter_bytes():
                    chunks.append(chunk)
                    if time.monotonic() > deadline:
                        break
        except httpx.TimeoutException as e:
            raise OcrFailure(f"OCR timed out after {timeout:g}s") from e
        except httpx.HTTPError as e:
            raise OcrFailure(f"OCR request failed: {e}") from e
        if time.monotonic() > deadline:
            raise OcrFailure(f"OCR timed out after {timeout:g}s")

        try:
            payload = json.loads(b"".join(chunks))
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        top_error = (payload.get("error") or {}).get("message")
        if resp.status_code >= 400 or top_error:
            msg = top_error or f"OCR provider returned HTTP {resp.status_code}"
            log.warning("Vision request failed: %s", msg)
            raise OcrFailure(msg)

        responses = payload.get("responses") or [{}]
        first = responses[0] or {}
        if first.get("error"):
            msg = first["error"].get("message") or "OCR provider reported an error"
            log.warning("Vision reported an image error: %s", msg)
            raise OcrFailure(msg)

        return response_from_annotations(first.get("textAnnotations") or [])


class TesseractOcrEngine:
    name = "tesseract"

    def __init__(
        self,
        *,
        lang: str = TESSERACT_LANG,
        config: str = TESSERACT_CONFIG,
        conf_floor: float = LOW_CONF_DROP,
    ) -> None:
        self.lang = lang
        self.config = config
        self.conf_floor = conf_floor

    def annotate(self, content: bytes, *, timeout: float = DEFAULT_TIMEOUT_S) -> OcrResponse:
        try:
            img = ocr_utils.load_image_bytes(content)
        except ValueError as e:
            raise OcrFailure(str(e)) from e

        gray = ImageOps.autocontrast(ImageOps.grayscale(img))

        try:
            data = pytesseract.image_to_data(
                gray,
                lang=self.lang,
                config=self.config,
                output_type=pytesseract.Output.DICT,
                timeout=timeout,
            )
        except pytesseract.TesseractError as e:
            log.warning("Tesseract failed: %s", e)
            raise OcrFailure(f"tesseract failed: {e.message or e}") from e
        except RuntimeError as e:
            # pytesseract signals its subprocess timeout as a bare RuntimeError
            raise OcrFailure(f"OCR timed out after {timeout:g}s") from e
        except OSError as e:
            raise OcrFailure(f"tesseract not runnable: {e}") from e

        return response_from_tesseract_data(data, conf_floor=self.conf_floor)


# -----------------------------
# Factory + health
# -----------------------------

def _engine_name(name: Optional[str]) -> str:
    return (name or os.getenv("OCR_ENGINE") or "vision").strip().lower()


def get_ocr_engine(name: Optional[str] = None, *, api_key: Optional[str] = None) -> OcrEngine:
    engine = _engine_name(name)

    if engine == "vision":
        key = (api_key or os.getenv("GOOGLE_VISION_API_KEY") or "").strip()
        if not key:
            raise ConfigurationError("Google Vision API key not configured (GOOGLE_VISION_API_KEY)")
        return VisionOcrEngine(key)

    if engine == "tesseract":
        if not ocr_utils.configure_tesseract_from_env():
            raise ConfigurationError("Tesseract binary not found; install it or set TESSERACT_CMD")
        return TesseractOcrEngine()

    raise ConfigurationError(f"Unknown OCR engine {engine!r}; expected one of {', '.join(ENGINE_NAMES)}")


def health() -> Dict[str, Any]:
    engine = _engine_name(None)
    out: Dict[str, Any] = {"engine": engine, "configured": True, "error": None}

    if engine == "vision":
        out["vision"] = {
            "api_url": VISION_API_URL,
            "api_key_present": bool((os.getenv("GOOGLE_VISION_API_KEY") or "").strip()),
        }
        out["configured"] = out["vision"]["api_key_present"]
        if not out["configured"]:
            out["error"] = "GOOGLE_VISION_API_KEY missing"
    elif engine == "tesseract":
        out["tesseract"] = ocr_utils.check_tesseract()
        out["configured"] = bool(out["tesseract"].get("found_on_disk"))
        if not out["configured"]:
            out["error"] = out["tesseract"].get("error") or "tesseract not found"
    else:
        out["configured"] = False
        out["error"] = f"unknown engine {engine!r}"

    return out
