# tests/test_ocr_facade.py
"""
OCR façade: response conversion, Vision over httpx, Tesseract via pytesseract.

No network, no tesseract binary: Vision runs against httpx.MockTransport,
Tesseract against a monkeypatched pytesseract.image_to_data.

Covers:
  Conversion:
  - textAnnotations[0] is the full text, the rest become words
  - vertices with missing x/y default to 0; annotations without geometry skipped
  - image_to_data DICT: low-confidence / ghost / empty tokens dropped,
    lines rebuilt from block/par/line numbers

  VisionOcrEngine:
  - request shape (key param, base64 content, TEXT_DETECTION)
  - per-image error, top-level error, HTTP status, timeout -> OcrFailure
  - a slow body past the total deadline -> OcrFailure

  TesseractOcrEngine:
  - language/config/timeout passed through
  - undecodable bytes, tesseract error, process timeout -> OcrFailure

  Factory / health:
  - missing key / binary / unknown engine -> ConfigurationError
"""

import base64
import io
import json
import sys
import time
from pathlib import Path

import httpx
import pytest
import pytesseract
from PIL import Image

sys.path.insert(0, str(Path(__file__).parent.parent))

from storage import ocr_facade
from storage.ocr_facade import (
    ConfigurationError,
    OcrFailure,
    TesseractOcrEngine,
    VisionOcrEngine,
    get_ocr_engine,
    response_from_annotations,
    response_from_tesseract_data,
)


def _poly(x0, y0, x1, y1):
    return {"vertices": [{"x": x0, "y": y0}, {"x": x1, "y": y0}, {"x": x1, "y": y1}, {"x": x0, "y": y1}]}


ANNOTATIONS = [
    {"description": "Acme NV\n9000 Gent\n", "boundingPoly": _poly(0, 0, 200, 60)},
    {"description": "Acme", "boundingPoly": _poly(10, 10, 70, 30)},
    {"description": "NV", "boundingPoly": _poly(80, 10, 110, 30)},
    {"description": "9000", "boundingPoly": {"vertices": [{"y": 40}, {"x": 50, "y": 40}, {"x": 50, "y": 60}, {"y": 60}]}},
    {"description": "Gent"},
]


def _png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (40, 20), "white").save(buf, format="PNG")
    return buf.getvalue()


def _vision(handler) -> VisionOcrEngine:
    return VisionOcrEngine("test-key", client=httpx.Client(transport=httpx.MockTransport(handler)))


# ===========================================================================
# Conversion
# ===========================================================================

class TestResponseFromAnnotations:
    def test_full_text_and_words(self):
        ocr = response_from_annotations(ANNOTATIONS)
        assert ocr.full_text == "Acme NV\n9000 Gent\n"
        assert [w.text for w in ocr.words] == ["Acme", "NV", "9000"]

    def test_missing_coordinates_default_to_zero(self):
        ocr = response_from_annotations(ANNOTATIONS)
        bb = ocr.words[2].bounding_box
        assert (bb.x_min, bb.x_max, bb.y_min, bb.y_max) == (0.0, 50.0, 40.0, 60.0)

    def test_empty(self):
        ocr = response_from_annotations([])
        assert ocr.is_empty

    def test_full_text_only(self):
        ocr = response_from_annotations([{"description": "Acme NV"}])
        assert ocr.full_text == "Acme NV"
        assert ocr.words == ()
        assert not ocr.is_empty


class TestResponseFromTesseractData:
    DATA = {
        "text":      ["",  "Acme", "NV", "|",  "smudge", "9000", "Gent"],
        "conf":      [-1,  96,     91,   88,   12,       90,     "89.5"],
        "left":      [0,   10,     80,   120,  150,      10,     70],
        "top":       [0,   10,     10,   10,   10,       40,     40],
        "width":     [0,   60,     30,   1,    40,       50,     50],
        "height":    [0,   20,     20,   20,   20,       20,     20],
        "block_num": [0,   1,      1,    1,    1,        1,      1],
        "par_num":   [0,   1,      1,    1,    1,        1,      1],
        "line_num":  [0,   1,      1,    1,    1,        2,      2],
    }

    def test_filters_and_lines(self):
        ocr = response_from_tesseract_data(self.DATA)
        assert [w.text for w in ocr.words] == ["Acme", "NV", "9000", "Gent"]
        assert ocr.full_text == "Acme NV\n9000 Gent"

    def test_word_geometry(self):
        ocr = response_from_tesseract_data(self.DATA)
        bb = ocr.words[0].bounding_box
        assert (bb.x_min, bb.x_max, bb.y_min, bb.y_max) == (10.0, 70.0, 10.0, 30.0)

    def test_conf_floor_override(self):
        ocr = response_from_tesseract_data(self.DATA, conf_floor=0)
        assert "smudge" in [w.text for w in ocr.words]

    def test_missing_line_columns_collapse_to_one_line(self):
        data = {k: v for k, v in self.DATA.items() if k not in ("block_num", "par_num", "line_num")}
        ocr = response_from_tesseract_data(data)
        assert ocr.full_text == "Acme NV 9000 Gent"

    def test_empty(self):
        assert response_from_tesseract_data({}).is_empty


# ===========================================================================
# Vision engine
# ===========================================================================

class TestVisionEngine:
    def test_request_and_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["key"] = request.url.params.get("key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"responses": [{"textAnnotations": ANNOTATIONS}]})

        engine = _vision(handler)
        ocr = engine.annotate(b"jpeg-bytes", timeout=5)
        engine.close()

        assert seen["key"] == "test-key"
        req = seen["body"]["requests"][0]
        assert req["features"] == [{"type": "TEXT_DETECTION"}]
        assert base64.b64decode(req["image"]["content"]) == b"jpeg-bytes"
        assert ocr.full_text.startswith("Acme NV")
        assert len(ocr.words) == 3

    def test_no_annotations_is_empty(self):
        engine = _vision(lambda r: httpx.Response(200, json={"responses": [{}]}))
        assert engine.annotate(b"x").is_empty

    def test_per_image_error(self):
        body = {"responses": [{"error": {"code": 3, "message": "Bad image data."}}]}
        engine = _vision(lambda r: httpx.Response(200, json=body))
        with pytest.raises(OcrFailure, match="Bad image data"):
            engine.annotate(b"x")

    def test_top_level_error(self):
        body = {"error": {"code": 403, "message": "API key not valid."}}
        engine = _vision(lambda r: httpx.Response(403, json=body))
        with pytest.raises(OcrFailure, match="API key not valid"):
            engine.annotate(b"x")

    def test_http_status_without_body(self):
        engine = _vision(lambda r: httpx.Response(502, text="bad gateway"))
        with pytest.raises(OcrFailure, match="HTTP 502"):
            engine.annotate(b"x")

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        engine = _vision(handler)
        with pytest.raises(OcrFailure, match="timed out after 3s"):
            engine.annotate(b"x", timeout=3)

    def test_trickling_body_hits_total_deadline(self):
        def body():
            yield b'{"responses": '
            time.sleep(0.3)
            yield b"[{}]}"

        engine = _vision(lambda r: httpx.Response(200, content=body()))
        started = time.monotonic()
        with pytest.raises(OcrFailure, match="timed out after 0.1s"):
            engine.annotate(b"x", timeout=0.1)
        assert time.monotonic() - started < 1.0

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(OcrFailure, match="request failed"):
            _vision(handler).annotate(b"x")

    def test_empty_payload(self):
        engine = _vision(lambda r: httpx.Response(200, json={}))
        with pytest.raises(OcrFailure):
            engine.annotate(b"")


# ===========================================================================
# Tesseract engine
# ===========================================================================

class TestTesseractEngine:
    def test_passes_settings_and_converts(self, monkeypatch):
        seen = {}

        def fake_image_to_data(image, lang=None, config="", output_type=None, timeout=0, **kw):
            seen.update(lang=lang, config=config, timeout=timeout, mode=image.mode, output_type=output_type)
            return TestResponseFromTesseractData.DATA

        monkeypatch.setattr(pytesseract, "image_to_data", fake_image_to_data)
        engine = TesseractOcrEngine(lang="nld", config="--psm 11")
        ocr = engine.annotate(_png_bytes(), timeout=4)

        assert seen["lang"] == "nld"
        assert seen["config"] == "--psm 11"
        assert seen["timeout"] == 4
        assert seen["mode"] == "L"
        assert seen["output_type"] == pytesseract.Output.DICT
        assert ocr.full_text == "Acme NV\n9000 Gent"

    def test_undecodable_bytes(self):
        with pytest.raises(OcrFailure, match="cannot decode"):
            TesseractOcrEngine().annotate(b"definitely not an image")

    def test_tesseract_error(self, monkeypatch):
        def boom(*a, **kw):
            raise pytesseract.TesseractError(1, "Failed loading language 'nld'")

        monkeypatch.setattr(pytesseract, "image_to_data", boom)
        with pytest.raises(OcrFailure, match="tesseract failed"):
            TesseractOcrEngine().annotate(_png_bytes())

    def test_process_timeout(self, monkeypatch):
        def slow(*a, **kw):
            raise RuntimeError("Tesseract process timeout")

        monkeypatch.setattr(pytesseract, "image_to_data", slow)
        with pytest.raises(OcrFailure, match="timed out after 2s"):
            TesseractOcrEngine().annotate(_png_bytes(), timeout=2)


# ===========================================================================
# Factory + health
# ===========================================================================

class TestFactory:
    def test_vision_without_key(self, monkeypatch):
        monkeypatch.delenv("OCR_ENGINE", raising=False)
        monkeypatch.delenv("GOOGLE_VISION_API_KEY", raising=False)
        with pytest.raises(ConfigurationError, match="GOOGLE_VISION_API_KEY"):
            get_ocr_engine()

    def test_vision_with_key(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_VISION_API_KEY", "abc")
        engine = get_ocr_engine("vision")
        try:
            assert isinstance(engine, VisionOcrEngine)
            assert engine.api_key == "abc"
        finally:
            engine.close()

    def test_tesseract_missing_binary(self, monkeypatch):
        monkeypatch.setattr(ocr_facade.ocr_utils, "configure_tesseract_from_env", lambda: None)
        with pytest.raises(ConfigurationError, match="TESSERACT_CMD"):
            get_ocr_engine("tesseract")

    def test_tesseract_from_env(self, monkeypatch):
        monkeypatch.setenv("OCR_ENGINE", "Tesseract")
        monkeypatch.setattr(ocr_facade.ocr_utils, "configure_tesseract_from_env", lambda: "/usr/bin/tesseract")
        assert isinstance(get_ocr_engine(), TesseractOcrEngine)

    def test_unknown_engine(self):
        with pytest.raises(ConfigurationError, match="Unknown OCR engine"):
            get_ocr_engine("abbyy")

    def test_configuration_error_is_runtime_error(self):
        assert issubclass(ConfigurationError, RuntimeError)
        assert issubclass(OcrFailure, RuntimeError)


class TestHealth:
    def test_vision_unconfigured(self, monkeypatch):
        monkeypatch.delenv("OCR_ENGINE", raising=False)
        monkeypatch.delenv("GOOGLE_VISION_API_KEY", raising=False)
        info = ocr_facade.health()
        assert info["engine"] == "vision"
        assert info["configured"] is False
        assert info["vision"]["api_key_present"] is False

    def test_tesseract_reports_version(self, monkeypatch):
        monkeypatch.setenv("OCR_ENGINE", "tesseract")
        monkeypatch.setattr(
            ocr_facade.ocr_utils, "check_tesseract",
            lambda: {"found_on_disk": True, "version": "5.3.0"},
        )
        info = ocr_facade.health()
        assert info["configured"] is True
        assert info["tesseract"]["version"] == "5.3.0"
