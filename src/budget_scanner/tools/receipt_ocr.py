# OCR gateways for receipt images
# Turns image bytes into raw receipt text

from __future__ import annotations

import base64
import io
import logging
from typing import Any, Dict, Optional

import pytesseract
import requests
from PIL import Image, UnidentifiedImageError

from budget_scanner.domain.errors import OcrError

logger = logging.getLogger(__name__)

VISION_URL = "https://vision.googleapis.com/v1/images:annotate"

SPACE_BREAKS = {"SPACE", "SURE_SPACE"}
NEWLINE_BREAKS = {"EOL_SURE_SPACE", "LINE_BREAK"}


def prepare_image(image_bytes: bytes, max_edge: int = 1000, quality: int = 70) -> bytes:
    """
    Downscale so the longest edge is at most `max_edge` and re-encode as JPEG.
    Keeps the upload small enough for the OCR request body.
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise OcrError(f"Could not read the receipt image: {e}") from e

    scale = min(max_edge / max(image.width, image.height), 1)
    if scale < 1:
        size = (max(round(image.width * scale), 1), max(round(image.height * scale), 1))
        image = image.resize(size, Image.LANCZOS)

    if image.mode != "RGB":
        image = image.convert("RGB")

    out = io.BytesIO()
    image.save(out, format="JPEG", quality=quality)
    return out.getvalue()


def build_annotate_request(image_b64: str) -> Dict[str, Any]:
    return {
        "requests": [
            {
                "image": {"content": image_b64},
                "features": [{"type": "DOCUMENT_TEXT_DETECTION", "maxResults": 1}],
            }
        ]
    }


def reconstruct_text(annotation: Dict[str, Any]) -> str:
    """
    Rebuild text from the pages -> blocks -> paragraphs -> words -> symbols tree.

    Unlike the flat `text` field this keeps one receipt line per output line,
    which the item extraction relies on.
    """
    parts = []
    for page in annotation.get("pages") or []:
        for block in page.get("blocks") or []:
            for paragraph in block.get("paragraphs") or []:
                for word in paragraph.get("words") or []:
                    for symbol in word.get("symbols") or []:
                        parts.append(symbol.get("text", ""))
                        detected = (symbol.get("property") or {}).get("detectedBreak") or {}
                        break_type = detected.get("type")
                        if break_type in SPACE_BREAKS:
                            parts.append(" ")
                        elif break_type in NEWLINE_BREAKS:
                            parts.append("\n")
    return "".join(parts)


def text_from_vision_response(data: Dict[str, Any]) -> str:
    responses = data.get("responses") or []
    first = responses[0] if responses else {}

    if first.get("error"):
        message = first["error"].get("message", "unknown error")
        raise OcrError(f"Google Cloud Vision API error: {message}")

    annotation = first.get("fullTextAnnotation")
    if annotation:
        text = reconstruct_text(annotation)
        if text:
            return text
        # fall back to the flat text if the tree was empty
        if annotation.get("text"):
            return annotation["text"]

    raise OcrError("No text detected in the image. The document might be empty or unreadable.")


def _error_message(resp: requests.Response) -> str:
    message = f"Google Cloud Vision API error: {resp.status_code} {resp.reason}"
    try:
        detail = resp.json().get("error", {}).get("message")
    except ValueError:
        detail = resp.text
    if detail:
        message += f" - {detail}"
    return message


class VisionOCRGateway:
    """Direct Google Cloud Vision REST call, API key in the query string."""

    def __init__(self, api_key: Optional[str], timeout: float = 60.0, url: str = VISION_URL):
        self.api_key = api_key
        self.timeout = timeout
        self.url = url

    def annotate(self, image_b64: str) -> Dict[str, Any]:
        if not self.api_key:
            raise OcrError("Google Cloud Vision API key is not configured (GOOGLE_CLOUD_VISION_API_KEY).")

        try:
            resp = requests.post(
                self.url,
                params={"key": self.api_key},
                json=build_annotate_request(image_b64),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise OcrError(f"Google Cloud Vision API unreachable: {e}") from e

        if not resp.ok:
            raise OcrError(_error_message(resp))
        return resp.json()

    def extract_text(self, image_bytes: bytes) -> str:
        image_b64 = base64.b64encode(image_bytes).decode("ascii")
        logger.info("Sending %d base64 chars to Vision", len(image_b64))
        return text_from_vision_response(self.annotate(image_b64))


class ProxiedVisionOCRGateway:
    """Same request through our own /api/vision endpoint, which holds the key."""

    def __init__(self, base_url: str, timeout: float = 60.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def extract_text(self, image_bytes: bytes) -> str:
        image_b64 = base64.b64encode(image_bytes).decode("ascii")
        try:
            resp = requests.post(
                f"{self.base_url}/api/vision",
                json={"imageBase64": image_b64},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise OcrError(f"OCR proxy unreachable: {e}") from e

        content_type = resp.headers.get("content-type", "")
        if not resp.ok or "application/json" not in content_type:
            raise OcrError(f"OCR proxy error: {resp.status_code} {resp.text[:200]}")
        return text_from_vision_response(resp.json())


class TesseractOCRGateway:
    """
    Local Tesseract OCR. Needs the tesseract binary on PATH.
    """

    def extract_text(self, image_bytes: bytes) -> str:
        try:
            image = Image.open(io.BytesIO(image_bytes))
            text = pytesseract.image_to_string(image)
        except (UnidentifiedImageError, OSError) as e:
            raise OcrError(f"Could not read the receipt image: {e}") from e
        except pytesseract.TesseractError as e:
            raise OcrError(f"Tesseract failed: {e}") from e

        if not text.strip():
            raise OcrError("No text detected in the image. The document might be empty or unreadable.")
        return text
