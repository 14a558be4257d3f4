# services/extraction/vision_client.py
from __future__ import annotations

import base64
import http.client
import json
import logging
import os
import re
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional

from services.errors import ModelCallFailed

logger = logging.getLogger(__name__)

DEFAULT_VISION_BASE_URL = (os.getenv("ROSTER_VISION_URL") or "http://host.docker.internal:11434").strip()
DEFAULT_VISION_MODEL = (os.getenv("ROSTER_VISION_MODEL") or "llama3.2-vision:11b").strip()
DEFAULT_TIMEOUT_S = float((os.getenv("ROSTER_VISION_TIMEOUT_S") or "60").strip() or "60")

OLLAMA_GENERATE_PATH = "/api/generate"
OLLAMA_FORMAT_JSON = "json"
TEMPERATURE = 0.1

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


@dataclass(frozen=True)
class VisionClientConfig:
    base_url: str = DEFAULT_VISION_BASE_URL
    model: str = DEFAULT_VISION_MODEL
    timeout_s: float = DEFAULT_TIMEOUT_S
    temperature: float = TEMPERATURE


def clean_json_response(text: str) -> str:
    """Drop markdown fences plus anything before the first '{' and after the last '}'."""
    s = _FENCE_RE.sub("", (text or "").strip())
    start = s.find("{")
    end = s.rfind("}")
    if start < 0 or end < start:
        return ""
    return s[start:end + 1]


def parse_extraction_json(text: str) -> Dict[str, Any]:
    cleaned = clean_json_response(text)
    if not cleaned:
        raise ModelCallFailed("Model response did not contain a JSON object")
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ModelCallFailed(f"Model response was not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ModelCallFailed("Model JSON was not an object")
    return parsed


class VisionClient:
    """
    Thin Ollama wrapper for one multimodal roster extraction call.
    Contract:
      - Input: image bytes + system prompt + user prompt
      - Output: the model's raw text (expected to hold one JSON object)
      - Raises ModelCallFailed on any transport or Ollama-side error
    """

    def __init__(self, config: Optional[VisionClientConfig] = None) -> None:
        self.config = config or VisionClientConfig()

    @property
    def model_name(self) -> str:
        return self.config.model

    def generate(self, *, system_prompt: str, user_prompt: str, image: bytes, mime_type: str) -> str:
        payload = {
            "model": self.config.model,
            "system": system_prompt,
            "prompt": user_prompt,
            "images": [base64.b64encode(image).decode("ascii")],
            "stream": False,
            "format": OLLAMA_FORMAT_JSON,
            "options": {"temperature": self.config.temperature},
        }
        logger.debug("Vision call: model=%s mime=%s bytes=%d", self.config.model, mime_type, len(image))

        resp = self._post_json(self._build_url(OLLAMA_GENERATE_PATH), payload, timeout_s=self.config.timeout_s)

        if resp.get("done") is not True:
            raise ModelCallFailed(f"Ollama generation not done: done={resp.get('done')}")

        raw = resp.get("response")
        if not isinstance(raw, str) or not raw.strip():
            raise ModelCallFailed("Ollama returned empty 'response'")
        return raw

    def _build_url(self, path: str) -> str:
        base = (self.config.base_url or "").strip()
        if not base:
            raise ModelCallFailed("Missing vision base_url (ROSTER_VISION_URL)")
        return base.rstrip("/") + path

    def _post_json(self, url: str, payload: Dict[str, Any], *, timeout_s: float) -> Dict[str, Any]:
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(
            url=url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=timeout_s) as r:
                body = r.read().decode("utf-8", errors="replace")
        except (
            urllib.error.HTTPError,
            urllib.error.URLError,
            http.client.HTTPException,
            TimeoutError,
            ValueError,
        ) as e:
            raise ModelCallFailed(f"Vision request failed: {e}") from e

        try:
            parsed = json.loads(body)
        except json.JSONDecodeError as e:
            raise ModelCallFailed(f"Vision HTTP 200 but body was not JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise ModelCallFailed("Vision HTTP 200 but JSON was not an object")

        err = parsed.get("error")
        if isinstance(err, str) and err.strip():
            raise ModelCallFailed(f"Ollama error: {err.strip()}")

        if "response" not in parsed and "done" not in parsed:
            raise ModelCallFailed(f"Ollama unexpected response keys: {list(parsed.keys())}")

        return parsed
