from __future__ import annotations

import json
from io import BytesIO
from typing import Any, Dict, List

from PIL import Image

VENUE_ID = "venue-1"
WEEK = "2024-03-04"


def shift(name: str, date: str, start: str, end: str, role: str = "Bar", **extra: Any) -> Dict[str, Any]:
    d = {"date": date, "day": "", "role": role, "staff_name": name, "start_time": start, "end_time": end}
    d.update(extra)
    return d


def extraction(shifts: List[Dict[str, Any]], score: float = 95, week_start: str = WEEK, **extra: Any) -> Dict[str, Any]:
    d = {"week_start": week_start, "venue_name": "The Local", "confidence_score": score, "shifts": shifts, "uncertain_fields": []}
    d.update(extra)
    return d


class FakeVisionClient:
    """Returns queued responses in order; an Exception instance in the queue is raised."""

    model_name = "fake-vision"

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def generate(self, *, system_prompt: str, user_prompt: str, image: bytes, mime_type: str) -> str:
        self.calls.append({"user_prompt": user_prompt, "mime_type": mime_type, "size": len(image)})
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r if isinstance(r, str) else json.dumps(r)


def png_bytes(width: int = 64, height: int = 32, color=(200, 200, 200)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()
