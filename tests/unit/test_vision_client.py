from __future__ import annotations

import base64
import http.client

import pytest

from services.errors import ModelCallFailed
from services.extraction.vision_client import (
    VisionClient,
    VisionClientConfig,
    clean_json_response,
    parse_extraction_json,
)


def test_clean_json_response_strips_fences_and_chatter():
    text = 'Sure! Here you go:\n```json\n{"shifts": []}\n```\nLet me know.'
    assert clean_json_response(text) == '{"shifts": []}'
    assert clean_json_response("no json here") == ""


def test_parse_extraction_json_rejects_non_objects():
    assert parse_extraction_json('{"a": 1}') == {"a": 1}
    with pytest.raises(ModelCallFailed):
        parse_extraction_json("[1, 2]")
    with pytest.raises(ModelCallFailed):
        parse_extraction_json("{not: valid}")


def test_generate_posts_ollama_payload(monkeypatch):
    client = VisionClient(VisionClientConfig(base_url="http://ollama:11434/", model="m1", timeout_s=5))
    seen = {}

    def fake_post(url, payload, *, timeout_s):
        seen.update(url=url, payload=payload, timeout_s=timeout_s)
        return {"done": True, "response": '{"shifts": []}'}

    monkeypatch.setattr(client, "_post_json", fake_post)
    out = client.generate(system_prompt="sys", user_prompt="usr", image=b"\x89PNG", mime_type="image/png")

    assert out == '{"shifts": []}'
    assert seen["url"] == "http://ollama:11434/api/generate"
    assert seen["timeout_s"] == 5
    p = seen["payload"]
    assert p["model"] == "m1"
    assert p["format"] == "json"
    assert p["options"]["temperature"] == 0.1
    assert p["images"] == [base64.b64encode(b"\x89PNG").decode("ascii")]


@pytest.mark.parametrize("resp", [{"done": False, "response": "{}"}, {"done": True, "response": "  "}])
def test_generate_rejects_incomplete_responses(monkeypatch, resp):
    client = VisionClient(VisionClientConfig(base_url="http://ollama:11434"))
    monkeypatch.setattr(client, "_post_json", lambda *a, **k: resp)
    with pytest.raises(ModelCallFailed):
        client.generate(system_prompt="s", user_prompt="u", image=b"x", mime_type="image/png")


def test_missing_base_url_is_a_model_failure():
    client = VisionClient(VisionClientConfig(base_url=""))
    with pytest.raises(ModelCallFailed):
        client.generate(system_prompt="s", user_prompt="u", image=b"x", mime_type="image/png")


@pytest.mark.parametrize("exc", [http.client.BadStatusLine("garbage"), http.client.IncompleteRead(b"{"), ValueError("unknown url type")])
def test_transport_errors_become_model_failures(monkeypatch, exc):
    def broken_urlopen(*_a, **_k):
        raise exc

    monkeypatch.setattr("services.extraction.vision_client.urllib.request.urlopen", broken_urlopen)
    client = VisionClient(VisionClientConfig(base_url="http://ollama:11434"))
    with pytest.raises(ModelCallFailed):
        client.generate(system_prompt="s", user_prompt="u", image=b"x", mime_type="image/png")
