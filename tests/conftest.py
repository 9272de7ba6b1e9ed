# tests/conftest.py

import base64
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional
from unittest.mock import Mock

import pytest
import requests

from pyenrich.config import ClientConfig, RunConfig
from pyenrich.models import ImageTask

API_URL = "http://localhost:11434/api/chat"
MODEL = "qwen3-vl:4b"

# Schema reused across tests: a single required string field.
LABEL_SCHEMA = {
    "type": "object",
    "properties": {"label": {"type": "string"}, "confidence": {"type": "number"}},
    "required": ["label"],
}


def make_task(path: Path, output_dir: Optional[Path] = None, suffix: str = "") -> ImageTask:
    output_dir = output_dir or path.parent
    return ImageTask(
        path=path,
        name=path.name,
        stem=path.stem,
        extension=path.suffix[1:].lower(),
        output_path=output_dir / f"{path.stem}{suffix}.json",
    )


def make_response(
    body: Any = None, status_code: int = 200, text: Optional[str] = None
) -> Mock:
    """Mock `requests.Response` with the attributes the client reads."""
    resp = Mock(spec=requests.Response)
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.reason = "OK" if resp.ok else "Error"
    if text is not None:
        resp.text = text
        resp.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
    else:
        resp.text = "" if body is None else str(body)
        resp.json.return_value = body
    return resp


def ollama_reply(content: str, **extra) -> Dict[str, Any]:
    body = {
        "model": MODEL,
        "message": {"role": "assistant", "content": content},
        "done": True,
        "prompt_eval_count": 12,
        "eval_count": 5,
    }
    body.update(extra)
    return body


def sent_image_bytes(payload: Dict[str, Any]) -> bytes:
    """Decodes the image an Ollama payload carries."""
    return base64.b64decode(payload["messages"][0]["images"][0])


@pytest.fixture
def image_dir(tmp_path):
    """Directory with three images and one unrelated file."""
    images = tmp_path / "images"
    images.mkdir()
    (images / "cat.jpg").write_bytes(b"\xff\xd8\xff cat bytes")
    (images / "dog.PNG").write_bytes(b"\x89PNG dog bytes")
    (images / "bird.gif").write_bytes(b"GIF89a bird bytes")
    (images / "notes.txt").write_text("not an image")
    return images


@pytest.fixture
def numbered_image_dir(tmp_path):
    """Directory with img1.jpg .. img5.jpg whose bytes name the image."""
    images = tmp_path / "numbered"
    images.mkdir()
    for i in range(1, 6):
        (images / f"img{i}.jpg").write_bytes(f"img{i}".encode())
    return images


@pytest.fixture
def schema_file(tmp_path):
    path = tmp_path / "schema.json"
    path.write_text(json.dumps(LABEL_SCHEMA))
    return path


@pytest.fixture
def clean_env(monkeypatch):
    """Removes PYENRICH_* variables so settings come only from the test."""
    for name in list(os.environ):
        if name.startswith("PYENRICH_"):
            monkeypatch.delenv(name)


@pytest.fixture
def make_config(clean_env):
    """Factory for RunConfig with test defaults."""

    def _make(input_dir: Path, **overrides) -> RunConfig:
        values = {"input_dir": input_dir, "api_url": API_URL, "model": MODEL}
        values.update(overrides)
        return RunConfig(**values)

    return _make


@pytest.fixture
def mock_post(mocker):
    """Patches `requests.Session.post`; returns the mock for configuring replies."""
    return mocker.patch("requests.Session.post")


@pytest.fixture
def fast_client_config():
    return ClientConfig(timeout=5.0, max_retries=0, retry_backoff=0.0)
