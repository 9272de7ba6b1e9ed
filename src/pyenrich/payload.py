# src/pyenrich/payload.py

import base64
import logging
from typing import Any, Dict, Optional, Type

import jinja2

from .exceptions import ConfigurationError, ReadError
from .models import ImageTask, InferenceRequest

logger = logging.getLogger(__name__)

MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "bmp": "image/bmp",
    "gif": "image/gif",
    "webp": "image/webp",
}

# Name given to the schema where the wire format needs one.
SCHEMA_NAME = "extract_info"


def encode_image(task: ImageTask) -> str:
    """Reads the whole image file and returns it base64-encoded."""
    try:
        data = task.path.read_bytes()
    except OSError as e:
        raise ReadError(task.path, f"Failed to read file: {e}") from e
    return base64.b64encode(data).decode("ascii")


def mime_type_for(extension: str) -> str:
    return MIME_TYPES.get(extension.lower(), "application/octet-stream")


def redact_payload(payload: Any) -> Any:
    """Returns a copy of `payload` with image data replaced by a short marker."""
    if isinstance(payload, dict):
        redacted = {}
        for key, value in payload.items():
            if key == "images" and isinstance(value, list):
                redacted[key] = [f"<{len(str(v))} base64 chars>" for v in value]
            else:
                redacted[key] = redact_payload(value)
        return redacted
    if isinstance(payload, list):
        return [redact_payload(item) for item in payload]
    if isinstance(payload, str) and payload.startswith("data:") and ";base64," in payload:
        head, data = payload.split(",", 1)
        return f"{head},<{len(data)} base64 chars>"
    return payload


class RequestAdapter:
    """
    Maps between our request data and one endpoint's wire format.

    Subclasses build the JSON body and pull the model's reply and token
    counts back out of the JSON response.
    """

    name = "base"

    def build_payload(
        self,
        model: str,
        prompt: str,
        image_b64: str,
        mime_type: str,
        schema: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def extract_content(self, body: Any) -> Any:
        raise NotImplementedError

    def extract_usage(self, body: Any) -> Optional[Dict[str, Any]]:
        return None


class OllamaChatAdapter(RequestAdapter):
    """Ollama's /api/chat endpoint, non-streaming."""

    name = "ollama"

    def build_payload(
        self, model, prompt, image_b64, mime_type, schema=None, options=None
    ):
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": prompt, "images": [image_b64]}],
            "stream": False,
        }
        if schema is not None:
            payload["format"] = schema
        if options is not None:
            payload["options"] = options
        return payload

    def extract_content(self, body):
        if not isinstance(body, dict):
            return body
        messages = body.get("messages")
        if isinstance(messages, list):
            if not messages:
                return ""
            first = messages[0]
            return first.get("content", "") if isinstance(first, dict) else first
        message = body.get("message")
        if isinstance(message, dict):
            return message.get("content", "")
        return body

    def extract_usage(self, body):
        if not isinstance(body, dict):
            return None
        if "prompt_eval_count" not in body and "eval_count" not in body:
            return None
        usage = {
            "prompt_tokens": body.get("prompt_eval_count", 0),
            "completion_tokens": body.get("eval_count", 0),
        }
        if "total_duration" in body:
            usage["total_duration_ns"] = body["total_duration"]
        return usage


class OpenAIChatAdapter(RequestAdapter):
    """Any OpenAI-compatible /chat/completions endpoint."""

    name = "openai"

    def build_payload(
        self, model, prompt, image_b64, mime_type, schema=None, options=None
    ):
        payload = {
            "model": model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:{mime_type};base64,{image_b64}"
                            },
                        },
                    ],
                }
            ],
            "stream": False,
        }
        if schema is not None:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": SCHEMA_NAME, "schema": schema},
            }
        # Options sit at the top level here; they never replace what we set.
        if options:
            for key, value in options.items():
                payload.setdefault(key, value)
        return payload

    def extract_content(self, body):
        try:
            return body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return body

    def extract_usage(self, body):
        if not isinstance(body, dict) or not isinstance(body.get("usage"), dict):
            return None
        usage = body["usage"]
        return {
            "prompt_tokens": usage.get("prompt_tokens", 0),
            "completion_tokens": usage.get("completion_tokens", 0),
        }


ADAPTERS: Dict[str, Type[RequestAdapter]] = {
    OllamaChatAdapter.name: OllamaChatAdapter,
    OpenAIChatAdapter.name: OpenAIChatAdapter,
}


def get_adapter(api_format: str) -> RequestAdapter:
    try:
        return ADAPTERS[api_format]()
    except KeyError:
        known = ", ".join(sorted(ADAPTERS))
        raise ConfigurationError(
            f"Unknown API format '{api_format}'. Known formats: {known}."
        ) from None


class RequestBuilder:
    """
    Turns one image into an `InferenceRequest`.

    The prompt is sent as given. With `templated=True` it is instead a
    Jinja2 template rendered with the image's `filename`, `stem` and
    `extension`. No I/O happens here.
    """

    def __init__(
        self,
        url: str,
        model: str,
        prompt: str,
        adapter: RequestAdapter,
        schema: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
        templated: bool = False,
    ):
        self.url = url
        self.model = model
        self.prompt = prompt
        self.adapter = adapter
        self.schema = schema
        self.options = options

        self._template = None
        if templated:
            try:
                self._template = jinja2.Environment().from_string(prompt)
            except jinja2.TemplateSyntaxError as e:
                raise ConfigurationError(f"Invalid prompt template: {e}") from e

    def render_prompt(self, task: ImageTask) -> str:
        if self._template is None:
            return self.prompt
        return self._template.render(
            filename=task.name, stem=task.stem, extension=task.extension
        )

    def build(self, task: ImageTask, image_b64: str) -> InferenceRequest:
        payload = self.adapter.build_payload(
            model=self.model,
            prompt=self.render_prompt(task),
            image_b64=image_b64,
            mime_type=mime_type_for(task.extension),
            schema=self.schema,
            options=self.options,
        )
        return InferenceRequest(
            image=task, url=self.url, model=self.model, payload=payload
        )
