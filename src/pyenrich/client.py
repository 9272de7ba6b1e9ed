# src/pyenrich/client.py

import json
import logging
import time
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter

from .config import ClientConfig
from .models import InferenceRequest, InferenceResult
from .payload import RequestAdapter, get_adapter, redact_payload

logger = logging.getLogger(__name__)

# Status codes worth another attempt when retries are enabled.
RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})


class InferenceClient:
    """
    Sends requests to the inference endpoint.

    `send` never raises for transport problems. Connection errors,
    timeouts, non-2xx replies and unparseable bodies come back as an
    `InferenceResult` with `error` set.

    One instance is shared by all workers of a batch. The only state is
    the underlying `requests.Session` connection pool.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        adapter: Optional[RequestAdapter] = None,
        simulation_mode: bool = False,
        schema: Optional[Dict[str, Any]] = None,
        pool_size: int = 10,
    ):
        self.config = config or ClientConfig()
        self.adapter = adapter or get_adapter(self.config.api_format)
        self.simulation_mode = simulation_mode
        self.schema = schema

        self._session = requests.Session()
        http_adapter = HTTPAdapter(pool_connections=1, pool_maxsize=max(pool_size, 1))
        self._session.mount("http://", http_adapter)
        self._session.mount("https://", http_adapter)
        self._session.headers.update({"Content-Type": "application/json"})

    def __enter__(self) -> "InferenceClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._session.close()

    def send(self, request: InferenceRequest) -> InferenceResult:
        if self.simulation_mode:
            return self._simulated_result(request)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Request payload: "
                + json.dumps(redact_payload(request.payload), indent=2)
            )

        attempts = self.config.max_retries + 1
        result = None
        for attempt in range(1, attempts + 1):
            result = self._send_once(request)
            result.attempts = attempt
            if result.was_successful or not self._is_retryable(result):
                return result
            if attempt < attempts:
                delay = self.config.retry_backoff * attempt
                logger.warning(
                    f"Attempt {attempt}/{attempts} for '{request.image.name}' "
                    f"failed ({result.error}), retrying in {delay:.1f}s..."
                )
                time.sleep(delay)
        return result

    def _is_retryable(self, result: InferenceResult) -> bool:
        if result.status_code is not None:
            return result.status_code in RETRYABLE_STATUS
        return result.error_kind in ("timeout", "connection")

    def _send_once(self, request: InferenceRequest) -> InferenceResult:
        result_args = {"image": request.image}

        try:
            resp = self._session.post(
                request.url, json=request.payload, timeout=self.config.timeout
            )
        except requests.Timeout as e:
            return InferenceResult(
                **result_args,
                error=f"Request timed out after {self.config.timeout}s: {e}",
                error_kind="timeout",
            )
        except requests.ConnectionError as e:
            return InferenceResult(
                **result_args,
                error=f"HTTP request failed: {e}",
                error_kind="connection",
            )
        except requests.RequestException as e:
            return InferenceResult(
                **result_args,
                error=f"HTTP request failed: {e}",
                error_kind=type(e).__name__,
            )

        if not resp.ok:
            logger.error(f"Server said: {resp.text}")
            return InferenceResult(
                **result_args,
                error=f"HTTP error: {resp.status_code} {resp.reason or ''}".strip(),
                status_code=resp.status_code,
                error_kind="http",
            )

        try:
            body = resp.json()
        except ValueError as e:
            return InferenceResult(
                **result_args,
                error=f"Failed to parse response JSON: {e}",
                status_code=resp.status_code,
                error_kind="malformed_response",
            )

        if isinstance(body, dict) and body.get("error"):
            error_info = body["error"]
            if isinstance(error_info, dict):
                error_msg = error_info.get("message", str(error_info))
            else:
                error_msg = str(error_info)
            return InferenceResult(
                **result_args,
                raw_response=body,
                error=f"Response Error: {error_msg}",
                status_code=resp.status_code,
                error_kind="api",
            )

        return InferenceResult(
            **result_args,
            content=self.adapter.extract_content(body),
            raw_response=body if isinstance(body, dict) else {"body": body},
            usage_metadata=self.adapter.extract_usage(body),
            status_code=resp.status_code,
        )

    def _simulated_result(self, request: InferenceRequest) -> InferenceResult:
        """Builds a dummy reply without touching the network."""
        if self.schema is not None:
            content = json.dumps(create_dummy_output(self.schema))
        else:
            content = f"This is a simulated caption for {request.image.name}."

        return InferenceResult(
            image=request.image,
            content=content,
            raw_response={
                "message": {"role": "assistant", "content": content},
                "note": "This is a dummy response generated in simulation mode",
            },
            usage_metadata={"prompt_tokens": 0, "completion_tokens": 0},
        )


def create_dummy_output(schema: Dict[str, Any], name: str = "value") -> Any:
    """Creates a value that satisfies the structural parts of `schema`."""
    if isinstance(schema.get("enum"), list) and schema["enum"]:
        return schema["enum"][0]

    schema_type = schema.get("type")
    if isinstance(schema_type, list):
        # Get the first non-null type (like Optional[str])
        schema_type = next((t for t in schema_type if t != "null"), "null")

    if schema_type == "object" or (schema_type is None and "properties" in schema):
        properties = schema.get("properties", {})
        return {
            field_name: create_dummy_output(field_schema, field_name)
            for field_name, field_schema in properties.items()
            if isinstance(field_schema, dict)
        }
    if schema_type == "array":
        items = schema.get("items")
        if isinstance(items, dict):
            return [create_dummy_output(items, f"{name}_item")]
        return [f"dummy_{name}_item"]
    if schema_type == "integer":
        return 42
    if schema_type == "number":
        return 3.14
    if schema_type == "boolean":
        return True
    if schema_type == "null":
        return None
    return f"dummy_{name}"
