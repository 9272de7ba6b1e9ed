# src/pyenrich/config.py

import json
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import OptionsError, SchemaError

DEFAULT_PROMPT = "What do you see in this image?"


class ClientConfig(BaseModel):
    """
    Settings for talking to the inference endpoint.

    `api_format` selects the wire shape: "ollama" for Ollama's /api/chat,
    "openai" for any OpenAI-compatible /chat/completions server.
    """

    api_format: Literal["ollama", "openai"] = "ollama"
    # Seconds. Applied to both connect and read.
    timeout: float = Field(default=120.0, gt=0)
    # Extra attempts after the first one; 0 means a single attempt.
    max_retries: int = Field(default=0, ge=0)
    retry_backoff: float = Field(default=1.0, ge=0.0)


class RunConfig(BaseSettings):
    """
    Everything one run of the pipeline needs.

    Values can be set via environment variables (e.g. `PYENRICH_MODEL`),
    explicit keyword arguments take precedence.
    """

    model_config = SettingsConfigDict(
        env_prefix="PYENRICH_", env_nested_delimiter="__", extra="ignore"
    )

    input_dir: Path
    api_url: str
    model: str
    schema_path: Optional[Path] = None
    prompt: str = DEFAULT_PROMPT
    # Render the prompt as a Jinja2 template per image.
    prompt_template: bool = False

    # If not provided, outputs land next to the images.
    output_dir: Optional[Path] = None

    debug: bool = False
    options: Optional[Dict[str, Any]] = None
    pretty_json: bool = False
    batch_size: int = Field(default=1, ge=1)
    # Optional cap on parallel requests inside one batch.
    concurrency: Optional[int] = Field(default=None, ge=1)
    skip_existing: bool = False
    suffix: str = ""
    dry_run: bool = False
    simulation_mode: bool = False

    client: ClientConfig = Field(default_factory=ClientConfig)

    @model_validator(mode="after")
    def _default_output_dir(self) -> "RunConfig":
        if self.output_dir is None:
            self.output_dir = self.input_dir
        return self

    @property
    def workers(self) -> int:
        """Parallelism used inside a batch."""
        if self.concurrency is None:
            return self.batch_size
        return min(self.batch_size, self.concurrency)


def parse_options(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parses the free-form model options string into a JSON object map."""
    if text is None or not text.strip():
        return None
    try:
        options = json.loads(text)
    except json.JSONDecodeError as e:
        raise OptionsError(f"Options are not valid JSON: {e}") from e
    if not isinstance(options, dict):
        raise OptionsError(
            f"Options must be a JSON object, got {type(options).__name__}."
        )
    return options


def load_schema(path: Union[str, Path]) -> Dict[str, Any]:
    """Reads and parses the schema file. Called once, before any batch."""
    schema_path = Path(path)
    try:
        text = schema_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SchemaError(f"Failed to read schema file '{schema_path}': {e}") from e

    try:
        schema = json.loads(text)
    except json.JSONDecodeError as e:
        raise SchemaError(f"Invalid JSON in schema file '{schema_path}': {e}") from e

    if not isinstance(schema, dict):
        raise SchemaError(
            f"Schema in '{schema_path}' must be a JSON object, "
            f"got {type(schema).__name__}."
        )
    return schema
