# src/pyenrich/writer.py

import json
import os
from pathlib import Path
from typing import Any

from .exceptions import WriteError
from .models import ImageTask, OutputRecord


def serialize(content: Any, pretty: bool = False) -> str:
    if pretty:
        return json.dumps(content, indent=2, ensure_ascii=False)
    return json.dumps(content, separators=(",", ":"), ensure_ascii=False)


def write_output(task: ImageTask, content: Any, pretty: bool = False) -> OutputRecord:
    """
    Writes `content` as JSON to the task's output path.

    The output directory is created if needed and an existing file is
    replaced. The file is written under a temporary name first, so a
    failed write never leaves a truncated artifact behind.
    """
    path = Path(task.output_path)
    try:
        text = serialize(content, pretty)
    except (TypeError, ValueError) as e:
        raise WriteError(task.path, f"Content is not JSON serializable: {e}") from e

    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except (OSError, ValueError) as e:
        # UnicodeEncodeError (a ValueError) for lone surrogates in the reply
        if tmp_path.exists():
            tmp_path.unlink()
        raise WriteError(task.path, f"Failed to write '{path}': {e}") from e

    return OutputRecord(image=task, path=path, content=content)
