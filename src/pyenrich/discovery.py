# src/pyenrich/discovery.py

import logging
import os
from pathlib import Path
from typing import List, Set, Union

from .exceptions import DirectoryError
from .models import ImageTask

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "bmp", "gif", "webp"})


def output_filename(base: str, suffix: str = "") -> str:
    """`cat` + `_processed` -> `cat_processed.json`."""
    return f"{base}{suffix}.json"


def _assign_output_name(path: Path, suffix: str, taken: Set[str]) -> str:
    """
    Picks a collision-free output file name for `path`.

    The first image with a given stem gets `<stem><suffix>.json`. Later
    images that would collide fall back to the full file name. Files are
    visited in name order, so an earlier image can only claim
    `<name><suffix>.json` through a stem equal to `name`, which would make
    its own name sort after this one.
    """
    name = output_filename(path.stem, suffix)
    if name not in taken:
        return name
    return output_filename(path.name, suffix)


def _list_files(input_dir: Path) -> List[Path]:
    if not input_dir.exists():
        raise DirectoryError(f"Input directory '{input_dir}' does not exist.")
    if not input_dir.is_dir():
        raise DirectoryError(f"Input path '{input_dir}' is not a directory.")

    try:
        with os.scandir(input_dir) as entries:
            files = [Path(entry.path) for entry in entries if entry.is_file()]
    except OSError as e:
        raise DirectoryError(f"Failed to read input directory '{input_dir}': {e}") from e

    return sorted(files, key=lambda p: p.name)


def discover_images(
    input_dir: Union[str, Path],
    output_dir: Union[str, Path, None] = None,
    suffix: str = "",
) -> List[ImageTask]:
    """
    Lists every supported image directly inside `input_dir`, in name order.

    Each task knows its output path and whether that file already exists.
    """
    input_dir = Path(input_dir)
    output_dir = Path(output_dir) if output_dir is not None else input_dir

    tasks = []
    taken: Set[str] = set()
    for path in _list_files(input_dir):
        extension = path.suffix[1:].lower()
        if extension not in SUPPORTED_EXTENSIONS:
            continue

        out_name = _assign_output_name(path, suffix, taken)
        if out_name != output_filename(path.stem, suffix):
            logger.warning(
                f"Output name for '{path.name}' collides with another image, "
                f"using '{out_name}'."
            )
        taken.add(out_name)
        output_path = output_dir / out_name

        tasks.append(
            ImageTask(
                path=path,
                name=path.name,
                stem=path.stem,
                extension=extension,
                output_path=output_path,
                output_exists=output_path.exists(),
            )
        )

    logger.debug(f"Found {len(tasks)} images in '{input_dir}'.")
    return tasks


def enumerate_images(
    input_dir: Union[str, Path],
    output_dir: Union[str, Path, None] = None,
    suffix: str = "",
    skip_existing: bool = False,
) -> List[ImageTask]:
    """Like `discover_images`, minus images that already have output when asked."""
    tasks = discover_images(input_dir, output_dir, suffix)
    if skip_existing:
        tasks = [task for task in tasks if not task.output_exists]
    return tasks
