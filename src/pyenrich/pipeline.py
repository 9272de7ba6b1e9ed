# src/pyenrich/pipeline.py

import json
import logging
import sys
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from typing import List, Optional, Sequence, TextIO

from tqdm import tqdm

from .client import InferenceClient
from .config import RunConfig, load_schema
from .discovery import discover_images
from .exceptions import PerImageError, RequestError
from .models import Batch, ImageTask, InferenceRequest, OutputRecord, RunSummary
from .payload import RequestBuilder, encode_image, get_adapter, redact_payload
from .validation import validate_response
from .writer import write_output

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    ENUMERATING = "enumerating"
    DISPATCHING = "dispatching"
    AGGREGATING = "aggregating"
    REPORTING = "reporting"
    DONE = "done"


class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


def partition(tasks: Sequence[ImageTask], batch_size: int) -> List[Batch]:
    """Splits `tasks` into consecutive batches of at most `batch_size`."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    return [
        Batch(index=i, tasks=list(tasks[start : start + batch_size]))
        for i, start in enumerate(range(0, len(tasks), batch_size))
    ]


class BatchPipeline:
    """
    Runs every eligible image in a directory through the inference endpoint
    and writes one JSON file per image.

    Batches run one after another. Inside a batch, images run on a thread
    pool of `config.workers` threads, and the next batch starts only when
    every image of the current one has succeeded or failed. A failing image
    is recorded in `summary` and never affects its siblings.

    Example:
        pipeline = BatchPipeline(RunConfig(input_dir="photos", api_url=url, model="llava"))
        summary = pipeline.run()
        print(summary.format())
    """

    def __init__(
        self,
        config: RunConfig,
        client: Optional[InferenceClient] = None,
        show_progress: bool = True,
    ):
        self.config = config
        self.show_progress = show_progress

        # Startup checks: anything wrong here aborts before the first batch.
        self.schema = load_schema(config.schema_path) if config.schema_path else None
        adapter = client.adapter if client else get_adapter(config.client.api_format)
        self.builder = RequestBuilder(
            url=config.api_url,
            model=config.model,
            prompt=config.prompt,
            adapter=adapter,
            schema=self.schema,
            options=config.options,
            templated=config.prompt_template,
        )

        self._owns_client = client is None
        self.client = client or InferenceClient(
            config=config.client,
            adapter=adapter,
            simulation_mode=config.simulation_mode,
            schema=self.schema,
            pool_size=config.workers,
        )

        self.summary = RunSummary()
        self.state = RunState.ENUMERATING
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        """Stops dispatching new images. In-flight requests run to completion."""
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested, finishing in-flight images...")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def enumerate(self, record: bool = True) -> List[ImageTask]:
        """Lists the images to process, recording skipped ones in the summary."""
        tasks = discover_images(
            self.config.input_dir, self.config.output_dir, self.config.suffix
        )
        if self.config.skip_existing:
            selected = [task for task in tasks if not task.output_exists]
            skipped = len(tasks) - len(selected)
            if skipped and record:
                logger.info(f"Skipping {skipped} images with existing output.")
                self.summary.record_skipped(skipped)
            tasks = selected
        return tasks

    def build_request(self, task: ImageTask) -> InferenceRequest:
        return self.builder.build(task, encode_image(task))

    def process_image(self, task: ImageTask) -> OutputRecord:
        """
        Runs one image through read, request, validate and write.

        Raises a PerImageError subclass naming the stage that failed.
        """
        request = self.build_request(task)
        result = self.client.send(request)
        if not result.was_successful:
            raise RequestError(task.path, result.error, status_code=result.status_code)

        content = validate_response(result.content, self.schema, image=task.path)
        record = write_output(task, content, pretty=self.config.pretty_json)
        self.summary.record_success(record, result.usage_metadata)
        return record

    def _run_one(self, task: ImageTask) -> Outcome:
        if self.cancelled:
            self.summary.record_cancelled()
            return Outcome.CANCELLED

        try:
            self.process_image(task)
        except PerImageError as e:
            logger.error(f"Error processing {task.path} [{e.stage}]: {e.reason}")
            self.summary.record_failure(str(task.path), e.stage, e.reason)
            return Outcome.FAILED
        except Exception as e:
            logger.error(
                f"Unexpected error processing {task.path}: {e}",
                exc_info=self.config.debug,
            )
            self.summary.record_failure(str(task.path), "internal", repr(e))
            return Outcome.FAILED

        logger.debug(f"Wrote {task.output_path}")
        return Outcome.SUCCEEDED

    def run(self) -> RunSummary:
        """Processes every batch and returns the finished summary."""
        try:
            self.state = RunState.ENUMERATING
            tasks = self.enumerate()
            batches = partition(tasks, self.config.batch_size)
            logger.info(
                f"Found {len(tasks)} images to process in {len(batches)} batches "
                f"({self.config.workers} parallel requests per batch)."
            )
            self._run_batches(tasks, batches)
        finally:
            self.close()

        self.state = RunState.REPORTING
        logger.info(self.summary.format())
        self.state = RunState.DONE
        return self.summary

    def close(self) -> None:
        """Closes the inference client if this pipeline created it."""
        if self._owns_client:
            self.client.close()

    def _run_batches(self, tasks: List[ImageTask], batches: List[Batch]) -> None:
        progress = tqdm(
            total=len(tasks),
            bar_format="{bar} {n_fmt}/{total_fmt}",
            disable=not self.show_progress,
        )
        try:
            with ThreadPoolExecutor(
                max_workers=self.config.workers, thread_name_prefix="pyenrich"
            ) as executor:
                for batch in batches:
                    if self.cancelled:
                        remaining = sum(len(b) for b in batches[batch.index :])
                        self.summary.record_cancelled(remaining)
                        break
                    self._run_batch(executor, batch, len(batches), progress)
        finally:
            progress.close()

    def _run_batch(
        self, executor: ThreadPoolExecutor, batch: Batch, total: int, progress: tqdm
    ) -> None:
        self.state = RunState.DISPATCHING
        logger.info(f"Starting batch {batch.index + 1}/{total} ({len(batch)} images)")
        futures = [executor.submit(self._run_one, task) for task in batch.tasks]

        self.state = RunState.AGGREGATING
        outcomes = Counter()
        for future in as_completed(futures):
            outcome = future.result()
            outcomes[outcome] += 1
            if outcome is not Outcome.CANCELLED:
                progress.update(1)

        logger.info(
            f"Finished batch {batch.index + 1}/{total}: "
            f"{outcomes[Outcome.SUCCEEDED]} succeeded, {outcomes[Outcome.FAILED]} failed"
        )

    def dry_run(self, out: Optional[TextIO] = None, limit: int = 3) -> List[InferenceRequest]:
        """Builds requests for the first `limit` images and prints them."""
        out = out or sys.stdout
        tasks = self.enumerate(record=False)[:limit]

        built = []
        print("--- DRY RUN OUTPUT ---", file=out)
        print(f"Generated request payloads (first {limit}):", file=out)
        for task in tasks:
            try:
                request = self.build_request(task)
            except PerImageError as e:
                print(f"{task.name}: {e.reason}", file=out)
                continue
            built.append(request)
            print(f"POST {request.url}  # {task.name} -> {task.output_path.name}", file=out)
            print(json.dumps(redact_payload(request.payload), indent=2), file=out)
        print("----------------------", file=out)
        print("Dry run enabled. No requests were sent.", file=sys.stderr)
        return built
