# src/pyenrich/cli.py

import argparse
import logging
import signal
import sys
from typing import List, Optional

from pydantic import ValidationError as ConfigValidationError
from tqdm.contrib.logging import logging_redirect_tqdm

from . import __version__
from .config import DEFAULT_PROMPT, RunConfig, parse_options
from .exceptions import StartupError
from .pipeline import BatchPipeline

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STARTUP_ERROR = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="pyenrich",
        description="Caption or extract structured data from a directory of images "
        "with a vision model, writing one JSON file per image.",
    )
    ap.add_argument("--dir", dest="input_dir", help="Directory of input images")
    ap.add_argument("--api_url", help="Inference API URL, e.g. http://localhost:11434/api/chat")
    ap.add_argument("--model", help="Model name on the inference server")
    ap.add_argument("--schema", dest="schema_path", help="JSON schema file path (optional)")
    ap.add_argument(
        "--prompt",
        default=None,
        help=f"Prompt to send to the model (default: '{DEFAULT_PROMPT}')",
    )
    ap.add_argument(
        "--prompt-template", action="store_true",
        help="Render the prompt as a Jinja2 template with {{ filename }}, "
        "{{ stem }} and {{ extension }}",
    )
    ap.add_argument("--output_dir", help="Directory to save output JSON files (default: --dir)")
    ap.add_argument("--debug", action="store_true", help="Enable verbose debug logging")
    ap.add_argument("--options", help="JSON string of additional model options")
    ap.add_argument("--pretty-json", action="store_true", help="Pretty format the JSON")
    ap.add_argument("--batch-size", type=int, default=None, help="Number of images per batch")
    ap.add_argument(
        "--concurrency", type=int, default=None,
        help="Maximum parallel requests inside a batch (default: batch size)",
    )
    ap.add_argument(
        "--skip-existing", action="store_true",
        help="Skip any images which already have JSON for them.",
    )
    ap.add_argument("--suffix", default=None, help="Suffix to append to JSON file names.")
    ap.add_argument("--timeout", type=float, default=None, help="Per-request timeout in seconds")
    ap.add_argument(
        "--max-retries", type=int, default=None,
        help="Extra attempts for failed requests (default: 0)",
    )
    ap.add_argument(
        "--api-format", choices=["ollama", "openai"], default=None,
        help="Wire format of the inference API (default: ollama)",
    )
    ap.add_argument(
        "--dry-run", action="store_true",
        help="Print the first requests instead of sending them",
    )
    ap.add_argument(
        "--simulate", dest="simulation_mode", action="store_true",
        help="Generate dummy replies instead of calling the API",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


def config_from_args(args: argparse.Namespace) -> RunConfig:
    """Builds the run configuration. Unset arguments fall back to env vars, then defaults."""
    values = {
        "input_dir": args.input_dir,
        "api_url": args.api_url,
        "model": args.model,
        "schema_path": args.schema_path,
        "prompt": args.prompt,
        "output_dir": args.output_dir,
        "options": parse_options(args.options),
        "batch_size": args.batch_size,
        "concurrency": args.concurrency,
        "suffix": args.suffix,
    }
    # Flags only override when given.
    for flag in (
        "debug", "pretty_json", "skip_existing", "dry_run", "simulation_mode", "prompt_template"
    ):
        if getattr(args, flag):
            values[flag] = True

    client_values = {
        "api_format": args.api_format,
        "timeout": args.timeout,
        "max_retries": args.max_retries,
    }
    client_values = {k: v for k, v in client_values.items() if v is not None}
    if client_values:
        values["client"] = client_values

    return RunConfig(**{k: v for k, v in values.items() if v is not None})


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        force=True,
    )
    # Keep third-party request logs out of the way unless debugging.
    logging.getLogger("urllib3").setLevel(logging.DEBUG if debug else logging.WARNING)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.debug)

    try:
        config = config_from_args(args)
        pipeline = BatchPipeline(config)
    except StartupError as e:
        logger.error(str(e))
        return EXIT_STARTUP_ERROR
    except ConfigValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_STARTUP_ERROR

    if config.dry_run:
        try:
            pipeline.dry_run()
        except StartupError as e:
            logger.error(str(e))
            return EXIT_STARTUP_ERROR
        finally:
            pipeline.close()
        return EXIT_OK

    def _handle_interrupt(signum, frame):
        pipeline.cancel()

    previous_handler = signal.signal(signal.SIGINT, _handle_interrupt)
    try:
        with logging_redirect_tqdm():
            summary = pipeline.run()
    except StartupError as e:
        logger.error(str(e))
        return EXIT_STARTUP_ERROR
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print(summary.format(include_failures=config.debug))
    if pipeline.cancelled:
        return EXIT_INTERRUPTED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
