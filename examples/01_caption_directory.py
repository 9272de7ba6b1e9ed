#!/usr/bin/env python3
"""
Example 1: Captioning a Directory of Images

This example runs the pipeline over a folder of images and writes one caption
file next to each image. It uses simulation mode, so no inference server is
needed. Drop `simulation_mode=True` and point `api_url` at a running Ollama
server to caption for real.
"""

import json
from pathlib import Path

from pyenrich import BatchPipeline, RunConfig


def main():
    data_dir = Path(__file__).parent / "data"
    if not data_dir.exists() or not any(data_dir.iterdir()):
        print(f"No images found in: {data_dir}")
        print("Put a few .jpg or .png files there and run again.")
        return

    config = RunConfig(
        input_dir=data_dir,
        api_url="http://localhost:11434/api/chat",
        model="qwen3-vl:4b",
        prompt="Describe {{ filename }} in one sentence.",
        prompt_template=True,
        suffix="_caption",
        batch_size=4,
        simulation_mode=True,
    )

    pipeline = BatchPipeline(config)
    summary = pipeline.run()

    print(summary.format(include_failures=True))
    for path in summary.written:
        print(f"{path.name}: {json.loads(path.read_text())}")


if __name__ == "__main__":
    main()
