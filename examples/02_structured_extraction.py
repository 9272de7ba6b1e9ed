#!/usr/bin/env python3
"""
Example 2: Schema-Constrained Extraction

The model is asked to fill in a JSON schema for each image. Replies that do
not match the schema are counted as failures and no file is written for them.
"""

import json
from pathlib import Path

from pyenrich import BatchPipeline, RunConfig


def main():
    here = Path(__file__).parent
    data_dir = here / "data"
    schema_path = here / "example_schema.json"

    if not data_dir.exists():
        print(f"Image folder not found: {data_dir}")
        return

    config = RunConfig(
        input_dir=data_dir,
        output_dir=here / "output",
        api_url="http://localhost:11434/api/chat",
        model="qwen3-vl:4b",
        schema_path=schema_path,
        prompt="List the objects you can see in this image.",
        options={"temperature": 0},
        pretty_json=True,
        batch_size=8,
        concurrency=4,
        skip_existing=True,
        simulation_mode=True,
    )

    # Print the first few requests without sending anything
    pipeline = BatchPipeline(config)
    pipeline.dry_run(limit=1)

    summary = pipeline.run()
    print(summary.format(include_failures=True))
    usage = summary.as_dict()
    print(f"Tokens: {usage['prompt_tokens']} prompt, {usage['completion_tokens']} completion")

    for path in summary.written:
        data = json.loads(path.read_text())
        print(f"\n--- {path.name} ---")
        print(f"Scene: {data['scene']}")
        for obj in data["objects"]:
            print(f"  - {obj['name']} x{obj['count']}")


if __name__ == "__main__":
    main()
