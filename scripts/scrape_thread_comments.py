#!/usr/bin/env python3
import argparse
import asyncio
import json
import shutil
import sys
from pathlib import Path
from typing import Any, Dict

# Allow running without installing the package
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from reddit_thread_comments.config import OUTPUT_DIR  # noqa: E402
from reddit_thread_comments.run_input import load_input_file  # noqa: E402
from reddit_thread_comments.scraper import run  # noqa: E402


def parse_args():
    p = argparse.ArgumentParser(
        description="Scrape the comments of one Reddit thread via its public JSON endpoint (JSONL + CSV)."
    )
    p.add_argument("--url", type=str, default="", help="Thread URL, e.g. https://www.reddit.com/r/x/comments/abc/title/")
    p.add_argument("--results-wanted", type=str, default=None, help="Max comments to save (default: 20; non-numeric = no limit).")
    p.add_argument("--proxy", action="append", default=[], help="Proxy URL (repeatable; rotated per request attempt).")
    p.add_argument("--input", type=str, default="INPUT.json", help="Input JSON file with startUrl/results_wanted/proxyConfiguration.")
    p.add_argument("--output-dir", type=str, default=OUTPUT_DIR, help="Dataset output directory.")
    p.add_argument("--fresh", action="store_true", help="Delete output-dir first (start from scratch).")
    return p.parse_args()


def _merge_input(args) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    input_path = Path(args.input)
    if input_path.exists():
        data.update(load_input_file(input_path))
    if args.url:
        data["startUrl"] = args.url
    if args.results_wanted is not None:
        data["results_wanted"] = args.results_wanted
    if args.proxy:
        data["proxyConfiguration"] = {"proxyUrls": list(args.proxy)}
    return data


def log(msg: str, level: str = "info"):
    prefix = {"info": "[*]", "success": "[+]", "warning": "[!]", "error": "[x]"}.get(level, "[*]")
    print(f"{prefix} {msg}")


async def main() -> int:
    args = parse_args()
    try:
        input_data = _merge_input(args)
    except (OSError, json.JSONDecodeError) as e:
        log(f"could not load {args.input}: {e}", "error")
        return 1

    output_dir = Path(args.output_dir)
    if args.fresh and output_dir.exists():
        shutil.rmtree(output_dir)

    log(f"output_dir = {output_dir}")
    return await run(input_data, output_dir, log_callback=log)


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
