#!/usr/bin/env python3
"""Embeds recipe and hero image exports into the local content index and runs sample queries."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from dotenv import load_dotenv
from gensite_advisor.service import AdvisorService


ROOT_DIR = Path(__file__).resolve().parents[1]


def load_items(path: Path, key: str) -> list[dict]:
    """Accept either a bare JSON list or an export object wrapping the list under ``key``."""
    parsed = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(parsed, dict):
        parsed = parsed.get(key, [])
    if not isinstance(parsed, list):
        raise ValueError(f"{path} does not contain a list of {key}.")
    return [item for item in parsed if isinstance(item, dict)]


def main() -> int:
    load_dotenv(ROOT_DIR / ".env")

    parser = argparse.ArgumentParser(description="Embed recipes and hero images into the content index.")
    parser.add_argument("--recipes", type=Path, help="Recipes JSON export ({\"recipes\": [...]} or a list).")
    parser.add_argument("--images", type=Path, help="Hero images JSON export ({\"images\": [...]} or a list).")
    parser.add_argument("--batch-size", type=int, default=None, help="Recipes per embedding request.")
    parser.add_argument(
        "--query",
        action="append",
        default=[],
        help="Query to run against the index afterwards (can be passed multiple times).",
    )
    parser.add_argument("--top-k", type=int, default=5, help="Results per query.")
    args = parser.parse_args()

    service = AdvisorService()

    if args.recipes:
        recipes = load_items(args.recipes, "recipes")
        result = service.embed_recipes(recipes, batch_size=args.batch_size)
        print(f"recipes: {result['processed']}/{result['totalRecipes']} in {result['batches']} batches")
        for error in result["errors"]:
            print(f"  {error}")

    if args.images:
        images = load_items(args.images, "images")
        result = service.embed_hero_images(images)
        print(f"hero images: {result['processed']}/{result['totalImages']}")
        for error in result["errors"]:
            print(f"  {error}")

    for query in args.query:
        print(json.dumps(service.query_content(query=query, top_k=max(1, args.top_k)), indent=2))

    print(json.dumps(service.status(), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
