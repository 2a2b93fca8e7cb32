#!/usr/bin/env python3
"""Interprets a captured signals file (or a single query) and prints the intent profile."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from dotenv import load_dotenv
from gensite_advisor.event_compactor import compact_events, summary_to_json
from gensite_advisor.service import AdvisorService
from gensite_advisor.signal_interpreter import InterpretationContext


ROOT_DIR = Path(__file__).resolve().parents[1]


def main() -> int:
    load_dotenv(ROOT_DIR / ".env")

    parser = argparse.ArgumentParser(description="Interpret browsing signals into an intent profile.")
    parser.add_argument("--signals", type=Path, help="JSON file with {\"signals\": [...], \"query\": ...}.")
    parser.add_argument("--query", default="", help="Current query; used alone when no signals file is given.")
    parser.add_argument("--session", default=None, help="Session id whose history feeds the interpretation.")
    parser.add_argument("--preset", default=None, help="Model preset: production, fast or quality.")
    parser.add_argument("--show-summary", action="store_true", help="Print the compacted signal summary too.")
    args = parser.parse_args()

    raw: dict = {}
    if args.signals:
        parsed = json.loads(args.signals.read_text(encoding="utf-8"))
        raw = parsed if isinstance(parsed, dict) else {"signals": parsed}
    if args.query:
        raw["query"] = args.query

    service = AdvisorService()
    if not raw.get("signals") and raw.get("query"):
        profile = service.interpreter.interpret_query(raw["query"], preset=args.preset)
        print(json.dumps({"profile": profile.to_dict()}, indent=2))
        return 0

    context = InterpretationContext.from_dict(raw)
    if args.show_summary:
        print(summary_to_json(compact_events(context.events, max_events=service.config.max_events)))

    result = service.interpret(context=context, session_id=args.session, preset=args.preset)
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
