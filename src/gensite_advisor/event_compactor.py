"""Compacts raw interaction events into a token-efficient summary for intent interpretation.

Summary shape (every key is omitted when it would be empty)::

    {
      "searches": ["query1", "query2"],
      "ref": "google:\\"search terms\\"",
      "journey": [{"t": 0, "a": "page", "d": "Home"},
                  {"t": 8, "a": "page", "d": "Recipe Center", "c": "recipe"},
                  {"t": 15, "a": "click", "d": "A3500", "p": "A3500"}],
      "products": ["A3500", "E310"],
      "scrolls": {"/recipes": 100},
      "timeSpent": {"/a3500": 120}
    }
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

from gensite_advisor.signals import (
    ACTION_CODES,
    CLICK,
    PAGE_VIEW,
    REFERRER,
    SCROLL,
    SEARCH,
    TIME_ON_PAGE,
    VIDEO_COMPLETE,
    VIDEO_PLAY,
    InteractionEvent,
)


DEFAULT_MAX_EVENTS = 50
MAX_PRODUCTS = 10

_NON_JOURNEY_TYPES = {SEARCH, REFERRER, SCROLL, TIME_ON_PAGE}
_TRADEMARK_RE = re.compile(r"[®™]")
_PRODUCT_NAME_SEPARATORS = (" - ", " | ", " – ")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _number(value: Any) -> int | float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number):
        return 0
    return int(number) if number.is_integer() else number


def _round_half_up(value: float) -> int:
    if not math.isfinite(value):
        return 0
    return int(math.floor(value + 0.5))


def _page_path(event: InteractionEvent) -> str:
    page = event.data.get("page")
    if isinstance(page, dict) and _text(page.get("path")):
        return _text(page.get("path"))
    return _text(event.data.get("path")) or "unknown"


def extract_essence(event: InteractionEvent) -> str:
    """Return the minimal description of an event needed to understand the action."""
    data = event.data

    if event.type == SEARCH:
        return _text(data.get("query"))

    if event.type == PAGE_VIEW:
        result = _text(data.get("h1")) or _text(data.get("path"))
        price = _text(data.get("price"))
        if price:
            result += f" (${re.sub(r'[^0-9.]', '', price)})"
        return result

    if event.type == CLICK:
        return _text(data.get("text")) or _text(data.get("imgAlt")) or event.category

    if event.type == SCROLL:
        return f"{_number(data.get('depth'))}%"

    if event.type == REFERRER:
        domain = _text(data.get("domain")) or "direct"
        search_query = _text(data.get("searchQuery"))
        return f'{domain}:"{search_query}"' if search_query else domain

    if event.type == TIME_ON_PAGE:
        return f"{_number(data.get('seconds'))}s"

    if event.type in {VIDEO_PLAY, VIDEO_COMPLETE}:
        return _text(data.get("title")) or _text(data.get("src")) or "video"

    return event.label or event.type


def clean_product_name(raw: Any) -> str:
    name = _TRADEMARK_RE.sub("", _text(raw)).strip()
    for separator in _PRODUCT_NAME_SEPARATORS:
        if separator in name:
            name = name.split(separator, 1)[0]
    return name.strip()


def extract_products(events: list[InteractionEvent]) -> list[str]:
    """Products seen directly on events or as the heading of product pages, first-seen order."""
    products: list[str] = []
    seen: set[str] = set()

    def add(value: str) -> None:
        if value and value not in seen:
            seen.add(value)
            products.append(value)

    for event in events:
        if event.product:
            add(event.product)
        if event.category == "product" and event.type == PAGE_VIEW:
            add(clean_product_name(event.data.get("h1")))

    return products[:MAX_PRODUCTS]


def select_recent(events: list[InteractionEvent], max_events: int = DEFAULT_MAX_EVENTS) -> list[InteractionEvent]:
    """Keep the ``max_events`` most recent events, returned oldest first."""
    newest_first = sorted(events, key=lambda event: event.timestamp, reverse=True)
    kept = newest_first[: max(0, int(max_events))]
    return sorted(kept, key=lambda event: event.timestamp)


def compact_events(
    events: list[InteractionEvent],
    *,
    max_events: int = DEFAULT_MAX_EVENTS,
) -> dict[str, Any]:
    ordered = select_recent(events, max_events)
    if not ordered:
        return {}

    start_time = ordered[0].timestamp
    searches: list[str] = []
    referrer: str | None = None
    journey: list[dict[str, Any]] = []
    scrolls: dict[str, int | float] = {}
    time_spent: dict[str, int | float] = {}

    for event in ordered:
        if event.type == SEARCH:
            query = extract_essence(event)
            if query:
                searches.append(query)
            continue

        if event.type == REFERRER:
            if referrer is None:
                referrer = extract_essence(event)
            continue

        if event.type == SCROLL:
            path = _page_path(event)
            depth = _number(event.data.get("depth"))
            if path not in scrolls or depth > scrolls[path]:
                scrolls[path] = depth
            continue

        if event.type == TIME_ON_PAGE:
            path = _page_path(event)
            seconds = _number(event.data.get("seconds"))
            if path not in time_spent or seconds > time_spent[path]:
                time_spent[path] = seconds
            continue

        entry: dict[str, Any] = {
            "t": _round_half_up((event.timestamp - start_time) / 1000.0),
            "a": ACTION_CODES.get(event.type, event.type),
            "d": extract_essence(event),
        }
        if event.product:
            entry["p"] = event.product
        if event.is_high_weight and event.category and event.category != event.type:
            entry["c"] = event.category
        journey.append(entry)

    products = extract_products(ordered)

    summary: dict[str, Any] = {}
    if searches:
        summary["searches"] = searches
    if referrer and referrer != "direct":
        summary["ref"] = referrer
    if journey:
        summary["journey"] = journey
    if products:
        summary["products"] = products
    if scrolls:
        summary["scrolls"] = scrolls
    if time_spent:
        summary["timeSpent"] = time_spent
    return summary


def summary_to_json(summary: dict[str, Any]) -> str:
    return json.dumps(summary, separators=(",", ":"), ensure_ascii=False)
