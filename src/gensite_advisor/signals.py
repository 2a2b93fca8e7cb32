"""Interaction event records captured from visitor browsing and their weight tiers."""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Any


WEIGHT_VERY_HIGH = 0.20
WEIGHT_HIGH = 0.15
WEIGHT_MEDIUM = 0.10
WEIGHT_LOW = 0.05

# Events at or above this weight keep their category in the compacted journey.
HIGH_WEIGHT_THRESHOLD = WEIGHT_HIGH

SEARCH = "search"
PAGE_VIEW = "page_view"
CLICK = "click"
SCROLL = "scroll"
REFERRER = "referrer"
TIME_ON_PAGE = "time_on_page"
VIDEO_PLAY = "video_play"
VIDEO_COMPLETE = "video_complete"

ACTION_CODES: dict[str, str] = {
    PAGE_VIEW: "page",
    CLICK: "click",
    SEARCH: "search",
    SCROLL: "scroll",
    REFERRER: "ref",
    TIME_ON_PAGE: "time",
    VIDEO_PLAY: "video",
    VIDEO_COMPLETE: "video_done",
}


def weight_label(weight: float) -> str:
    if weight >= WEIGHT_VERY_HIGH:
        return "Very High"
    if weight >= WEIGHT_HIGH:
        return "High"
    if weight >= WEIGHT_MEDIUM:
        return "Medium"
    return "Low"


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


@dataclass(frozen=True)
class InteractionEvent:
    """One observed visitor action.

    ``timestamp`` is in milliseconds. ``data`` holds the kind-specific payload
    exactly as the collector sent it; only the compactor reads from it.
    """

    type: str
    timestamp: float
    category: str = ""
    weight: float = 0.0
    product: str | None = None
    label: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def weight_label(self) -> str:
        return weight_label(self.weight)

    @property
    def is_high_weight(self) -> bool:
        return self.weight >= HIGH_WEIGHT_THRESHOLD

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "InteractionEvent":
        data = raw.get("data")
        product = raw.get("product")
        return cls(
            type=str(raw.get("type") or "").strip(),
            timestamp=_as_float(raw.get("timestamp")),
            category=str(raw.get("category") or "").strip(),
            weight=_as_float(raw.get("weight")),
            product=str(product).strip() if product else None,
            label=str(raw.get("label") or "").strip(),
            data=dict(data) if isinstance(data, dict) else {},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.type,
            "timestamp": self.timestamp,
            "category": self.category,
            "weight": self.weight,
            "weightLabel": self.weight_label,
            "data": dict(self.data),
        }
        if self.label:
            out["label"] = self.label
        if self.product:
            out["product"] = self.product
        return out


def coerce_events(raw_events: list[Any] | None) -> list[InteractionEvent]:
    events: list[InteractionEvent] = []
    for raw in raw_events or []:
        if isinstance(raw, InteractionEvent):
            events.append(raw)
        elif isinstance(raw, dict):
            events.append(InteractionEvent.from_dict(raw))
    return events


def search_event(query: str, *, timestamp: float) -> InteractionEvent:
    return InteractionEvent(
        type=SEARCH,
        timestamp=timestamp,
        category=SEARCH,
        weight=WEIGHT_VERY_HIGH,
        label="Search Query",
        data={"query": query},
    )
