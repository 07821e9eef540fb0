"""
Confluence Scorer — weighted pre-trade checklist
================================================

Score = Σ weight of the checked items. Entry is gated on a fixed
threshold (GATE_THRESHOLD), independent of how large the catalog is.

Checklist state lives in a ConfluenceSession created per trade/request;
the scoring functions themselves are pure.
"""

from __future__ import annotations
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

from tradebook.journal.models import ConfluenceItem
from tradebook.utils.exceptions import ValidationError

GATE_THRESHOLD = 5.0
UNCATEGORIZED = "Uncategorized"

CATEGORIES = [
    "Technical Analysis",
    "Fundamental Analysis",
    "Market Structure",
    "Risk Management",
    "Sentiment Analysis",
    "Time-based",
    "Other",
]


def checked_weight(catalog: Iterable[ConfluenceItem], checked_ids: Iterable[str]) -> float:
    checked = set(checked_ids)
    return sum((item.weight for item in catalog if item.id in checked), 0.0)


def total_weight(catalog: Iterable[ConfluenceItem]) -> float:
    return sum((item.weight for item in catalog if item.is_active), 0.0)


def progress(catalog: Iterable[ConfluenceItem], checked_ids: Iterable[str]) -> float:
    """Checked weight as a percentage of the active total (0 for an empty catalog)."""
    catalog = list(catalog)
    total = total_weight(catalog)
    if total == 0:
        return 0.0
    return checked_weight(catalog, checked_ids) / total * 100


def passes_gate(weight: float) -> bool:
    return weight >= GATE_THRESHOLD


def group_by_category(catalog: Iterable[ConfluenceItem]) -> Dict[str, List[ConfluenceItem]]:
    """Display grouping only; first-seen category order is kept."""
    groups: Dict[str, List[ConfluenceItem]] = OrderedDict()
    for item in catalog:
        groups.setdefault(item.category or UNCATEGORIZED, []).append(item)
    return groups


@dataclass
class ConfluenceSession:
    """Checklist state for one in-progress trade."""
    catalog: List[ConfluenceItem] = field(default_factory=list)
    checked_ids: Set[str] = field(default_factory=set)

    def _known(self, item_id: str) -> None:
        if not any(item.id == item_id for item in self.catalog):
            raise ValidationError(f"Unknown confluence item '{item_id}'", field="confluence_item_id")

    def check(self, item_id: str) -> None:
        self._known(item_id)
        self.checked_ids.add(item_id)

    def uncheck(self, item_id: str) -> None:
        self.checked_ids.discard(item_id)

    def toggle(self, item_id: str) -> bool:
        """Flip one item; returns its new checked state."""
        if item_id in self.checked_ids:
            self.uncheck(item_id)
            return False
        self.check(item_id)
        return True

    def reset(self) -> None:
        self.checked_ids.clear()

    @property
    def score(self) -> float:
        return checked_weight(self.catalog, self.checked_ids)

    @property
    def progress(self) -> float:
        return progress(self.catalog, self.checked_ids)

    def can_proceed(self) -> bool:
        return passes_gate(self.score)

    def selections(self) -> Dict[str, bool]:
        """item id → present flag, for the trade_confluence rows."""
        return {item.id: item.id in self.checked_ids for item in self.catalog}

    def to_dict(self) -> dict:
        return {
            "checked_ids": sorted(self.checked_ids),
            "score": self.score,
            "total_weight": total_weight(self.catalog),
            "progress": self.progress,
            "threshold": GATE_THRESHOLD,
            "can_proceed": self.can_proceed(),
            "groups": {
                name: [
                    {**item.to_dict(), "checked": item.id in self.checked_ids}
                    for item in items
                ]
                for name, items in group_by_category(self.catalog).items()
            },
        }
