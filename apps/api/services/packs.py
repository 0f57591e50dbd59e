"""Credit pack rules: which price identifiers grant how many credits, for how long."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from config import is_production, settings


logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30


@dataclass(frozen=True)
class PackRule:
    pack_key: str
    credits_granted: int
    validity_months: int
    label: str
    auto_extend: bool = False
    grace_days: Optional[int] = None
    price_id: Optional[str] = None

    def expires_at(self, now: datetime) -> datetime:
        days = self.validity_months * DAYS_PER_MONTH + int(self.grace_days or 0)
        return now + timedelta(days=days)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pack_key": self.pack_key,
            "price_id": self.price_id,
            "label": self.label,
            "credits": self.credits_granted,
            "months": self.validity_months,
            "grace_days": self.grace_days,
            "auto_extend": self.auto_extend,
        }


DEFAULT_PACK_RULES: Dict[str, PackRule] = {
    "SINGLE": PackRule("SINGLE", 1, 6, "Single Credit"),
    "5": PackRule("5", 5, 12, "5 Credits", grace_days=30),
    "10": PackRule("10", 10, 12, "10 Credits", auto_extend=True),
    "20": PackRule("20", 20, 12, "20 Credits", auto_extend=True),
    "50": PackRule("50", 50, 24, "50 Credits", auto_extend=True),
    "100": PackRule("100", 100, 24, "100 Credits", auto_extend=True),
}


class PackRuleTable:
    """Read-only lookup from external price identifier to pack rule."""

    def __init__(self, rules: Iterable[PackRule]):
        self._rules: List[PackRule] = list(rules)
        self._by_price: Dict[str, PackRule] = {}
        for rule in self._rules:
            if not rule.price_id:
                continue
            if rule.price_id in self._by_price:
                # Test mode commonly points every pack at one price; first one wins.
                logger.warning(
                    "Price %s is mapped to packs %s and %s; using %s",
                    rule.price_id,
                    self._by_price[rule.price_id].pack_key,
                    rule.pack_key,
                    self._by_price[rule.price_id].pack_key,
                )
                continue
            self._by_price[rule.price_id] = rule

    def for_price(self, price_id: Optional[str]) -> Optional[PackRule]:
        if not price_id:
            return None
        return self._by_price.get(str(price_id))

    def bundles(self) -> List[PackRule]:
        """Packs that can actually be purchased (have a price identifier)."""
        return [rule for rule in self._rules if rule.price_id]

    def __len__(self) -> int:
        return len(self._rules)

    @classmethod
    def from_settings(cls, config=None) -> "PackRuleTable":
        config = config or settings
        raw = (getattr(config, "PACK_RULES_JSON", "") or "").strip()
        if raw:
            return cls(parse_pack_rules_json(raw))

        prefix = "" if is_production() else "TESTING_"
        rules = []
        for key, rule in DEFAULT_PACK_RULES.items():
            price_id = (getattr(config, f"{prefix}PRICE_{key}", "") or "").strip()
            rules.append(replace(rule, price_id=price_id or None))
        return cls(rules)


def parse_pack_rules_json(raw: str) -> List[PackRule]:
    """Parse a PACK_RULES_JSON override into pack rules."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"PACK_RULES_JSON is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("PACK_RULES_JSON must be an object keyed by pack key.")

    rules = []
    for pack_key, entry in payload.items():
        if not isinstance(entry, dict):
            raise ValueError(f"Pack {pack_key!r} must be an object.")
        credits = int(entry.get("credits", 0))
        months = int(entry.get("months", 0))
        if credits <= 0 or months <= 0:
            raise ValueError(f"Pack {pack_key!r} needs positive credits and months.")
        grace_days = entry.get("grace_days")
        rules.append(
            PackRule(
                pack_key=str(pack_key),
                credits_granted=credits,
                validity_months=months,
                label=str(entry.get("label") or f"{credits} Credits"),
                auto_extend=bool(entry.get("auto_extend", False)),
                grace_days=int(grace_days) if grace_days is not None else None,
                price_id=(str(entry["price_id"]) if entry.get("price_id") else str(pack_key)),
            )
        )
    return rules
