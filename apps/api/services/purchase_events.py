"""Normalize payment-processor objects into purchase events.

Authenticity (signature verification) and expanding line items through the
processor's API happen upstream; this module only reads already-expanded objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional


@dataclass(frozen=True)
class LineItem:
    price_id: Optional[str]
    quantity: int = 1
    credits_per_unit: Optional[int] = None


@dataclass(frozen=True)
class PurchaseEvent:
    # Stable across redeliveries: the payment id, never the delivery/event id.
    source_id: str
    payer_email: Optional[str] = None
    line_items: List[LineItem] = field(default_factory=list)
    user_id: Optional[str] = None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _metadata_credits(price: Mapping[str, Any]) -> Optional[int]:
    for metadata in (
        _as_dict(price.get("metadata")),
        _as_dict(_as_dict(price.get("product")).get("metadata")),
    ):
        raw = metadata.get("credits_per_unit")
        if raw in (None, ""):
            continue
        try:
            return int(float(raw))
        except (TypeError, ValueError):
            continue
    return None


def parse_line_item(raw: Mapping[str, Any]) -> LineItem:
    price = raw.get("price")
    if isinstance(price, dict):
        price_id = price.get("id")
        per_unit = _metadata_credits(price)
    else:
        price_id = price or raw.get("price_id")
        per_unit = None
    if per_unit is None and raw.get("credits_per_unit") not in (None, ""):
        per_unit = int(raw["credits_per_unit"])
    quantity = raw.get("quantity") or 1
    return LineItem(
        price_id=str(price_id) if price_id else None,
        quantity=max(int(quantity), 1),
        credits_per_unit=per_unit,
    )


def _line_item_list(container: Any) -> List[Dict[str, Any]]:
    if isinstance(container, list):
        return [item for item in container if isinstance(item, dict)]
    data = _as_dict(container).get("data")
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    return []


def unwrap_event(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Accept either a full event envelope or the bare payment object."""
    data = _as_dict(payload.get("data"))
    if isinstance(data.get("object"), dict):
        return data["object"]
    return dict(payload)


def purchase_event_from_payment_object(obj: Mapping[str, Any]) -> Optional[PurchaseEvent]:
    """Build a PurchaseEvent from a checkout session, invoice or payment intent.

    Returns None for object types that never grant credits.
    """
    kind = obj.get("object")

    if kind == "checkout.session":
        details = _as_dict(obj.get("customer_details"))
        email = details.get("email") or obj.get("customer_email") or ""
        source_id = obj.get("payment_intent") or obj.get("id")
        items = [parse_line_item(item) for item in _line_item_list(obj.get("line_items"))]
        return PurchaseEvent(source_id=str(source_id or ""), payer_email=email, line_items=items)

    if kind == "invoice":
        customer = _as_dict(obj.get("customer"))
        email = obj.get("customer_email") or customer.get("email") or ""
        source_id = obj.get("payment_intent") or obj.get("id")
        items = [parse_line_item(item) for item in _line_item_list(obj.get("lines"))]
        return PurchaseEvent(source_id=str(source_id or ""), payer_email=email, line_items=items)

    if kind == "payment_intent":
        metadata = _as_dict(obj.get("metadata"))
        user_id = metadata.get("userId") or metadata.get("user_id")
        price_id = metadata.get("priceId") or metadata.get("price_id")
        if not price_id:
            return None
        email = obj.get("receipt_email") or ""
        return PurchaseEvent(
            source_id=str(obj.get("id") or ""),
            payer_email=email,
            line_items=[LineItem(price_id=str(price_id))],
            user_id=str(user_id) if user_id else None,
        )

    return None
