"""Grant processor: purchase-completion event -> one idempotent credit grant."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Tuple

from services.ledger_types import PURCHASE_REASON, PackGrant
from services.packs import PackRule, PackRuleTable
from services.protocols import BalanceMutator, DuplicateKeyError, UserResolver
from services.purchase_events import LineItem, PurchaseEvent


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def tally_line_items(
    line_items: Iterable[LineItem],
    packs: PackRuleTable,
) -> Tuple[int, Optional[PackRule]]:
    """Total credits for the line items and the pack rule whose policy applies.

    Unknown prices fall back to credits_per_unit metadata, else contribute 0.
    With several pack items the last matched rule wins.
    """
    credits = 0
    matched: Optional[PackRule] = None
    for item in line_items:
        quantity = max(int(item.quantity or 1), 1)
        rule = packs.for_price(item.price_id)
        if rule is not None:
            credits += rule.credits_granted * quantity
            matched = rule
            continue
        per_unit = int(item.credits_per_unit or 0)
        credits += max(per_unit, 0) * quantity
    return credits, matched


class GrantProcessor:
    """Turns purchase events into ledger grants. Safe to call repeatedly per purchase."""

    def __init__(
        self,
        user_resolver: UserResolver,
        balance_mutator: BalanceMutator,
        packs: PackRuleTable,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._users = user_resolver
        self._mutator = balance_mutator
        self._packs = packs
        self._clock = clock

    async def grant(self, event: PurchaseEvent) -> int:
        """Apply the purchase and return the credits granted (0 for a no-op)."""
        source_id = (event.source_id or "").strip()
        if not source_id:
            raise ValueError("purchase event needs a stable source_id")

        user_id = (event.user_id or "").strip()
        if not user_id:
            if not (event.payer_email or "").strip():
                logger.info("Purchase %s has no payer email; nothing to grant", source_id)
                return 0
            user_id = await self._users.resolve(event.payer_email)

        credits, rule = tally_line_items(event.line_items, self._packs)
        if credits <= 0:
            logger.info("Purchase %s maps to zero credits; no grant for user %s", source_id, user_id)
            return 0

        pack = None
        if rule is not None:
            pack = PackGrant(
                pack_key=rule.pack_key,
                expires_at=rule.expires_at(self._clock()),
                auto_extend=rule.auto_extend,
            )

        try:
            await self._mutator.add_credits(
                user_id,
                credits,
                reason=PURCHASE_REASON,
                source_id=source_id,
                pack=pack,
            )
        except DuplicateKeyError:
            logger.info("Credits already granted for payment %s, treating as success", source_id)
            return credits

        logger.info("Granted %d credits to user %s for payment %s", credits, user_id, source_id)
        return credits
