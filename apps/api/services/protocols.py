"""
Credit engine protocols

Narrow interfaces injected into the grant and deduction processors so tests
can substitute in-memory fakes. Also defines the engine's exception taxonomy.
"""

from typing import Optional, Protocol, Sequence, runtime_checkable

from services.ledger_types import DeductionResult, GrantOutcome, LedgerEntry, PackGrant


# ====================
# Collaborator Protocols
# ====================


@runtime_checkable
class UserResolver(Protocol):
    """Maps a payer email onto a user id, creating the user when needed."""

    async def resolve(self, email: str) -> str:
        ...


@runtime_checkable
class BalanceMutator(Protocol):
    """Atomic ledger + balance mutations for a single user."""

    async def add_credits(
        self,
        user_id: str,
        credits: int,
        *,
        reason: str,
        source_id: Optional[str],
        pack: Optional[PackGrant] = None,
    ) -> GrantOutcome:
        """
        Append a positive ledger entry and raise the balance in one transaction.

        Raises:
            DuplicateKeyError: source_id was already applied for this user
        """
        ...

    async def deduct_credits(
        self,
        user_id: str,
        amount: int,
        *,
        reason: str,
        source_id: Optional[str],
        thresholds: Sequence[int],
    ) -> DeductionResult:
        """
        Lock the balance, append a negative entry, lower the balance and record
        a newly crossed low-balance threshold in one transaction.

        Raises:
            InsufficientCreditsError: balance is lower than amount
            DuplicateKeyError: source_id was already applied for this user
        """
        ...

    async def load_applied(self, user_id: str, source_id: str) -> DeductionResult:
        """Return the current balance and the entry previously written for source_id."""
        ...


@runtime_checkable
class LowBalanceNotifier(Protocol):
    """One-way, at-least-once alert request issued after commit."""

    async def notify_low_balance(self, user_id: str, threshold: int, balance: int) -> None:
        ...


# ====================
# Exceptions
# ====================


class CreditLedgerError(Exception):
    """Base exception for credit engine errors"""
    pass


class InsufficientCreditsError(CreditLedgerError):
    """Raised when a deduction exceeds the current balance"""

    def __init__(self, message: str, available: Optional[int] = None, required: Optional[int] = None):
        super().__init__(message)
        self.available = available
        self.required = required


class DuplicateKeyError(CreditLedgerError):
    """Raised by the ledger store when (user_id, source_id) was already written"""

    def __init__(self, user_id: str, source_id: Optional[str], existing: Optional[LedgerEntry] = None):
        super().__init__(f"Ledger entry already exists for user={user_id} source_id={source_id}")
        self.user_id = user_id
        self.source_id = source_id
        self.existing = existing


class TransactionFailureError(CreditLedgerError):
    """Raised when an atomic credit operation fails and was rolled back"""
    pass


__all__ = [
    "UserResolver",
    "BalanceMutator",
    "LowBalanceNotifier",
    "CreditLedgerError",
    "InsufficientCreditsError",
    "DuplicateKeyError",
    "TransactionFailureError",
]
