"""Models package."""

from .user import User
from .credit_ledger import CreditLedger
from .credit_balance import CreditBalance
from .credit_alert import CreditAlertSent
