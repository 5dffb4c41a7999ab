"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class TransactionType(str, Enum):
    EARNED = "earned"
    SPENT = "spent"
    AWARDED = "awarded"
    BONUS = "bonus"
    PENALTY = "penalty"


class MilestoneMetric(str, Enum):
    TOTAL_EARNED = "total_earned"
    TOTAL_SPENT = "total_spent"
    CURRENT_BALANCE = "current_balance"


@dataclass
class Wallet:
    """Token balance of one student within one classroom"""

    student_id: str
    classroom_id: str
    current_balance: int = 0
    total_earned: int = 0
    total_spent: int = 0
    updated_at: Optional[datetime] = None

    def metric(self, name: str) -> int:
        return getattr(self, MilestoneMetric(name).value)


@dataclass
class NewTransaction:
    """Log entry as submitted by the service, before id/timestamp assignment"""

    student_id: str
    classroom_id: str
    amount: int  # positive = credit, negative = debit
    type: TransactionType
    category: str
    description: str
    balance_after: int
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    created_by: Optional[str] = None
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class Transaction:
    """Immutable, stored token movement"""

    id: int
    student_id: str
    classroom_id: str
    amount: int
    type: TransactionType
    category: str
    description: str
    timestamp: datetime
    balance_after: int
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    created_by: Optional[str] = None
    idempotency_key: Optional[str] = None


@dataclass
class Milestone:
    """Threshold on a cumulative wallet figure"""

    id: str
    classroom_id: str
    name: str
    metric: MilestoneMetric
    threshold: int
    student_id: Optional[str] = None  # None: every student of the classroom
    token_bonus: int = 0
    is_active: bool = True


@dataclass
class MilestoneEvent:
    """Emitted once when a student first crosses a milestone"""

    milestone_id: str
    milestone_name: str
    student_id: str
    classroom_id: str
    metric: MilestoneMetric
    threshold: int
    value: int
    occurred_at: datetime
    token_bonus: int = 0


@dataclass
class PenaltyResult:
    """Outcome of a penalty clamped at zero balance"""

    requested: int
    collected: int
    transaction: Optional[Transaction] = None

    @property
    def uncollected(self) -> int:
        return self.requested - self.collected

    @property
    def fully_collected(self) -> bool:
        return self.collected == self.requested


@dataclass
class AwardResult:
    """Per-student outcome of a bulk award"""

    student_id: str
    success: bool
    transaction: Optional[Transaction] = None
    error: Optional[str] = None


@dataclass
class ReconciliationReport:
    """Cached wallet balance checked against the transaction log"""

    student_id: str
    classroom_id: str
    cached_balance: int
    ledger_balance: int
    transaction_count: int
    broken_chain_ids: List[int] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return self.cached_balance == self.ledger_balance and not self.broken_chain_ids


@dataclass
class WalletSummary:
    """Wallet plus most recent activity"""

    wallet: Wallet
    transactions: List[Transaction]


@dataclass
class PurchaseReceipt:
    """Store purchase and the debit that paid for it"""

    purchase_id: str
    student_id: str
    classroom_id: str
    store_item_id: str
    item_name: str
    tokens_spent: int
    remaining_inventory: int
    transaction: Transaction
