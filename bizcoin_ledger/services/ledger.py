"""
Token ledger service - the single entry point for balance-changing operations.

Every award, spend, penalty and purchase runs as one database transaction:
the wallet row is locked, its balance adjusted and the matching log entry
appended before anything is committed. Milestones are evaluated afterwards
and can never undo or block the committed movement.
"""

import logging
import uuid
from itertools import islice
from typing import Callable, Iterable, Iterator, List, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from bizcoin_ledger.config import settings
from bizcoin_ledger.domain.catalog import PRESET_CATEGORY, STORE_CATEGORY, UNLIMITED_INVENTORY
from bizcoin_ledger.domain.exceptions import (
    DomainException,
    InsufficientBalance,
    NotFoundError,
    StorageFailure,
    ValidationError,
)
from bizcoin_ledger.domain.models import (
    AwardResult,
    MilestoneEvent,
    NewTransaction,
    PenaltyResult,
    PurchaseReceipt,
    ReconciliationReport,
    Transaction,
    TransactionType,
    Wallet,
    WalletSummary,
)
from bizcoin_ledger.infrastructure.database.models import AwardPreset, StoreItem, TokenCategory
from bizcoin_ledger.infrastructure.database.repositories import (
    CatalogRepository,
    TransactionRepository,
    WalletRepository,
)
from bizcoin_ledger.infrastructure.database.session import unit_of_work
from bizcoin_ledger.infrastructure.observability.logging import log_rejected_debit, log_transaction
from bizcoin_ledger.infrastructure.observability.metrics import (
    milestone_failure_counter,
    record_transaction,
    rejected_debit_counter,
    uncollected_penalty_counter,
    wallet_conflict_counter,
)
from bizcoin_ledger.services.milestones import MilestoneEvaluator

logger = logging.getLogger(__name__)

T = TypeVar("T")

MilestoneSink = Callable[[List[MilestoneEvent]], None]

EDITABLE_ITEM_FIELDS = {"name", "description", "cost", "category", "inventory", "max_per_student", "is_active"}


def previous_totals(after: Wallet, amount: int) -> Wallet:
    """Wallet as it was before `amount` was applied"""
    return Wallet(
        student_id=after.student_id,
        classroom_id=after.classroom_id,
        current_balance=after.current_balance - amount,
        total_earned=after.total_earned - max(amount, 0),
        total_spent=after.total_spent - max(-amount, 0),
    )


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"Amount must be a positive integer, got {amount!r}")


def _require_fields(**fields: Optional[str]) -> None:
    for name, value in fields.items():
        if not value or not str(value).strip():
            raise ValidationError(f"Field '{name}' is required")


def _validate_item_fields(**fields) -> None:
    if "cost" in fields:
        _require_positive(fields["cost"])
    inventory = fields.get("inventory", UNLIMITED_INVENTORY)
    if isinstance(inventory, bool) or not isinstance(inventory, int) or inventory < UNLIMITED_INVENTORY:
        raise ValidationError("Inventory must be -1 (unlimited) or a non-negative count")
    limit = fields.get("max_per_student")
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0):
        raise ValidationError("max_per_student must be a positive integer or None")


class TokenLedgerService:
    """Couples wallet balance changes with their transaction log entries"""

    def __init__(
        self,
        db: Session,
        on_milestones: Optional[MilestoneSink] = None,
        request_id: Optional[str] = None,
    ):
        self.db = db
        self.wallets = WalletRepository(db)
        self.transactions = TransactionRepository(db)
        self.catalog = CatalogRepository(db)
        self.milestones = MilestoneEvaluator(db)
        self.on_milestones = on_milestones
        self.request_id = request_id

    # Reads

    def get_balance(self, student_id: str, classroom_id: str) -> Wallet:
        return self.wallets.get_balance(student_id, classroom_id)

    def list_for_student(
        self,
        student_id: str,
        classroom_id: str,
        limit: Optional[int] = None,
        before_id: Optional[int] = None,
    ) -> Iterator[Transaction]:
        return self.transactions.list_for_student(student_id, classroom_id, limit=limit, before_id=before_id)

    def get_wallet_summary(self, student_id: str, classroom_id: str, recent: Optional[int] = None) -> WalletSummary:
        if recent is None:
            recent = settings.wallet_summary_recent
        return WalletSummary(
            wallet=self.get_balance(student_id, classroom_id),
            transactions=list(islice(self.list_for_student(student_id, classroom_id), recent)),
        )

    def reconcile(self, student_id: str, classroom_id: str) -> ReconciliationReport:
        """Check the cached balance and every balance_after snapshot against the log"""
        wallet = self.get_balance(student_id, classroom_id)
        running = 0
        count = 0
        broken = []
        for transaction in self.transactions.iter_chronological(student_id, classroom_id):
            running += transaction.amount
            count += 1
            if transaction.balance_after != running:
                broken.append(transaction.id)

        report = ReconciliationReport(
            student_id=student_id,
            classroom_id=classroom_id,
            cached_balance=wallet.current_balance,
            ledger_balance=running,
            transaction_count=count,
            broken_chain_ids=broken,
        )
        if not report.consistent:
            logger.error(
                "Wallet does not reconcile with transaction log",
                extra={
                    "student_id": student_id,
                    "classroom_id": classroom_id,
                    "cached_balance": report.cached_balance,
                    "ledger_balance": report.ledger_balance,
                    "broken_chain_ids": broken,
                },
            )
        return report

    # Writes

    def award(
        self,
        student_id: str,
        classroom_id: str,
        amount: int,
        category: str,
        description: str,
        *,
        bonus: bool = False,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        created_by: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Transaction:
        """
        Credit a wallet.

        Re-issuing with an idempotency key that was already applied returns
        the original transaction and changes nothing.
        """
        _require_positive(amount)
        _require_fields(student_id=student_id, classroom_id=classroom_id, category=category, description=description)

        entry = NewTransaction(
            student_id=student_id,
            classroom_id=classroom_id,
            amount=amount,
            type=TransactionType.BONUS if bonus else TransactionType.AWARDED,
            category=category,
            description=description,
            balance_after=0,
            reference_type=reference_type,
            reference_id=reference_id,
            created_by=created_by,
            idempotency_key=idempotency_key,
        )
        if idempotency_key:
            existing = self._existing_for_key(entry)
            if existing:
                return existing

        try:
            transaction, after = self._run(lambda: self._apply(entry))
        except StorageFailure as e:
            # A concurrent retry with the same key won the unique index
            if idempotency_key and isinstance(e.__cause__, IntegrityError):
                existing = self._existing_for_key(entry)
                if existing:
                    return existing
            raise

        self._after_commit(transaction, after)
        return transaction

    def spend(
        self,
        student_id: str,
        classroom_id: str,
        amount: int,
        category: str,
        description: str,
        *,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Transaction:
        """
        Debit a wallet.

        Raises:
            InsufficientBalance: Balance lower than `amount`; nothing is written
        """
        _require_positive(amount)
        _require_fields(student_id=student_id, classroom_id=classroom_id, category=category, description=description)

        entry = NewTransaction(
            student_id=student_id,
            classroom_id=classroom_id,
            amount=-amount,
            type=TransactionType.SPENT,
            category=category,
            description=description,
            balance_after=0,
            reference_type=reference_type,
            reference_id=reference_id,
            created_by=created_by,
        )
        try:
            transaction, after = self._run(lambda: self._apply(entry))
        except InsufficientBalance as e:
            self._record_rejection(student_id, classroom_id, TransactionType.SPENT, e)
            raise

        self._after_commit(transaction, after)
        return transaction

    def penalize(
        self,
        student_id: str,
        classroom_id: str,
        amount: int,
        category: str,
        description: str,
        *,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> PenaltyResult:
        """
        Deduct up to `amount`, never below zero.

        Only the collectable part is debited; the rest is reported as
        uncollected. With an empty wallet no transaction is written.
        """
        _require_positive(amount)
        _require_fields(student_id=student_id, classroom_id=classroom_id, category=category, description=description)

        def work():
            wallet = self.wallets.lock(student_id, classroom_id)
            collected = min(amount, wallet.current_balance)
            if collected == 0:
                return None, None
            entry = NewTransaction(
                student_id=student_id,
                classroom_id=classroom_id,
                amount=-collected,
                type=TransactionType.PENALTY,
                category=category,
                description=description,
                balance_after=0,
                reference_type=reference_type,
                reference_id=reference_id,
                created_by=created_by,
            )
            return self._apply(entry)

        if self.get_balance(student_id, classroom_id).current_balance == 0:
            # Nothing to collect; wallets only come into existence with a transaction
            transaction, after = None, None
        else:
            transaction, after = self._run(work)
        collected = -transaction.amount if transaction else 0
        result = PenaltyResult(requested=amount, collected=collected, transaction=transaction)

        if result.uncollected:
            uncollected_penalty_counter.inc(result.uncollected)
            logger.warning(
                "Penalty not fully collectable",
                extra={
                    "student_id": student_id,
                    "classroom_id": classroom_id,
                    "requested": amount,
                    "collected": collected,
                },
            )
        if transaction:
            self._after_commit(transaction, after)
        return result

    def award_many(
        self,
        student_ids: Iterable[str],
        classroom_id: str,
        amount: int,
        category: str,
        description: str,
        *,
        bonus: bool = False,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        created_by: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> List[AwardResult]:
        """
        Apply the same award to each distinct student independently.

        One student's failure does not roll back the others; the outcome is
        reported per student in input order.
        """
        _require_positive(amount)
        _require_fields(classroom_id=classroom_id, category=category, description=description)

        results = []
        for student_id in dict.fromkeys(student_ids):
            try:
                transaction = self.award(
                    student_id,
                    classroom_id,
                    amount,
                    category,
                    description,
                    bonus=bonus,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    created_by=created_by,
                    idempotency_key=f"{idempotency_key}:{student_id}" if idempotency_key else None,
                )
                results.append(AwardResult(student_id=student_id, success=True, transaction=transaction))
            except DomainException as e:
                logger.error(f"Award failed: {e}", extra={"student_id": student_id, "classroom_id": classroom_id})
                results.append(AwardResult(student_id=student_id, success=False, error=str(e)))
        return results

    def award_with_preset(
        self,
        preset_id: uuid.UUID,
        student_ids: Iterable[str],
        teacher_id: str,
        description: Optional[str] = None,
    ) -> List[AwardResult]:
        """Bulk award using a teacher's saved preset, then count the preset as used"""
        preset = self.catalog.get_preset(preset_id)
        if preset is None or preset.teacher_id != teacher_id:
            raise NotFoundError(f"Preset {preset_id} not found")

        results = self.award_many(
            student_ids,
            preset.classroom_id,
            preset.amount,
            PRESET_CATEGORY,
            description or preset.description_template or "Token award from preset",
            reference_type="teacher_preset",
            reference_id=str(preset.id),
            created_by=teacher_id,
        )
        with unit_of_work(self.db):
            self.catalog.record_preset_usage(preset)
        return results

    def purchase_item(self, student_id: str, store_item_id: uuid.UUID, created_by: Optional[str] = None) -> PurchaseReceipt:
        """
        Buy a store item with classroom tokens.

        Item lock, debit, log entry, inventory decrement and purchase record
        commit together.

        Raises:
            NotFoundError: Unknown item
            ValidationError: Item inactive, out of stock or already bought the allowed number of times
            InsufficientBalance: Not enough tokens
        """
        _require_fields(student_id=student_id)

        def work():
            item = self.catalog.lock_store_item(store_item_id)
            if item is None:
                raise NotFoundError(f"Store item {store_item_id} not found")
            if not item.is_active:
                raise ValidationError("Item is not available for purchase")
            if item.inventory == 0:
                raise ValidationError("Item is out of stock")
            if item.max_per_student is not None:
                if self.catalog.count_purchases(student_id, item.id) >= item.max_per_student:
                    raise ValidationError(f"Purchase limit of {item.max_per_student} reached for this item")

            entry = NewTransaction(
                student_id=student_id,
                classroom_id=item.classroom_id,
                amount=-item.cost,
                type=TransactionType.SPENT,
                category=STORE_CATEGORY,
                description=f"Purchased {item.name}",
                balance_after=0,
                reference_type="store_item",
                reference_id=str(item.id),
                created_by=created_by or student_id,
            )
            transaction, after = self._apply(entry)
            if item.inventory != UNLIMITED_INVENTORY:
                item.inventory -= 1
            purchase = self.catalog.create_purchase(student_id, item, transaction.id)
            receipt = PurchaseReceipt(
                purchase_id=str(purchase.id),
                student_id=student_id,
                classroom_id=item.classroom_id,
                store_item_id=str(item.id),
                item_name=item.name,
                tokens_spent=item.cost,
                remaining_inventory=item.inventory,
                transaction=transaction,
            )
            return receipt, after

        try:
            receipt, after = self._run(work)
        except InsufficientBalance as e:
            self._record_rejection(student_id, None, TransactionType.SPENT, e)
            raise

        self._after_commit(receipt.transaction, after)
        return receipt

    # Catalog

    def get_categories(self, classroom_id: str) -> List[TokenCategory]:
        """Award categories of a classroom, seeding the defaults on first use"""
        categories = self.catalog.list_categories(classroom_id)
        if not categories:
            with unit_of_work(self.db):
                self.catalog.seed_default_categories(classroom_id)
            categories = self.catalog.list_categories(classroom_id)
        return categories

    def get_presets(self, teacher_id: str, classroom_id: str) -> List[AwardPreset]:
        """A teacher's award presets for a classroom, seeding the defaults on first use"""
        presets = self.catalog.list_presets(teacher_id, classroom_id)
        if not presets:
            with unit_of_work(self.db):
                self.catalog.seed_default_presets(teacher_id, classroom_id)
            presets = self.catalog.list_presets(teacher_id, classroom_id)
        return presets

    def create_store_item(
        self,
        classroom_id: str,
        name: str,
        cost: int,
        description: Optional[str] = None,
        category: Optional[str] = None,
        inventory: int = UNLIMITED_INVENTORY,
        max_per_student: Optional[int] = None,
    ) -> StoreItem:
        _require_fields(classroom_id=classroom_id, name=name)
        _validate_item_fields(cost=cost, inventory=inventory, max_per_student=max_per_student)

        with unit_of_work(self.db):
            item = self.catalog.create_store_item(
                classroom_id=classroom_id,
                name=name,
                cost=cost,
                description=description,
                category=category,
                inventory=inventory,
                max_per_student=max_per_student,
            )
        return item

    def update_store_item(self, item_id: uuid.UUID, **changes) -> StoreItem:
        """
        Edit a store item in place. Only the given fields change.

        Raises:
            NotFoundError: Unknown item
            ValidationError: Unknown field or invalid value
        """
        unknown = set(changes) - EDITABLE_ITEM_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update store item field(s): {', '.join(sorted(unknown))}")
        if "name" in changes:
            _require_fields(name=changes["name"])
        if "is_active" in changes and not isinstance(changes["is_active"], bool):
            raise ValidationError("is_active must be a boolean")
        _validate_item_fields(**{k: v for k, v in changes.items() if k in ("cost", "inventory", "max_per_student")})

        with unit_of_work(self.db):
            item = self.catalog.lock_store_item(item_id)
            if item is None:
                raise NotFoundError(f"Store item {item_id} not found")
            for field, value in changes.items():
                setattr(item, field, value)
        logger.info("Store item updated", extra={"store_item_id": str(item_id), "fields": sorted(changes)})
        return item

    def deactivate_store_item(self, item_id: uuid.UUID) -> StoreItem:
        """Withdraw an item from the store; past purchases keep referring to it"""
        return self.update_store_item(item_id, is_active=False)

    def list_store_items(self, classroom_id: str) -> List[StoreItem]:
        return self.catalog.list_store_items(classroom_id)

    # Internals

    def _apply(self, entry: NewTransaction):
        """Wallet delta plus log entry; must run inside a unit of work"""
        after = self.wallets.apply_delta(entry.student_id, entry.classroom_id, entry.amount)
        entry.balance_after = after.current_balance
        transaction = self.transactions.append(entry)
        return transaction, after

    def _run(self, work: Callable[[], T]) -> T:
        """Run `work` in one database transaction, retrying on concurrent wallet updates"""
        attempts = max(settings.ledger_max_retries, 1)
        for attempt in range(1, attempts + 1):
            try:
                with unit_of_work(self.db):
                    return work()
            except StaleDataError as e:
                wallet_conflict_counter.inc()
                if attempt == attempts:
                    raise StorageFailure(f"Wallet update conflicted {attempts} times") from e
                logger.warning("Concurrent wallet update, retrying", extra={"attempt": attempt})

    def _existing_for_key(self, entry: NewTransaction) -> Optional[Transaction]:
        """Transaction already recorded under the entry's idempotency key, if any"""
        key = entry.idempotency_key
        existing = self.transactions.find_by_idempotency_key(key)
        if existing is None:
            return None
        if (existing.student_id, existing.classroom_id) != (entry.student_id, entry.classroom_id):
            raise ValidationError(f"Idempotency key '{key}' was already used for another wallet")
        recorded = (existing.amount, existing.type, existing.category, existing.description)
        if recorded != (entry.amount, entry.type, entry.category, entry.description):
            raise ValidationError(f"Idempotency key '{key}' was already used for a different award")
        logger.info(
            "Idempotent award re-issued",
            extra={"idempotency_key": key, "transaction_id": existing.id, "request_id": self.request_id},
        )
        return existing

    def _record_rejection(
        self,
        student_id: str,
        classroom_id: Optional[str],
        transaction_type: TransactionType,
        error: InsufficientBalance,
    ) -> None:
        rejected_debit_counter.labels(type=transaction_type.value).inc()
        log_rejected_debit(student_id, classroom_id, transaction_type.value, error.balance, error.requested)

    def _after_commit(self, transaction: Transaction, after: Wallet) -> List[MilestoneEvent]:
        """Metrics, audit log and milestone checks for a committed transaction"""
        record_transaction(transaction.type.value, transaction.amount)
        log_transaction(
            student_id=transaction.student_id,
            classroom_id=transaction.classroom_id,
            transaction_type=transaction.type.value,
            amount=transaction.amount,
            balance_after=transaction.balance_after,
            transaction_id=transaction.id,
            request_id=self.request_id,
        )

        try:
            events = self.milestones.evaluate(after, previous_totals(after, transaction.amount))
        except Exception as e:
            # Milestones are best effort; the transaction is already committed
            milestone_failure_counter.inc()
            logger.error(
                f"Milestone evaluation failed: {e}",
                extra={"student_id": transaction.student_id, "classroom_id": transaction.classroom_id},
            )
            return []

        if events:
            self._deliver(events)
            self._grant_milestone_bonuses(events)
        return events

    def _deliver(self, events: List[MilestoneEvent]) -> None:
        if self.on_milestones is None:
            return
        try:
            self.on_milestones(events)
        except Exception as e:
            milestone_failure_counter.inc()
            logger.error(f"Milestone delivery failed: {e}", extra={"request_id": self.request_id})

    def _grant_milestone_bonuses(self, events: List[MilestoneEvent]) -> None:
        for event in events:
            if event.token_bonus <= 0:
                continue
            try:
                self.award(
                    event.student_id,
                    event.classroom_id,
                    event.token_bonus,
                    "milestone",
                    f"Milestone reached: {event.milestone_name}",
                    bonus=True,
                    reference_type="milestone",
                    reference_id=event.milestone_id,
                    idempotency_key=f"milestone:{event.milestone_id}:{event.student_id}",
                )
            except Exception as e:
                milestone_failure_counter.inc()
                logger.error(
                    f"Milestone bonus failed: {e}",
                    extra={"student_id": event.student_id, "milestone_id": event.milestone_id},
                )
