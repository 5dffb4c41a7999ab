"""Data access layer for wallets, the transaction log, milestones and the classroom catalog"""

import uuid
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from bizcoin_ledger.config import settings
from bizcoin_ledger.domain import models as domain
from bizcoin_ledger.domain.catalog import DEFAULT_CATEGORIES, DEFAULT_PRESETS, UNLIMITED_INVENTORY
from bizcoin_ledger.domain.exceptions import InsufficientBalance, ValidationError
from bizcoin_ledger.infrastructure.database.models import (
    AwardPreset,
    Milestone,
    MilestoneNotification,
    Purchase,
    StoreItem,
    StudentWallet,
    TokenCategory,
    TokenTransaction,
)


def to_wallet(row: StudentWallet) -> domain.Wallet:
    return domain.Wallet(
        student_id=row.student_id,
        classroom_id=row.classroom_id,
        current_balance=row.current_balance,
        total_earned=row.total_earned,
        total_spent=row.total_spent,
        updated_at=row.updated_at,
    )


def to_transaction(row: TokenTransaction) -> domain.Transaction:
    return domain.Transaction(
        id=row.id,
        student_id=row.student_id,
        classroom_id=row.classroom_id,
        amount=row.amount,
        type=domain.TransactionType(row.transaction_type),
        category=row.category,
        description=row.description,
        timestamp=row.created_at,
        balance_after=row.balance_after,
        reference_type=row.reference_type,
        reference_id=row.reference_id,
        created_by=row.created_by,
        idempotency_key=row.idempotency_key,
    )


def to_milestone(row: Milestone) -> domain.Milestone:
    return domain.Milestone(
        id=str(row.id),
        classroom_id=row.classroom_id,
        name=row.name,
        metric=domain.MilestoneMetric(row.metric),
        threshold=row.threshold,
        student_id=row.student_id,
        token_bonus=row.token_bonus,
        is_active=row.is_active,
    )


class WalletRepository:
    """Repository for per-classroom student wallets"""

    def __init__(self, db: Session):
        self.db = db

    def get_balance(self, student_id: str, classroom_id: str) -> domain.Wallet:
        """Current wallet, or a zero wallet if the pair has no activity yet (nothing is written)"""
        row = self.db.get(StudentWallet, (student_id, classroom_id))
        if row is None:
            return domain.Wallet(student_id=student_id, classroom_id=classroom_id)
        return to_wallet(row)

    def lock(self, student_id: str, classroom_id: str) -> StudentWallet:
        """
        Fetch the wallet row with a row-level lock, creating it if missing.

        Concurrent first transactions for the same pair both insert with
        ON CONFLICT DO NOTHING and then lock the single surviving row.
        """
        row = self._select_for_update(student_id, classroom_id)
        if row is None:
            self._insert_if_absent(student_id, classroom_id)
            row = self._select_for_update(student_id, classroom_id)
        return row

    def apply_delta(self, student_id: str, classroom_id: str, amount: int) -> domain.Wallet:
        """
        Adjust balance by `amount` and the earned/spent aggregate by its magnitude.

        Raises:
            InsufficientBalance: When a debit would leave the balance below zero
        """
        row = self.lock(student_id, classroom_id)
        new_balance = row.current_balance + amount
        if amount < 0 and new_balance < 0:
            raise InsufficientBalance(balance=row.current_balance, requested=-amount)

        row.current_balance = new_balance
        if amount > 0:
            row.total_earned += amount
        else:
            row.total_spent += -amount

        self.db.flush()
        return to_wallet(row)

    def _select_for_update(self, student_id: str, classroom_id: str) -> Optional[StudentWallet]:
        stmt = (
            select(StudentWallet)
            .where(
                StudentWallet.student_id == student_id,
                StudentWallet.classroom_id == classroom_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def _insert_if_absent(self, student_id: str, classroom_id: str) -> None:
        dialect = self.db.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        now = datetime.now(timezone.utc)
        stmt = (
            insert(StudentWallet)
            .values(
                student_id=student_id,
                classroom_id=classroom_id,
                current_balance=0,
                total_earned=0,
                total_spent=0,
                version=1,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["student_id", "classroom_id"])
        )
        self.db.execute(stmt)


class TransactionRepository:
    """Repository for the append-only transaction log"""

    REQUIRED_FIELDS = ("student_id", "classroom_id", "category", "description")

    def __init__(self, db: Session):
        self.db = db

    def append(self, entry: domain.NewTransaction) -> domain.Transaction:
        """
        Persist a log entry; id and timestamp are assigned here.

        Raises:
            ValidationError: Zero amount or a missing required field
        """
        if not entry.amount:
            raise ValidationError("Transaction amount must be non-zero")
        for name in self.REQUIRED_FIELDS:
            if not getattr(entry, name):
                raise ValidationError(f"Transaction field '{name}' is required")
        if entry.type is None:
            raise ValidationError("Transaction field 'type' is required")

        row = TokenTransaction(
            student_id=entry.student_id,
            classroom_id=entry.classroom_id,
            amount=entry.amount,
            transaction_type=domain.TransactionType(entry.type).value,
            category=entry.category,
            description=entry.description,
            balance_after=entry.balance_after,
            reference_type=entry.reference_type,
            reference_id=entry.reference_id,
            created_by=entry.created_by,
            idempotency_key=entry.idempotency_key,
        )
        self.db.add(row)
        self.db.flush()  # Assigns the id without committing
        return to_transaction(row)

    def list_for_student(
        self,
        student_id: str,
        classroom_id: str,
        limit: Optional[int] = None,
        before_id: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> Iterator[domain.Transaction]:
        """
        Lazily yield a wallet's transactions, newest first.

        Pages are fetched on demand with a keyset cursor on id, so iteration
        can be resumed later by passing the last seen id as `before_id`.
        """
        page_size = page_size or settings.transaction_page_size
        remaining = limit
        cursor = before_id

        while remaining is None or remaining > 0:
            size = page_size if remaining is None else min(page_size, remaining)
            stmt = (
                select(TokenTransaction)
                .where(
                    TokenTransaction.student_id == student_id,
                    TokenTransaction.classroom_id == classroom_id,
                )
                .order_by(TokenTransaction.id.desc())
                .limit(size)
            )
            if cursor is not None:
                stmt = stmt.where(TokenTransaction.id < cursor)

            rows = self.db.execute(stmt).scalars().all()
            for row in rows:
                yield to_transaction(row)

            if len(rows) < size:
                return
            cursor = rows[-1].id
            if remaining is not None:
                remaining -= len(rows)

    def iter_chronological(self, student_id: str, classroom_id: str) -> Iterator[domain.Transaction]:
        """All transactions of a wallet in id order, for audits"""
        stmt = (
            select(TokenTransaction)
            .where(
                TokenTransaction.student_id == student_id,
                TokenTransaction.classroom_id == classroom_id,
            )
            .order_by(TokenTransaction.id.asc())
        )
        for row in self.db.execute(stmt).scalars():
            yield to_transaction(row)

    def sum_amounts(self, student_id: str, classroom_id: str) -> int:
        stmt = select(func.coalesce(func.sum(TokenTransaction.amount), 0)).where(
            TokenTransaction.student_id == student_id,
            TokenTransaction.classroom_id == classroom_id,
        )
        return int(self.db.execute(stmt).scalar_one())

    def find_by_idempotency_key(self, key: str) -> Optional[domain.Transaction]:
        row = self.db.execute(
            select(TokenTransaction).where(TokenTransaction.idempotency_key == key)
        ).scalar_one_or_none()
        return to_transaction(row) if row else None


class MilestoneRepository:
    """Repository for milestone definitions and already-notified markers"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        classroom_id: str,
        name: str,
        metric: domain.MilestoneMetric,
        threshold: int,
        student_id: Optional[str] = None,
        token_bonus: int = 0,
    ) -> domain.Milestone:
        row = Milestone(
            classroom_id=classroom_id,
            student_id=student_id,
            name=name,
            metric=domain.MilestoneMetric(metric).value,
            threshold=threshold,
            token_bonus=token_bonus,
            is_active=True,
        )
        self.db.add(row)
        self.db.flush()
        return to_milestone(row)

    def list_for_classroom(self, classroom_id: str, active_only: bool = True) -> List[domain.Milestone]:
        stmt = select(Milestone).where(Milestone.classroom_id == classroom_id)
        if active_only:
            stmt = stmt.where(Milestone.is_active.is_(True))
        stmt = stmt.order_by(Milestone.threshold.asc())
        return [to_milestone(row) for row in self.db.execute(stmt).scalars()]

    def list_for_student(self, student_id: str, classroom_id: str) -> List[domain.Milestone]:
        """Active milestones targeting the whole classroom or this student"""
        stmt = (
            select(Milestone)
            .where(
                Milestone.classroom_id == classroom_id,
                Milestone.is_active.is_(True),
                (Milestone.student_id.is_(None)) | (Milestone.student_id == student_id),
            )
            .order_by(Milestone.threshold.asc())
        )
        return [to_milestone(row) for row in self.db.execute(stmt).scalars()]

    def notified_ids(self, student_id: str, milestone_ids: List[str]) -> Set[str]:
        if not milestone_ids:
            return set()
        stmt = select(MilestoneNotification.milestone_id).where(
            MilestoneNotification.student_id == student_id,
            MilestoneNotification.milestone_id.in_([uuid.UUID(m) for m in milestone_ids]),
        )
        return {str(m) for m in self.db.execute(stmt).scalars()}

    def notifications_for_student(self, student_id: str, classroom_id: str) -> Dict[str, MilestoneNotification]:
        stmt = select(MilestoneNotification).where(
            MilestoneNotification.student_id == student_id,
            MilestoneNotification.classroom_id == classroom_id,
        )
        return {str(n.milestone_id): n for n in self.db.execute(stmt).scalars()}

    def mark_notified(self, student_id: str, classroom_id: str, milestone_id: str, value: int) -> MilestoneNotification:
        row = MilestoneNotification(
            milestone_id=uuid.UUID(milestone_id),
            student_id=student_id,
            classroom_id=classroom_id,
            value=value,
        )
        self.db.add(row)
        self.db.flush()
        return row


class CatalogRepository:
    """Repository for award categories, teacher presets and store items"""

    def __init__(self, db: Session):
        self.db = db

    def list_categories(self, classroom_id: str) -> List[TokenCategory]:
        stmt = select(TokenCategory).where(TokenCategory.classroom_id == classroom_id).order_by(TokenCategory.name)
        return list(self.db.execute(stmt).scalars())

    def seed_default_categories(self, classroom_id: str) -> None:
        for category in DEFAULT_CATEGORIES:
            self.db.add(TokenCategory(classroom_id=classroom_id, **category))
        self.db.flush()

    def list_presets(self, teacher_id: str, classroom_id: str) -> List[AwardPreset]:
        stmt = (
            select(AwardPreset)
            .where(AwardPreset.teacher_id == teacher_id, AwardPreset.classroom_id == classroom_id)
            .order_by(AwardPreset.preset_name)
        )
        return list(self.db.execute(stmt).scalars())

    def seed_default_presets(self, teacher_id: str, classroom_id: str) -> None:
        for preset in DEFAULT_PRESETS:
            self.db.add(AwardPreset(teacher_id=teacher_id, classroom_id=classroom_id, **preset))
        self.db.flush()

    def get_preset(self, preset_id: uuid.UUID) -> Optional[AwardPreset]:
        return self.db.get(AwardPreset, preset_id)

    def record_preset_usage(self, preset: AwardPreset) -> None:
        preset.usage_count += 1
        preset.last_used_at = datetime.now(timezone.utc)
        self.db.flush()

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
        row = StoreItem(
            classroom_id=classroom_id,
            name=name,
            cost=cost,
            description=description,
            category=category,
            inventory=inventory,
            max_per_student=max_per_student,
            is_active=True,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def list_store_items(self, classroom_id: str, active_only: bool = True) -> List[StoreItem]:
        stmt = select(StoreItem).where(StoreItem.classroom_id == classroom_id)
        if active_only:
            stmt = stmt.where(StoreItem.is_active.is_(True))
        return list(self.db.execute(stmt.order_by(StoreItem.cost)).scalars())

    def lock_store_item(self, item_id: uuid.UUID) -> Optional[StoreItem]:
        stmt = (
            select(StoreItem)
            .where(StoreItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create_purchase(self, student_id: str, item: StoreItem, transaction_id: int) -> Purchase:
        row = Purchase(
            student_id=student_id,
            classroom_id=item.classroom_id,
            store_item_id=item.id,
            transaction_id=transaction_id,
            tokens_spent=item.cost,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def count_purchases(self, student_id: str, item_id: uuid.UUID) -> int:
        stmt = select(func.count(Purchase.id)).where(
            Purchase.student_id == student_id, Purchase.store_item_id == item_id
        )
        return self.db.execute(stmt).scalar_one()
