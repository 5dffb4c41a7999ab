"""SQLAlchemy ORM models for wallets, the transaction log, milestones and the classroom store"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    DateTime,
    Integer,
    ForeignKey,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

# SQLite only auto-increments INTEGER PRIMARY KEY columns
AutoIncrementId = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StudentWallet(Base):
    """Cached balance and aggregates for one (student, classroom) pair"""

    __tablename__ = "student_wallet"

    student_id = Column(Text, primary_key=True)
    classroom_id = Column(Text, primary_key=True)
    current_balance = Column(BigInteger, nullable=False, default=0)
    total_earned = Column(BigInteger, nullable=False, default=0)
    total_spent = Column(BigInteger, nullable=False, default=0)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Lost updates surface as StaleDataError instead of silently overwriting
    __mapper_args__ = {"version_id_col": version}


class TokenTransaction(Base):
    """Append-only signed token movement"""

    __tablename__ = "token_transaction"
    __table_args__ = (
        Index("ix_token_transaction_wallet", "student_id", "classroom_id", "id"),
    )

    id = Column(AutoIncrementId, primary_key=True, autoincrement=True)
    student_id = Column(Text, nullable=False)
    classroom_id = Column(Text, nullable=False)
    amount = Column(BigInteger, nullable=False)
    transaction_type = Column(String(20), nullable=False)
    category = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    balance_after = Column(BigInteger, nullable=False)
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(Text, nullable=True)
    created_by = Column(Text, nullable=True)
    idempotency_key = Column(Text, nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Milestone(Base):
    """Threshold on total earned, total spent or current balance"""

    __tablename__ = "milestone"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    classroom_id = Column(Text, nullable=False, index=True)
    student_id = Column(Text, nullable=True)
    name = Column(String(100), nullable=False)
    metric = Column(String(20), nullable=False)
    threshold = Column(BigInteger, nullable=False)
    token_bonus = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    notifications = relationship("MilestoneNotification", back_populates="milestone", cascade="all, delete-orphan")


class MilestoneNotification(Base):
    """Marks a milestone as already notified for a student"""

    __tablename__ = "milestone_notification"
    __table_args__ = (UniqueConstraint("student_id", "milestone_id", name="uq_milestone_notification"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    milestone_id = Column(UUID(as_uuid=True), ForeignKey("milestone.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Text, nullable=False)
    classroom_id = Column(Text, nullable=False)
    value = Column(BigInteger, nullable=False)
    notified_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    milestone = relationship("Milestone", back_populates="notifications")


class TokenCategory(Base):
    """Award category offered to teachers of a classroom"""

    __tablename__ = "token_category"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    classroom_id = Column(Text, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    default_amount = Column(Integer, nullable=False)
    color_code = Column(String(20), nullable=True)
    icon_name = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AwardPreset(Base):
    """Saved award a teacher can apply to many students at once"""

    __tablename__ = "award_preset"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    teacher_id = Column(Text, nullable=False)
    classroom_id = Column(Text, nullable=False)
    preset_name = Column(String(100), nullable=False)
    amount = Column(Integer, nullable=False)
    description_template = Column(Text, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class StoreItem(Base):
    """Item students can buy with classroom tokens"""

    __tablename__ = "store_item"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    classroom_id = Column(Text, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    cost = Column(Integer, nullable=False)
    category = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    inventory = Column(Integer, nullable=False, default=-1)  # -1 means unlimited
    max_per_student = Column(Integer, nullable=True)  # None means no limit
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    purchases = relationship("Purchase", back_populates="store_item")


class Purchase(Base):
    """Fulfilled store purchase, linked to the debit that paid for it"""

    __tablename__ = "purchase"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Text, nullable=False, index=True)
    classroom_id = Column(Text, nullable=False)
    store_item_id = Column(UUID(as_uuid=True), ForeignKey("store_item.id"), nullable=False)
    transaction_id = Column(AutoIncrementId, ForeignKey("token_transaction.id"), nullable=False)
    tokens_spent = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default="fulfilled")
    purchased_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    store_item = relationship("StoreItem", back_populates="purchases")
