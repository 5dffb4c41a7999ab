"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, UUID4

from bizcoin_ledger.domain.models import MilestoneMetric, TransactionType


class TransactionSchema(BaseModel):
    """Single ledger entry"""

    model_config = ConfigDict(from_attributes=True)

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


class WalletSchema(BaseModel):
    """Balance and aggregates of one wallet"""

    model_config = ConfigDict(from_attributes=True)

    student_id: str
    classroom_id: str
    current_balance: int
    total_earned: int
    total_spent: int


class WalletSummaryResponse(BaseModel):
    """Response for GET /v1/wallets/{student_id}/classrooms/{classroom_id}"""

    wallet: WalletSchema
    transactions: List[TransactionSchema]


class TransactionPageResponse(BaseModel):
    """One page of a wallet's history, newest first"""

    student_id: str
    classroom_id: str
    transactions: List[TransactionSchema]
    next_before_id: Optional[int] = None


class ReconciliationResponse(BaseModel):
    student_id: str
    classroom_id: str
    cached_balance: int
    ledger_balance: int
    transaction_count: int
    broken_chain_ids: List[int]
    consistent: bool


class AwardRequest(BaseModel):
    """Request body for POST /v1/tokens/award"""

    student_ids: List[str] = Field(..., min_length=1, description="Students to award")
    classroom_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, description="Tokens per student")
    category: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    bonus: bool = False
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    created_by: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, description="Stable key so retries do not double-award")


class AwardResultSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    student_id: str
    success: bool
    transaction: Optional[TransactionSchema] = None
    error: Optional[str] = None


class AwardResponse(BaseModel):
    """Per-student outcome of a bulk award"""

    awarded: int
    failed: int
    results: List[AwardResultSchema]


class DebitRequest(BaseModel):
    """Request body for POST /v1/tokens/spend and /v1/tokens/penalize"""

    student_id: str = Field(..., min_length=1)
    classroom_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    category: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    created_by: Optional[str] = None


class PenaltyResponse(BaseModel):
    requested: int
    collected: int
    uncollected: int
    transaction: Optional[TransactionSchema] = None


class TokenCategorySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID4
    classroom_id: str
    name: str
    description: Optional[str] = None
    default_amount: int
    color_code: Optional[str] = None
    icon_name: Optional[str] = None


class AwardPresetSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID4
    teacher_id: str
    classroom_id: str
    preset_name: str
    amount: int
    description_template: Optional[str] = None
    usage_count: int
    last_used_at: Optional[datetime] = None


class PresetAwardRequest(BaseModel):
    """Request body for POST /v1/tokens/award/preset"""

    preset_id: UUID4
    teacher_id: str = Field(..., min_length=1)
    student_ids: List[str] = Field(..., min_length=1)
    custom_description: Optional[str] = None


class MilestoneCreateRequest(BaseModel):
    classroom_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    metric: MilestoneMetric = MilestoneMetric.TOTAL_EARNED
    threshold: int = Field(..., gt=0)
    student_id: Optional[str] = None
    token_bonus: int = Field(0, ge=0)


class MilestoneSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    classroom_id: str
    name: str
    metric: MilestoneMetric
    threshold: int
    student_id: Optional[str] = None
    token_bonus: int
    is_active: bool


class StudentMilestoneSchema(BaseModel):
    milestone: MilestoneSchema
    achieved: bool
    achieved_at: Optional[datetime] = None
    value_at_achievement: Optional[int] = None


class StoreItemCreateRequest(BaseModel):
    classroom_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    cost: int = Field(..., gt=0)
    description: Optional[str] = None
    category: Optional[str] = None
    inventory: int = Field(-1, ge=-1, description="-1 means unlimited")
    max_per_student: Optional[int] = Field(None, gt=0, description="Purchases allowed per student; null means no limit")


class StoreItemUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    cost: Optional[int] = Field(None, gt=0)
    category: Optional[str] = None
    inventory: Optional[int] = Field(None, ge=-1)
    max_per_student: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None


class StoreItemSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID4
    classroom_id: str
    name: str
    description: Optional[str] = None
    cost: int
    category: Optional[str] = None
    is_active: bool
    inventory: int
    max_per_student: Optional[int] = None


class PurchaseRequest(BaseModel):
    student_id: str = Field(..., min_length=1)


class PurchaseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    purchase_id: str
    student_id: str
    classroom_id: str
    store_item_id: str
    item_name: str
    tokens_spent: int
    remaining_inventory: int
    transaction: TransactionSchema
