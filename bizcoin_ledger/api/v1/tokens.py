"""POST /v1/tokens/... - Award, spend and penalty endpoints plus award catalog"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from bizcoin_ledger.api.dependencies import get_ledger_service, get_request_id
from bizcoin_ledger.api.v1.schemas import (
    AwardPresetSchema,
    AwardRequest,
    AwardResponse,
    AwardResultSchema,
    DebitRequest,
    PenaltyResponse,
    PresetAwardRequest,
    TokenCategorySchema,
    TransactionSchema,
)
from bizcoin_ledger.domain.exceptions import (
    InsufficientBalance,
    NotFoundError,
    StorageFailure,
    ValidationError,
)
from bizcoin_ledger.domain.models import AwardResult
from bizcoin_ledger.services.ledger import TokenLedgerService

router = APIRouter()


def _award_response(results: List[AwardResult]) -> AwardResponse:
    awarded = sum(1 for r in results if r.success)
    return AwardResponse(
        awarded=awarded,
        failed=len(results) - awarded,
        results=[AwardResultSchema.model_validate(r) for r in results],
    )


@router.post("/tokens/award", response_model=AwardResponse)
def award_tokens(
    request_body: AwardRequest,
    request: Request,
    service: TokenLedgerService = Depends(get_ledger_service),
):
    """
    Award the same amount to one or more students of a classroom.

    Each student's award is independent: the response lists a result per
    student and a failure for one never rolls back the others.
    """
    try:
        results = service.award_many(
            request_body.student_ids,
            request_body.classroom_id,
            request_body.amount,
            request_body.category,
            request_body.description,
            bonus=request_body.bonus,
            reference_type=request_body.reference_type,
            reference_id=request_body.reference_id,
            created_by=request_body.created_by,
            idempotency_key=request_body.idempotency_key,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logging.info(
        "Bulk award completed",
        extra={
            "request_id": get_request_id(request),
            "classroom_id": request_body.classroom_id,
            "students": len(results),
        },
    )
    return _award_response(results)


@router.post("/tokens/spend", response_model=TransactionSchema)
def spend_tokens(
    request_body: DebitRequest,
    service: TokenLedgerService = Depends(get_ledger_service),
):
    """Debit a wallet; refused with 409 when the balance is too low"""
    try:
        transaction = service.spend(
            request_body.student_id,
            request_body.classroom_id,
            request_body.amount,
            request_body.category,
            request_body.description,
            reference_type=request_body.reference_type,
            reference_id=request_body.reference_id,
            created_by=request_body.created_by,
        )
    except InsufficientBalance as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StorageFailure:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")

    return TransactionSchema.model_validate(transaction)


@router.post("/tokens/penalize", response_model=PenaltyResponse)
def penalize_tokens(
    request_body: DebitRequest,
    service: TokenLedgerService = Depends(get_ledger_service),
):
    """Deduct tokens, clamped at a zero balance"""
    try:
        result = service.penalize(
            request_body.student_id,
            request_body.classroom_id,
            request_body.amount,
            request_body.category,
            request_body.description,
            reference_type=request_body.reference_type,
            reference_id=request_body.reference_id,
            created_by=request_body.created_by,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StorageFailure:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")

    return PenaltyResponse(
        requested=result.requested,
        collected=result.collected,
        uncollected=result.uncollected,
        transaction=TransactionSchema.model_validate(result.transaction) if result.transaction else None,
    )


@router.get("/tokens/categories/classrooms/{classroom_id}", response_model=List[TokenCategorySchema])
def get_categories(classroom_id: str, service: TokenLedgerService = Depends(get_ledger_service)):
    """Award categories for a classroom; defaults are created on first request"""
    try:
        categories = service.get_categories(classroom_id)
    except StorageFailure:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")
    return [TokenCategorySchema.model_validate(c) for c in categories]


@router.get("/tokens/presets/classrooms/{classroom_id}", response_model=List[AwardPresetSchema])
def get_presets(
    classroom_id: str,
    teacher_id: str = Query(..., min_length=1, description="Teacher owning the presets"),
    service: TokenLedgerService = Depends(get_ledger_service),
):
    """A teacher's award presets; defaults are created on first request"""
    try:
        presets = service.get_presets(teacher_id, classroom_id)
    except StorageFailure:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")
    return [AwardPresetSchema.model_validate(p) for p in presets]


@router.post("/tokens/award/preset", response_model=AwardResponse)
def award_with_preset(
    request_body: PresetAwardRequest,
    service: TokenLedgerService = Depends(get_ledger_service),
):
    """Award tokens to students using a saved preset"""
    try:
        results = service.award_with_preset(
            request_body.preset_id,
            request_body.student_ids,
            request_body.teacher_id,
            description=request_body.custom_description,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StorageFailure:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")

    return _award_response(results)
