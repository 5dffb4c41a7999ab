"""Classroom store: items and token purchases"""

import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from bizcoin_ledger.api.dependencies import get_ledger_service
from bizcoin_ledger.api.v1.schemas import (
    PurchaseRequest,
    PurchaseResponse,
    StoreItemCreateRequest,
    StoreItemSchema,
    StoreItemUpdateRequest,
)
from bizcoin_ledger.domain.exceptions import (
    InsufficientBalance,
    NotFoundError,
    StorageFailure,
    ValidationError,
)
from bizcoin_ledger.services.ledger import TokenLedgerService

router = APIRouter()


def _parse_item_id(item_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(item_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid store item ID format")


@router.post("/store/items", response_model=StoreItemSchema, status_code=status.HTTP_201_CREATED)
def create_store_item(
    request_body: StoreItemCreateRequest,
    service: TokenLedgerService = Depends(get_ledger_service),
):
    try:
        item = service.create_store_item(
            classroom_id=request_body.classroom_id,
            name=request_body.name,
            cost=request_body.cost,
            description=request_body.description,
            category=request_body.category,
            inventory=request_body.inventory,
            max_per_student=request_body.max_per_student,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StorageFailure:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")
    return StoreItemSchema.model_validate(item)


@router.get("/store/items/classrooms/{classroom_id}", response_model=List[StoreItemSchema])
def list_store_items(classroom_id: str, service: TokenLedgerService = Depends(get_ledger_service)):
    return [StoreItemSchema.model_validate(item) for item in service.list_store_items(classroom_id)]


@router.put("/store/items/{item_id}", response_model=StoreItemSchema)
def update_store_item(
    item_id: str,
    request_body: StoreItemUpdateRequest,
    service: TokenLedgerService = Depends(get_ledger_service),
):
    """Change only the fields present in the request body"""
    item_uuid = _parse_item_id(item_id)
    try:
        item = service.update_store_item(item_uuid, **request_body.model_dump(exclude_unset=True))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Store item not found")
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StorageFailure:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")
    return StoreItemSchema.model_validate(item)


@router.delete("/store/items/{item_id}", response_model=StoreItemSchema)
def deactivate_store_item(item_id: str, service: TokenLedgerService = Depends(get_ledger_service)):
    """Withdraw an item from sale. Purchase history is kept, so the row is never removed."""
    item_uuid = _parse_item_id(item_id)
    try:
        item = service.deactivate_store_item(item_uuid)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Store item not found")
    except StorageFailure:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")
    return StoreItemSchema.model_validate(item)


@router.post("/store/items/{item_id}/purchase", response_model=PurchaseResponse)
def purchase_item(
    item_id: str,
    request_body: PurchaseRequest,
    service: TokenLedgerService = Depends(get_ledger_service),
):
    """
    Buy an item with the student's tokens in the item's classroom.

    Returns:
        Purchase receipt including the debit transaction
    """
    item_uuid = _parse_item_id(item_id)

    try:
        receipt = service.purchase_item(request_body.student_id, item_uuid)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Store item not found")
    except InsufficientBalance as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StorageFailure:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")

    return PurchaseResponse.model_validate(receipt)
