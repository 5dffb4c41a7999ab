"""GET /v1/wallets/... - Wallet balance, history and reconciliation"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from bizcoin_ledger.api.dependencies import get_ledger_service
from bizcoin_ledger.api.v1.schemas import (
    ReconciliationResponse,
    TransactionPageResponse,
    TransactionSchema,
    WalletSchema,
    WalletSummaryResponse,
)
from bizcoin_ledger.config import settings
from bizcoin_ledger.services.ledger import TokenLedgerService

router = APIRouter()


@router.get("/wallets/{student_id}/classrooms/{classroom_id}", response_model=WalletSummaryResponse)
def get_wallet(
    student_id: str,
    classroom_id: str,
    service: TokenLedgerService = Depends(get_ledger_service),
):
    """
    Wallet balance with the most recent transactions.

    Returns a zero wallet for a student with no activity in the classroom.
    """
    summary = service.get_wallet_summary(student_id, classroom_id)
    return WalletSummaryResponse(
        wallet=WalletSchema.model_validate(summary.wallet),
        transactions=[TransactionSchema.model_validate(t) for t in summary.transactions],
    )


@router.get("/wallets/{student_id}/classrooms/{classroom_id}/transactions", response_model=TransactionPageResponse)
def list_transactions(
    student_id: str,
    classroom_id: str,
    limit: int = Query(settings.transaction_page_size, ge=1, le=500),
    before_id: Optional[int] = Query(None, description="Cursor: only entries older than this id"),
    service: TokenLedgerService = Depends(get_ledger_service),
):
    """Page through a wallet's history, newest first"""
    transactions = list(service.list_for_student(student_id, classroom_id, limit=limit, before_id=before_id))
    next_before_id = transactions[-1].id if len(transactions) == limit else None

    return TransactionPageResponse(
        student_id=student_id,
        classroom_id=classroom_id,
        transactions=[TransactionSchema.model_validate(t) for t in transactions],
        next_before_id=next_before_id,
    )


@router.get("/wallets/{student_id}/classrooms/{classroom_id}/reconciliation", response_model=ReconciliationResponse)
def reconcile_wallet(
    student_id: str,
    classroom_id: str,
    service: TokenLedgerService = Depends(get_ledger_service),
):
    """Audit the cached balance against the transaction log"""
    report = service.reconcile(student_id, classroom_id)
    return ReconciliationResponse(
        student_id=report.student_id,
        classroom_id=report.classroom_id,
        cached_balance=report.cached_balance,
        ledger_balance=report.ledger_balance,
        transaction_count=report.transaction_count,
        broken_chain_ids=report.broken_chain_ids,
        consistent=report.consistent,
    )
