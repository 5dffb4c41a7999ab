"""Dependency injection for FastAPI endpoints"""

from typing import List

from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from bizcoin_ledger.domain.models import MilestoneEvent
from bizcoin_ledger.infrastructure.clients.notifications import NotificationClient
from bizcoin_ledger.infrastructure.database.session import get_db
from bizcoin_ledger.services.ledger import TokenLedgerService
from bizcoin_ledger.services.milestones import MilestoneEvaluator


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_notification_client() -> NotificationClient:
    """Provide notification webhook client instance"""
    return NotificationClient()


def get_ledger_service(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
) -> TokenLedgerService:
    """Ledger service whose milestone events are delivered after the response is sent"""

    def schedule(events: List[MilestoneEvent]) -> None:
        background_tasks.add_task(notifier.deliver_milestones, events)

    return TokenLedgerService(db, on_milestones=schedule, request_id=get_request_id(request))


def get_milestone_evaluator(db: Session = Depends(get_db)) -> MilestoneEvaluator:
    return MilestoneEvaluator(db)
