"""Milestone evaluation and administration"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from bizcoin_ledger.domain.exceptions import ValidationError
from bizcoin_ledger.domain.milestones import crossed_thresholds
from bizcoin_ledger.domain.models import Milestone, MilestoneEvent, MilestoneMetric, Wallet
from bizcoin_ledger.infrastructure.database.repositories import MilestoneRepository
from bizcoin_ledger.infrastructure.database.session import unit_of_work
from bizcoin_ledger.infrastructure.observability.metrics import milestone_event_counter

logger = logging.getLogger(__name__)


class MilestoneEvaluator:
    """Detects threshold crossings after a transaction and remembers what was already notified"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = MilestoneRepository(db)

    def evaluate(self, wallet: Wallet, previous: Wallet) -> List[MilestoneEvent]:
        """
        Emit one event per milestone crossed between `previous` and `wallet`.

        A (student, milestone) pair is notified at most once: the marker is
        committed together with the event, so later crossings of the same
        threshold (e.g. a balance dipping and recovering) stay silent.
        """
        milestones = self.repo.list_for_student(wallet.student_id, wallet.classroom_id)
        crossed = crossed_thresholds(milestones, previous, wallet)
        if not crossed:
            return []

        already = self.repo.notified_ids(wallet.student_id, [m.id for m in crossed])
        pending = [m for m in crossed if m.id not in already]
        if not pending:
            return []

        now = datetime.now(timezone.utc)
        events = []
        with unit_of_work(self.db):
            for milestone in pending:
                value = wallet.metric(milestone.metric)
                self.repo.mark_notified(wallet.student_id, wallet.classroom_id, milestone.id, value)
                events.append(
                    MilestoneEvent(
                        milestone_id=milestone.id,
                        milestone_name=milestone.name,
                        student_id=wallet.student_id,
                        classroom_id=wallet.classroom_id,
                        metric=milestone.metric,
                        threshold=milestone.threshold,
                        value=value,
                        occurred_at=now,
                        token_bonus=milestone.token_bonus,
                    )
                )

        for event in events:
            milestone_event_counter.labels(metric=event.metric.value).inc()
            logger.info(
                "Milestone reached",
                extra={
                    "student_id": event.student_id,
                    "classroom_id": event.classroom_id,
                    "milestone_id": event.milestone_id,
                    "threshold": event.threshold,
                    "value": event.value,
                },
            )
        return events

    def create_milestone(
        self,
        classroom_id: str,
        name: str,
        metric: str,
        threshold: int,
        student_id: Optional[str] = None,
        token_bonus: int = 0,
    ) -> Milestone:
        if not classroom_id or not name:
            raise ValidationError("Milestone classroom_id and name are required")
        try:
            metric = MilestoneMetric(metric)
        except ValueError as e:
            raise ValidationError(f"Unknown milestone metric: {metric}") from e
        if threshold <= 0:
            raise ValidationError("Milestone threshold must be positive")
        if token_bonus < 0:
            raise ValidationError("Milestone token bonus cannot be negative")

        with unit_of_work(self.db):
            return self.repo.create(
                classroom_id=classroom_id,
                name=name,
                metric=metric,
                threshold=threshold,
                student_id=student_id,
                token_bonus=token_bonus,
            )

    def list_milestones(self, classroom_id: str) -> List[Milestone]:
        return self.repo.list_for_classroom(classroom_id)

    def list_student_milestones(self, student_id: str, classroom_id: str) -> List[Dict[str, Any]]:
        """Milestones visible to a student with achieved flag and timestamp"""
        notifications = self.repo.notifications_for_student(student_id, classroom_id)
        result = []
        for milestone in self.repo.list_for_student(student_id, classroom_id):
            notification = notifications.get(milestone.id)
            result.append(
                {
                    "milestone": milestone,
                    "achieved": notification is not None,
                    "achieved_at": notification.notified_at if notification else None,
                    "value_at_achievement": notification.value if notification else None,
                }
            )
        return result
