"""Unit tests for milestone evaluation and persistence of notified state"""

import pytest
from sqlalchemy.orm import Session

from bizcoin_ledger.domain.exceptions import ValidationError
from bizcoin_ledger.domain.models import MilestoneMetric, Wallet
from bizcoin_ledger.services.ledger import TokenLedgerService
from bizcoin_ledger.services.milestones import MilestoneEvaluator

CLASSROOM = "classroom-a"


def wallet(student: str = "s1", balance: int = 0, earned: int = 0, spent: int = 0) -> Wallet:
    return Wallet(
        student_id=student,
        classroom_id=CLASSROOM,
        current_balance=balance,
        total_earned=earned,
        total_spent=spent,
    )


@pytest.fixture
def evaluator(db: Session) -> MilestoneEvaluator:
    return MilestoneEvaluator(db)


def test_repeated_evaluation_fires_once_per_student(evaluator: MilestoneEvaluator):
    """Same crossing evaluated twice -> exactly one event"""
    evaluator.create_milestone(CLASSROOM, "Century", "total_earned", 100)

    first = evaluator.evaluate(wallet(earned=110), wallet(earned=50))
    second = evaluator.evaluate(wallet(earned=110), wallet(earned=50))

    assert len(first) == 1
    assert first[0].milestone_name == "Century"
    assert second == []


def test_each_student_is_notified_independently(evaluator: MilestoneEvaluator):
    evaluator.create_milestone(CLASSROOM, "Century", "total_earned", 100)

    assert len(evaluator.evaluate(wallet("s1", earned=100), wallet("s1"))) == 1
    assert len(evaluator.evaluate(wallet("s2", earned=100), wallet("s2"))) == 1


def test_balance_milestone_does_not_refire_after_dip(evaluator: MilestoneEvaluator):
    """Balance crosses 50, drops, crosses again -> still one notification"""
    evaluator.create_milestone(CLASSROOM, "Saver", "current_balance", 50)

    assert len(evaluator.evaluate(wallet(balance=60), wallet(balance=40))) == 1
    assert evaluator.evaluate(wallet(balance=20), wallet(balance=60)) == []
    assert evaluator.evaluate(wallet(balance=70), wallet(balance=20)) == []


def test_student_targeted_milestone(evaluator: MilestoneEvaluator):
    evaluator.create_milestone(CLASSROOM, "Personal goal", "total_earned", 30, student_id="s2")

    assert evaluator.evaluate(wallet("s1", earned=40), wallet("s1")) == []
    events = evaluator.evaluate(wallet("s2", earned=40), wallet("s2"))
    assert [e.student_id for e in events] == ["s2"]


def test_event_carries_observed_value(evaluator: MilestoneEvaluator):
    evaluator.create_milestone(CLASSROOM, "Big spender", "total_spent", 25)

    events = evaluator.evaluate(wallet(spent=40), wallet(spent=10))

    assert events[0].metric == MilestoneMetric.TOTAL_SPENT
    assert events[0].threshold == 25
    assert events[0].value == 40


@pytest.mark.parametrize(
    "kwargs",
    [
        {"metric": "total_earned", "threshold": 0},
        {"metric": "lifetime_happiness", "threshold": 10},
        {"metric": "total_earned", "threshold": 10, "token_bonus": -1},
    ],
)
def test_invalid_milestone_definitions_rejected(evaluator: MilestoneEvaluator, kwargs):
    with pytest.raises(ValidationError):
        evaluator.create_milestone(CLASSROOM, "Broken", **kwargs)


def test_student_milestones_show_achievement(db: Session, evaluator: MilestoneEvaluator):
    evaluator.create_milestone(CLASSROOM, "Starter", "total_earned", 10)
    evaluator.create_milestone(CLASSROOM, "Century", "total_earned", 100)

    TokenLedgerService(db).award("s1", CLASSROOM, 20, "homework", "HW")

    progress = evaluator.list_student_milestones("s1", CLASSROOM)
    by_name = {entry["milestone"].name: entry for entry in progress}
    assert by_name["Starter"]["achieved"] is True
    assert by_name["Starter"]["value_at_achievement"] == 20
    assert by_name["Century"]["achieved"] is False
    assert by_name["Century"]["achieved_at"] is None
