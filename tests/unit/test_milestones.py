"""Unit tests for milestone crossing detection"""

from bizcoin_ledger.domain.milestones import applies_to, crossed_thresholds
from bizcoin_ledger.domain.models import Milestone, MilestoneMetric, Wallet


def wallet(balance: int = 0, earned: int = 0, spent: int = 0, student: str = "s1", classroom: str = "c1") -> Wallet:
    return Wallet(
        student_id=student,
        classroom_id=classroom,
        current_balance=balance,
        total_earned=earned,
        total_spent=spent,
    )


def milestone(threshold: int, metric: MilestoneMetric = MilestoneMetric.TOTAL_EARNED, **kwargs) -> Milestone:
    return Milestone(
        id=kwargs.pop("id", f"m{threshold}"),
        classroom_id=kwargs.pop("classroom_id", "c1"),
        name=f"{threshold} club",
        metric=metric,
        threshold=threshold,
        **kwargs,
    )


def test_crossing_fires_when_threshold_reached_exactly():
    """previous < threshold <= new, with new == threshold"""
    crossed = crossed_thresholds([milestone(100)], wallet(earned=50), wallet(earned=100))
    assert [m.threshold for m in crossed] == [100]


def test_no_crossing_when_already_past_threshold():
    crossed = crossed_thresholds([milestone(100)], wallet(earned=110), wallet(earned=160))
    assert crossed == []


def test_no_crossing_when_still_below():
    crossed = crossed_thresholds([milestone(100)], wallet(earned=10), wallet(earned=99))
    assert crossed == []


def test_one_transaction_can_cross_several_thresholds_in_order():
    """A large award crossing 50 and 100 reports both, lowest first"""
    milestones = [milestone(100), milestone(500), milestone(50)]
    crossed = crossed_thresholds(milestones, wallet(earned=0), wallet(earned=120))
    assert [m.threshold for m in crossed] == [50, 100]


def test_balance_milestone_ignores_debits():
    """Spending moves the balance down, which never crosses a threshold"""
    m = milestone(100, metric=MilestoneMetric.CURRENT_BALANCE)
    crossed = crossed_thresholds([m], wallet(balance=150), wallet(balance=20))
    assert crossed == []


def test_total_spent_milestone():
    m = milestone(30, metric=MilestoneMetric.TOTAL_SPENT)
    crossed = crossed_thresholds([m], wallet(spent=0), wallet(spent=30))
    assert crossed == [m]


def test_inactive_and_foreign_milestones_are_skipped():
    inactive = milestone(10, id="inactive", is_active=False)
    other_classroom = milestone(10, id="other", classroom_id="c2")
    other_student = milestone(10, id="targeted", student_id="s2")
    crossed = crossed_thresholds([inactive, other_classroom, other_student], wallet(earned=0), wallet(earned=20))
    assert crossed == []


def test_student_targeted_milestone_applies_only_to_that_student():
    m = milestone(10, student_id="s1")
    assert applies_to(m, wallet(student="s1"))
    assert not applies_to(m, wallet(student="s2"))
