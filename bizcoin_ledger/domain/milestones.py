"""Milestone crossing detection - pure logic, no persistence"""

from typing import Iterable, List
from bizcoin_ledger.domain.models import Milestone, Wallet


def applies_to(milestone: Milestone, wallet: Wallet) -> bool:
    """Milestone is active, in the wallet's classroom and targets this student (or everyone)"""
    if not milestone.is_active:
        return False
    if milestone.classroom_id != wallet.classroom_id:
        return False
    return milestone.student_id is None or milestone.student_id == wallet.student_id


def crossed_thresholds(
    milestones: Iterable[Milestone],
    previous: Wallet,
    current: Wallet,
) -> List[Milestone]:
    """
    Return milestones crossed by moving from `previous` to `current`.

    A threshold is crossed when previous value < threshold <= new value.
    Moving downwards never crosses anything, so a balance milestone cannot
    fire on a debit.

    Example:
        threshold 100 on total_earned
        previous 50, current 110 -> crossed
        previous 110, current 160 -> not crossed (already past)
    """
    crossed = []
    for milestone in milestones:
        if not applies_to(milestone, current):
            continue
        before = previous.metric(milestone.metric)
        after = current.metric(milestone.metric)
        if before < milestone.threshold <= after:
            crossed.append(milestone)

    # Lower thresholds first so events read in the order they were reached
    return sorted(crossed, key=lambda m: m.threshold)
