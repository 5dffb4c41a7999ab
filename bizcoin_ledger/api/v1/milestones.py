"""Milestone configuration and per-student progress endpoints"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from bizcoin_ledger.api.dependencies import get_milestone_evaluator
from bizcoin_ledger.api.v1.schemas import MilestoneCreateRequest, MilestoneSchema, StudentMilestoneSchema
from bizcoin_ledger.domain.exceptions import StorageFailure, ValidationError
from bizcoin_ledger.services.milestones import MilestoneEvaluator

router = APIRouter()


@router.post("/milestones", response_model=MilestoneSchema, status_code=status.HTTP_201_CREATED)
def create_milestone(
    request_body: MilestoneCreateRequest,
    evaluator: MilestoneEvaluator = Depends(get_milestone_evaluator),
):
    """Configure a threshold for a classroom, or for one student when student_id is set"""
    try:
        milestone = evaluator.create_milestone(
            classroom_id=request_body.classroom_id,
            name=request_body.name,
            metric=request_body.metric,
            threshold=request_body.threshold,
            student_id=request_body.student_id,
            token_bonus=request_body.token_bonus,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StorageFailure:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")
    return MilestoneSchema.model_validate(milestone)


@router.get("/milestones/classrooms/{classroom_id}", response_model=List[MilestoneSchema])
def list_milestones(classroom_id: str, evaluator: MilestoneEvaluator = Depends(get_milestone_evaluator)):
    return [MilestoneSchema.model_validate(m) for m in evaluator.list_milestones(classroom_id)]


@router.get(
    "/milestones/students/{student_id}/classrooms/{classroom_id}",
    response_model=List[StudentMilestoneSchema],
)
def list_student_milestones(
    student_id: str,
    classroom_id: str,
    evaluator: MilestoneEvaluator = Depends(get_milestone_evaluator),
):
    """Milestones visible to a student, flagged when already achieved"""
    return [
        StudentMilestoneSchema(
            milestone=MilestoneSchema.model_validate(entry["milestone"]),
            achieved=entry["achieved"],
            achieved_at=entry["achieved_at"],
            value_at_achievement=entry["value_at_achievement"],
        )
        for entry in evaluator.list_student_milestones(student_id, classroom_id)
    ]
