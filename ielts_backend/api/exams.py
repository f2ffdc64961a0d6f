# FILE: ielts_backend/api/exams.py
"""Exam lifecycle endpoints."""

from fastapi import APIRouter, Depends, Query

from ielts_backend.api.deps import get_current_user, get_grader
from ielts_backend.schemas.exams import (
    ExamHistoryResponse,
    GradedExamResponse,
    StartExamRequest,
    StartExamResponse,
    SubmitExamRequest,
    SubmitExamResponse,
    SubmitSpeakingRequest,
    SubmitWritingRequest,
)
from ielts_backend.services import exam_service

router = APIRouter(prefix="/api", tags=["exams"])


# ─────────────────────────────────────────────
# START / SUBMIT
# ─────────────────────────────────────────────

@router.post("/exam/start", response_model=StartExamResponse)
async def start_exam(req: StartExamRequest, user=Depends(get_current_user)):
    """Charge one credit and hand out a randomly selected exam."""
    return await exam_service.start_exam(user["id"], req.type, req.difficulty)


@router.post("/exam/submit", response_model=SubmitExamResponse)
async def submit_exam(req: SubmitExamRequest, user=Depends(get_current_user)):
    return await exam_service.submit_exam(user["id"], req.exam_id, req.answers, req.time_spent)


@router.post("/exam/writing/submit", response_model=GradedExamResponse)
async def submit_writing(req: SubmitWritingRequest, user=Depends(get_current_user), grader=Depends(get_grader)):
    return await exam_service.submit_writing(
        user["id"], req.exam_id, req.text, req.time_spent, grader=grader
    )


@router.post("/exam/speaking/submit", response_model=GradedExamResponse)
async def submit_speaking(req: SubmitSpeakingRequest, user=Depends(get_current_user), grader=Depends(get_grader)):
    return await exam_service.submit_speaking(
        user["id"],
        req.exam_id,
        part1_audio=req.part1_audio,
        part2_audio=req.part2_audio,
        part3_audio=req.part3_audio,
        time_spent=req.time_spent,
        grader=grader,
    )


# ─────────────────────────────────────────────
# HISTORY
# ─────────────────────────────────────────────

@router.get("/exams/history", response_model=ExamHistoryResponse)
async def exam_history(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user=Depends(get_current_user),
):
    return await exam_service.exam_history(user["id"], limit=limit, offset=offset)
