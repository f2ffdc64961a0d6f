# FILE: ielts_backend/services/exam_service.py
"""Exam lifecycle: paid start, grading, completion, history.

Every started exam is funded by exactly one USAGE entry. If no content can
be served the credit comes back as a USAGE_FAIL entry in the same
transaction, so a failed start never costs the user anything.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from ielts_backend.core.config import UPLOAD_DIR
from ielts_backend.core.database import unit_of_work
from ielts_backend.models.credit_ledger import LedgerKind
from ielts_backend.models.exam_session import (
    OBJECTIVE_EXAM_TYPES,
    ExamSession,
    ExamStatus,
    ExamType,
)
from ielts_backend.schemas.exams import (
    ExamHistoryItem,
    ExamHistoryResponse,
    GradedExamResponse,
    QuestionResult,
    StartExamResponse,
    StoredPayload,
    SubmitExamResponse,
)
from ielts_backend.services import content_service, ledger_service
from ielts_backend.services.errors import (
    AlreadySubmitted,
    ContentUnavailable,
    Forbidden,
    GradingUnavailable,
    InsufficientFunds,
    InvalidState,
    NotFound,
)
from ielts_backend.services.grading_service import (
    GradingCost,
    OpenAIGrader,
    decode_audio,
    fallback_speaking_grade,
    fallback_writing_grade,
)

logger = logging.getLogger(__name__)

CREDIT_RESTORED_REASON = "Credit restored - no published content available"

# a grading claim older than this is treated as abandoned
GRADING_CLAIM_TTL = timedelta(minutes=10)

# decile of the score percentage -> band; 100% and 0 correct are handled apart
BAND_BY_DECILE = {
    9: 8.5,
    8: 8.0,
    7: 7.5,
    6: 7.0,
    5: 6.5,
    4: 6.0,
    3: 5.5,
    2: 5.0,
    1: 4.5,
    0: 4.0,
}


# ─────────────────────────────────────────────
# SCORING
# ─────────────────────────────────────────────

def _normalize(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


def compare_answers(user_answer: Any, correct_answer: Any) -> bool:
    """True when the user's answer matches the stored key. Never raises."""
    # bool before anything else: True == 1 in Python
    if isinstance(correct_answer, bool):
        if isinstance(user_answer, bool):
            return user_answer is correct_answer
        return str(user_answer).strip().lower() == str(correct_answer).lower()

    if isinstance(correct_answer, list):
        if not isinstance(user_answer, list) or len(user_answer) != len(correct_answer):
            return False
        try:
            return {_normalize(v) for v in user_answer} == {_normalize(v) for v in correct_answer}
        except TypeError:
            # unhashable values inside the answer
            return False

    if isinstance(correct_answer, str):
        return str(user_answer).strip().lower() == correct_answer.strip().lower()

    return False


def band_score(correct: int, total: int) -> float:
    if total <= 0 or correct <= 0:
        return 0.0
    if correct >= total:
        return 9.0
    return BAND_BY_DECILE[(correct * 10) // total]


# ─────────────────────────────────────────────
# START
# ─────────────────────────────────────────────

async def start_exam(
    user_id: str,
    exam_type: str,
    difficulty: str = "MIXED",
    session_factory: Optional[async_sessionmaker] = None,
) -> StartExamResponse:
    exam_type = ExamType(exam_type)
    exam_id = str(uuid.uuid4())
    unavailable: Optional[ContentUnavailable] = None

    async with unit_of_work(session_factory) as db:
        if await ledger_service.cached_balance(db, user_id) < 1:
            raise InsufficientFunds()

        await ledger_service.append(
            db,
            user_id,
            -1,
            LedgerKind.USAGE,
            reason=f"Started {exam_type.value} exam",
            require_funds=True,
        )

        try:
            async with db.begin_nested():
                content = await content_service.select_content(db, exam_type, difficulty)
                payload = StoredPayload(
                    content=content,
                    start_time=datetime.utcnow().replace(tzinfo=timezone.utc).isoformat(),
                )
                db.add(ExamSession(
                    id=exam_id,
                    user_id=user_id,
                    exam_type=exam_type.value,
                    status=ExamStatus.IN_PROGRESS.value,
                    payload=payload.model_dump(mode="json"),
                    created_at=datetime.utcnow(),
                ))
                await db.flush()
        except ContentUnavailable as exc:
            unavailable = exc
            try:
                await ledger_service.append(db, user_id, 1, LedgerKind.USAGE_FAIL, reason=CREDIT_RESTORED_REASON)
            except Exception:
                logger.critical(
                    "credit restore failed user=%s exam_type=%s; rolling back the charge",
                    user_id, exam_type.value, exc_info=True,
                )
                raise

    if unavailable is not None:
        logger.warning("start %s for user=%s: %s (credit restored)", exam_type.value, user_id, unavailable.message)
        raise unavailable

    logger.info("exam %s started: user=%s type=%s", exam_id, user_id, exam_type.value)
    return StartExamResponse(exam_id=exam_id, type=exam_type, duration=content.duration, content=content)


# ─────────────────────────────────────────────
# SUBMIT
# ─────────────────────────────────────────────

async def _load_for_submit(db, user_id: str, exam_id: str, allowed_types: Set[str]) -> ExamSession:
    session = await db.get(ExamSession, exam_id)
    if not session:
        raise NotFound("Exam not found")
    if session.user_id != user_id:
        raise Forbidden("This exam belongs to another user")
    if session.exam_type not in allowed_types:
        raise InvalidState(f"{session.exam_type} exams cannot be submitted here")
    if session.status == ExamStatus.COMPLETED.value:
        raise AlreadySubmitted()
    if session.status != ExamStatus.IN_PROGRESS.value:
        raise InvalidState(f"Exam is {session.status}")
    return session


async def _complete(
    db,
    exam_id: str,
    score: float,
    sub_scores: Dict[str, Any],
    payload: Dict[str, Any],
    ai_cost: Optional[float] = None,
) -> None:
    # compare-and-set: only one submission can move the session out of IN_PROGRESS
    values = dict(
        status=ExamStatus.COMPLETED.value,
        score=score,
        sub_scores=sub_scores,
        payload=payload,
        submitted_at=datetime.utcnow(),
    )
    if ai_cost is not None:
        values["ai_cost"] = ai_cost
    result = await db.execute(
        update(ExamSession)
        .where(ExamSession.id == exam_id, ExamSession.status == ExamStatus.IN_PROGRESS.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise AlreadySubmitted()


async def _claim_for_grading(db, exam_id: str) -> None:
    """Mark the session as being graded so only one submission pays for AI grading.

    The session stays IN_PROGRESS; the claim only blocks other submissions
    until it is cleared or goes stale.
    """
    now = datetime.utcnow()
    result = await db.execute(
        update(ExamSession)
        .where(
            ExamSession.id == exam_id,
            ExamSession.status == ExamStatus.IN_PROGRESS.value,
            or_(
                ExamSession.grading_started_at.is_(None),
                ExamSession.grading_started_at < now - GRADING_CLAIM_TTL,
            ),
        )
        .values(grading_started_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise AlreadySubmitted("Exam is already being graded")


async def _release_claim(exam_id: str, session_factory: Optional[async_sessionmaker]) -> None:
    async with unit_of_work(session_factory) as db:
        await db.execute(
            update(ExamSession)
            .where(ExamSession.id == exam_id, ExamSession.status == ExamStatus.IN_PROGRESS.value)
            .values(grading_started_at=None)
            .execution_options(synchronize_session=False)
        )
    logger.warning("grading claim on exam %s released after an error", exam_id)


async def submit_exam(
    user_id: str,
    exam_id: str,
    answers: Dict[str, Any],
    time_spent: Optional[int] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> SubmitExamResponse:
    """Grade a READING or LISTENING exam against the stored answer keys."""
    async with unit_of_work(session_factory) as db:
        session = await _load_for_submit(db, user_id, exam_id, OBJECTIVE_EXAM_TYPES)
        stored = StoredPayload.model_validate(session.payload)
        questions = stored.content.questions
        keys = await content_service.load_answer_keys(db, session.exam_type, [q.id for q in questions])

        results: List[QuestionResult] = []
        for q in questions:
            user_answer = answers.get(q.id)
            correct_answer, explanation = keys.get(q.id, (None, q.explanation))
            is_correct = (
                q.id in keys
                and user_answer is not None
                and compare_answers(user_answer, correct_answer)
            )
            results.append(QuestionResult(
                question_id=q.id,
                user_answer=user_answer,
                correct_answer=correct_answer,
                is_correct=is_correct,
                explanation=explanation,
            ))

        total = len(results)
        correct = sum(1 for r in results if r.is_correct)
        score = band_score(correct, total)
        sub_scores = {
            "correct_count": correct,
            "total_questions": total,
            "percentage": round(correct * 100 / total, 2) if total else 0.0,
            "band_score": score,
        }

        payload = dict(session.payload or {})
        payload.update(
            answers=answers,
            results=[r.model_dump(mode="json") for r in results],
            time_spent=time_spent,
            submitted_at=datetime.utcnow().replace(tzinfo=timezone.utc).isoformat(),
        )
        await _complete(db, exam_id, score, sub_scores, payload)
        exam_type = session.exam_type

    logger.info("exam %s submitted: %d/%d band=%.1f", exam_id, correct, total, score)
    return SubmitExamResponse(
        exam_id=exam_id,
        exam_type=exam_type,
        score=score,
        sub_scores=sub_scores,
        results=results,
    )


async def submit_writing(
    user_id: str,
    exam_id: str,
    text: str,
    time_spent: Optional[int] = None,
    grader: Optional[OpenAIGrader] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> GradedExamResponse:
    async with unit_of_work(session_factory) as db:
        session = await _load_for_submit(db, user_id, exam_id, {ExamType.WRITING.value})
        prompt = StoredPayload.model_validate(session.payload).content.prompt
        base_payload = dict(session.payload or {})
        await _claim_for_grading(db, exam_id)

    # AI grading runs with no transaction open; the grading claim keeps a
    # concurrent submission from paying for a second call
    grader = grader or OpenAIGrader()
    fallback_used = False
    try:
        grade, cost = await grader.grade_writing(prompt.task_type, prompt.topic, text, time_spent)
    except GradingUnavailable as exc:
        logger.warning("writing grading unavailable for exam %s: %s", exam_id, exc.message)
        grade, cost = fallback_writing_grade(prompt.task_type, text), GradingCost()
        fallback_used = True
    except Exception:
        await _release_claim(exam_id, session_factory)
        raise

    sub_scores = {
        "task_response": grade.task_response,
        "coherence": grade.coherence,
        "vocabulary": grade.vocabulary,
        "grammar": grade.grammar,
    }
    base_payload.update(
        answers={"text": text},
        grading_result={
            "feedback": grade.feedback,
            "improved_answer_example": grade.improved_answer_example,
            "fallback_used": fallback_used,
        },
        grading_cost=cost.to_dict(),
        time_spent=time_spent,
        submitted_at=datetime.utcnow().replace(tzinfo=timezone.utc).isoformat(),
    )

    async with unit_of_work(session_factory) as db:
        await _complete(db, exam_id, grade.score, sub_scores, base_payload, ai_cost=cost.cost)

    return GradedExamResponse(
        message=(
            "Writing submitted (AI grading unavailable, estimated score provided)"
            if fallback_used else "Writing submitted and graded successfully"
        ),
        exam_id=exam_id,
        exam_type=ExamType.WRITING,
        score=grade.score,
        sub_scores=sub_scores,
        feedback=grade.feedback,
        improved_answer_example=grade.improved_answer_example,
        grading_cost=cost.to_dict(),
        fallback_used=fallback_used,
    )


def save_recording(audio: bytes, user_id: str, exam_id: str, part: int, upload_dir: Optional[Path] = None) -> str:
    target = Path(upload_dir or UPLOAD_DIR) / "speaking" / user_id
    target.mkdir(parents=True, exist_ok=True)
    path = target / f"{exam_id}_part{part}.webm"
    path.write_bytes(audio)
    return str(path)


async def submit_speaking(
    user_id: str,
    exam_id: str,
    part1_audio: Optional[str] = None,
    part2_audio: Optional[str] = None,
    part3_audio: Optional[str] = None,
    time_spent: Optional[int] = None,
    grader: Optional[OpenAIGrader] = None,
    session_factory: Optional[async_sessionmaker] = None,
    upload_dir: Optional[Path] = None,
) -> GradedExamResponse:
    async with unit_of_work(session_factory) as db:
        session = await _load_for_submit(db, user_id, exam_id, {ExamType.SPEAKING.value})
        questions = {q.part: q for q in StoredPayload.model_validate(session.payload).content.questions}
        base_payload = dict(session.payload or {})

        clips: Dict[int, bytes] = {}
        for part, data in ((1, part1_audio), (2, part2_audio), (3, part3_audio)):
            if not data:
                continue
            try:
                clips[part] = decode_audio(data)
            except ValueError as exc:
                raise InvalidState(f"Part {part} audio must be base64 encoded") from exc

        await _claim_for_grading(db, exam_id)

    try:
        audio_files = {f"part{p}": save_recording(a, user_id, exam_id, p, upload_dir) for p, a in clips.items()}
    except OSError:
        await _release_claim(exam_id, session_factory)
        raise

    main_clip = clips.get(2) or clips.get(1) or clips.get(3)
    part3 = questions.get(3)
    part3_questions = [part3.cue_card_text, *part3.follow_up_questions] if part3 else []

    grader = grader or OpenAIGrader()
    fallback_used = False
    total_cost = GradingCost()
    try:
        if not main_clip:
            raise GradingUnavailable("No audio submitted")
        grade, llm_cost = await grader.grade_speaking(
            main_clip,
            questions[1].cue_card_text if 1 in questions else "",
            questions[2].cue_card_text if 2 in questions else "",
            part3_questions,
            time_spent,
        )
        total_cost = GradingCost(
            input_tokens=llm_cost.input_tokens + grade.asr_cost.input_tokens,
            output_tokens=llm_cost.output_tokens + grade.asr_cost.output_tokens,
            cost=llm_cost.cost + grade.asr_cost.cost,
        )
    except GradingUnavailable as exc:
        logger.warning("speaking grading unavailable for exam %s: %s", exam_id, exc.message)
        grade = fallback_speaking_grade()
        fallback_used = True
    except Exception:
        await _release_claim(exam_id, session_factory)
        raise

    sub_scores = {
        "fluency": grade.fluency,
        "pronunciation": grade.pronunciation,
        "vocabulary": grade.vocabulary,
        "grammar": grade.grammar,
    }
    base_payload.update(
        answers={"audio_files": audio_files},
        grading_result={
            "transcript": grade.transcript,
            "feedback": grade.feedback,
            "improvement_plan": grade.improvement_plan,
            "fallback_used": fallback_used,
        },
        grading_cost=total_cost.to_dict(),
        time_spent=time_spent,
        submitted_at=datetime.utcnow().replace(tzinfo=timezone.utc).isoformat(),
    )

    async with unit_of_work(session_factory) as db:
        await _complete(db, exam_id, grade.score, sub_scores, base_payload, ai_cost=total_cost.cost)

    return GradedExamResponse(
        message=(
            "Speaking test submitted (AI evaluation unavailable, estimated score provided)"
            if fallback_used else "Speaking test submitted and evaluated successfully"
        ),
        exam_id=exam_id,
        exam_type=ExamType.SPEAKING,
        score=grade.score,
        sub_scores=sub_scores,
        feedback=grade.feedback,
        improvement_plan=grade.improvement_plan,
        transcript=grade.transcript,
        grading_cost=total_cost.to_dict(),
        fallback_used=fallback_used,
    )


# ─────────────────────────────────────────────
# HISTORY
# ─────────────────────────────────────────────

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.replace(tzinfo=timezone.utc).isoformat() if value else None


async def exam_history(
    user_id: str,
    limit: int = 10,
    offset: int = 0,
    session_factory: Optional[async_sessionmaker] = None,
) -> ExamHistoryResponse:
    async with unit_of_work(session_factory) as db:
        total = (await db.execute(
            select(func.count(ExamSession.id)).where(ExamSession.user_id == user_id)
        )).scalar() or 0
        rows = (await db.execute(
            select(ExamSession)
            .where(ExamSession.user_id == user_id)
            .order_by(ExamSession.created_at.desc())
            .limit(limit)
            .offset(offset)
        )).scalars().all()

    return ExamHistoryResponse(
        exams=[
            ExamHistoryItem(
                id=s.id,
                exam_type=s.exam_type,
                status=s.status,
                score=s.score,
                sub_scores=s.sub_scores,
                ai_cost=s.ai_cost,
                created_at=_iso(s.created_at),
                submitted_at=_iso(s.submitted_at),
            )
            for s in rows
        ],
        total=int(total),
        limit=limit,
        offset=offset,
    )
