# FILE: ielts_backend/services/content_service.py
import random
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ielts_backend.models.content import (
    ListeningAudio,
    ListeningQuestion,
    ReadingPassage,
    ReadingQuestion,
    SpeakingQuestion,
    WritingPrompt,
)
from ielts_backend.models.exam_session import ExamType
from ielts_backend.schemas.exams import (
    EXAM_DURATION,
    AudioView,
    ExamContent,
    ListeningContent,
    ListeningQuestionView,
    PassageView,
    PromptView,
    QuestionView,
    ReadingContent,
    SpeakingContent,
    SpeakingQuestionView,
    WritingContent,
)
from ielts_backend.services.errors import ContentUnavailable

SPEAKING_PARTS = (1, 2, 3)


def _published(questions: Iterable[Any]) -> List[Any]:
    return [q for q in questions if q.is_published]


async def list_published(db: AsyncSession, exam_type: str, filters: Optional[Dict[str, Any]] = None) -> List[Any]:
    """Published content rows for an exam type; empty when nothing matches.

    Passages and audio clips without a single published question are skipped.
    Supported filters: ``level`` (READING), ``part`` (SPEAKING).
    """
    filters = filters or {}
    exam_type = ExamType(exam_type)

    if exam_type is ExamType.READING:
        stmt = select(ReadingPassage).where(ReadingPassage.is_published.is_(True))
        if filters.get("level"):
            stmt = stmt.where(ReadingPassage.level == filters["level"])
        passages = (await db.execute(stmt)).scalars().all()
        return [p for p in passages if _published(p.questions)]

    if exam_type is ExamType.LISTENING:
        stmt = select(ListeningAudio).where(ListeningAudio.is_published.is_(True))
        audio = (await db.execute(stmt)).scalars().all()
        return [a for a in audio if _published(a.questions)]

    if exam_type is ExamType.WRITING:
        stmt = select(WritingPrompt).where(WritingPrompt.is_published.is_(True))
        return list((await db.execute(stmt)).scalars().all())

    stmt = select(SpeakingQuestion).where(SpeakingQuestion.is_published.is_(True))
    if filters.get("part") is not None:
        stmt = stmt.where(SpeakingQuestion.part == int(filters["part"]))
    return list((await db.execute(stmt)).scalars().all())


async def select_content(db: AsyncSession, exam_type: str, difficulty: str = "MIXED") -> ExamContent:
    """Pick one unit of content uniformly at random and strip answer keys."""
    exam_type = ExamType(exam_type)

    if exam_type is ExamType.READING:
        filters = {} if difficulty == "MIXED" else {"level": difficulty}
        passages = await list_published(db, exam_type, filters)
        if not passages:
            raise ContentUnavailable("No published reading passages available")
        passage = random.choice(passages)
        return ReadingContent(
            passage=PassageView(id=passage.id, title=passage.title, text=passage.text, level=passage.level),
            questions=[
                QuestionView(
                    id=q.id,
                    type=q.type,
                    question_text=q.question_text,
                    options=q.options,
                    explanation=q.explanation,
                )
                for q in _published(passage.questions)
            ],
            duration=EXAM_DURATION[exam_type.value],
        )

    if exam_type is ExamType.LISTENING:
        clips = await list_published(db, exam_type)
        if not clips:
            raise ContentUnavailable("No published listening audio available")
        audio = random.choice(clips)
        questions = sorted(_published(audio.questions), key=lambda q: q.timestamp or 0)
        return ListeningContent(
            audio=AudioView(id=audio.id, url=audio.url, duration=audio.duration),
            questions=[
                ListeningQuestionView(
                    id=q.id,
                    type=q.type,
                    timestamp=q.timestamp or 0,
                    question_text=q.question_text,
                    options=q.options,
                    explanation=q.explanation,
                )
                for q in questions
            ],
            duration=EXAM_DURATION[exam_type.value],
        )

    if exam_type is ExamType.WRITING:
        prompts = await list_published(db, exam_type)
        if not prompts:
            raise ContentUnavailable("No published writing prompts available")
        prompt = random.choice(prompts)
        return WritingContent(
            prompt=PromptView(
                id=prompt.id,
                task_type=prompt.task_type,
                topic=prompt.topic,
                description=prompt.description,
                image_url=prompt.image_url,
                time_limit=prompt.time_limit,
                word_count=prompt.word_count,
            ),
            duration=prompt.time_limit,
        )

    picked = []
    for part in SPEAKING_PARTS:
        candidates = await list_published(db, exam_type, {"part": part})
        if not candidates:
            raise ContentUnavailable("No published speaking questions available for all parts")
        picked.append(random.choice(candidates))
    return SpeakingContent(
        questions=[
            SpeakingQuestionView(
                id=q.id,
                part=q.part,
                cue_card_text=q.cue_card_text,
                prep_time=q.prep_time or 0,
                recording_time=q.recording_time or 0,
                follow_up_questions=list(q.follow_up_questions or []),
            )
            for q in picked
        ],
        duration=EXAM_DURATION[exam_type.value],
    )


async def load_answer_keys(
    db: AsyncSession, exam_type: str, question_ids: List[str]
) -> Dict[str, Tuple[Any, Optional[str]]]:
    """Map question id -> (correct_answer, explanation) for objective exams."""
    exam_type = ExamType(exam_type)
    if not question_ids:
        return {}
    if exam_type is ExamType.READING:
        model = ReadingQuestion
    elif exam_type is ExamType.LISTENING:
        model = ListeningQuestion
    else:
        raise ValueError(f"{exam_type.value} exams have no answer keys")

    rows = (await db.execute(select(model).where(model.id.in_(question_ids)))).scalars().all()
    return {q.id: (q.correct_answer, q.explanation) for q in rows}
