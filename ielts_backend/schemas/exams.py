from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from ielts_backend.models.exam_session import ExamType

Difficulty = Literal["A1", "A2", "B1", "B2", "C1", "C2", "MIXED"]

# Minutes. WRITING uses the selected prompt's own time limit.
EXAM_DURATION = {
    ExamType.READING.value: 60,
    ExamType.LISTENING.value: 40,
    ExamType.SPEAKING.value: 15,
}


# ─────────────────────────────────────────────
# CONTENT (answer keys never appear here)
# ─────────────────────────────────────────────

class QuestionView(BaseModel):
    id: str
    type: str
    question_text: str
    options: Optional[Any] = None
    explanation: Optional[str] = None


class ListeningQuestionView(QuestionView):
    timestamp: int = 0


class PassageView(BaseModel):
    id: str
    title: str
    text: str
    level: Optional[str] = None


class AudioView(BaseModel):
    id: str
    url: str
    duration: Optional[int] = None


class PromptView(BaseModel):
    id: str
    task_type: str
    topic: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    time_limit: int
    word_count: int


class SpeakingQuestionView(BaseModel):
    id: str
    part: int
    cue_card_text: str
    prep_time: int = 0
    recording_time: int = 0
    follow_up_questions: List[str] = Field(default_factory=list)


class ReadingContent(BaseModel):
    type: Literal["READING"] = "READING"
    passage: PassageView
    questions: List[QuestionView]
    duration: int


class ListeningContent(BaseModel):
    type: Literal["LISTENING"] = "LISTENING"
    audio: AudioView
    questions: List[ListeningQuestionView]
    duration: int


class WritingContent(BaseModel):
    type: Literal["WRITING"] = "WRITING"
    prompt: PromptView
    duration: int


class SpeakingContent(BaseModel):
    type: Literal["SPEAKING"] = "SPEAKING"
    questions: List[SpeakingQuestionView] = Field(min_length=3, max_length=3)
    duration: int


ExamContent = Annotated[
    Union[ReadingContent, ListeningContent, WritingContent, SpeakingContent],
    Field(discriminator="type"),
]


class StoredPayload(BaseModel):
    """Shape of ExamSession.payload while the exam is in progress."""
    model_config = ConfigDict(extra="allow")
    content: ExamContent
    start_time: str


# ─────────────────────────────────────────────
# REQUESTS
# ─────────────────────────────────────────────

class StartExamRequest(BaseModel):
    type: ExamType
    difficulty: Difficulty = "MIXED"


class SubmitExamRequest(BaseModel):
    exam_id: str = Field(min_length=1)
    answers: Dict[str, Any]
    time_spent: Optional[int] = Field(default=None, ge=0)


class SubmitWritingRequest(BaseModel):
    exam_id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    time_spent: Optional[int] = Field(default=None, ge=0)


class SubmitSpeakingRequest(BaseModel):
    exam_id: str = Field(min_length=1)
    part1_audio: Optional[str] = None
    part2_audio: Optional[str] = None
    part3_audio: Optional[str] = None
    time_spent: Optional[int] = Field(default=None, ge=0)


# ─────────────────────────────────────────────
# RESPONSES
# ─────────────────────────────────────────────

class StartExamResponse(BaseModel):
    exam_id: str
    type: ExamType
    duration: int
    content: ExamContent


class QuestionResult(BaseModel):
    question_id: str
    user_answer: Any = None
    correct_answer: Any = None
    is_correct: bool
    explanation: Optional[str] = None


class SubmitExamResponse(BaseModel):
    message: str = "Exam submitted successfully"
    exam_id: str
    exam_type: ExamType
    score: float
    sub_scores: Dict[str, Any]
    results: List[QuestionResult]


class GradedExamResponse(BaseModel):
    message: str
    exam_id: str
    exam_type: ExamType
    score: float
    sub_scores: Dict[str, Any]
    feedback: str
    improved_answer_example: Optional[str] = None
    improvement_plan: Optional[str] = None
    transcript: Optional[str] = None
    grading_cost: Dict[str, Any] = Field(default_factory=dict)
    fallback_used: bool = False


class ExamHistoryItem(BaseModel):
    id: str
    exam_type: str
    status: str
    score: Optional[float] = None
    sub_scores: Optional[Dict[str, Any]] = None
    ai_cost: Optional[float] = None
    created_at: str
    submitted_at: Optional[str] = None


class ExamHistoryResponse(BaseModel):
    exams: List[ExamHistoryItem]
    total: int
    limit: int
    offset: int
