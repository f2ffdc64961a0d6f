# FILE: ielts_backend/services/grading_service.py
"""AI grading for the subjective exam types (WRITING, SPEAKING).

The grader only talks to OpenAI. Any failure is raised as GradingUnavailable;
the exam service decides what to do about it (heuristic fallback).
"""

import asyncio
import base64
import binascii
import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ielts_backend.core.config import OPENAI_ASR_MODEL, OPENAI_GRADING_MODEL, get_openai_client
from ielts_backend.services.errors import GradingUnavailable
from ielts_backend.services.openai_safeguards import normalize_openai_exception

logger = logging.getLogger(__name__)

# USD per 1M tokens
INPUT_PRICE_PER_M = 0.15
OUTPUT_PRICE_PER_M = 0.60

WRITING_CRITERIA = ("task_response", "coherence", "vocabulary", "grammar")
SPEAKING_CRITERIA = ("fluency", "pronunciation", "vocabulary", "grammar")

MIN_WORDS = {"TASK_1": 150, "TASK_2": 250}


@dataclass
class GradingCost:
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WritingGrade:
    score: float
    task_response: float
    coherence: float
    vocabulary: float
    grammar: float
    feedback: str
    improved_answer_example: str


@dataclass
class SpeakingGrade:
    score: float
    fluency: float
    pronunciation: float
    vocabulary: float
    grammar: float
    feedback: str
    improvement_plan: str
    transcript: str = ""
    asr_cost: GradingCost = field(default_factory=GradingCost)


def calculate_cost(input_tokens: int, output_tokens: int) -> float:
    return (input_tokens / 1_000_000) * INPUT_PRICE_PER_M + (output_tokens / 1_000_000) * OUTPUT_PRICE_PER_M


def count_words(text: str) -> int:
    return len(text.split())


def decode_audio(data: str) -> bytes:
    """Decode base64 audio, with or without a data-URL prefix."""
    if "," in data and data.lstrip().startswith("data:"):
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError("audio is not valid base64") from e


# =========================
# JSON EXTRACTION
# =========================
def _extract_json(text: str) -> dict:
    if not text:
        raise GradingUnavailable("Empty AI response")

    t = text.strip()

    try:
        return json.loads(t)
    except Exception:
        pass

    fence = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", t, re.S)
    if fence:
        try:
            return json.loads(fence.group(1))
        except Exception:
            pass

    brace = re.search(r"(\{.*\})", t, re.S)
    if brace:
        try:
            return json.loads(brace.group(1))
        except Exception:
            pass

    raise GradingUnavailable("Could not extract valid JSON from grading response")


def _band(data: Dict[str, Any], key: str) -> float:
    value = data.get(key)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise GradingUnavailable(f"Invalid grading result: '{key}' is not a number")
    if not 0 <= value <= 9:
        raise GradingUnavailable(f"Invalid grading result: '{key}' out of band range")
    return float(value)


def _text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise GradingUnavailable(f"Invalid grading result: '{key}' is not a string")
    return value


# =========================
# PROMPTS
# =========================
WRITING_SYSTEM_PROMPT = """You are a senior IELTS examiner grading Academic writing.

Score the response on the four official criteria, each as a band from 0 to 9
in half-band steps:
- task_response: does it fully answer every part of the task?
- coherence: organization, paragraphing, cohesive devices
- vocabulary: lexical range and precision
- grammar: grammatical range and accuracy

The overall score is the average of the four, rounded to the nearest half band.

Return ONLY a JSON object:
{
  "score": <0-9>,
  "task_response": <0-9>,
  "coherence": <0-9>,
  "vocabulary": <0-9>,
  "grammar": <0-9>,
  "feedback": "<strengths, weaknesses and concrete next steps>",
  "improved_answer_example": "<a band 8+ model answer to the same task>"
}"""

SPEAKING_SYSTEM_PROMPT = """You are a senior IELTS examiner grading a speaking test from its transcript.

Score the candidate on the four official criteria, each as a band from 0 to 9
in half-band steps:
- fluency: fluency and coherence, discourse markers
- pronunciation: inferred clarity, stress and intonation
- vocabulary: lexical resource, idiomatic language
- grammar: grammatical range and accuracy

The overall score is the average of the four, rounded to the nearest half band.

Return ONLY a JSON object:
{
  "score": <0-9>,
  "fluency": <0-9>,
  "pronunciation": <0-9>,
  "vocabulary": <0-9>,
  "grammar": <0-9>,
  "feedback": "<strengths, weaknesses and concrete next steps>",
  "improvement_plan": "<a 4-week study plan targeting the weakest criteria>"
}"""


def build_writing_user_prompt(task_type: str, topic: str, text: str, time_spent: Optional[int]) -> str:
    lines = [
        f"Task type: {task_type}",
        f"Task: {topic}",
        "",
        "Candidate response:",
        text,
    ]
    if time_spent:
        lines += ["", f"Time spent: {time_spent} minutes"]
    return "\n".join(lines)


def build_speaking_user_prompt(
    transcript: str,
    part1_question: str,
    part2_cue_card: str,
    part3_questions: List[str],
    time_spent: Optional[int],
) -> str:
    return "\n".join([
        f"Part 1 question: {part1_question or 'N/A'}",
        f"Part 2 cue card: {part2_cue_card or 'N/A'}",
        f"Part 3 discussion questions: {'; '.join(part3_questions) if part3_questions else 'N/A'}",
        "",
        "Transcript:",
        f'"{transcript}"',
        "",
        f"Total speaking time: {time_spent or 0} minutes",
    ])


# =========================
# GRADER
# =========================
class OpenAIGrader:
    """LLM/ASR grading collaborator backed by the OpenAI SDK."""

    def __init__(self, client=None, model: Optional[str] = None, asr_model: Optional[str] = None):
        self._openai = client
        self.model = model or OPENAI_GRADING_MODEL
        self.asr_model = asr_model or OPENAI_ASR_MODEL

    def _client(self):
        if self._openai is None:
            self._openai = get_openai_client()
        return self._openai

    async def _complete(self, system_prompt: str, user_msg: str) -> Tuple[Dict[str, Any], GradingCost]:
        def _call():
            return self._client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_msg},
                ],
                temperature=0.0,
            )

        try:
            resp = await asyncio.to_thread(_call)
        except Exception as e:
            norm = normalize_openai_exception(e)
            logger.warning("grading call failed: %s", norm.to_log_detail())
            raise GradingUnavailable(norm.message) from e

        raw = (resp.choices[0].message.content or "").strip()
        usage = getattr(resp, "usage", None)
        input_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
        output_tokens = int(getattr(usage, "completion_tokens", 0) or 0)
        cost = GradingCost(input_tokens, output_tokens, calculate_cost(input_tokens, output_tokens))
        return _extract_json(raw), cost

    async def grade_writing(
        self, task_type: str, topic: str, text: str, time_spent: Optional[int] = None
    ) -> Tuple[WritingGrade, GradingCost]:
        data, cost = await self._complete(
            WRITING_SYSTEM_PROMPT, build_writing_user_prompt(task_type, topic, text, time_spent)
        )
        grade = WritingGrade(
            score=_band(data, "score"),
            task_response=_band(data, "task_response"),
            coherence=_band(data, "coherence"),
            vocabulary=_band(data, "vocabulary"),
            grammar=_band(data, "grammar"),
            feedback=_text(data, "feedback"),
            improved_answer_example=_text(data, "improved_answer_example"),
        )
        logger.info("writing graded: score=%s tokens=%d/%d cost=$%.6f",
                    grade.score, cost.input_tokens, cost.output_tokens, cost.cost)
        return grade, cost

    async def transcribe(self, audio: bytes, filename: str = "answer.webm") -> Tuple[str, GradingCost]:
        def _call():
            return self._client().audio.transcriptions.create(
                model=self.asr_model,
                file=(filename, audio),
            )

        try:
            resp = await asyncio.to_thread(_call)
        except Exception as e:
            norm = normalize_openai_exception(e)
            logger.warning("transcription failed: %s", norm.to_log_detail())
            raise GradingUnavailable(norm.message) from e

        transcript = (getattr(resp, "text", "") or "").strip()
        # ASR is billed per audio second; approximate it in token terms
        input_tokens = -(-len(audio) // 4)
        output_tokens = -(-len(transcript) // 4)
        return transcript, GradingCost(input_tokens, output_tokens, calculate_cost(input_tokens, output_tokens))

    async def grade_speaking(
        self,
        audio: bytes,
        part1_question: str,
        part2_cue_card: str,
        part3_questions: List[str],
        time_spent: Optional[int] = None,
    ) -> Tuple[SpeakingGrade, GradingCost]:
        transcript, asr_cost = await self.transcribe(audio)
        if not transcript:
            raise GradingUnavailable("Transcription came back empty")

        data, llm_cost = await self._complete(
            SPEAKING_SYSTEM_PROMPT,
            build_speaking_user_prompt(transcript, part1_question, part2_cue_card, part3_questions, time_spent),
        )
        grade = SpeakingGrade(
            score=_band(data, "score"),
            fluency=_band(data, "fluency"),
            pronunciation=_band(data, "pronunciation"),
            vocabulary=_band(data, "vocabulary"),
            grammar=_band(data, "grammar"),
            feedback=_text(data, "feedback"),
            improvement_plan=_text(data, "improvement_plan"),
            transcript=transcript,
            asr_cost=asr_cost,
        )
        logger.info("speaking graded: score=%s llm_cost=$%.6f asr_cost=$%.6f",
                    grade.score, llm_cost.cost, asr_cost.cost)
        return grade, llm_cost


# =========================
# FALLBACKS
# =========================
def fallback_writing_grade(task_type: str, text: str) -> WritingGrade:
    """Word-count heuristic used when the AI grader is unavailable."""
    words = count_words(text)
    if task_type == "TASK_1":
        steps = ((300, 7.0), (250, 6.5), (150, 6.0))
    else:
        steps = ((350, 7.0), (300, 6.5), (250, 6.0))
    estimate = next((band for threshold, band in steps if words >= threshold), 5.0)

    minimum = MIN_WORDS.get(task_type, MIN_WORDS["TASK_2"])
    verdict = "meets" if words >= minimum else "falls below"
    return WritingGrade(
        score=estimate,
        task_response=estimate,
        coherence=estimate,
        vocabulary=estimate,
        grammar=estimate,
        feedback=(
            f"Your response has {words} words. This {verdict} the minimum word count of {minimum}. "
            "Practice writing longer, more detailed responses to improve your score."
        ),
        improved_answer_example="AI grading service temporarily unavailable. Please try again later.",
    )


def fallback_speaking_grade() -> SpeakingGrade:
    return SpeakingGrade(
        score=5.0,
        fluency=5.0,
        pronunciation=5.0,
        vocabulary=5.0,
        grammar=5.0,
        feedback=(
            "Your recordings were submitted, but the AI evaluation service is temporarily unavailable. "
            "This estimated score is based on a simple evaluation."
        ),
        improvement_plan=(
            "Practice speaking daily on varied topics. Record yourself and listen back for pronunciation. "
            "Work on natural discourse markers and a wider range of vocabulary and grammar."
        ),
        transcript="Transcription unavailable due to service error.",
    )
