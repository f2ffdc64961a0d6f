"""
Tests for the OpenAI grading collaborator, using a stub client object.
"""

from types import SimpleNamespace

import pytest

from ielts_backend.services.errors import GradingUnavailable
from ielts_backend.services.grading_service import (
    OpenAIGrader,
    _extract_json,
    calculate_cost,
    decode_audio,
    fallback_speaking_grade,
    fallback_writing_grade,
)
from ielts_backend.services.openai_safeguards import normalize_openai_exception

WRITING_JSON = """{
  "score": 6.5,
  "task_response": 6.0,
  "coherence": 7.0,
  "vocabulary": 6.5,
  "grammar": 6.5,
  "feedback": "Solid structure.",
  "improved_answer_example": "Model essay."
}"""


def _completion(content, prompt_tokens=1200, completion_tokens=300):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


class StubClient:
    """Mimics the parts of openai.OpenAI the grader touches."""

    def __init__(self, content=WRITING_JSON, error=None, transcript="hello there"):
        self.error = error
        self.requests = []
        outer = self

        class _Completions:
            def create(self, **kwargs):
                outer.requests.append(kwargs)
                if outer.error:
                    raise outer.error
                return _completion(content)

        class _Transcriptions:
            def create(self, **kwargs):
                if outer.error:
                    raise outer.error
                return SimpleNamespace(text=transcript)

        self.chat = SimpleNamespace(completions=_Completions())
        self.audio = SimpleNamespace(transcriptions=_Transcriptions())


class TestExtractJson:
    def test_plain(self):
        assert _extract_json('{"a": 1}') == {"a": 1}

    def test_fenced(self):
        assert _extract_json('Here you go:\n```json\n{"a": 2}\n```') == {"a": 2}

    def test_embedded(self):
        assert _extract_json('Result: {"a": 3} -- end') == {"a": 3}

    @pytest.mark.parametrize("text", ["", "no json here", "{broken"])
    def test_unusable(self, text):
        with pytest.raises(GradingUnavailable):
            _extract_json(text)


class TestGrader:
    async def test_writing_grade_and_cost(self):
        client = StubClient()
        grader = OpenAIGrader(client=client, model="gpt-4o-mini")

        grade, cost = await grader.grade_writing("TASK_2", "Cars in cities", "My essay", time_spent=40)

        assert grade.score == 6.5
        assert grade.coherence == 7.0
        assert grade.improved_answer_example == "Model essay."
        assert (cost.input_tokens, cost.output_tokens) == (1200, 300)
        assert cost.cost == pytest.approx(calculate_cost(1200, 300))
        assert client.requests[0]["model"] == "gpt-4o-mini"
        assert "My essay" in client.requests[0]["messages"][1]["content"]

    async def test_sdk_error_becomes_grading_unavailable(self):
        grader = OpenAIGrader(client=StubClient(error=RuntimeError("Error code: 429 - rate limit reached")))
        with pytest.raises(GradingUnavailable) as exc:
            await grader.grade_writing("TASK_2", "topic", "text")
        assert "rate-limited" in exc.value.message

    @pytest.mark.parametrize("content", [
        '{"score": 11, "task_response": 6, "coherence": 6, "vocabulary": 6, "grammar": 6, '
        '"feedback": "x", "improved_answer_example": "y"}',
        '{"score": "high", "task_response": 6, "coherence": 6, "vocabulary": 6, "grammar": 6, '
        '"feedback": "x", "improved_answer_example": "y"}',
        '{"score": 6, "task_response": 6, "coherence": 6, "vocabulary": 6, "grammar": 6}',
    ])
    async def test_invalid_result_rejected(self, content):
        grader = OpenAIGrader(client=StubClient(content=content))
        with pytest.raises(GradingUnavailable):
            await grader.grade_writing("TASK_2", "topic", "text")

    async def test_speaking_transcribes_then_grades(self):
        content = ('{"score": 6.0, "fluency": 6.0, "pronunciation": 5.5, "vocabulary": 6.0, '
                   '"grammar": 6.5, "feedback": "ok", "improvement_plan": "plan"}')
        client = StubClient(content=content, transcript="I like my hometown")
        grader = OpenAIGrader(client=client)

        grade, cost = await grader.grade_speaking(b"audio", "Q1", "Cue card", ["Why?"], time_spent=11)

        assert grade.transcript == "I like my hometown"
        assert grade.pronunciation == 5.5
        assert grade.asr_cost.cost > 0
        assert "I like my hometown" in client.requests[0]["messages"][1]["content"]

    async def test_empty_transcript(self):
        grader = OpenAIGrader(client=StubClient(transcript="   "))
        with pytest.raises(GradingUnavailable):
            await grader.grade_speaking(b"audio", "Q1", "Cue", [])


class TestHelpers:
    def test_cost_rates(self):
        assert calculate_cost(1_000_000, 0) == pytest.approx(0.15)
        assert calculate_cost(0, 1_000_000) == pytest.approx(0.60)

    def test_decode_audio_with_data_url(self):
        assert decode_audio("data:audio/webm;base64,aGVsbG8=") == b"hello"
        assert decode_audio("aGVsbG8=") == b"hello"

    def test_normalized_error_codes(self):
        assert normalize_openai_exception(RuntimeError("Request timed out")).code == "TIMEOUT"
        assert normalize_openai_exception(RuntimeError("OPENAI_API_KEY not configured (.env).")).code == "AUTH"
        assert normalize_openai_exception(RuntimeError("502 Bad Gateway")).code == "SERVER"

    def test_fallbacks(self):
        assert fallback_writing_grade("TASK_1", " ".join(["w"] * 151)).score == 6.0
        speaking = fallback_speaking_grade()
        assert (speaking.score, speaking.fluency, speaking.grammar) == (5.0, 5.0, 5.0)
