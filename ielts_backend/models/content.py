# /ielts_backend/models/content.py
# Published exam content. Rows are maintained by the content admin panel.
from datetime import datetime
from typing import Optional, Any, List
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, Text, Integer, Boolean, ForeignKey, DateTime, JSON

from ielts_backend.core.database import Base


class ReadingPassage(Base):
    __tablename__ = "reading_passages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    text: Mapped[str] = mapped_column(Text)

    # CEFR level: A1..C2
    level: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)

    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    questions: Mapped[List["ReadingQuestion"]] = relationship(back_populates="passage", lazy="selectin")


class ReadingQuestion(Base):
    __tablename__ = "reading_questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    passage_id: Mapped[str] = mapped_column(String(36), ForeignKey("reading_passages.id", ondelete="CASCADE"), index=True)

    # MCQ, TRUE_FALSE, GAP_FILL, HEADING, ...
    type: Mapped[str] = mapped_column(String(30))
    question_text: Mapped[str] = mapped_column(Text)
    options: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    # str, list of str (gap fill) or bool
    correct_answer: Mapped[Any] = mapped_column(JSON)
    explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_published: Mapped[bool] = mapped_column(Boolean, default=False)

    passage: Mapped[ReadingPassage] = relationship(back_populates="questions")


class ListeningAudio(Base):
    __tablename__ = "listening_audio"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    url: Mapped[str] = mapped_column(String(500))

    # seconds
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    questions: Mapped[List["ListeningQuestion"]] = relationship(back_populates="audio", lazy="selectin")


class ListeningQuestion(Base):
    __tablename__ = "listening_questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    audio_id: Mapped[str] = mapped_column(String(36), ForeignKey("listening_audio.id", ondelete="CASCADE"), index=True)

    type: Mapped[str] = mapped_column(String(30))

    # offset into the audio, seconds
    timestamp: Mapped[int] = mapped_column(Integer, default=0)
    question_text: Mapped[str] = mapped_column(Text)
    options: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    correct_answer: Mapped[Any] = mapped_column(JSON)
    explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_published: Mapped[bool] = mapped_column(Boolean, default=False)

    audio: Mapped[ListeningAudio] = relationship(back_populates="questions")


class WritingPrompt(Base):
    __tablename__ = "writing_prompts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # TASK_1 or TASK_2
    task_type: Mapped[str] = mapped_column(String(10))
    topic: Mapped[str] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # minutes
    time_limit: Mapped[int] = mapped_column(Integer, default=60)
    word_count: Mapped[int] = mapped_column(Integer, default=250)

    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class SpeakingQuestion(Base):
    __tablename__ = "speaking_questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # 1, 2 or 3
    part: Mapped[int] = mapped_column(Integer, index=True)
    cue_card_text: Mapped[str] = mapped_column(Text)

    # seconds
    prep_time: Mapped[int] = mapped_column(Integer, default=0)
    recording_time: Mapped[int] = mapped_column(Integer, default=120)
    follow_up_questions: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
