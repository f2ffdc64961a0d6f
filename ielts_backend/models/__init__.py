from ielts_backend.models.user import User
from ielts_backend.models.credit_ledger import CreditLedger, LedgerKind
from ielts_backend.models.exam_session import ExamSession, ExamStatus, ExamType
from ielts_backend.models.content import (
    ReadingPassage,
    ReadingQuestion,
    ListeningAudio,
    ListeningQuestion,
    WritingPrompt,
    SpeakingQuestion,
)
from ielts_backend.models.audit_log import AuditLog
from ielts_backend.models.rate_limit import RateLimitCounter

__all__ = [
    "User", "CreditLedger", "LedgerKind",
    "ExamSession", "ExamStatus", "ExamType",
    "ReadingPassage", "ReadingQuestion", "ListeningAudio", "ListeningQuestion",
    "WritingPrompt", "SpeakingQuestion", "AuditLog", "RateLimitCounter",
]
