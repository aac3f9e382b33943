from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Index, func
from sqlalchemy.orm import relationship
from models.base import Base

# Fixed retake policy; mirrored by the CHECK constraint below
MAX_ATTEMPTS = 2

class QuizAttempt(Base):
    """One immutable ledger row per try at a quiz."""
    __tablename__ = "quiz_attempts"
    __table_args__ = (
        UniqueConstraint("user_id", "quiz_id", "attempt_number", name="uq_attempt_user_quiz_number"),
        CheckConstraint(f"attempt_number >= 1 AND attempt_number <= {MAX_ATTEMPTS}", name="ck_attempt_number_range"),
        CheckConstraint("score >= 0 AND score <= total_questions", name="ck_attempt_score_range"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), index=True, nullable=False)
    score = Column(Integer, nullable=False)
    total_questions = Column(Integer, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    attempt_number = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User")
    quiz = relationship("Quiz")

# Leaderboard groups by user over (optionally) completed rows
Index("idx_attempts_user_completed", QuizAttempt.user_id, QuizAttempt.completed)
