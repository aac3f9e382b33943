from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from models.attempt import QuizAttempt, MAX_ATTEMPTS
from models.quiz import Quiz, Question
from services.grading import grade_submission, is_passing, pass_threshold
from services.user_service import UserService
from db.transactions import run_with_conflict_retry
from core.exceptions import NotFound, AttemptsExhausted, IncompleteAttempt, ValidationError
from core.config import settings
from core.logger import logger
from core.security import Identity


@dataclass
class Eligibility:
    latest_attempt: Optional[QuizAttempt]
    attempts_left: int

    @property
    def can_retake(self) -> bool:
        """A failed latest attempt with attempts remaining."""
        if self.latest_attempt is None or self.attempts_left <= 0:
            return False
        return self.latest_attempt.score < pass_threshold(self.latest_attempt.total_questions)

    @property
    def can_attempt(self) -> bool:
        return self.latest_attempt is None or self.can_retake


@dataclass
class AttemptRecord:
    attempt: QuizAttempt
    attempts_left: int


def attempts_left_for(count: int) -> int:
    return max(0, MAX_ATTEMPTS - count)


class AttemptService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.users = UserService(db)

    async def _get_quiz(self, quiz_id: int, with_questions: bool = False) -> Quiz:
        query = select(Quiz).filter(Quiz.id == quiz_id)
        if with_questions:
            query = query.options(selectinload(Quiz.questions).selectinload(Question.answers))
        result = await self.db.execute(query)
        quiz = result.scalar_one_or_none()
        if not quiz:
            raise NotFound("Quiz not found", quiz_id=quiz_id)
        return quiz

    async def _list_attempts(self, user_id: int, quiz_id: int) -> List[QuizAttempt]:
        """All ledger rows for the pair, newest first."""
        result = await self.db.execute(
            select(QuizAttempt)
            .filter(QuizAttempt.user_id == user_id, QuizAttempt.quiz_id == quiz_id)
            .order_by(QuizAttempt.attempt_number.desc(), QuizAttempt.created_at.desc())
        )
        return list(result.scalars().all())

    def _next_attempt_number(self, attempts: List[QuizAttempt]) -> int:
        return max((a.attempt_number for a in attempts), default=0) + 1

    async def get_eligibility(self, identity: Optional[Identity], quiz_id: int) -> Eligibility:
        user = await self.users.get_user(identity)
        await self._get_quiz(quiz_id)
        attempts = await self._list_attempts(user.id, quiz_id)
        return Eligibility(
            latest_attempt=attempts[0] if attempts else None,
            attempts_left=attempts_left_for(len(attempts)),
        )

    async def submit_attempt(
        self,
        identity: Optional[Identity],
        quiz_id: int,
        score: int,
        total_questions: int,
        passed: bool,
    ) -> AttemptRecord:
        """
        Record a completed attempt as a new immutable ledger row.

        Rejected with AttemptsExhausted when the pair already holds
        MAX_ATTEMPTS rows or its latest attempt passed. The count and the
        insert are re-run together if a concurrent submission wins the race
        for the same attempt number.
        """
        user = await self.users.get_user(identity)
        quiz = await self._get_quiz(quiz_id, with_questions=True)
        self._validate_result(score, total_questions, passed, expected_total=len(quiz.questions))

        user_id, quiz_id = user.id, quiz.id

        async def record() -> AttemptRecord:
            # Re-checked on every try; the quiz may be deleted meanwhile
            await self._get_quiz(quiz_id)
            attempts = await self._list_attempts(user_id, quiz_id)
            if len(attempts) >= MAX_ATTEMPTS:
                raise AttemptsExhausted(user_id=user_id, quiz_id=quiz_id)
            if attempts and attempts[0].completed:
                raise AttemptsExhausted("Quiz already passed", user_id=user_id, quiz_id=quiz_id)

            number = self._next_attempt_number(attempts)
            attempt = QuizAttempt(
                user_id=user_id,
                quiz_id=quiz_id,
                score=score,
                total_questions=total_questions,
                completed=passed,
                attempt_number=number,
            )
            self.db.add(attempt)
            await self.db.commit()
            await self.db.refresh(attempt)
            return AttemptRecord(attempt=attempt, attempts_left=attempts_left_for(number))

        try:
            record_result = await run_with_conflict_retry(
                self.db,
                record,
                retries=settings.ATTEMPT_WRITE_RETRIES,
                base_delay=settings.ATTEMPT_RETRY_BASE_SECONDS,
                op_name="submit_attempt",
            )
        except IntegrityError:
            # Foreign key failure: quiz removed between the check and the insert
            await self._get_quiz(quiz_id)
            raise
        logger.info(
            "Quiz attempt recorded",
            user_id=user_id,
            quiz_id=quiz_id,
            attempt_number=record_result.attempt.attempt_number,
            score=score,
            passed=passed,
        )
        return record_result

    async def submit_answers(
        self,
        identity: Optional[Identity],
        quiz_id: int,
        selections: Mapping[int, Iterable[int]],
    ) -> AttemptRecord:
        """Grade raw answer selections against the stored flags, then record."""
        await self.users.get_user(identity)
        quiz = await self._get_quiz(quiz_id, with_questions=True)
        result = grade_submission(quiz.questions, selections)
        return await self.submit_attempt(identity, quiz_id, result.score, result.total_questions, result.passed)

    async def mark_attempt_done(self, identity: Optional[Identity], quiz_id: int) -> QuizAttempt:
        """Acknowledge a finished quiz. Attempts are immutable, so this never writes."""
        user = await self.users.get_user(identity)
        await self._get_quiz(quiz_id)
        attempts = await self._list_attempts(user.id, quiz_id)
        latest = attempts[0] if attempts else None
        if latest is None or not latest.completed:
            raise IncompleteAttempt(user_id=user.id, quiz_id=quiz_id)
        logger.info("Quiz marked as done", user_id=user.id, quiz_id=quiz_id, attempt_id=latest.id)
        return latest

    async def get_user_attempts(self, identity: Optional[Identity]) -> List[QuizAttempt]:
        user = await self.users.get_user(identity)
        result = await self.db.execute(
            select(QuizAttempt)
            .options(selectinload(QuizAttempt.quiz).selectinload(Quiz.questions))
            .filter(QuizAttempt.user_id == user.id)
            .order_by(QuizAttempt.created_at.desc(), QuizAttempt.id.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    def _validate_result(score: int, total_questions: int, passed: bool, expected_total: int):
        if score < 0 or total_questions < 0:
            raise ValidationError("Score and question count must be non-negative")
        if score > total_questions:
            raise ValidationError("Score cannot exceed the number of questions")
        if total_questions != expected_total:
            raise ValidationError(
                "Question count does not match the quiz",
                total_questions=total_questions,
                expected=expected_total,
            )
        if passed != is_passing(score, total_questions):
            raise ValidationError("Pass flag does not match the score")
