from typing import List, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, or_
from sqlalchemy.orm import selectinload
from models.quiz import Quiz, Question, Answer, VISIBILITY_PUBLIC, VISIBILITY_PRIVATE
from models.attempt import QuizAttempt
from services.grading import is_multiple_correct
from services.user_service import UserService
from db.transactions import run_with_conflict_retry
from core.exceptions import NotFound, ValidationError, Forbidden
from core.config import settings
from core.logger import logger
from core.security import Identity

MIN_ANSWERS_PER_QUESTION = 2


def validate_questions(questions: Sequence[dict]):
    """Authoring rules: two or more answers per question, at least one correct."""
    for index, question in enumerate(questions, 1):
        if not (question.get("title") or "").strip():
            raise ValidationError(f"Question {index} needs a title")
        answers = question.get("answers") or []
        if len(answers) < MIN_ANSWERS_PER_QUESTION:
            raise ValidationError(f"Question {index} needs at least {MIN_ANSWERS_PER_QUESTION} answers")
        if not any(a.get("is_correct") for a in answers):
            raise ValidationError(f"Question {index} needs at least one correct answer")


def build_questions(questions: Sequence[dict]) -> List[Question]:
    return [
        Question(
            title=q["title"],
            position=position,
            answers=[Answer(text=a["text"], is_correct=bool(a.get("is_correct"))) for a in q["answers"]],
        )
        for position, q in enumerate(questions)
    ]


class QuizService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.users = UserService(db)

    async def _load_quiz(self, quiz_id: int) -> Quiz:
        result = await self.db.execute(
            select(Quiz)
            .options(selectinload(Quiz.questions).selectinload(Question.answers))
            .filter(Quiz.id == quiz_id)
        )
        quiz = result.scalar_one_or_none()
        if not quiz:
            raise NotFound("Quiz not found", quiz_id=quiz_id)
        return quiz

    async def list_public_quizzes(self, search: Optional[str] = None) -> List[Quiz]:
        query = select(Quiz).filter(Quiz.visibility == VISIBILITY_PUBLIC)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(or_(
                func.lower(Quiz.title).like(pattern),
                func.lower(Quiz.job_role).like(pattern),
            ))
        result = await self.db.execute(query.order_by(Quiz.created_at.desc(), Quiz.id.desc()))
        return list(result.scalars().all())

    async def get_quiz_for_taking(self, quiz_id: int) -> dict:
        """Question set for the quiz UI. Correctness flags are never included."""
        quiz = await self._load_quiz(quiz_id)
        return {
            "id": quiz.id,
            "title": quiz.title,
            "job_role": quiz.job_role,
            "questions": [
                {
                    "id": q.id,
                    "title": q.title,
                    "multiple": is_multiple_correct(q),
                    "answers": [{"id": a.id, "text": a.text} for a in q.answers],
                }
                for q in quiz.questions
            ],
        }

    async def get_quiz_review(self, identity: Optional[Identity], quiz_id: int) -> Quiz:
        """Full quiz with correct answers, available once the caller has submitted."""
        user = await self.users.get_user(identity)
        quiz = await self._load_quiz(quiz_id)
        result = await self.db.execute(
            select(func.count(QuizAttempt.id)).filter(
                QuizAttempt.user_id == user.id, QuizAttempt.quiz_id == quiz_id
            )
        )
        if not result.scalar():
            raise Forbidden("Submit the quiz before reviewing answers", user_id=user.id, quiz_id=quiz_id)
        return quiz

    # --- Admin operations ---

    async def list_all_quizzes(self, identity: Optional[Identity]) -> List[Quiz]:
        await self.users.require_admin(identity)
        result = await self.db.execute(
            select(Quiz)
            .options(selectinload(Quiz.questions))
            .order_by(Quiz.created_at.desc(), Quiz.id.desc())
        )
        return list(result.scalars().all())

    async def create_quiz(
        self,
        identity: Optional[Identity],
        title: str,
        job_role: Optional[str] = None,
        questions: Sequence[dict] = (),
    ) -> Quiz:
        admin = await self.users.require_admin(identity)
        validate_questions(questions)
        quiz = Quiz(title=title, job_role=job_role, visibility=VISIBILITY_PRIVATE, questions=build_questions(questions))
        self.db.add(quiz)
        await self.db.commit()
        quiz_id = quiz.id
        logger.info("Quiz created", quiz_id=quiz_id, admin_id=admin.id, title=title)
        self.db.expire_all()
        return await self._load_quiz(quiz_id)

    async def update_quiz(
        self,
        identity: Optional[Identity],
        quiz_id: int,
        title: str,
        job_role: Optional[str],
        questions: Sequence[dict],
    ) -> Quiz:
        """Replace title, job role and the whole question set in one transaction."""
        admin = await self.users.require_admin(identity)
        admin_id = admin.id
        validate_questions(questions)

        async def replace() -> int:
            quiz = await self._load_quiz(quiz_id)
            quiz.title = title
            quiz.job_role = job_role
            # delete-orphan cascade removes the old questions and answers
            quiz.questions = build_questions(questions)
            await self.db.commit()
            return quiz.id

        await run_with_conflict_retry(
            self.db,
            replace,
            retries=settings.ATTEMPT_WRITE_RETRIES,
            base_delay=settings.ATTEMPT_RETRY_BASE_SECONDS,
            op_name="update_quiz",
        )
        logger.info("Quiz updated", quiz_id=quiz_id, admin_id=admin_id, questions=len(questions))
        self.db.expire_all()
        return await self._load_quiz(quiz_id)

    async def set_visibility(self, identity: Optional[Identity], quiz_id: int, visibility: str) -> Quiz:
        admin = await self.users.require_admin(identity)
        if visibility not in (VISIBILITY_PUBLIC, VISIBILITY_PRIVATE):
            raise ValidationError("Visibility must be PUBLIC or PRIVATE")
        quiz = await self._load_quiz(quiz_id)
        quiz.visibility = visibility
        await self.db.commit()
        logger.info("Quiz visibility changed", quiz_id=quiz_id, admin_id=admin.id, visibility=visibility)
        self.db.expire_all()
        return await self._load_quiz(quiz_id)

    async def delete_quiz(self, identity: Optional[Identity], quiz_id: int) -> None:
        """Delete a quiz with its attempts, answers and questions, all or nothing."""
        admin = await self.users.require_admin(identity)
        try:
            question_ids = select(Question.id).filter(Question.quiz_id == quiz_id)
            # Dependency order: attempts, answers, questions, quiz
            for stmt in (
                delete(QuizAttempt).where(QuizAttempt.quiz_id == quiz_id),
                delete(Answer).where(Answer.question_id.in_(question_ids)),
                delete(Question).where(Question.quiz_id == quiz_id),
            ):
                await self.db.execute(stmt.execution_options(synchronize_session=False))
            result = await self.db.execute(
                delete(Quiz).where(Quiz.id == quiz_id).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFound("Quiz not found", quiz_id=quiz_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        logger.info("Quiz deleted", quiz_id=quiz_id, admin_id=admin.id)
