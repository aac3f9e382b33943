from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, desc
from sqlalchemy.orm import selectinload
from models.attempt import QuizAttempt
from models.quiz import Quiz
from models.user import User
from services.attempt_service import AttemptService
from services.user_service import UserService
from core.config import settings
from core.security import Identity

class StatsService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.users = UserService(db)

    async def get_leaderboard(self, limit: Optional[int] = None, completed_only: bool = False) -> List[dict]:
        """
        Rank users by the summed score of their quiz attempts.
        Recomputed from the attempt ledger on every call; ties go to the lower user id.
        """
        limit = settings.LEADERBOARD_LIMIT if limit is None else limit

        # 1. Aggregate scores by user
        points_sq = select(
            QuizAttempt.user_id,
            func.sum(QuizAttempt.score).label("points")
        )
        if completed_only:
            points_sq = points_sq.filter(QuizAttempt.completed == True)
        points_sq = points_sq.group_by(QuizAttempt.user_id).subquery("points_agg")

        # 2. Join user display attributes
        query = (
            select(
                User.id.label("user_id"),
                User.username,
                User.email,
                User.photo,
                points_sq.c.points,
            )
            .join(points_sq, User.id == points_sq.c.user_id)
            .order_by(desc(points_sq.c.points), User.id.asc())
            .limit(limit)
        )

        result = await self.db.execute(query)
        rows = result.all()

        return [{
            "rank": i,
            "user_id": row.user_id,
            "username": row.username,
            "email": row.email,
            "photo": row.photo,
            "points": int(row.points or 0)
        } for i, row in enumerate(rows, 1)]

    async def _recent_quizzes(self) -> List[dict]:
        result = await self.db.execute(
            select(Quiz)
            .options(selectinload(Quiz.questions))
            .order_by(Quiz.created_at.desc(), Quiz.id.desc())
            .limit(settings.RECENT_QUIZZES_LIMIT)
        )
        return [{
            "id": q.id,
            "title": q.title,
            "total_questions": len(q.questions)
        } for q in result.scalars().all()]

    async def get_user_summary(self, identity: Optional[Identity]) -> dict:
        """Dashboard numbers for the calling user."""
        await self.users.get_user(identity)
        attempts = await AttemptService(self.db).get_user_attempts(identity)
        total_quizzes = (await self.db.execute(select(func.count(Quiz.id)))).scalar() or 0

        return {
            "total_quizzes": int(total_quizzes),
            "done_quizzes": sum(1 for a in attempts if a.completed),
            "total_points": sum(a.score for a in attempts),
            "user_quizzes": [{
                "id": a.quiz.id,
                "title": a.quiz.title,
                "total_questions": len(a.quiz.questions),
                "user_score": a.score,
                "attempt_number": a.attempt_number,
                "completed": a.completed
            } for a in attempts],
            "recent_quizzes": await self._recent_quizzes(),
            "leaderboard": await self.get_leaderboard(),
        }

    async def get_admin_summary(self, identity: Optional[Identity]) -> dict:
        await self.users.require_admin(identity)
        total_users = (await self.db.execute(select(func.count(User.id)))).scalar() or 0
        total_quizzes = (await self.db.execute(select(func.count(Quiz.id)))).scalar() or 0
        recent = await self.db.execute(
            select(User).order_by(User.created_at.desc(), User.id.desc()).limit(settings.RECENT_USERS_LIMIT)
        )

        return {
            "total_users": int(total_users),
            "total_quizzes": int(total_quizzes),
            "recent_users": [{
                "id": u.id,
                "username": u.username,
                "email": u.email,
                "photo": u.photo,
                "role": u.role
            } for u in recent.scalars().all()],
            "leaderboard": await self.get_leaderboard(),
        }
