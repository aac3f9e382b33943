from models.base import Base
from models.user import User
from models.quiz import Quiz, Question, Answer
from models.attempt import QuizAttempt, MAX_ATTEMPTS

__all__ = ["Base", "User", "Quiz", "Question", "Answer", "QuizAttempt", "MAX_ATTEMPTS"]
