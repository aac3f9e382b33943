import pytest
from sqlalchemy import select, func

from core.exceptions import Forbidden, NotFound, ValidationError
from models import Answer, Question, Quiz, QuizAttempt
from models.quiz import VISIBILITY_PRIVATE, VISIBILITY_PUBLIC
from services.attempt_service import AttemptService
from services.quiz_service import QuizService
from tests.factories import make_quiz

NEW_QUESTIONS = [
    {"title": "Report suspicious mail to?", "answers": [
        {"text": "Security team", "is_correct": True},
        {"text": "Nobody", "is_correct": False},
    ]},
]


async def count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar()


async def test_public_listing_hides_private_quizzes(db, seed, sample_questions):
    await make_quiz(db, "Draft", sample_questions, visibility=VISIBILITY_PRIVATE)
    quizzes = await QuizService(db).list_public_quizzes()
    assert [q.title for q in quizzes] == ["Phishing Basics"]


async def test_search_matches_title_and_job_role(db, seed, sample_questions):
    await make_quiz(db, "Password Hygiene", sample_questions, job_role="Engineering")
    service = QuizService(db)
    assert [q.title for q in await service.list_public_quizzes("phish")] == ["Phishing Basics"]
    assert [q.title for q in await service.list_public_quizzes("ENGINEER")] == ["Password Hygiene"]
    assert await service.list_public_quizzes("nothing-matches") == []


async def test_quiz_for_taking_has_no_correctness(db, seed):
    payload = await QuizService(db).get_quiz_for_taking(seed.quiz_id)
    single, multi = payload["questions"]
    assert single["multiple"] is False
    assert multi["multiple"] is True
    for question in payload["questions"]:
        for answer in question["answers"]:
            assert set(answer) == {"id", "text"}


async def test_review_needs_an_attempt(db, seed):
    service = QuizService(db)
    with pytest.raises(Forbidden):
        await service.get_quiz_review(seed.alice, seed.quiz_id)

    await AttemptService(db).submit_attempt(seed.alice, seed.quiz_id, 0, 2, False)
    quiz = await service.get_quiz_review(seed.alice, seed.quiz_id)
    assert any(a.is_correct for q in quiz.questions for a in q.answers)


async def test_admin_operations_require_admin(db, seed):
    service = QuizService(db)
    with pytest.raises(Forbidden):
        await service.create_quiz(seed.alice, "Nope", questions=NEW_QUESTIONS)
    with pytest.raises(Forbidden):
        await service.delete_quiz(seed.bob, seed.quiz_id)


async def test_create_and_publish(db, seed):
    service = QuizService(db)
    quiz = await service.create_quiz(seed.admin, "Reporting", "Support", NEW_QUESTIONS)
    assert quiz.visibility == VISIBILITY_PRIVATE
    assert len(quiz.questions) == 1

    quiz = await service.set_visibility(seed.admin, quiz.id, VISIBILITY_PUBLIC)
    assert quiz.visibility == VISIBILITY_PUBLIC
    titles = {q.title for q in await service.list_public_quizzes()}
    assert "Reporting" in titles

    with pytest.raises(ValidationError):
        await service.set_visibility(seed.admin, quiz.id, "SECRET")


@pytest.mark.parametrize("questions", [
    [{"title": "One answer", "answers": [{"text": "only", "is_correct": True}]}],
    [{"title": "No correct", "answers": [{"text": "a", "is_correct": False}, {"text": "b", "is_correct": False}]}],
    [{"title": " ", "answers": [{"text": "a", "is_correct": True}, {"text": "b", "is_correct": False}]}],
])
async def test_authoring_rules(db, seed, questions):
    with pytest.raises(ValidationError):
        await QuizService(db).create_quiz(seed.admin, "Broken", questions=questions)


async def test_update_replaces_questions(db, seed):
    quiz = await QuizService(db).update_quiz(seed.admin, seed.quiz_id, "Phishing 101", "All staff", NEW_QUESTIONS)
    assert quiz.title == "Phishing 101"
    assert quiz.job_role == "All staff"
    assert [q.title for q in quiz.questions] == ["Report suspicious mail to?"]
    assert await count(db, Question) == 1
    assert await count(db, Answer) == 2


async def test_delete_cascades_to_attempts(db, seed, sample_questions):
    other = await make_quiz(db, "Keep me", sample_questions)
    await AttemptService(db).submit_attempt(seed.alice, seed.quiz_id, 0, 2, False)
    await AttemptService(db).submit_attempt(seed.alice, other, 0, 2, False)

    await QuizService(db).delete_quiz(seed.admin, seed.quiz_id)

    assert await count(db, Quiz) == 1
    assert await count(db, Question) == 2
    assert await count(db, Answer) == 5
    attempts = (await db.execute(select(QuizAttempt))).scalars().all()
    assert [a.quiz_id for a in attempts] == [other]


async def test_delete_unknown_quiz(db, seed):
    with pytest.raises(NotFound):
        await QuizService(db).delete_quiz(seed.admin, 9999)
