import pytest
from httpx import AsyncClient, ASGITransport

from api.main import app
from core.config import settings
from core.security import generate_token
from db.session import get_db


@pytest.fixture
async def client(session_factory, seed):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def auth(external_id):
    return {"X-Auth-Token": generate_token(external_id)}


async def quiz_questions(client, quiz_id):
    response = await client.get(f"/api/quizzes/{quiz_id}")
    assert response.status_code == 200
    return response.json()["questions"]


async def test_list_public_quizzes(client, seed):
    response = await client.get("/api/quizzes", params={"search": "phish"})
    assert response.status_code == 200
    assert response.json() == [{"id": seed.quiz_id, "title": "Phishing Basics", "jobRole": "Finance"}]


async def test_quiz_payload_does_not_leak_answers(client, seed):
    questions = await quiz_questions(client, seed.quiz_id)
    assert [q["multiple"] for q in questions] == [False, True]
    assert all("isCorrect" not in a for q in questions for a in q["answers"])


async def test_unknown_quiz_is_404(client, seed):
    response = await client.get("/api/quizzes/9999")
    assert response.status_code == 404
    assert response.json() == {"error": "Quiz not found"}


async def test_eligibility_requires_auth(client, seed):
    response = await client.get(f"/api/quizzes/{seed.quiz_id}/attempt")
    assert response.status_code == 401

    response = await client.get(f"/api/quizzes/{seed.quiz_id}/attempt", headers={"X-Auth-Token": "bogus"})
    assert response.status_code == 401


async def test_unknown_user_is_404(client, seed):
    response = await client.get(f"/api/quizzes/{seed.quiz_id}/attempt", headers=auth("ghost"))
    assert response.status_code == 404
    assert response.json() == {"error": "User not found"}


async def test_attempt_flow_with_server_grading(client, seed):
    url = f"/api/quizzes/{seed.quiz_id}/attempt"
    headers = {"Authorization": f"Bearer {generate_token('alice')}"}

    response = await client.get(url, headers=headers)
    assert response.json() == {"latestAttempt": None, "attemptsLeft": 2, "canRetake": False}

    single, multi = await quiz_questions(client, seed.quiz_id)
    wrong_single = single["answers"][1]["id"]
    all_multi = [a["id"] for a in multi["answers"]]

    response = await client.post(url, headers=headers, json={"answers": {
        str(single["id"]): [wrong_single],
        str(multi["id"]): all_multi,
    }})
    assert response.status_code == 200
    body = response.json()
    assert body["attempt"]["score"] == 0
    assert body["attempt"]["attemptNumber"] == 1
    assert body["attemptsLeft"] == 1
    assert body["canRetake"] is True

    response = await client.post(f"/api/quizzes/{seed.quiz_id}/mark-as-done", headers=headers)
    assert response.status_code == 400

    review = await client.get(f"/api/quizzes/{seed.quiz_id}/review", headers=headers)
    assert review.status_code == 200
    correct = {
        q["id"]: [a["id"] for a in q["answers"] if a["isCorrect"]]
        for q in review.json()["questions"]
    }

    response = await client.post(url, headers=headers, json={"answers": {str(k): v for k, v in correct.items()}})
    body = response.json()
    assert body["attempt"]["score"] == 2
    assert body["attempt"]["completed"] is True
    assert body["attemptsLeft"] == 0
    assert body["canRetake"] is False

    response = await client.post(f"/api/quizzes/{seed.quiz_id}/mark-as-done", headers=headers)
    assert response.status_code == 200

    response = await client.post(url, headers=headers, json={"answers": {}})
    assert response.status_code == 409
    assert response.json() == {"error": "Maximum attempts reached"}


async def test_client_scores_rejected_unless_trusted(client, seed, monkeypatch):
    url = f"/api/quizzes/{seed.quiz_id}/attempt"
    payload = {"score": 2, "totalQuestions": 2, "passed": True}

    response = await client.post(url, headers=auth("bob"), json=payload)
    assert response.status_code == 422

    monkeypatch.setattr(settings, "TRUST_CLIENT_SCORES", True)
    response = await client.post(url, headers=auth("bob"), json=payload)
    assert response.status_code == 200
    assert response.json()["attempt"]["score"] == 2

    response = await client.post(url, headers=auth("bob"), json={"score": 1})
    assert response.status_code == 422


async def test_leaderboard_endpoint(client, seed, monkeypatch):
    monkeypatch.setattr(settings, "TRUST_CLIENT_SCORES", True)
    url = f"/api/quizzes/{seed.quiz_id}/attempt"
    await client.post(url, headers=auth("alice"), json={"score": 0, "totalQuestions": 2, "passed": False})
    await client.post(url, headers=auth("alice"), json={"score": 1, "totalQuestions": 2, "passed": True})
    await client.post(url, headers=auth("bob"), json={"score": 2, "totalQuestions": 2, "passed": True})

    response = await client.get("/api/leaderboard", headers=auth("alice"))
    assert response.status_code == 200
    assert [(e["username"], e["points"]) for e in response.json()] == [("bob", 2), ("alice", 1)]

    response = await client.get("/api/leaderboard", headers=auth("alice"), params={"limit": 1})
    assert [e["userId"] for e in response.json()] == [seed.bob_id]

    response = await client.get("/api/leaderboard")
    assert response.status_code == 401


async def test_user_dashboard_and_role(client, seed):
    response = await client.get("/api/user/dashboard", headers=auth("alice"))
    assert response.status_code == 200
    body = response.json()
    assert body["totalPoints"] == 0
    assert body["doneQuizzes"] == 0
    assert body["recentQuizzes"][0]["totalQuestions"] == 2

    response = await client.get("/api/user/role", headers=auth("root"))
    assert response.json() == {"role": "ADMIN"}


async def test_admin_quiz_lifecycle(client, seed):
    headers = auth("root")
    body = {
        "title": "Tailgating",
        "jobRole": "Facilities",
        "questions": [{"title": "Hold the door for strangers?", "answers": [
            {"text": "No, ask for a badge", "isCorrect": True},
            {"text": "Yes", "isCorrect": False},
        ]}],
    }

    response = await client.post("/api/admin/quizzes", headers=auth("alice"), json=body)
    assert response.status_code == 403

    response = await client.post("/api/admin/quizzes", headers=headers, json=body)
    assert response.status_code == 201
    created = response.json()
    assert created["visibility"] == "PRIVATE"
    assert created["questionsCount"] == 1

    response = await client.put(
        f"/api/admin/quizzes/{created['id']}/visibility", headers=headers, json={"visibility": "PUBLIC"}
    )
    assert response.json()["visibility"] == "PUBLIC"

    body["questions"].append({"title": "Badge lost?", "answers": [
        {"text": "Report it", "isCorrect": True},
        {"text": "Ignore it", "isCorrect": False},
    ]})
    response = await client.put(f"/api/admin/quizzes/{created['id']}", headers=headers, json=body)
    assert response.json()["questionsCount"] == 2

    response = await client.get("/api/admin/dashboard", headers=headers)
    assert response.json()["totalQuizzes"] == 2

    response = await client.delete(f"/api/admin/quizzes/{created['id']}", headers=headers)
    assert response.status_code == 200
    response = await client.get(f"/api/quizzes/{created['id']}")
    assert response.status_code == 404


async def test_authoring_validation_is_422(client, seed):
    response = await client.post("/api/admin/quizzes", headers=auth("root"), json={
        "title": "Bad",
        "questions": [{"title": "Only one", "answers": [{"text": "a", "isCorrect": True}]}],
    })
    assert response.status_code == 422
    assert "at least 2 answers" in response.json()["error"]


async def test_several_answers_to_single_choice_question_is_422(client, seed):
    single, _ = await quiz_questions(client, seed.quiz_id)
    both = [a["id"] for a in single["answers"]]
    url = f"/api/quizzes/{seed.quiz_id}/attempt"

    response = await client.post(url, headers=auth("alice"), json={"answers": {str(single["id"]): both}})
    assert response.status_code == 422
    assert response.json() == {"error": "Question accepts a single answer"}

    response = await client.get(url, headers=auth("alice"))
    assert response.json()["attemptsLeft"] == 2
