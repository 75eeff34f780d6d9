"""
Pytest configuration and fixtures for Homework Helper tests
"""

import json
import os
import tempfile

# Must be set before the app module creates its engine.
_TMP_DIR = tempfile.mkdtemp()
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["AUTH_SECRET"] = "test-secret"
os.environ["DASHSCOPE_API_KEY"] = "test-key"
for _name in ("OSS_REGION", "OSS_ACCESS_KEY_ID", "OSS_ACCESS_KEY_SECRET", "OSS_BUCKET"):
    os.environ[_name] = ""

import pytest
from fastapi.testclient import TestClient

from homework_helper import ai_service, database
from homework_helper.main import app

PNG_DATA_URL = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="


class FakeLLM:
    """Stands in for the chat completion call; replies are consumed in order."""

    def __init__(self):
        self.replies = []
        self.calls = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def __call__(self, model, messages, max_tokens):
        self.calls.append({"model": model, "messages": messages, "max_tokens": max_tokens})
        if not self.replies:
            raise AssertionError("unexpected model call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, (dict, list)):
            return json.dumps(reply, ensure_ascii=False)
        return reply


@pytest.fixture(autouse=True)
def reset_db():
    database.Base.metadata.drop_all(bind=database.engine)
    database.Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture
def db():
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_llm(monkeypatch):
    fake = FakeLLM()
    monkeypatch.setattr(ai_service, "complete", fake)
    return fake


@pytest.fixture
def client():
    return TestClient(app)


def register_and_login(client, email="student@example.com", name="小明"):
    resp = client.post(
        "/api/auth/register",
        json={"name": name, "email": email, "password": "secret123", "grade": "初二"},
    )
    assert resp.status_code == 201, resp.text
    resp = client.post("/api/auth/login", json={"email": email, "password": "secret123"})
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.fixture
def auth_client(client):
    user = register_and_login(client)
    client.user = user
    return client


@pytest.fixture
def other_client():
    other = TestClient(app)
    other.user = register_and_login(other, email="other@example.com", name="小红")
    return other


def create_homework(client, subject="MATH", title="第三章练习"):
    resp = client.post(
        "/api/homework",
        json={"title": title, "subject": subject, "imageUrl": PNG_DATA_URL, "imagePath": "inline/abc.png"},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["homework"]


OCR_TWO_QUESTIONS = {
    "subject": "MATH",
    "totalQuestions": 2,
    "questions": [
        {"questionNumber": "1", "questionType": "FILL_BLANK", "content": "1 + 1 = ?", "studentAnswer": "2", "hasAnswer": True},
        {"questionNumber": "2", "questionType": "CALCULATION", "content": "解方程 x^2 - 4 = 0", "studentAnswer": "x = 2", "hasAnswer": True},
    ],
}


def ocr_homework(client, fake_llm, reply=None, subject="MATH"):
    homework = create_homework(client, subject=subject)
    fake_llm.queue(reply or {**OCR_TWO_QUESTIONS, "subject": subject})
    resp = client.post("/api/ocr", json={"homeworkId": homework["id"]})
    assert resp.status_code == 200, resp.text
    return client.get(f"/api/homework/{homework['id']}").json()


def verdict(is_correct, knowledge_points=(), **extra):
    body = {
        "isCorrect": is_correct,
        "correctAnswer": extra.pop("correctAnswer", "x = ±2"),
        "explanation": "平方差公式",
        "steps": ["移项", "开方"],
        "knowledgePoints": list(knowledge_points),
        "errorType": None if is_correct else "漏解",
        "difficulty": 2,
        "encouragement": "继续加油",
    }
    body.update(extra)
    return body
