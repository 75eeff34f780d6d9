from datetime import datetime, timedelta

from homework_helper import models, stats

from conftest import ocr_homework, verdict

NOW = datetime(2024, 5, 20, 15, 30)


def _seed(db):
    user = models.User(name="小明", email="s@example.com", password_hash="x")
    db.add(user)
    db.flush()
    homework = models.Homework(
        user_id=user.id, title="作业", subject="MATH",
        image_url="https://cdn.example.com/a.png", image_path="a.png",
    )
    db.add(homework)
    db.flush()

    def mistake(ordinal, subject, qtype, created, mastered=False, last=None):
        question = models.Question(
            homework_id=homework.id, ordinal=ordinal, question_number=str(ordinal),
            question_type=qtype, content=f"题目{ordinal}",
        )
        db.add(question)
        db.flush()
        db.add(models.Mistake(
            user_id=user.id, question_id=question.id, subject=subject, question_type=qtype,
            content=question.content, student_answer="?", mastered=mastered,
            created_at=created, last_mistake_at=last or created,
        ))

    mistake(1, "MATH", "CALCULATION", NOW - timedelta(hours=1))
    mistake(2, "MATH", "CALCULATION", NOW - timedelta(days=2))
    mistake(3, "ENGLISH", "CHOICE", NOW - timedelta(days=6, hours=15), mastered=True, last=NOW - timedelta(hours=2))
    mistake(4, "MATH", "CHOICE", NOW - timedelta(days=9), mastered=True, last=NOW - timedelta(days=8))

    db.add(models.KnowledgePoint(name="一元二次方程", subject="MATH", mistake_count=3))
    db.add(models.KnowledgePoint(name="时态", subject="ENGLISH", mistake_count=0))
    db.add(models.Practice(
        user_id=user.id, title="数学专项练习", subject="MATH", practice_type="SIMILAR",
        questions=[], total_score=30, user_score=20, status="COMPLETED", completed_at=NOW - timedelta(days=1),
    ))
    db.add(models.Practice(
        user_id=user.id, title="未完成", subject="MATH", practice_type="SIMILAR",
        questions=[], total_score=30, status="PENDING",
    ))
    db.commit()
    return user


def test_trend_window():
    days = stats.trend_window(NOW)
    assert days == [
        "2024-05-14", "2024-05-15", "2024-05-16", "2024-05-17",
        "2024-05-18", "2024-05-19", "2024-05-20",
    ]


def test_compute_statistics(db):
    user = _seed(db)
    result = stats.compute_statistics(db, user.id, now=NOW)

    assert result["overview"] == {
        "total_mistakes": 4,
        "mastered_mistakes": 2,
        "unmastered_mistakes": 2,
        "mastery_rate": 50,
        "total_homeworks": 1,
        "total_practices": 1,
    }
    assert result["subject_stats"][0] == {"subject": "MATH", "count": 3}
    assert sorted((t["type"], t["count"]) for t in result["type_stats"]) == [("CALCULATION", 2), ("CHOICE", 2)]
    assert [kp["name"] for kp in result["top_knowledge_points"]] == ["一元二次方程"]

    trend = result["trend_data"]
    assert [t["date"] for t in trend] == stats.trend_window(NOW)
    by_day = {t["date"]: t for t in trend}
    assert by_day["2024-05-20"] == {"date": "2024-05-20", "mistakes": 1, "mastered": 1}
    assert by_day["2024-05-18"]["mistakes"] == 1
    assert by_day["2024-05-14"]["mistakes"] == 1
    assert by_day["2024-05-16"] == {"date": "2024-05-16", "mistakes": 0, "mastered": 0}
    # Mistakes outside the window are not counted.
    assert sum(t["mistakes"] for t in trend) == 3
    assert sum(t["mastered"] for t in trend) == 1

    assert result["practice_scores"] == [
        {"title": "数学专项练习", "score": 20, "total_score": 30, "percent": 67, "date": "2024-05-19"},
    ]


def test_statistics_endpoint(auth_client, fake_llm):
    homework = ocr_homework(auth_client, fake_llm)
    fake_llm.queue(verdict(True), verdict(False, ["一元二次方程"]))
    auth_client.post("/api/correction", json={"homeworkId": homework["id"]})

    body = auth_client.get("/api/statistics").json()
    assert body["overview"]["totalMistakes"] == 1
    assert body["overview"]["masteryRate"] == 0
    assert body["overview"]["totalHomeworks"] == 1
    assert body["subjectStats"] == [{"subject": "MATH", "count": 1}]
    assert body["typeStats"] == [{"type": "CALCULATION", "count": 1}]
    assert body["topKnowledgePoints"] == [{"name": "一元二次方程", "subject": "MATH", "mistakeCount": 1}]
    assert len(body["trendData"]) == 7
    assert body["trendData"][-1]["mistakes"] == 1
    assert body["practiceScores"] == []


def test_statistics_empty(auth_client):
    body = auth_client.get("/api/statistics").json()
    assert body["overview"]["totalMistakes"] == 0
    assert body["overview"]["masteryRate"] == 0
    assert all(t["mistakes"] == 0 and t["mastered"] == 0 for t in body["trendData"])
