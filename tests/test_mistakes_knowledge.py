from homework_helper import models

from conftest import ocr_homework, verdict


def _grade_all_wrong(client, fake_llm, subject="MATH", knowledge_points=("一元二次方程",)):
    homework = ocr_homework(client, fake_llm, subject=subject)
    fake_llm.queue(*[verdict(False, knowledge_points) for _ in homework["questions"]])
    client.post("/api/correction", json={"homeworkId": homework["id"]})
    return homework


def test_list_mistakes_and_mastered_filter(auth_client, fake_llm):
    _grade_all_wrong(auth_client, fake_llm)
    body = auth_client.get("/api/mistakes").json()
    assert body["pagination"]["total"] == 2

    first = body["mistakes"][0]
    auth_client.patch(f"/api/mistakes/{first['id']}", json={"mastered": True})

    unmastered = auth_client.get("/api/mistakes", params={"mastered": "false"}).json()["mistakes"]
    assert len(unmastered) == 1
    assert all(m["mastered"] is False for m in unmastered)

    # Mastered entries sort after un-mastered ones.
    ordered = auth_client.get("/api/mistakes").json()["mistakes"]
    assert [m["mastered"] for m in ordered] == [False, True]


def test_mistake_knowledge_point_filter(auth_client, fake_llm):
    homework = ocr_homework(auth_client, fake_llm)
    fake_llm.queue(verdict(False, ["有理数运算"]), verdict(False, ["一元二次方程", "平方根"]))
    auth_client.post("/api/correction", json={"homeworkId": homework["id"]})

    resp = auth_client.get("/api/mistakes", params={"knowledgePoint": "平方根"})
    mistakes = resp.json()["mistakes"]
    assert len(mistakes) == 1
    assert mistakes[0]["knowledgePoints"] == ["一元二次方程", "平方根"]

    # Element match, not substring of another point.
    assert auth_client.get("/api/mistakes", params={"knowledgePoint": "平方"}).json()["mistakes"] == []


def test_mistake_detail_includes_source(auth_client, fake_llm):
    homework = _grade_all_wrong(auth_client, fake_llm)
    mistake = auth_client.get("/api/mistakes").json()["mistakes"][0]

    detail = auth_client.get(f"/api/mistakes/{mistake['id']}").json()
    assert detail["question"]["id"] == mistake["questionId"]
    assert detail["question"]["homework"]["id"] == homework["id"]
    assert detail["question"]["homework"]["title"] == homework["title"]


def test_mistakes_are_private(auth_client, other_client, fake_llm):
    _grade_all_wrong(auth_client, fake_llm)
    mistake = auth_client.get("/api/mistakes").json()["mistakes"][0]

    assert other_client.get(f"/api/mistakes/{mistake['id']}").status_code == 404
    assert other_client.patch(f"/api/mistakes/{mistake['id']}", json={"mastered": True}).status_code == 404
    assert other_client.delete(f"/api/mistakes/{mistake['id']}").status_code == 404
    assert other_client.get("/api/mistakes").json()["mistakes"] == []


def test_delete_mistake(auth_client, fake_llm):
    _grade_all_wrong(auth_client, fake_llm)
    mistake = auth_client.get("/api/mistakes").json()["mistakes"][0]
    assert auth_client.delete(f"/api/mistakes/{mistake['id']}").status_code == 200
    assert auth_client.get(f"/api/mistakes/{mistake['id']}").status_code == 404


def test_knowledge_listing(auth_client, fake_llm):
    homework = ocr_homework(auth_client, fake_llm)
    fake_llm.queue(verdict(False, ["一元二次方程"]), verdict(False, ["一元二次方程", "因式分解"]))
    auth_client.post("/api/correction", json={"homeworkId": homework["id"]})
    _grade_all_wrong(auth_client, fake_llm, subject="PHYSICS", knowledge_points=("牛顿第二定律",))

    body = auth_client.get("/api/knowledge").json()
    points = body["knowledgePoints"]
    assert points[0]["name"] == "一元二次方程"
    assert points[0]["mistakeCount"] == 2
    assert {p["name"] for p in points} == {"一元二次方程", "因式分解", "牛顿第二定律"}
    assert sorted((s["subject"], s["count"]) for s in body["subjectStats"]) == [("MATH", 2), ("PHYSICS", 2)]

    math_only = auth_client.get("/api/knowledge", params={"subject": "MATH", "q": "因式"}).json()
    assert [p["name"] for p in math_only["knowledgePoints"]] == ["因式分解"]


def test_knowledge_summary(auth_client, fake_llm, db):
    _grade_all_wrong(auth_client, fake_llm)
    fake_llm.queue({
        "knowledgePoint": "一元二次方程",
        "subject": "MATH",
        "description": "形如 ax^2 + bx + c = 0 的方程",
        "commonMistakes": ["漏掉负根", "判别式算错"],
        "tips": "先判断判别式",
        "examples": [{"question": "x^2 = 9", "solution": "x = ±3"}],
    })

    resp = auth_client.post("/api/knowledge/summary", json={"knowledgePoint": "一元二次方程", "subject": "MATH"})
    assert resp.status_code == 200, resp.text
    assert resp.json()["commonMistakes"] == ["漏掉负根", "判别式算错"]

    point = auth_client.get("/api/knowledge").json()["knowledgePoints"][0]
    assert point["description"] == "形如 ax^2 + bx + c = 0 的方程"


def test_knowledge_summary_without_mistakes(auth_client, fake_llm):
    resp = auth_client.post("/api/knowledge/summary", json={"knowledgePoint": "勾股定理", "subject": "MATH"})
    assert resp.status_code == 400
    assert fake_llm.calls == []


def test_unmastered_filter_combines_with_subject(auth_client, fake_llm):
    _grade_all_wrong(auth_client, fake_llm)
    _grade_all_wrong(auth_client, fake_llm, subject="PHYSICS", knowledge_points=("牛顿第二定律",))
    math = auth_client.get("/api/mistakes", params={"subject": "MATH"}).json()["mistakes"]
    auth_client.patch(f"/api/mistakes/{math[0]['id']}", json={"mastered": True})

    resp = auth_client.get("/api/mistakes", params={"subject": "MATH", "mastered": "false"})
    body = resp.json()
    assert body["pagination"]["total"] == 1
    assert [m["id"] for m in body["mistakes"]] == [math[1]["id"]]
    assert all(m["subject"] == "MATH" and m["mastered"] is False for m in body["mistakes"])

    physics = auth_client.get("/api/mistakes", params={"subject": "PHYSICS", "mastered": "false"}).json()
    assert physics["pagination"]["total"] == 2


def test_knowledge_point_counts_mistakes_across_users(auth_client, other_client, fake_llm, db):
    for client in (auth_client, other_client):
        homework = ocr_homework(client, fake_llm)
        fake_llm.queue(verdict(False, ["一元二次方程"]))
        resp = client.post("/api/correction", json={"questionId": homework["questions"][0]["id"]})
        assert resp.status_code == 200, resp.text

    point = (
        db.query(models.KnowledgePoint)
        .filter(models.KnowledgePoint.name == "一元二次方程", models.KnowledgePoint.subject == "MATH")
        .one()
    )
    assert point.mistake_count == 2
    assert db.query(models.KnowledgePoint).count() == 1
    listed = other_client.get("/api/knowledge").json()["knowledgePoints"]
    assert [(p["name"], p["mistakeCount"]) for p in listed] == [("一元二次方程", 2)]
