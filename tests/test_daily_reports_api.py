from app.core.database import get_db


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def submit(client, token, **payload):
    return client.post("/daily-reports", json=payload, headers=auth_header(token))


def test_client_resubmits_same_day(api_client, client_token, client_ids):
    response = submit(api_client, client_token, date="2025-06-02", mood=3, health=4,
                      workContent=["袋詰め"], reflection="少し疲れた")
    assert response.status_code == 200, response.text
    report = response.json()["report"]
    assert report["clientId"] == client_ids["C001"]
    assert report["workContent"] == ["袋詰め"]
    assert report["isSubmitted"] is True

    response = submit(api_client, client_token, date="2025-06-02", mood=5, reflection="集中できた")
    assert response.status_code == 200
    assert response.json()["report"]["id"] == report["id"]
    assert response.json()["report"]["mood"] == 5

    with get_db() as conn:
        count = conn.execute(
            "SELECT COUNT(*) FROM daily_reports WHERE client_id = ? AND date = ?",
            (client_ids["C001"], "2025-06-02")
        ).fetchone()[0]
    assert count == 1

    assert submit(api_client, client_token, date="2025-06-02", mood=6).status_code == 400
    assert submit(api_client, client_token, date="2025-06-31").status_code == 400


def test_staff_submit_needs_known_client(api_client, staff_token, client_ids):
    assert submit(api_client, staff_token, date="2025-06-02", mood=3).status_code == 400
    assert submit(api_client, staff_token, clientId="unknown", date="2025-06-02").status_code == 404

    response = submit(api_client, staff_token, clientId=client_ids["C002"], date="2025-06-02", health=2)
    assert response.status_code == 200
    assert response.json()["report"]["clientId"] == client_ids["C002"]


def test_comment_clears_pending(api_client, client_token, staff_token, client_ids):
    report_id = submit(api_client, client_token, date="2025-06-02", mood=2).json()["report"]["id"]

    response = api_client.get("/daily-reports/pending-comments", headers=auth_header(staff_token))
    assert response.status_code == 200
    assert response.json()["count"] == 1
    assert response.json()["reports"][0]["client"]["clientNumber"] == "C001"

    response = api_client.post(
        f"/daily-reports/{report_id}/comments", json={"content": "   "}, headers=auth_header(staff_token)
    )
    assert response.status_code == 400

    response = api_client.post(
        f"/daily-reports/{report_id}/comments",
        json={"content": "無理せず休憩してください"},
        headers=auth_header(staff_token),
    )
    assert response.status_code == 201
    assert response.json()["comment"]["staffName"] == "支援員 次郎"

    response = api_client.get("/daily-reports/pending-comments", headers=auth_header(staff_token))
    assert response.json()["count"] == 0

    response = api_client.get(f"/daily-reports/{report_id}", headers=auth_header(staff_token))
    assert response.status_code == 200
    assert [c["content"] for c in response.json()["report"]["comments"]] == ["無理せず休憩してください"]

    response = api_client.get(
        "/daily-reports", params={"hasComment": "false"}, headers=auth_header(staff_token)
    )
    assert response.json()["total"] == 0

    response = api_client.get(
        "/daily-reports", params={"date": "2025-06-02", "hasComment": "true"}, headers=auth_header(staff_token)
    )
    assert response.json()["total"] == 1


def test_my_history_is_client_only(api_client, client_token, staff_token):
    submit(api_client, client_token, date="2025-06-02", mood=3)
    submit(api_client, client_token, date="2025-06-05", mood=4)
    submit(api_client, client_token, date="2025-07-01", mood=4)

    response = api_client.get(
        "/daily-reports/my-history", params={"month": "2025-06"}, headers=auth_header(client_token)
    )
    assert response.status_code == 200
    assert [r["date"] for r in response.json()["reports"]] == ["2025-06-05", "2025-06-02"]
    assert response.json()["reports"][0]["comments"] == []

    response = api_client.get("/daily-reports/my-history", headers=auth_header(staff_token))
    assert response.status_code == 403

    response = api_client.get("/daily-reports", headers=auth_header(client_token))
    assert response.status_code == 403


def test_comment_deletion_rights(api_client, client_token, staff_token, manager_token):
    report_id = submit(api_client, client_token, date="2025-06-02").json()["report"]["id"]
    manager_comment = api_client.post(
        f"/daily-reports/{report_id}/comments", json={"content": "確認しました"}, headers=auth_header(manager_token)
    ).json()["comment"]["id"]
    staff_comment = api_client.post(
        f"/daily-reports/{report_id}/comments", json={"content": "お疲れさまでした"}, headers=auth_header(staff_token)
    ).json()["comment"]["id"]

    response = api_client.delete(
        f"/daily-reports/{report_id}/comments/{manager_comment}", headers=auth_header(staff_token)
    )
    assert response.status_code == 403

    response = api_client.delete(
        f"/daily-reports/{report_id}/comments/{staff_comment}", headers=auth_header(manager_token)
    )
    assert response.status_code == 200

    response = api_client.delete(
        f"/daily-reports/{report_id}/comments/{staff_comment}", headers=auth_header(manager_token)
    )
    assert response.status_code == 404


def test_only_managers_delete_reports(api_client, client_token, staff_token, manager_token):
    report_id = submit(api_client, client_token, date="2025-06-02").json()["report"]["id"]
    api_client.post(f"/daily-reports/{report_id}/comments", json={"content": "了解"}, headers=auth_header(staff_token))

    response = api_client.delete(f"/daily-reports/{report_id}", headers=auth_header(staff_token))
    assert response.status_code == 403

    response = api_client.delete(f"/daily-reports/{report_id}", headers=auth_header(manager_token))
    assert response.status_code == 200

    response = api_client.get(f"/daily-reports/{report_id}", headers=auth_header(staff_token))
    assert response.status_code == 404

    with get_db() as conn:
        comments = conn.execute(
            "SELECT COUNT(*) FROM daily_report_comments WHERE report_id = ?", (report_id,)
        ).fetchone()[0]
    assert comments == 0
