"""Citizen API tests, including the file-to-resolution journey."""

import io
from urllib.parse import urlparse

import routes.citizen as citizen_routes
from conftest import login_citizen, login_official
from utils.ai_vision import AIVisionError


def _issue_form(png_bytes, **overrides):
    form = {
        "title": "Streetlight not working",
        "description": "The streetlight outside house 12 has been off for a week",
        "category": "streetlight",
        "location": "12 Park Lane",
        "city": "Kochi",
        "latitude": "9.9312",
        "longitude": "76.2673",
        "image": (io.BytesIO(png_bytes), "light.png"),
    }
    form.update(overrides)
    return form


def _submit(client, png_bytes, **overrides):
    return client.post(
        "/citizen/issues",
        data=_issue_form(png_bytes, **overrides),
        content_type="multipart/form-data",
    )


class TestSubmitIssue:
    def test_submit_maps_category_and_stores_image(self, client, seed, png_bytes):
        login_citizen(client)
        resp = _submit(client, png_bytes)
        assert resp.status_code == 201
        issue = resp.get_json()
        assert issue["status"] == "pending"
        assert issue["category"] == "electricity"
        assert issue["department"] == "municipal"
        assert issue["user_name"] == "Asha Nair"
        assert issue["latitude"] == 9.9312

        image = client.get(urlparse(issue["image_url"]).path)
        assert image.status_code == 200

    def test_governing_body_is_kept(self, app, seed, png_bytes):
        citizen, panchayat = app.test_client(), app.test_client()
        login_citizen(citizen)
        login_official(panchayat, "panchayat")

        issue = _submit(citizen, png_bytes, department="panchayat").get_json()
        assert issue["department"] == "panchayat"
        queue = panchayat.get("/dept/complaints").get_json()["complaints"]
        assert [c["id"] for c in queue] == [issue["id"]]

    def test_image_is_required(self, client, seed, png_bytes):
        login_citizen(client)
        form = _issue_form(png_bytes)
        form.pop("image")
        resp = client.post("/citizen/issues", data=form, content_type="multipart/form-data")
        assert resp.status_code == 400
        assert "image" in resp.get_json()["fields"]

    def test_corrupt_image_is_rejected(self, app, client, seed):
        login_citizen(client)
        resp = _submit(client, b"", image=(io.BytesIO(b"definitely not a png"), "light.png"))
        assert resp.status_code == 400
        assert client.get("/citizen/issues").get_json()["total"] == 0

    def test_unknown_category(self, client, seed, png_bytes):
        login_citizen(client)
        assert _submit(client, png_bytes, category="noise").status_code == 400


class TestTracking:
    def test_journey_from_filing_to_resolution(self, app, seed, png_bytes):
        citizen, officer = app.test_client(), app.test_client()
        login_citizen(citizen)
        login_official(officer, "municipal")

        issue_id = _submit(citizen, png_bytes).get_json()["id"]
        assert citizen.get(f"/citizen/issues/{issue_id}").get_json()["status"] == "pending"

        officer.post(f"/dept/complaints/{issue_id}/accept")
        detail = citizen.get(f"/citizen/issues/{issue_id}").get_json()
        assert detail["status"] == "seen"
        assert [s["state"] for s in detail["tracker"]] == ["done", "current", "upcoming", "upcoming"]

        officer.post(f"/dept/complaints/{issue_id}/stage")
        assert citizen.get(f"/citizen/issues/{issue_id}").get_json()["status"] == "progress"

        officer.post(
            f"/dept/complaints/{issue_id}/complete",
            data={"solution_image": (io.BytesIO(png_bytes), "done.png")},
            content_type="multipart/form-data",
        )
        detail = citizen.get(f"/citizen/issues/{issue_id}").get_json()
        assert detail["status"] == "completed"
        assert detail["solved_image_url"]

        solved = citizen.get("/citizen/issues/solved").get_json()["issues"]
        assert [i["id"] for i in solved] == [issue_id]

        notes = citizen.get("/citizen/notifications").get_json()
        assert notes["unread"] == 2
        assert {n["title"] for n in notes["notifications"]} == {"Complaint Accepted", "Complaint Resolved"}

        first = notes["notifications"][0]["id"]
        read = citizen.post(f"/citizen/notifications/{first}/read").get_json()
        assert read["is_read"] is True
        assert citizen.get("/citizen/notifications").get_json()["unread"] == 1

    def test_status_filter(self, client, seed, png_bytes, complaint_factory):
        complaint_factory(status="in_progress", progress_stage="notified", assigned_department="municipal")
        login_citizen(client)
        _submit(client, png_bytes)

        pending = client.get("/citizen/issues?status=pending").get_json()
        seen = client.get("/citizen/issues?status=seen,progress").get_json()
        assert pending["total"] == 1
        assert seen["total"] == 1
        assert client.get("/citizen/issues?status=closed").status_code == 400

    def test_cannot_read_someone_elses_issue(self, client, seed, complaint_factory):
        other = complaint_factory(citizen_id=None, citizen_email="other@example.com")
        login_citizen(client)
        assert client.get(f"/citizen/issues/{other}").status_code == 404

    def test_cannot_read_someone_elses_notification(self, client, seed):
        login_citizen(client)
        assert client.post("/citizen/notifications/999/read").status_code == 404


class TestAnalyzeImage:
    def test_suggestion_returned(self, client, seed, png_bytes, monkeypatch):
        captured = {}

        def fake_analyze(image_bytes, mime_type, description):
            captured["mime"] = mime_type
            captured["description"] = description
            return {
                "problem": "Streetlight not working",
                "governing_body": "municipal",
                "category": "streetlight",
                "location": "Park Lane",
                "reason": "Dark street is unsafe",
            }

        monkeypatch.setattr(citizen_routes, "analyze_issue_image", fake_analyze)
        login_citizen(client)
        resp = client.post(
            "/citizen/analyze-image",
            data={"description": "light is off", "image": (io.BytesIO(png_bytes), "light.png")},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        assert resp.get_json()["category"] == "streetlight"
        assert captured == {"mime": "image/png", "description": "light is off"}

    def test_unavailable_ai_is_503(self, client, seed, png_bytes, monkeypatch):
        def down(*args):
            raise AIVisionError("timeout")

        monkeypatch.setattr(citizen_routes, "analyze_issue_image", down)
        login_citizen(client)
        resp = client.post(
            "/citizen/analyze-image",
            data={"image": (io.BytesIO(png_bytes), "light.png")},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 503
