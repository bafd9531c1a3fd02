"""Administrator endpoint tests."""

from conftest import ADMIN_EMAIL, login_admin, login_official
from extensions import db
from models import AuditLog, Profile


class TestProfiles:
    def test_admin_lists_profiles(self, client, seed):
        login_admin(client)
        data = client.get("/admin/profiles").get_json()
        emails = {p["email"] for p in data["profiles"]}
        assert ADMIN_EMAIL in emails
        assert data["total"] == 6

        water = client.get("/admin/profiles?department=water").get_json()
        assert [p["department"] for p in water["profiles"]] == ["water"]
        assert client.get("/admin/profiles?department=fire").status_code == 400

    def test_officials_are_refused(self, client, seed):
        login_official(client, "municipal")
        assert client.get("/admin/profiles").status_code == 403


class TestRoleChanges:
    def test_promote_official(self, app, client, seed):
        login_admin(client)
        resp = client.post(f"/admin/profiles/{seed['pwd']}/role", json={"role": "admin"})
        assert resp.status_code == 200
        assert resp.get_json()["role"] == "admin"
        with app.app_context():
            assert db.session.get(Profile, seed["pwd"]).role == "admin"
            assert AuditLog.query.filter_by(action_type="ROLE_CHANGED").count() == 1

    def test_admin_cannot_demote_self(self, client, seed):
        login_admin(client)
        resp = client.post(f"/admin/profiles/{seed['admin']}/role", json={"role": "official"})
        assert resp.status_code == 400

    def test_rejects_unknown_role_and_profile(self, client, seed):
        login_admin(client)
        assert client.post(f"/admin/profiles/{seed['pwd']}/role", json={"role": "superuser"}).status_code == 400
        assert client.post("/admin/profiles/missing/role", json={"role": "official"}).status_code == 404
