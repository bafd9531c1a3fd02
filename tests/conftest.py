"""
Shared pytest fixtures for the complaint tracker test suite.

Every test gets a fresh application on in-memory SQLite with uploads and logs
under ``tmp_path``. Gemini is never reached: tests inject classifiers or run
without an API key.
"""

import base64
import io
from datetime import datetime

import pytest
from PIL import Image
from werkzeug.datastructures import FileStorage

from app import create_app
from extensions import db
from models import CitizenProfile, Complaint, Profile

OFFICIAL_PASSWORD = "Official@12345!"
CITIZEN_PASSWORD = "Citizen@12345!"
ADMIN_EMAIL = "admin@cims.gov.in"
ADMIN_PASSWORD = "Admin@12345!"

OFFICIALS = {
    "municipal": "municipal.officer@cims.gov.in",
    "panchayat": "panchayat.officer@cims.gov.in",
    "water": "water.officer@cims.gov.in",
    "energy": "energy.officer@cims.gov.in",
    "pwd": "pwd.officer@cims.gov.in",
}
CITIZEN_EMAIL = "asha.citizen@example.com"


def _png(color="red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture()
def png_bytes() -> bytes:
    return _png()


@pytest.fixture()
def png_data_uri(png_bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")


@pytest.fixture()
def make_upload(png_bytes):
    """Build a FileStorage as a form submission would deliver it."""

    def _make(filename="photo.png", content=None):
        data = png_bytes if content is None else content
        return FileStorage(stream=io.BytesIO(data), filename=filename, content_type="image/png")

    return _make


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    app = create_app(
        "testing",
        test_config={
            "COMPLAINT_UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "LOG_DIR": str(tmp_path / "logs"),
        },
    )
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def seed(app):
    """Officials for each department used in tests plus one citizen; returns their ids."""
    ids = {}
    with app.app_context():
        for department, email in OFFICIALS.items():
            official = Profile(email=email, full_name=f"{department.title()} Officer", department=department)
            official.set_password(OFFICIAL_PASSWORD)
            db.session.add(official)
            db.session.flush()
            ids[department] = official.id

        citizen = CitizenProfile(email=CITIZEN_EMAIL, full_name="Asha Nair", phone="9876543210", city="Kochi")
        citizen.set_password(CITIZEN_PASSWORD)
        db.session.add(citizen)
        db.session.flush()
        ids["citizen"] = citizen.id
        ids["admin"] = Profile.query.filter_by(email=ADMIN_EMAIL).one().id
        db.session.commit()
    return ids


@pytest.fixture()
def ctx(app, seed):
    """A request context for calling service functions directly."""
    with app.test_request_context():
        yield
        db.session.remove()


def official(department: str) -> Profile:
    return Profile.query.filter_by(email=OFFICIALS[department]).one()


def add_complaint(**overrides) -> str:
    """Insert a complaint in the active context and return its id."""
    values = {
        "title": "Broken pipe near school",
        "description": "Water is leaking from a broken pipe on the main road",
        "category": "water",
        "status": "new",
        "progress_stage": None,
        "citizen_name": "Asha Nair",
        "citizen_phone": "9876543210",
        "citizen_email": CITIZEN_EMAIL,
        "location": "MG Road",
        "city": "Kochi",
        "complaint_images": [],
    }
    values.update(overrides)
    complaint = Complaint(**values)
    db.session.add(complaint)
    db.session.commit()
    return complaint.id


@pytest.fixture()
def complaint_factory(app, seed):
    """Create complaints from outside any request, owned by the seeded citizen by default."""

    def _create(**overrides) -> str:
        overrides.setdefault("citizen_id", seed["citizen"])
        with app.app_context():
            return add_complaint(**overrides)

    return _create


def login_official(client, department: str):
    resp = client.post(
        "/auth/official/login",
        data={"email": OFFICIALS[department], "password": OFFICIAL_PASSWORD},
    )
    assert resp.status_code == 200, resp.get_json()
    return resp


def login_admin(client):
    resp = client.post("/auth/official/login", data={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return resp


def login_citizen(client):
    resp = client.post("/auth/citizen/login", data={"email": CITIZEN_EMAIL, "password": CITIZEN_PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return resp


def at(year, month, day, hour=0, minute=0) -> datetime:
    return datetime(year, month, day, hour, minute)
