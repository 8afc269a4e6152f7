import itertools
from typing import Dict, List, Optional

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db, sanitize
from errors import ErrorResponse
from geocoder import get_geocoder, to_location
from mailer import get_mailer
from main import app, limiter
from schemas import Bootcamp, User
from security import create_access_token, hash_password
from settings import Settings, get_settings

BOSTON = {
    "latitude": 42.3601,
    "longitude": -71.0589,
    "formattedAddress": "233 Bay State Rd, Boston, MA 02215, US",
    "street": "233 Bay State Rd",
    "city": "Boston",
    "stateCode": "MA",
    "zipcode": "02215",
    "countryCode": "US",
}


class FakeGeocoder:
    def __init__(self):
        self.queries: List[str] = []

    def geocode(self, address: str) -> Dict:
        self.queries.append(address)
        return dict(BOSTON)


class FakeMailer:
    def __init__(self):
        self.sent: List[Dict] = []
        self.fail = False

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> str:
        if self.fail:
            raise ErrorResponse("Email could not be sent", 500)
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})
        return f"<{len(self.sent)}@test>"


@pytest.fixture(autouse=True)
def reset_rate_limit():
    limiter.reset()
    yield


@pytest.fixture
def db():
    database = mongomock.MongoClient()["devcamper_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def settings(tmp_path):
    return Settings(
        jwt_secret="test-secret",
        file_upload_path=str(tmp_path / "uploads"),
        max_file_upload=1000,
    )


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(db, settings, geocoder, mailer):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


_seq = itertools.count(1)


@pytest.fixture
def make_user(db, settings):
    """Insert a user and return (user, token)."""

    def _make(role: str = "user", password: str = "123456", email: Optional[str] = None, name: str = "Test User"):
        n = next(_seq)
        user = User(
            name=name,
            email=email or f"{role}{n}@example.com",
            role=role,
            password=hash_password(password),
        )
        doc = create_document(db, "user", user)
        return sanitize(doc), create_access_token(str(doc["_id"]), settings)

    return _make


@pytest.fixture
def make_bootcamp(db):
    def _make(owner: Dict, name: Optional[str] = None, **fields):
        n = next(_seq)
        data = {
            "name": name or f"Bootcamp {n}",
            "slug": f"bootcamp-{n}",
            "description": "Full stack web development",
            "careers": ["Web Development"],
            "location": to_location(BOSTON),
            "user": owner["id"],
        }
        data.update(fields)
        return create_document(db, "bootcamp", Bootcamp(**data))

    return _make


@pytest.fixture
def auth():
    def _headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Cookie": f"token={token}"}

    return _headers
