"""
Test configuration and fixtures.

Provides:
- A fresh in-memory SQLite database per test, installed as config.db
- A fresh realtime registry and a recording fake mailer on app.state
- Deterministic OTP codes
- HTTPX AsyncClient against the ASGI app
- Account factories with ready-made bearer headers
"""
import itertools
import json
import os
from dataclasses import dataclass, field
from typing import AsyncGenerator, Dict, List, Optional

# Must be set before config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_FILE"] = ""
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASSWORD"] = ""
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["USER_EMAIL_DOMAINS"] = "lpu.edu.ph"
os.environ["ADMIN_EMAIL_DOMAINS"] = "lpunetwork.edu.ph"
os.environ["ACCESS_TOKEN_EXPIRE_MINUTES"] = "0"

import pytest
from httpx import AsyncClient, ASGITransport

import config
from app import app
from auth.security import get_password_hash, create_session_token, SessionIdentity
from core.realtime import ConnectionManager
from database.connection import Database
from database.models import User


DEFAULT_PASSWORD = "Secret1!"


# =============================================================================
# Fakes
# =============================================================================

class FakeMail:
    """Stands in for FastMail; records every message instead of sending it."""

    def __init__(self, fail: bool = False):
        self.sent: List = []
        self.fail = fail

    async def send_message(self, message, template_name=None):
        if self.fail:
            raise ConnectionError("SMTP server unavailable")
        self.sent.append(message)

    def subjects(self) -> List[str]:
        return [m.subject for m in self.sent]


class FakeWebSocket:
    def __init__(self, fail: bool = False) -> None:
        self.accepted = False
        self.closed = False
        self.close_code = None
        self.fail = fail
        self.sent: List[str] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code

    def events(self) -> List[Dict]:
        return [json.loads(raw) for raw in self.sent]

    def event_types(self) -> List[str]:
        return [e["type"] for e in self.events()]


class OtpRecorder:
    """Replaces generate_otp with predictable, distinct codes."""

    def __init__(self):
        self._counter = itertools.count(100001)
        self.issued: List[str] = []

    def __call__(self, length: Optional[int] = None) -> str:
        code = str(next(self._counter))
        self.issued.append(code)
        return code

    @property
    def last(self) -> str:
        return self.issued[-1]


@dataclass
class Account:
    id: int
    email: str
    username: str
    password: str
    token: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def identity(self) -> SessionIdentity:
        return SessionIdentity(user_id=self.id, email=self.email)


# =============================================================================
# Database / app state
# =============================================================================

@pytest.fixture(scope="function")
def database():
    """Fresh in-memory database per test, installed as the app's database."""
    database = Database("sqlite://")
    database.create_tables()
    config.db = database
    yield database
    config.db = None
    database.drop_tables()
    database.dispose()


@pytest.fixture(scope="function")
def realtime() -> ConnectionManager:
    manager = ConnectionManager(send_timeout=0.5)
    app.state.realtime = manager
    return manager


@pytest.fixture(scope="function")
def mail() -> FakeMail:
    fake = FakeMail()
    app.state.mail = fake
    return fake


@pytest.fixture(scope="function")
def otp(monkeypatch) -> OtpRecorder:
    recorder = OtpRecorder()
    monkeypatch.setattr("services.auth_service.generate_otp", recorder)
    return recorder


@pytest.fixture(scope="function")
async def client(database, realtime, mail, otp) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c


# =============================================================================
# Accounts
# =============================================================================

@pytest.fixture(scope="function")
def make_account(database):
    """Factory creating a user row directly and minting its session token."""

    def _make(
        email: str,
        username: Optional[str] = None,
        password: str = DEFAULT_PASSWORD,
        verified: bool = True
    ) -> Account:
        email = email.lower()
        username = username or email.split("@")[0]
        with database.get_session() as session:
            user = User(
                username=username,
                email=email,
                hashed_password=get_password_hash(password),
                is_verified=verified,
            )
            session.add(user)
            session.flush()
            user_id = user.id
        token = create_session_token(user_id, email)
        return Account(
            id=user_id,
            email=email,
            username=username,
            password=password,
            token=token,
            headers={"Authorization": f"Bearer {token}"},
        )

    return _make


@pytest.fixture(scope="function")
def student(make_account) -> Account:
    return make_account("juan.delacruz@lpu.edu.ph", username="juan")


@pytest.fixture(scope="function")
def other_student(make_account) -> Account:
    return make_account("maria.santos@lpu.edu.ph", username="maria")


@pytest.fixture(scope="function")
def admin(make_account) -> Account:
    return make_account("office@lpunetwork.edu.ph", username="lostfound-office")


# =============================================================================
# Shared helpers
# =============================================================================

WALLET_REPORT = {
    "name": "Wallet",
    "type": "found",
    "location": "Library",
    "contact": "555-1111",
    "date_reported": "2025-06-05",
}


async def submit_report(client: AsyncClient, account: Account, **overrides) -> dict:
    payload = {**WALLET_REPORT, **overrides}
    response = await client.post("/user/report", json=payload, headers=account.headers)
    assert response.status_code == 200, response.text
    return response.json()["report"]


async def create_found_item(client: AsyncClient, admin: Account, **overrides) -> dict:
    payload = {
        "name": "Umbrella",
        "description": "Black, folding",
        "location": "Cafeteria",
        "contact": "Lost & Found Office",
        "date_found": "2025-06-01",
        **overrides,
    }
    response = await client.post("/admin/items", json=payload, headers=admin.headers)
    assert response.status_code == 200, response.text
    return response.json()["item"]


async def create_lost_item(client: AsyncClient, student: Account, admin: Account, **overrides) -> dict:
    """Lost items only come into being through an approved report."""
    report = await submit_report(client, student, type="lost", **overrides)
    response = await client.post(f"/admin/reports/{report['id']}/approve", headers=admin.headers)
    assert response.status_code == 200, response.text
    return response.json()["item"]
