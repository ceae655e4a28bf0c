import os
from datetime import datetime
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ADMIN_ACCESS_TOKEN", "admin-test-token")

from dealflow.main import app  # noqa: E402
from dealflow import db as db_module  # noqa: E402
from dealflow.db import get_session  # noqa: E402
from dealflow import storage as storage_module  # noqa: E402
from dealflow import email as email_module  # noqa: E402
from dealflow.docusign import get_docusign  # noqa: E402
from dealflow.models import Company, Deal, PartyProgress, User  # noqa: E402
from dealflow.tracks import DealState, Track  # noqa: E402


class FakeDocusign:
    """Stands in for the provider; every call is recorded."""

    def __init__(self):
        self.created = []
        self.url_calls = []
        self.status_calls = 0
        self.status = (False, False)
        self.document = b"%PDF-1.4 signed"
        self.download_error = None

    def create_envelope_with_template(self, template_id, role_name, client_user_id, subject, email, name, substitutions):
        envelope_id = f"env-{len(self.created) + 1}"
        self.created.append(
            {
                "envelope_id": envelope_id,
                "template_id": template_id,
                "role": role_name,
                "client_user_id": client_user_id,
                "subject": subject,
                "substitutions": substitutions,
            }
        )
        return envelope_id, datetime.utcnow()

    def create_embedded_recipient_url(self, host, envelope_id, client_user_id, email, name):
        self.url_calls.append((host, envelope_id))
        return f"https://demo.docusign.net/signing/{envelope_id}?host={host}"

    def get_envelope_status(self, envelope_id):
        self.status_calls += 1
        return self.status

    def download_envelope_document(self, envelope_id):
        if self.download_error:
            raise self.download_error
        return self.document


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session(test_engine, setup_db):
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def mock_storage(monkeypatch) -> Dict[str, bytes]:
    store: Dict[str, bytes] = {}

    def fake_put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
        store[key] = bytes(data)

    def fake_get_bytes(key: str) -> bytes:
        return store[key]

    def fake_object_exists(key: str) -> bool:
        return key in store

    monkeypatch.setattr(storage_module, "put_bytes", fake_put_bytes)
    monkeypatch.setattr(storage_module, "get_bytes", fake_get_bytes)
    monkeypatch.setattr(storage_module, "object_exists", fake_object_exists)
    return store


@pytest.fixture
def sent_emails(monkeypatch):
    messages = []

    def fake_send_email(to, subject, body, html_body=None):
        messages.append({"to": to, "subject": subject, "text": body, "html": html_body})

    monkeypatch.setattr(email_module, "send_email", fake_send_email)
    return messages


@pytest.fixture
def fake_docusign():
    return FakeDocusign()


@pytest.fixture
def client(test_engine, setup_db, mock_storage, sent_emails, fake_docusign):
    db_module.engine = test_engine

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_docusign] = lambda: fake_docusign
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(test_engine, setup_db):
    def _make(email="seller@example.com", full_name="Sam Seller", **fields):
        with Session(test_engine) as session:
            user = User(email=email, full_name=full_name, address1="1 Market St", **fields)
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    return _make


@pytest.fixture
def make_deal(test_engine, setup_db):
    def _make(shares_amount=1000, shares_left=None, state=DealState.OPEN, company_name="Acme Robotics", **fields):
        with Session(test_engine) as session:
            company = Company(name=company_name, state_founded="Delaware")
            session.add(company)
            session.commit()
            session.refresh(company)
            deal = Deal(
                company_id=company.id,
                name=company_name,
                state=state,
                shares_amount=shares_amount,
                shares_left=shares_amount if shares_left is None else shares_left,
                actual_price=2.5,
                **fields,
            )
            session.add(deal)
            session.commit()
            session.refresh(deal)
            return deal

    return _make


@pytest.fixture
def make_progress(test_engine, setup_db):
    def _make(user, deal, track=Track.SELL, stage=0, **fields):
        with Session(test_engine) as session:
            progress = PartyProgress(user_id=user.id, deal_id=deal.id, track=Track(track).value, stage=int(stage), **fields)
            session.add(progress)
            session.commit()
            session.refresh(progress)
            return progress

    return _make

