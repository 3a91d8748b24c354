import os
import tempfile

# Must be set before database.py builds its engine.
_DB_DIR = tempfile.mkdtemp(prefix="gig-service-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'gigs.db')}"
os.environ.pop("RABBITMQ_URL", None)
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from database import SessionLocal, engine  # noqa: E402
from dispatcher import NotificationDispatcher  # noqa: E402
from identity import IdentityUnavailable  # noqa: E402
from main import create_app  # noqa: E402
from models import Base  # noqa: E402
import crud  # noqa: E402

OWNER = 1
ADMIN = 2
ALICE = 3
BOB = 4
CAROL = 5

ACCOUNTS = {
    OWNER: {"id": OWNER, "email": "owner@example.com", "name": "Olivia Owner"},
    ADMIN: {"id": ADMIN, "email": "admin@example.com", "name": "Adam Admin"},
    ALICE: {"id": ALICE, "email": "alice@example.com", "name": "Alice"},
    BOB: {"id": BOB, "email": "bob@example.com", "name": "Bob"},
    CAROL: {"id": CAROL, "email": "carol@example.com", "name": "Carol"},
}


class FakeIdentity:
    """Auth service stand-in: token ``token-<id>`` authenticates user ``<id>``."""

    def __init__(self, accounts=None):
        self.accounts = dict(accounts or ACCOUNTS)
        self.available = True

    def get_account(self, token):
        if not self.available:
            raise IdentityUnavailable("auth service down")
        if not token or not token.startswith("token-"):
            return None
        try:
            return self.accounts.get(int(token[len("token-"):]))
        except ValueError:
            return None

    def find_user_by_email(self, email):
        if not self.available:
            raise IdentityUnavailable("auth service down")
        for account in self.accounts.values():
            if account["email"] == email:
                return account
        return None


def auth(user_id):
    return {"Authorization": f"Bearer token-{user_id}"}


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def dispatcher():
    return NotificationDispatcher()


@pytest.fixture
def client(identity, dispatcher):
    app = create_app(identity=identity, dispatcher=dispatcher, redis_url=None, init_database=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def gig(db):
    """An open $500 gig owned by OWNER with ADMIN as delegated admin."""
    return crud.create_gig(
        db,
        owner_id=OWNER,
        title="Build a landing page",
        description="Single page marketing site",
        budget=500,
        admins=[ADMIN],
    )
