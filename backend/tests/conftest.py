"""
Pytest configuration and fixtures.

Runs against an in-memory SQLite database so every test starts from an empty
directory store. Settings are pinned through the environment before the app
is imported.
"""

import os
import sys
import uuid
from typing import Callable, Generator, Optional

import pytest

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BILLING_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("BILLING_PRICE_ID_PRO", "price_pro_monthly")
os.environ.setdefault("BILLING_PRICE_ID_AGRIBUSINESS", "price_agribusiness_monthly")
# Keep tests off real mail providers
os.environ["RESEND_API_KEY"] = ""
os.environ["SMTP_HOST"] = ""

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import Principal, create_access_token
from app.database import Base
from app.models import FarmInvitation, User
from app.services import invitation_service, membership_service

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema and session per test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


def make_principal(email: str, *, verified: bool = True, user_id: Optional[uuid.UUID] = None) -> Principal:
    return Principal(user_id=user_id or uuid.uuid4(), email=email.lower(), email_verified=verified)


@pytest.fixture
def register(db: Session) -> Callable[..., Principal]:
    """Register an account (and its farm) through the membership service."""

    def _register(
        email: str,
        display_name: Optional[str] = None,
        *,
        plan: str = "free",
        farm_name: Optional[str] = None,
        verified: bool = True,
    ) -> Principal:
        principal = make_principal(email, verified=verified)
        membership_service.register_user(
            db,
            principal,
            display_name=display_name,
            farm_name=farm_name,
            plan=plan,
        )
        return principal

    return _register


@pytest.fixture
def join(db: Session) -> Callable[[Principal, Principal, str], FarmInvitation]:
    """Invite ``member`` to ``manager``'s farm and accept it."""

    def _join(manager: Principal, member: Principal, role: str = "viewer") -> FarmInvitation:
        invitation = invitation_service.invite(db, manager, member.email, role)
        invitation_service.accept(db, member, invitation.id)
        db.refresh(invitation)
        return invitation

    return _join


@pytest.fixture
def owner(register) -> Principal:
    return register("olivia@greenacres.farm", "Olivia", plan="pro", farm_name="Green Acres")


def load_user(db: Session, principal: Principal) -> User:
    db.expire_all()
    return db.query(User).filter(User.id == principal.user_id).one()


def auth_headers(principal: Principal) -> dict:
    token = create_access_token(
        {
            "sub": str(principal.user_id),
            "email": principal.email,
            "email_verified": principal.email_verified,
        }
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db: Session):
    from fastapi.testclient import TestClient

    from app.database import get_db
    from app.main import app

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
