"""
pytest configuration and shared fixtures for teamshare tests.

Every test gets a fresh in-memory SQLite database.
"""

import logging
import os

# Configure the app before it is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CREATE_TABLES", "false")
os.environ.setdefault("ACL_RESYNC_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from teamshare.database import get_session  # noqa: E402
from teamshare.main import app  # noqa: E402
from teamshare.models import Member, SharedFile, SharedFolder, Team  # noqa: E402
from teamshare.schemas.user import CurrentUser  # noqa: E402
from teamshare.services.auth import create_access_token  # noqa: E402

logging.basicConfig(level=logging.INFO)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(session):
    def override_get_session():
        yield session

    app.dependency_overrides[get_session] = override_get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def alice():
    return CurrentUser(id="user-a", username="alice", email="alice@example.com")


@pytest.fixture
def bob():
    return CurrentUser(id="user-b", username="bob", email="bob@example.com")


@pytest.fixture
def carol():
    return CurrentUser(id="user-c", username="carol", email="carol@example.com")


@pytest.fixture
def dave():
    return CurrentUser(id="user-d", username="dave", email="dave@example.com")


def auth_headers(user: CurrentUser) -> dict:
    token = create_access_token({"sub": user.username, "id": user.id, "email": user.email})
    return {"Authorization": f"Bearer {token}"}


class TeamFactory:
    """Seeds teams, members and shared resources straight into the database."""

    def __init__(self, session: Session):
        self.session = session

    def team(self, owner: CurrentUser, name: str = "Team T", **settings) -> Team:
        team = Team(name=name, owner_id=owner.id, **settings)
        self.session.add(team)
        self.session.add(Member(team_id=team.id, user_id=owner.id, name=owner.username,
                                email=owner.email, role="owner"))
        self.session.commit()
        self.session.refresh(team)
        return team

    def member(self, team: Team, user: CurrentUser, role: str = "member") -> Member:
        member = Member(team_id=team.id, user_id=user.id, name=user.username,
                        email=user.email, role=role)
        self.session.add(member)
        self.session.commit()
        self.session.refresh(member)
        return member

    def file(self, team: Team, name: str = "notes.txt", permissions: dict = None) -> SharedFile:
        shared_file = SharedFile(team_id=team.id, file_name=name,
                                 permissions=permissions or {"view": [], "edit": [], "admin": []})
        self.session.add(shared_file)
        self.session.commit()
        self.session.refresh(shared_file)
        return shared_file

    def folder(self, team: Team, name: str = "docs", permissions: dict = None) -> SharedFolder:
        shared_folder = SharedFolder(team_id=team.id, folder_name=name,
                                     permissions=permissions or {"view": [], "edit": [], "admin": []})
        self.session.add(shared_folder)
        self.session.commit()
        self.session.refresh(shared_folder)
        return shared_folder


@pytest.fixture
def factory(session):
    return TeamFactory(session)
