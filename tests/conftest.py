import os
import tempfile
from collections.abc import Generator
from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"

import app.models  # noqa: F401
from app.core.clock import FixedClock, get_clock
from app.core.security import create_access_token
from app.db.base_class import Base
from app.db.session import get_db
from app.main import app
from app.models.course import Course, CourseStatus
from app.models.user import User, UserRole

NOW = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture()
def session_factory() -> Generator[sessionmaker, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture()
def client(db_session: Session, clock: FixedClock) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_user(db: Session, email: str, role: UserRole) -> User:
    user = User(email=email, full_name="Promo Test User", role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def instructor(db_session: Session) -> User:
    return _create_user(db_session, "instructor@example.com", UserRole.INSTRUCTOR)


@pytest.fixture()
def other_instructor(db_session: Session) -> User:
    return _create_user(db_session, "other@example.com", UserRole.INSTRUCTOR)


@pytest.fixture()
def student(db_session: Session) -> User:
    return _create_user(db_session, "student@example.com", UserRole.STUDENT)


@pytest.fixture()
def admin(db_session: Session) -> User:
    return _create_user(db_session, "admin@example.com", UserRole.ADMIN)


@pytest.fixture()
def course(db_session: Session, instructor: User) -> Course:
    course = Course(
        instructor_id=instructor.id,
        title="Async Python",
        price=Decimal("200.00"),
        status=CourseStatus.PUBLISHED,
    )
    db_session.add(course)
    db_session.commit()
    db_session.refresh(course)
    return course


@pytest.fixture()
def auth_headers():
    def _headers(user: User) -> dict:
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers
