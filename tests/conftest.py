"""
ERP Access Core - Test Configuration

Pytest fixtures for authentication and RBAC testing.
Provides test database, client, role graph and user fixtures.
"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from erp_auth.app import app
from erp_auth.auth.database import get_engine, get_session_factory, init_db
from erp_auth.auth.models import Permission, Role, RolePermission, User
from erp_auth.auth.password import hash_password
from erp_auth.config import settings
from erp_auth.gateway.rbac import rbac_service
from erp_auth.services.mail_service import LoggingMailer


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite:///:memory:"

# Minimum bcrypt cost keeps the suite fast
settings.BCRYPT_ROUNDS = 4

DEFAULT_PASSWORD = "Password123"


@pytest.fixture(autouse=True)
def clear_permission_cache():
    """Every test starts with an empty resolver cache."""
    rbac_service.clear_cache()
    yield
    rbac_service.clear_cache()


@pytest.fixture(scope="function")
def test_engine():
    """Create a fresh test database engine for each test."""
    engine = get_engine(TEST_DATABASE_URL)
    init_db(engine)

    yield engine

    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a database session for testing."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(scope="function")
def mailer() -> LoggingMailer:
    return LoggingMailer()


@pytest.fixture(scope="function")
def client(test_engine, mailer) -> Generator[TestClient, None, None]:
    """Create a test client bound to the test database and mailer."""
    app.state.db_engine = test_engine
    app.state.db_session_factory = get_session_factory(test_engine)
    app.state.mailer = mailer

    with TestClient(app) as c:
        yield c


# =============================================================================
# Role graph
# =============================================================================

def make_role(db: Session, name: str, level: int, parent: Role = None, **kwargs) -> Role:
    role = Role(name=name, level=level, parent_id=parent.id if parent else None, **kwargs)
    db.add(role)
    db.commit()
    db.refresh(role)
    return role


def make_permission(db: Session, name: str, module: str = None, action: str = None, **kwargs) -> Permission:
    if module is None or action is None:
        action, _, module = name.partition("_")
    permission = Permission(name=name, module=module, action=action, **kwargs)
    db.add(permission)
    db.commit()
    db.refresh(permission)
    return permission


def grant(db: Session, role: Role, permission: Permission, granted: bool = True) -> RolePermission:
    record = RolePermission(role_id=role.id, permission_id=permission.id, granted=granted)
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def make_user(db: Session, email: str, role: Role, password: str = DEFAULT_PASSWORD, **kwargs) -> User:
    kwargs.setdefault("is_email_verified", True)
    user = User(
        email=email,
        name=email.split("@")[0].title(),
        password_hash=hash_password(password),
        role_id=role.id,
        **kwargs,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def roles(db_session) -> dict:
    """
    superadmin (super role)
      admin
        manager
          employee
    auditor (detached)
    """
    superadmin = make_role(
        db_session, "superadmin", 100, is_system=True, is_super_role=True, can_manage_roles=True
    )
    admin = make_role(db_session, "admin", 90, parent=superadmin, is_system=True, can_manage_roles=True)
    manager = make_role(db_session, "manager", 50, parent=admin)
    employee = make_role(db_session, "employee", 10, parent=manager)
    auditor = make_role(db_session, "auditor", 20)
    return {
        "superadmin": superadmin,
        "admin": admin,
        "manager": manager,
        "employee": employee,
        "auditor": auditor,
    }


@pytest.fixture(scope="function")
def superadmin_user(db_session, roles) -> User:
    return make_user(db_session, "root@erp.test", roles["superadmin"])


@pytest.fixture(scope="function")
def admin_user(db_session, roles) -> User:
    return make_user(db_session, "admin@erp.test", roles["admin"])


@pytest.fixture(scope="function")
def manager_user(db_session, roles) -> User:
    return make_user(db_session, "manager@erp.test", roles["manager"], employee_id="EMP-100")


@pytest.fixture(scope="function")
def employee_user(db_session, roles) -> User:
    return make_user(db_session, "employee@erp.test", roles["employee"], employee_id="EMP-200")


@pytest.fixture(scope="function")
def auditor_user(db_session, roles) -> User:
    return make_user(db_session, "auditor@erp.test", roles["auditor"])


# =============================================================================
# HTTP helpers
# =============================================================================

def login_user(client: TestClient, identifier: str, password: str = DEFAULT_PASSWORD, **extra) -> dict:
    """Helper function to login and return the response body."""
    response = client.post(
        "/api/v1/auth/login",
        json={"identifier": identifier, "password": password, **extra},
    )
    return response.json() if response.status_code == 200 else None


def auth_headers(access_token: str) -> dict:
    """Create authorization headers for authenticated requests."""
    return {"Authorization": f"Bearer {access_token}"}


def link_token(message: dict) -> str:
    """Pull the one-time token out of a captured reset/verification e-mail."""
    context = message["context"]
    link = context.get("resetLink") or context.get("verificationLink")
    return link.split("token=")[1]
