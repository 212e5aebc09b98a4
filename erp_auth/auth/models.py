"""
ERP Access Core - Database Models

SQLModel tables for the role graph, the permission catalog, user
credentials, server-side sessions and one-time tokens.
Uses PostgreSQL for production, SQLite for local development.

Security:
- Passwords and backup codes stored as bcrypt hashes only
- Reset/verification tokens stored as SHA-256 digests only
- Sessions are server-controlled for immediate revocation
- All timestamps in UTC
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, String, JSON, UniqueConstraint, Enum as SQLEnum


class Role(SQLModel, table=True):
    """
    Node of the role graph.

    Roles form a tree through `parent_id`; a role inherits every grant held
    by its ancestors. System roles are immutable.

    Attributes:
        name: Unique role name
        parent_id: Weak reference to the parent role
        level: Privilege level (>= 0, higher means more privilege)
        is_system: Built-in role that cannot be changed or deleted
        is_super_role: Bypasses all permission checks
        can_manage_roles: May administer roles and permissions
    """
    __tablename__ = "roles"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(
        sa_column=Column(String(100), unique=True, index=True, nullable=False),
        description="Unique role name"
    )
    description: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    parent_id: Optional[UUID] = Field(default=None, foreign_key="roles.id", index=True)
    level: int = Field(default=0, index=True)
    is_system: bool = Field(default=False)
    is_super_role: bool = Field(default=False)
    can_manage_roles: bool = Field(default=False)
    created_by: Optional[UUID] = Field(default=None)
    updated_by: Optional[UUID] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Permission(SQLModel, table=True):
    """Named capability scoped to a module and an action (e.g. tasks/create)."""
    __tablename__ = "permissions"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(sa_column=Column(String(150), unique=True, index=True, nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    module: str = Field(sa_column=Column(String(100), index=True, nullable=False))
    action: str = Field(sa_column=Column(String(100), nullable=False))
    conditions: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    is_system: bool = Field(default=False)
    created_by: Optional[UUID] = Field(default=None)
    updated_by: Optional[UUID] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class RolePermission(SQLModel, table=True):
    """
    Grant record joining a role and a permission.

    `granted=False` is stored as an explicit deny; it never counts as a
    positive match but does not suppress a grant held by another role.
    """
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    role_id: UUID = Field(foreign_key="roles.id", nullable=False, index=True)
    permission_id: UUID = Field(foreign_key="permissions.id", nullable=False, index=True)
    granted: bool = Field(default=True)
    conditions: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_by: Optional[UUID] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class User(SQLModel, table=True):
    """
    User account (credential subset used by the access core).

    Attributes:
        email: Login identifier (unique, indexed)
        employee_id: Alternate login identifier
        password_hash: bcrypt hash (never store plaintext)
        role_id: The single role assigned to the user
        token_version: Bumped to invalidate every outstanding refresh token
        two_factor_secret: Active TOTP secret
        temp_two_factor_secret: Secret awaiting enrollment verification
    """
    __tablename__ = "users"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(sa_column=Column(String(255), unique=True, index=True, nullable=False))
    employee_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), unique=True, index=True, nullable=True)
    )
    name: str = Field(default="", sa_column=Column(String(255), nullable=False, default=""))
    password_hash: str = Field(sa_column=Column(String(255), nullable=False))
    role_id: UUID = Field(foreign_key="roles.id", nullable=False, index=True)
    token_version: int = Field(default=0)
    two_factor_secret: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    temp_two_factor_secret: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    is_email_verified: bool = Field(default=False)
    is_active: bool = Field(default=True)
    deactivated_at: Optional[datetime] = Field(default=None)
    last_login: Optional[datetime] = Field(default=None)
    login_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    role: Optional[Role] = Relationship()
    sessions: list["Session"] = Relationship(back_populates="user")


class BackupCode(SQLModel, table=True):
    """Single-use 2FA recovery code, stored hashed."""
    __tablename__ = "backup_codes"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", nullable=False, index=True)
    code_hash: str = Field(sa_column=Column(String(255), nullable=False))
    used: bool = Field(default=False)
    used_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Session(SQLModel, table=True):
    """
    Server-side record of one authenticated device/browser context.

    A session is alive while its row exists and `last_activity` is within
    the inactivity window. Deleting the row revokes every token bound to it.
    """
    __tablename__ = "sessions"

    session_id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", nullable=False, index=True)
    user_agent: Optional[str] = Field(default=None, sa_column=Column(String(512), nullable=True))
    ip_address: Optional[str] = Field(default=None, sa_column=Column(String(45), nullable=True))
    is_valid: bool = Field(default=True)
    last_activity: datetime = Field(default_factory=datetime.utcnow, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    user: Optional[User] = Relationship(back_populates="sessions")


class TokenType(str, Enum):
    """Purpose of a one-time token."""
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


class Token(SQLModel, table=True):
    """
    One-time password-reset / e-mail verification token.

    Only the SHA-256 digest of the token is stored.
    """
    __tablename__ = "tokens"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", nullable=False, index=True)
    token_hash: str = Field(sa_column=Column(String(64), index=True, nullable=False))
    type: TokenType = Field(sa_column=Column(SQLEnum(TokenType), nullable=False))
    used: bool = Field(default=False)
    expires_at: datetime = Field(index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
