from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from backoffice_auth.database import Base


class AccountTypeEntry(Base):
    __tablename__ = "account_types"

    id = Column(Integer, primary_key=True)
    type = Column(String(50), nullable=False, unique=True)
    description = Column(String(255), nullable=True)


class RoleEntry(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True)
    role = Column(String(50), nullable=False, unique=True)
    description = Column(String(255), nullable=True)


class AuthEntry(Base):
    __tablename__ = "auth"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    contact = Column(String(32), nullable=True, unique=True, index=True)
    username = Column(String(100), nullable=False, unique=True)
    account_type_id = Column(
        Integer, ForeignKey("account_types.id"), nullable=False, index=True
    )
    password_hash = Column(String(255), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    account_type = relationship(AccountTypeEntry, lazy="joined")
    auth_roles = relationship(
        "AuthRoleEntry",
        order_by="AuthRoleEntry.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class AuthRoleEntry(Base):
    __tablename__ = "auth_roles"

    id = Column(Integer, primary_key=True)
    auth_id = Column(Integer, ForeignKey("auth.id"), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)

    role = relationship(RoleEntry, lazy="joined")
