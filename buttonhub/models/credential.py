"""Local credential authority state.

These tables belong to the credential authority, not to the ownership
registry. They are written in their own sessions and never share a
transaction with registry writes.
"""

from datetime import datetime, timezone

from sqlmodel import Field, SQLModel

from buttonhub.config import table_name


class IssuedCertificate(SQLModel, table=True):
    __tablename__ = table_name("iot_certificates")

    certificate_id: str = Field(primary_key=True)  # sha256 fingerprint
    certificate_pem: str
    status: str = Field(default="ACTIVE")  # 'ACTIVE' | 'INACTIVE'
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class IdentityObject(SQLModel, table=True):
    __tablename__ = table_name("iot_things")

    thing_name: str = Field(primary_key=True)
    attributes: str = "{}"  # JSON
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PolicyAttachment(SQLModel, table=True):
    __tablename__ = table_name("iot_policy_attachments")

    policy_name: str = Field(primary_key=True)
    target: str = Field(primary_key=True)  # credential ref


class ThingPrincipal(SQLModel, table=True):
    __tablename__ = table_name("iot_thing_principals")

    thing_name: str = Field(primary_key=True)
    principal: str = Field(primary_key=True)  # credential ref
