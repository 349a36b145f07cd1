"""
SQLAlchemy Database Models
Permission facts, expanded ACLs and the tenant-scoped chunk store
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from permsearch.db.base import Base, TimestampMixin, UUIDMixin, utcnow


class User(UUIDMixin, TimestampMixin, Base):
    """Internal user (read-only lookup; user CRUD lives elsewhere)"""

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("tenant_id", "user_id", name="uq_users_tenant_user"),)

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class IdentityLink(UUIDMixin, TimestampMixin, Base):
    """Mapping from an external principal to an internal user"""

    __tablename__ = "identity_links"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "provider", "external_id", name="uq_identity_links_principal"
        ),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class GrantEntry(UUIDMixin, Base):
    """Raw permission fact: principal may read resource"""

    __tablename__ = "grant_entries"
    __table_args__ = (
        Index("ix_grant_entries_resource", "tenant_id", "resource_type", "resource_id"),
        Index(
            "ix_grant_entries_principal",
            "tenant_id",
            "principal_type",
            "source_system",
            "principal_id",
        ),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False)
    principal_id: Mapped[str] = mapped_column(String(255), nullable=False)
    principal_type: Mapped[str] = mapped_column(String(20), nullable=False)
    permission: Mapped[str] = mapped_column(String(20), nullable=False, default="read")
    source_system: Mapped[str] = mapped_column(String(64), nullable=False)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class GroupMembership(UUIDMixin, Base):
    """Direct membership edge as delivered by the connector feed"""

    __tablename__ = "group_memberships"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "provider",
            "group_id",
            "member_type",
            "member_id",
            name="uq_group_memberships_edge",
        ),
        Index("ix_group_memberships_member", "tenant_id", "provider", "member_type", "member_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    group_id: Mapped[str] = mapped_column(String(255), nullable=False)
    member_id: Mapped[str] = mapped_column(String(255), nullable=False)
    member_type: Mapped[str] = mapped_column(String(20), nullable=False)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class ExternalGroup(UUIDMixin, Base):
    """Flattened (transitive) membership of one external group"""

    __tablename__ = "external_groups"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "provider", "external_group_id", name="uq_external_groups_group"
        ),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    external_group_id: Mapped[str] = mapped_column(String(255), nullable=False)
    member_user_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    expansion_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    needs_retry: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ExpandedACL(UUIDMixin, Base):
    """Query-time permission record for one resource"""

    __tablename__ = "expanded_acls"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "resource_id", "resource_type", name="uq_expanded_acls_resource"
        ),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False)
    allowed_user_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    source_groups: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    expansion_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expanded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class ExpandedACLUser(UUIDMixin, Base):
    """One row per (resource, allowed user); rewritten with its ExpandedACL"""

    __tablename__ = "expanded_acl_users"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "resource_type",
            "resource_id",
            "user_id",
            name="uq_expanded_acl_users_entry",
        ),
        Index("ix_expanded_acl_users_user", "tenant_id", "user_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)


class Chunk(UUIDMixin, Base):
    """Searchable chunk of a document or email (written by ingestion)"""

    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint("tenant_id", "chunk_id", name="uq_chunks_tenant_chunk"),
        Index("ix_chunks_resource", "tenant_id", "resource_type", "resource_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    chunk_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[Optional[List[float]]] = mapped_column(JSON, nullable=True)
    location_metadata: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
