from sqlalchemy import Column, Integer, Float, DateTime, ForeignKey, Text, String, Index, Table, UniqueConstraint, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid

# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests).
JSONPayload = JSON().with_variant(JSONB(), "postgresql")


class Provider(Base):
    """An external fitness-data source exposing an OAuth2 API."""
    __tablename__ = "provider"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False, unique=True)  # 'strava'
    connection_type = Column(Text, nullable=False, default="oauth2")
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class User(Base):
    """
    A provider account owner known to this service.

    Created by the OAuth callback with insert-if-absent semantics; the webhook
    ingestor resolves events to a user through `user_external_id`.
    """
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id = Column(Integer, ForeignKey("provider.id"), nullable=False)
    user_external_id = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("provider_id", "user_external_id", name="uq_users_provider_external_id"),
    )

    athletes = relationship("Athlete", back_populates="user", order_by="Athlete.created_at")


class Athlete(Base):
    __tablename__ = "athlete"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, unique=True)
    display_name = Column(Text, nullable=True)
    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    country = Column(Text, nullable=True)
    gender = Column(Text, nullable=True)
    age = Column(Integer, nullable=True)
    height = Column(Float, nullable=True)  # metres
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    user = relationship("User", back_populates="athletes")


class ProviderOAuth2Credential(Base):
    """
    OAuth2 tokens for one (provider, user) pair.

    Tokens are Fernet-encrypted at rest (services.token_encryption).
    Only the credential manager mutates this row; refreshes take a row lock.
    """
    __tablename__ = "provider_oauth2_credentials"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id = Column(Integer, ForeignKey("provider.id"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # --- THE ARMOR: at most one credential row per (provider, user) ---
    __table_args__ = (
        UniqueConstraint("provider_id", "user_id", name="uq_credentials_provider_user"),
    )


class ProviderActivityRawData(Base):
    """
    The provider's native payload for one activity, stored unmodified.

    `detailed_activity_uri` points at the stream blob in object storage.
    `processed_at` is stamped once the normalization pipeline finished for
    this row (canonical upsert or a non-qualifying skip); the reconciliation
    sweep looks for rows where it is still NULL.
    """
    __tablename__ = "provider_activity_raw_data"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id = Column(Integer, ForeignKey("provider.id"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    athlete_id = Column(Uuid, ForeignKey("athlete.id"), nullable=True)
    provider_activity_id = Column(Text, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    elapsed_time = Column(Integer, nullable=False)  # seconds
    iana_timezone = Column(Text, nullable=True)
    utc_offset = Column(Integer, nullable=True)  # seconds
    data = Column(JSONPayload, nullable=False)
    detailed_activity_uri = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # --- THE ARMOR: natural key makes every write an upsert ---
    __table_args__ = (
        UniqueConstraint("provider_id", "user_id", "provider_activity_id", name="uq_raw_activity_natural_key"),
        Index("ix_raw_activity_unprocessed", "processed_at", "created_at"),
    )


activity_endurance_tag = Table(
    "activity_endurance_tag",
    Base.metadata,
    Column("activity_endurance_id", Uuid, ForeignKey("activity_endurance.id", ondelete="CASCADE"), primary_key=True),
    Column("activity_tag_id", Integer, ForeignKey("activity_tag.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
)


class EnduranceActivity(Base):
    """Canonical, provider-agnostic endurance activity."""
    __tablename__ = "activity_endurance"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id = Column(Integer, ForeignKey("provider.id"), nullable=False)
    athlete_id = Column(Uuid, ForeignKey("athlete.id"), nullable=True)
    provider_raw_activity_id = Column(Uuid, ForeignKey("provider_activity_raw_data.id"), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    sport = Column(String(64), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    iana_timezone = Column(Text, nullable=True)
    utc_offset = Column(Integer, nullable=True)
    elapsed_time = Column(Integer, nullable=False)  # seconds
    moving_time = Column(Integer, nullable=False)  # seconds
    distance = Column(Integer, nullable=False)  # metres
    elev_gain = Column(Integer, nullable=True)  # metres
    elev_loss = Column(Integer, nullable=True)  # metres
    avg_speed = Column(Float, nullable=False)  # m/s
    avg_hr = Column(Integer, nullable=True)
    max_hr = Column(Integer, nullable=True)
    summary_polyline = Column(Text, nullable=True)
    summary_route = Column(Text, nullable=True)  # WKT LINESTRING
    gpx_file_uri = Column(Text, nullable=True)
    fit_file_uri = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # --- THE ARMOR: one canonical row per raw row ---
    __table_args__ = (
        UniqueConstraint("provider_raw_activity_id", name="uq_activity_endurance_raw_id"),
        Index("ix_activity_endurance_athlete_start", "athlete_id", "start_time"),
    )

    tags = relationship("ActivityTag", secondary=activity_endurance_tag, order_by="ActivityTag.name")


class ActivityTag(Base):
    __tablename__ = "activity_tag"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class WebhookVerification(Base):
    """Single-use token handed to the provider during subscription setup."""
    __tablename__ = "webhook_verification"

    token = Column(String(64), primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
