"""SQLAlchemy モデル定義"""
from datetime import datetime
from sqlalchemy import (
    Column, String, Text, Integer, Float, Boolean,
    DateTime, ForeignKey, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from .database import Base


class ServiceDefinition(Base):
    """障害福祉サービス種別マスタ"""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    category = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)


class Facility(Base):
    """事業所"""
    __tablename__ = "facilities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = Column(String(36), ForeignKey("profiles.id", ondelete="SET NULL"), index=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    appeal_points = Column(Text)
    address = Column(Text, nullable=False)
    district = Column(Text, nullable=False, index=True)  # 東京都の市区町村名
    latitude = Column(Float)
    longitude = Column(Float)
    phone_number = Column(Text)
    website_url = Column(Text)
    image_url = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    services = relationship(
        "FacilityService", back_populates="facility",
        cascade="all, delete-orphan", order_by="FacilityService.id",
    )
    profile = relationship("Profile", back_populates="facilities")


class FacilityService(Base):
    """事業所が提供するサービス（空き状況・定員）"""
    __tablename__ = "facility_services"

    id = Column(Integer, primary_key=True, autoincrement=True)
    facility_id = Column(Integer, ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, index=True)
    availability = Column(String(12), nullable=False, default="unavailable")  # available / unavailable
    capacity = Column(Integer)
    current_users = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    facility = relationship("Facility", back_populates="services")
    service = relationship("ServiceDefinition", lazy="joined")

    __table_args__ = (
        UniqueConstraint("facility_id", "service_id", name="uq_facility_services_facility_service"),
    )


class Account(Base):
    """認証アカウント"""
    __tablename__ = "auth_users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(Text, nullable=False, unique=True)
    password_hash = Column(Text, nullable=False)
    user_metadata = Column(JSON, default=dict)  # user_type, full_name, role, user_details, ...
    email_confirmed_at = Column(DateTime)
    confirmation_token_hash = Column(String(64), index=True)
    confirmation_sent_at = Column(DateTime)
    last_sign_in_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    sessions = relationship("AuthSession", back_populates="account", cascade="all, delete-orphan")


class AuthSession(Base):
    """ログインセッション（リフレッシュトークンはハッシュで保持）"""
    __tablename__ = "auth_sessions"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("auth_users.id", ondelete="CASCADE"), nullable=False, index=True)
    refresh_token_hash = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    refreshed_at = Column(DateTime)
    revoked_at = Column(DateTime)

    account = relationship("Account", back_populates="sessions")


class Profile(Base):
    """プロフィール（利用者・事業所共通）"""
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)  # = auth_users.id
    user_type = Column(String(10), nullable=False, default="user")  # user / facility
    email = Column(Text, nullable=False)
    full_name = Column(Text)
    phone_number = Column(Text)
    district = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    details = relationship("UserDetail", back_populates="profile", uselist=False, cascade="all, delete-orphan")
    facilities = relationship("Facility", back_populates="profile")


class UserDetail(Base):
    """利用者の詳細情報"""
    __tablename__ = "user_details"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, unique=True)
    age = Column(Integer)
    gender = Column(Text)
    disability_types = Column(JSON, default=list)
    disability_grade = Column(Text)
    guardian_name = Column(Text)
    guardian_phone = Column(Text)
    emergency_contact = Column(Text)
    medical_info = Column(Text)
    transportation_needs = Column(Text)
    other_requirements = Column(Text)
    receive_notifications = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    profile = relationship("Profile", back_populates="details")


class Bookmark(Base):
    """ブックマーク（利用者 × 事業所）"""
    __tablename__ = "bookmark"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("auth_users.id", ondelete="CASCADE"), nullable=False)
    facility_id = Column(Integer, ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    facility = relationship("Facility")

    __table_args__ = (
        UniqueConstraint("user_id", "facility_id", name="uq_bookmark_user_facility"),
        Index("idx_bookmark_user", "user_id"),
    )
