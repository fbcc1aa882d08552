"""管理用CRUDアプリ SQLAlchemy モデル定義"""
from datetime import datetime
from sqlalchemy import Column, Text, Integer, Boolean, DateTime
from .database import AdminBase


class ManagedFacility(AdminBase):
    """管理対象の事業所（検索用の facilities とは独立）"""
    __tablename__ = "managed_facilities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    address = Column(Text)
    phone = Column(Text)
    email = Column(Text)
    service_type = Column(Text)  # デイサービス, 訪問介護, ...
    capacity = Column(Integer, nullable=False, default=0)
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
