"""管理用CRUDアプリ Pydantic スキーマ"""
from datetime import datetime
from typing import Optional, Union
from pydantic import BaseModel


class ManagedFacilityIn(BaseModel):
    """登録・更新用。定員は文字列でも受け付け、サービス層で数値に変換する"""
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    service_type: Optional[str] = None
    capacity: Optional[Union[int, str]] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class ManagedFacilityOut(BaseModel):
    id: int
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    service_type: Optional[str] = None
    capacity: int = 0
    description: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    class Config:
        from_attributes = True
