"""Pydantic スキーマ定義"""
from datetime import datetime
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, Field

Availability = Literal["available", "unavailable"]


# === 事業所・サービス ===

class ServiceOut(BaseModel):
    name: str
    category: str
    description: Optional[str] = None
    class Config:
        from_attributes = True


class ServiceDefinitionOut(BaseModel):
    id: int
    category: str
    name: str
    description: Optional[str] = None
    class Config:
        from_attributes = True


class FacilityServiceOut(BaseModel):
    id: int
    service_id: int
    availability: Availability
    capacity: Optional[int] = None
    current_users: int = 0
    service: Optional[ServiceOut] = None


class FacilityOut(BaseModel):
    id: int
    profile_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    appeal_points: Optional[str] = None
    address: str
    district: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone_number: Optional[str] = None
    website_url: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    services: List[FacilityServiceOut] = []


class FacilitySummaryOut(BaseModel):
    """ブックマーク一覧用（軽量）"""
    id: int
    name: str
    district: str
    description: Optional[str] = None
    phone_number: Optional[str] = None
    website_url: Optional[str] = None
    image_url: Optional[str] = None
    class Config:
        from_attributes = True


class PaginationOut(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    hasNext: bool
    hasPrev: bool


class FacilitySearchResponse(BaseModel):
    facilities: List[FacilityOut]
    pagination: PaginationOut


class FacilityRegisterIn(BaseModel):
    """事業所の新規登録（必須チェックはサービス層で行う）"""
    name: Optional[str] = None
    district: Optional[str] = None
    address: Optional[str] = None
    phone_number: Optional[str] = None
    website_url: Optional[str] = None
    description: Optional[str] = None
    appeal_points: Optional[str] = None
    image_url: Optional[str] = None
    service_ids: List[int] = []


class FacilityRegisterOut(BaseModel):
    message: str
    facilityId: int


class FacilityUpdateIn(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    appeal_points: Optional[str] = None
    address: Optional[str] = None
    district: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone_number: Optional[str] = None
    website_url: Optional[str] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None


class FacilityServiceUpdateIn(BaseModel):
    availability: Optional[Availability] = None
    capacity: Optional[int] = Field(None, ge=0)
    current_users: Optional[int] = Field(None, ge=0)


class FacilityServiceAddIn(BaseModel):
    service_id: int
    availability: Availability = "available"
    capacity: Optional[int] = Field(None, ge=0)
    current_users: int = Field(0, ge=0)


# === 認証 ===

class SignUpIn(BaseModel):
    email: str
    password: str
    confirm_password: Optional[str] = None
    metadata: Dict[str, Any] = {}


class SignInIn(BaseModel):
    email: str
    password: str


class RefreshIn(BaseModel):
    refresh_token: str


class CallbackIn(BaseModel):
    """メール認証コールバック。fragment は URL の # 以降をそのまま渡す"""
    token_hash: Optional[str] = None
    type: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None
    fragment: Optional[str] = None


class UserOut(BaseModel):
    id: str
    email: str
    user_metadata: Dict[str, Any] = {}
    email_confirmed_at: Optional[datetime] = None
    last_sign_in_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    class Config:
        from_attributes = True


class SessionOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: int
    user: UserOut


class AuthResponse(BaseModel):
    user: UserOut
    session: Optional[SessionOut] = None


class CurrentUserOut(BaseModel):
    user: UserOut
    isAdmin: bool


class CallbackOut(BaseModel):
    status: Literal["email_confirmed", "session_established"]
    user: UserOut
    session: Optional[SessionOut] = None


class MessageOut(BaseModel):
    message: str


# === マイページ ===

class UserDetailOut(BaseModel):
    age: Optional[int] = None
    gender: Optional[str] = None
    disability_types: List[str] = []
    disability_grade: Optional[str] = None
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    emergency_contact: Optional[str] = None
    medical_info: Optional[str] = None
    transportation_needs: Optional[str] = None
    other_requirements: Optional[str] = None
    receive_notifications: bool = True
    class Config:
        from_attributes = True


class ProfileOut(BaseModel):
    id: str
    user_type: Literal["user", "facility"]
    email: str
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    district: Optional[str] = None
    details: Optional[UserDetailOut] = None
    class Config:
        from_attributes = True


class UserDetailIn(BaseModel):
    age: Optional[int] = Field(None, ge=0, le=150)
    gender: Optional[str] = None
    disability_types: Optional[List[str]] = None
    disability_grade: Optional[str] = None
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    emergency_contact: Optional[str] = None
    medical_info: Optional[str] = None
    transportation_needs: Optional[str] = None
    other_requirements: Optional[str] = None
    receive_notifications: Optional[bool] = None


class ProfileUpdateIn(BaseModel):
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    district: Optional[str] = None
    details: Optional[UserDetailIn] = None


class PasswordChangeIn(BaseModel):
    new_password: str
    confirm_password: str


class BookmarkOut(BaseModel):
    id: int
    facility_id: int
    created_at: Optional[datetime] = None
    facility: Optional[FacilitySummaryOut] = None
    class Config:
        from_attributes = True


class BookmarkStatusOut(BaseModel):
    facility_id: int
    bookmarked: bool


class AccountDeletedOut(BaseModel):
    success: bool
    message: str
    deletedUserId: str
