"""プロフィールの作成・更新・削除

プロフィール行はサインアップ時には作らず、コールバック時または
マイページ初回表示時に作成する。並行して別経路から作成された場合の
重複キーエラーは、作成済みとみなして握りつぶす。
"""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..master import SERVICE_CATALOG
from ..models import Account, Bookmark, Facility, FacilityService, Profile, UserDetail
from ..schemas import ProfileUpdateIn
from .auth import AuthProvider
from .validation import is_valid_district

logger = logging.getLogger(__name__)

USER_TYPES = ("user", "facility")

USER_DETAIL_FIELDS = (
    "age", "gender", "disability_types", "disability_grade",
    "guardian_name", "guardian_phone", "emergency_contact", "medical_info",
    "transportation_needs", "other_requirements", "receive_notifications",
)


def _commit_idempotent(db: Session, what: str) -> bool:
    """commit。重複キーなら rollback して False（作成済み扱い）"""
    try:
        db.commit()
        return True
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"duplicate key while provisioning {what}, treating as already created: {e.orig}")
        return False


def ensure_profile(db: Session, account: Account) -> Profile:
    """プロフィール（と種別ごとの付随行）がなければ作成して返す"""
    meta = account.user_metadata or {}

    profile = db.get(Profile, account.id)
    if profile is None:
        user_type = meta.get("user_type") if meta.get("user_type") in USER_TYPES else "user"
        district = meta.get("district")
        db.add(Profile(
            id=account.id,
            user_type=user_type,
            email=account.email,
            full_name=meta.get("full_name") or account.email,
            phone_number=meta.get("phone_number") or None,
            district=district if is_valid_district(district) else None,
        ))
        if _commit_idempotent(db, "profiles"):
            logger.info(f"profile created: {account.id} ({user_type})")
        profile = db.get(Profile, account.id)

    if profile.user_type == "user":
        ensure_user_details(db, profile, meta.get("user_details") or {})
    elif profile.user_type == "facility":
        ensure_operator_facility(db, profile, meta.get("facility_details"))
    return profile


def ensure_user_details(db: Session, profile: Profile, initial: Optional[dict] = None) -> UserDetail:
    details = db.query(UserDetail).filter(UserDetail.user_id == profile.id).first()
    if details is not None:
        return details

    values = {k: v for k, v in (initial or {}).items() if k in USER_DETAIL_FIELDS and v is not None}
    values.setdefault("receive_notifications", True)
    values.setdefault("disability_types", [])
    db.add(UserDetail(user_id=profile.id, **values))
    _commit_idempotent(db, "user_details")
    return db.query(UserDetail).filter(UserDetail.user_id == profile.id).first()


def ensure_operator_facility(db: Session, profile: Profile, details: Optional[dict]) -> Optional[Facility]:
    """事業所アカウントの登録情報から事業所を作成（未作成の場合のみ）"""
    existing = db.query(Facility).filter(Facility.profile_id == profile.id).first()
    if existing is not None or not details:
        return existing

    name = (details.get("name") or "").strip()
    address = (details.get("address") or "").strip()
    district = details.get("district") or profile.district
    if not name or not address or not is_valid_district(district):
        logger.warning(f"facility_details incomplete for {profile.id}, facility not created")
        return None

    facility = Facility(
        profile_id=profile.id,
        name=name,
        address=address,
        district=district,
        description=details.get("description") or None,
        appeal_points=details.get("appeal_points") or None,
        phone_number=details.get("phone_number") or None,
        website_url=details.get("website_url") or None,
        is_active=True,
    )
    for service_id in details.get("service_ids") or []:
        if service_id in SERVICE_CATALOG:
            facility.services.append(FacilityService(service_id=service_id, availability="available"))
    db.add(facility)
    _commit_idempotent(db, "facilities")
    return db.query(Facility).filter(Facility.profile_id == profile.id).first()


def update_profile(db: Session, provider: AuthProvider, account: Account, payload: ProfileUpdateIn) -> Profile:
    profile = ensure_profile(db, account)

    if payload.district and not is_valid_district(payload.district):
        raise ValidationError("地区の指定が正しくありません")

    if payload.full_name is not None:
        profile.full_name = payload.full_name.strip() or profile.full_name
    if payload.phone_number is not None:
        profile.phone_number = payload.phone_number or None
    if payload.district is not None:
        profile.district = payload.district or None

    if payload.details is not None and profile.user_type == "user":
        details = ensure_user_details(db, profile)
        for key, value in payload.details.model_dump(exclude_unset=True).items():
            if key == "disability_types" and value is None:
                value = []
            elif key == "receive_notifications" and value is None:
                continue
            setattr(details, key, value)

    db.commit()

    # 表示名は認証側のメタデータにも反映
    if payload.full_name and payload.full_name != (account.user_metadata or {}).get("full_name"):
        provider.update_user(account, metadata={"full_name": profile.full_name})

    db.refresh(profile)
    return profile


def delete_account(db: Session, provider: AuthProvider, account: Account) -> None:
    """本人のブックマーク・詳細・プロフィール・アカウントを削除。

    運営していた事業所は削除せず、プロフィールとの紐付けだけ外す。
    """
    user_id = account.id
    db.query(Bookmark).filter(Bookmark.user_id == user_id).delete(synchronize_session=False)
    db.query(UserDetail).filter(UserDetail.user_id == user_id).delete(synchronize_session=False)
    db.query(Facility).filter(Facility.profile_id == user_id).update(
        {Facility.profile_id: None}, synchronize_session=False
    )
    db.query(Profile).filter(Profile.id == user_id).delete(synchronize_session=False)
    db.commit()
    provider.delete_user(user_id)
