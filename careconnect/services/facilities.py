"""事業所の詳細・登録・運営者ダッシュボード"""
import logging
from typing import Optional, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..errors import NotFoundError, StoreError, ValidationError
from ..master import SERVICE_CATALOG
from ..models import Facility, FacilityService, Profile, ServiceDefinition
from ..schemas import FacilityRegisterIn, FacilityUpdateIn, FacilityServiceAddIn, FacilityServiceUpdateIn
from .validation import is_valid_district

logger = logging.getLogger(__name__)


def seed_service_catalog(db: Session) -> int:
    """サービス種別マスタを投入（既存行は上書き）。件数を返す"""
    for sid, (name, category, description) in SERVICE_CATALOG.items():
        db.merge(ServiceDefinition(id=sid, name=name, category=category, description=description))
    db.commit()
    return len(SERVICE_CATALOG)


def list_service_definitions(db: Session) -> List[ServiceDefinition]:
    return db.query(ServiceDefinition).order_by(ServiceDefinition.id).all()


def get_facility_detail(db: Session, facility_id: int) -> Optional[Facility]:
    """事業所詳細（無効化された事業所は返さない）"""
    fac = (
        db.query(Facility)
        .options(selectinload(Facility.services).joinedload(FacilityService.service))
        .filter(Facility.id == facility_id)
        .first()
    )
    if fac is None or not fac.is_active:
        return None
    return fac


def _check_service_ids(db: Session, service_ids: List[int]) -> None:
    known = {row[0] for row in db.query(ServiceDefinition.id).filter(ServiceDefinition.id.in_(service_ids)).all()}
    unknown = [sid for sid in service_ids if sid not in known]
    if unknown:
        raise ValidationError(f"不明なサービスIDです: {unknown}")


def register_facility(db: Session, payload: FacilityRegisterIn, profile: Optional[Profile] = None) -> Facility:
    """事業所と提供サービスを1トランザクションで登録。サービスは「空きあり」で開始"""
    name = (payload.name or "").strip()
    district = (payload.district or "").strip()
    address = (payload.address or "").strip()
    service_ids = list(dict.fromkeys(payload.service_ids or []))

    if not name or not district or not address or not service_ids:
        raise ValidationError("必須項目が不足しています。")
    if not is_valid_district(district):
        raise ValidationError("地区の指定が正しくありません")
    _check_service_ids(db, service_ids)

    facility = Facility(
        profile_id=profile.id if profile is not None and profile.user_type == "facility" else None,
        name=name,
        district=district,
        address=address,
        phone_number=payload.phone_number or None,
        website_url=payload.website_url or None,
        description=payload.description or None,
        appeal_points=payload.appeal_points or None,
        image_url=payload.image_url or None,
        is_active=True,
    )
    facility.services = [
        FacilityService(service_id=sid, availability="available", current_users=0)
        for sid in service_ids
    ]
    db.add(facility)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"facility registration failed: {e}")
        raise StoreError("事業所の登録に失敗しました")

    logger.info(f"facility registered: {facility.id} {facility.name} ({len(service_ids)} services)")
    return facility


# === 運営者ダッシュボード ===

def get_operator_facility(db: Session, profile: Profile) -> Facility:
    fac = (
        db.query(Facility)
        .options(selectinload(Facility.services).joinedload(FacilityService.service))
        .filter(Facility.profile_id == profile.id)
        .order_by(Facility.id)
        .first()
    )
    if fac is None:
        raise NotFoundError("事業所が登録されていません")
    return fac


def update_facility(db: Session, facility: Facility, payload: FacilityUpdateIn) -> Facility:
    changes = payload.model_dump(exclude_unset=True)
    if "district" in changes and not is_valid_district(changes["district"]):
        raise ValidationError("地区の指定が正しくありません")
    for key in ("name", "address"):
        if key in changes and not (changes[key] or "").strip():
            raise ValidationError("必須項目が不足しています。")
    if "is_active" in changes and changes["is_active"] is None:
        del changes["is_active"]

    for key, value in changes.items():
        setattr(facility, key, value)
    db.commit()
    db.refresh(facility)
    if "is_active" in changes:
        logger.info(f"facility {facility.id} is_active={facility.is_active}")
    return facility


def _find_service_row(facility: Facility, service_id: int) -> FacilityService:
    for fs in facility.services:
        if fs.service_id == service_id:
            return fs
    raise NotFoundError("このサービスは登録されていません")


def _warn_over_capacity(facility: Facility, fs: FacilityService) -> None:
    if fs.capacity is not None and (fs.current_users or 0) > fs.capacity:
        logger.warning(
            f"facility {facility.id} service {fs.service_id}: "
            f"current_users {fs.current_users} exceeds capacity {fs.capacity}"
        )


def update_facility_service(
    db: Session, facility: Facility, service_id: int, payload: FacilityServiceUpdateIn
) -> FacilityService:
    """空き状況・定員・利用者数の更新。定員超過は警告のみ"""
    fs = _find_service_row(facility, service_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        if key in ("availability", "current_users") and value is None:
            continue
        setattr(fs, key, value)
    _warn_over_capacity(facility, fs)
    db.commit()
    db.refresh(fs)
    return fs


def add_facility_service(db: Session, facility: Facility, payload: FacilityServiceAddIn) -> FacilityService:
    if any(fs.service_id == payload.service_id for fs in facility.services):
        raise ValidationError("このサービスは既に登録されています")
    _check_service_ids(db, [payload.service_id])

    fs = FacilityService(
        service_id=payload.service_id,
        availability=payload.availability,
        capacity=payload.capacity,
        current_users=payload.current_users,
    )
    facility.services.append(fs)
    _warn_over_capacity(facility, fs)
    db.commit()
    db.refresh(fs)
    return fs


def remove_facility_service(db: Session, facility: Facility, service_id: int) -> None:
    fs = _find_service_row(facility, service_id)
    facility.services.remove(fs)
    db.commit()
