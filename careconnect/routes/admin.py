"""管理用CRUDアプリのエンドポイント（admin ロールのみ・別DB）"""
import logging
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..admin_models import ManagedFacility
from ..admin_schemas import ManagedFacilityIn, ManagedFacilityOut
from ..database import get_admin_db
from ..deps import require_admin
from ..errors import NotFoundError, StoreError, ValidationError
from ..services.validation import validate_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/api", tags=["admin"], dependencies=[Depends(require_admin)])


def _parse_capacity(raw) -> int:
    if raw is None or raw == "":
        return 0
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("定員は数字で入力してください")
    if value < 0:
        raise ValidationError("定員は数字で入力してください")
    return value


def _apply(fac: ManagedFacility, payload: ManagedFacilityIn, creating: bool) -> None:
    changes = payload.model_dump(exclude_unset=True)

    if creating or "name" in changes:
        name = (changes.get("name") or "").strip()
        if not name:
            raise ValidationError("事業所名は必須です")
        fac.name = name
    if changes.get("email") and not validate_email(changes["email"]):
        raise ValidationError("メールアドレスの形式が正しくありません")
    if creating or "capacity" in changes:
        fac.capacity = _parse_capacity(changes.get("capacity"))

    for key in ("address", "phone", "email", "service_type", "description"):
        if key in changes:
            setattr(fac, key, changes[key] or None)
    if changes.get("is_active") is not None:
        fac.is_active = changes["is_active"]


def _get_or_404(db: Session, facility_id: int) -> ManagedFacility:
    fac = db.get(ManagedFacility, facility_id)
    if fac is None:
        raise NotFoundError("事業所が見つかりません")
    return fac


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"managed facility {action} failed: {e}")
        raise StoreError(f"事業所の{action}に失敗しました")


@router.get("/facilities", response_model=List[ManagedFacilityOut])
def list_facilities(db: Session = Depends(get_admin_db)):
    """有効な事業所（新しい順）"""
    return (
        db.query(ManagedFacility)
        .filter(ManagedFacility.is_active.is_(True))
        .order_by(ManagedFacility.created_at.desc(), ManagedFacility.id.desc())
        .all()
    )


@router.post("/facilities", response_model=ManagedFacilityOut, status_code=201)
def create_facility(payload: ManagedFacilityIn, db: Session = Depends(get_admin_db)):
    fac = ManagedFacility(is_active=True)
    _apply(fac, payload, creating=True)
    db.add(fac)
    _commit(db, "登録")
    db.refresh(fac)
    logger.info(f"managed facility created: {fac.id} {fac.name}")
    return fac


@router.get("/facilities/{facility_id}", response_model=ManagedFacilityOut)
def get_facility(facility_id: int, db: Session = Depends(get_admin_db)):
    return _get_or_404(db, facility_id)


@router.put("/facilities/{facility_id}", response_model=ManagedFacilityOut)
def update_facility(facility_id: int, payload: ManagedFacilityIn, db: Session = Depends(get_admin_db)):
    fac = _get_or_404(db, facility_id)
    _apply(fac, payload, creating=False)
    _commit(db, "更新")
    db.refresh(fac)
    return fac


@router.delete("/facilities/{facility_id}", response_model=ManagedFacilityOut)
def delete_facility(facility_id: int, db: Session = Depends(get_admin_db)):
    """論理削除（is_active=False）"""
    fac = _get_or_404(db, facility_id)
    fac.is_active = False
    _commit(db, "削除")
    db.refresh(fac)
    logger.info(f"managed facility deactivated: {fac.id}")
    return fac
