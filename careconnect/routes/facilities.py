"""事業所詳細・登録・マスタのエンドポイント"""
import time
from typing import Optional, List
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import get_optional_account
from ..errors import NotFoundError, ValidationError
from ..master import TOKYO_DISTRICTS, DISABILITY_TYPES, SERVICE_CATEGORIES
from ..models import Account
from ..schemas import FacilityOut, FacilityRegisterIn, FacilityRegisterOut, ServiceDefinitionOut
from ..services.facilities import get_facility_detail, register_facility, list_service_definitions
from ..services.profiles import ensure_profile
from ..services.search import shape_facility

# キャッシュ: 読み取り専用マスタデータ（TTL付き）
_cache = {}
CACHE_TTL = 3600  # 1時間


def _cached(key, fn):
    """シンプルなTTLキャッシュ"""
    now = time.time()
    if key in _cache and now - _cache[key][1] < CACHE_TTL:
        return _cache[key][0]
    result = fn()
    _cache[key] = (result, now)
    return result


def clear_cache():
    _cache.clear()


router = APIRouter(prefix="/api", tags=["facilities"])


@router.get("/facilities/{facility_id}", response_model=FacilityOut)
def facility_detail(facility_id: str, db: Session = Depends(get_db)):
    if not facility_id.isdecimal() or not facility_id.isascii():
        raise ValidationError("事業所IDが正しくありません")
    fac = get_facility_detail(db, int(facility_id))
    if fac is None:
        raise NotFoundError("事業所が見つかりません")
    return shape_facility(fac)


@router.post("/register", response_model=FacilityRegisterOut, status_code=201)
def register(
    payload: FacilityRegisterIn,
    db: Session = Depends(get_db),
    account: Optional[Account] = Depends(get_optional_account),
):
    """事業所の新規登録。事業所アカウントでログイン中ならその運営事業所として紐付ける"""
    profile = ensure_profile(db, account) if account is not None else None
    fac = register_facility(db, payload, profile=profile)
    return FacilityRegisterOut(message="事業所を登録しました", facilityId=fac.id)


@router.get("/services", response_model=List[ServiceDefinitionOut])
def services(db: Session = Depends(get_db)):
    """サービス種別マスタ"""
    return _cached("services", lambda: [
        ServiceDefinitionOut.model_validate(s).model_dump() for s in list_service_definitions(db)
    ])


@router.get("/districts")
def districts():
    """地区・障害種別・サービス分類のマスタ"""
    return {
        "districts": TOKYO_DISTRICTS,
        "disability_types": DISABILITY_TYPES,
        "service_categories": SERVICE_CATEGORIES,
    }


@router.get("/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}
