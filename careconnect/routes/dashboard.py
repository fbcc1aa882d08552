"""事業所運営者ダッシュボードのエンドポイント"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import require_facility_operator
from ..models import Profile
from ..schemas import (
    FacilityOut, FacilityUpdateIn, FacilityServiceOut,
    FacilityServiceUpdateIn, FacilityServiceAddIn, MessageOut,
)
from ..services import facilities as svc
from ..services.search import shape_facility, shape_service

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/facility", response_model=FacilityOut)
def my_facility(profile: Profile = Depends(require_facility_operator), db: Session = Depends(get_db)):
    return shape_facility(svc.get_operator_facility(db, profile))


@router.put("/facility", response_model=FacilityOut)
def update_my_facility(
    payload: FacilityUpdateIn,
    profile: Profile = Depends(require_facility_operator),
    db: Session = Depends(get_db),
):
    fac = svc.get_operator_facility(db, profile)
    return shape_facility(svc.update_facility(db, fac, payload))


@router.patch("/facility/services/{service_id}", response_model=FacilityServiceOut)
def update_service(
    service_id: int,
    payload: FacilityServiceUpdateIn,
    profile: Profile = Depends(require_facility_operator),
    db: Session = Depends(get_db),
):
    """空き状況・定員・現在の利用者数を更新"""
    fac = svc.get_operator_facility(db, profile)
    return shape_service(svc.update_facility_service(db, fac, service_id, payload))


@router.post("/facility/services", response_model=FacilityServiceOut, status_code=201)
def add_service(
    payload: FacilityServiceAddIn,
    profile: Profile = Depends(require_facility_operator),
    db: Session = Depends(get_db),
):
    fac = svc.get_operator_facility(db, profile)
    return shape_service(svc.add_facility_service(db, fac, payload))


@router.delete("/facility/services/{service_id}", response_model=MessageOut)
def remove_service(
    service_id: int,
    profile: Profile = Depends(require_facility_operator),
    db: Session = Depends(get_db),
):
    fac = svc.get_operator_facility(db, profile)
    svc.remove_facility_service(db, fac, service_id)
    return {"message": "サービスを削除しました"}
