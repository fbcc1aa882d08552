"""事業所検索エンドポイント"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import check_configuration
from ..schemas import FacilitySearchResponse
from ..services.search import (
    search_facilities, parse_service_ids,
    DEFAULT_LIMIT, MAX_LIMIT, AVAILABILITY_SCOPES,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


def _to_int(raw: Optional[str], default: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


@router.get(
    "/facilities",
    response_model=FacilitySearchResponse,
    dependencies=[Depends(check_configuration)],
)
def search(
    query: Optional[str] = Query(None, description="事業所名（部分一致）"),
    district: Optional[str] = Query(None, description="地区（完全一致。空・all・すべての地区は全件）"),
    service_ids: Optional[str] = Query(None, description='サービスIDのJSON配列 例: [1,2]'),
    availability_only: Optional[str] = Query(None, description="true: 空きありの事業所のみ"),
    availability_scope: str = Query("any", description="any: 全サービスで空き判定 / selected: 選択サービス内で空き判定"),
    page: Optional[str] = Query(None, description="ページ番号（1始まり）"),
    limit: Optional[str] = Query(None, description=f"1ページの件数（既定{DEFAULT_LIMIT}、最大{MAX_LIMIT}）"),
    db: Session = Depends(get_db),
):
    page_no = max(1, _to_int(page, 1))
    per_page = min(MAX_LIMIT, max(1, _to_int(limit, DEFAULT_LIMIT)))
    scope = availability_scope if availability_scope in AVAILABILITY_SCOPES else "any"

    facilities, pagination = search_facilities(
        db,
        query=query,
        district=district,
        service_ids=parse_service_ids(service_ids),
        availability_only=(availability_only or "").lower() == "true",
        availability_scope=scope,
        page=page_no,
        limit=per_page,
    )
    return {"facilities": facilities, "pagination": pagination}
