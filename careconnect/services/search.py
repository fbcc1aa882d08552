"""事業所検索サービス

名称・地区はDB側で絞り込み、サービス種別・空き状況はPython側で絞り込む。
facility_services を結合した状態で絞り込むと事業所の行が重複するため、
該当事業所を全件（ページング前）取得してからフィルタ・ページングする。
"""
import json
import logging
import math
from typing import Optional, List, Tuple, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..errors import StoreError
from ..master import ALL_DISTRICTS
from ..models import Facility, FacilityService

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 12
MAX_LIMIT = 1000
# 地図表示では全件を1ページで取得する
MAP_VIEW_LIMIT = 1000

AVAILABILITY_SCOPES = ("any", "selected")


def parse_service_ids(raw: Optional[str]) -> List[int]:
    """service_ids クエリ（JSON配列）を解析。不正な値は無視して空リスト"""
    if not raw:
        return []
    try:
        values = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"service_ids parse error: {raw!r}")
        return []
    if not isinstance(values, list):
        logger.warning(f"service_ids is not a list: {raw!r}")
        return []

    ids = []
    for v in values:
        if isinstance(v, bool):
            continue
        if isinstance(v, int):
            ids.append(v)
        elif isinstance(v, str) and v.strip().isdigit():
            ids.append(int(v.strip()))
    return ids


def fetch_matching_facilities(
    db: Session,
    query: Optional[str] = None,
    district: Optional[str] = None,
) -> List[Facility]:
    """有効な事業所を名称・地区で絞り込み、サービス行付きで全件取得"""
    stmt = (
        db.query(Facility)
        .options(selectinload(Facility.services).joinedload(FacilityService.service))
        .filter(Facility.is_active.is_(True))
    )

    # 事業所名（部分一致・大文字小文字を区別しない）
    q = (query or "").strip()
    if q:
        stmt = stmt.filter(Facility.name.icontains(q, autoescape=True))

    # 地区（完全一致）
    d = (district or "").strip()
    if d not in ALL_DISTRICTS:
        stmt = stmt.filter(Facility.district == d)

    try:
        return stmt.order_by(Facility.id).all()
    except SQLAlchemyError as e:
        logger.error(f"facility search query failed: {e}")
        raise StoreError("事業所検索中にエラーが発生しました")


def filter_by_services(facilities: Iterable[Facility], service_ids: Optional[Iterable[int]]) -> List[Facility]:
    """選択サービスのいずれかを提供している事業所のみ（OR条件）"""
    wanted = set(service_ids or ())
    if not wanted:
        return list(facilities)
    return [f for f in facilities if any(fs.service_id in wanted for fs in f.services)]


def filter_by_availability(
    facilities: Iterable[Facility],
    within: Optional[Iterable[int]] = None,
) -> List[Facility]:
    """空きありのサービスを1つ以上持つ事業所のみ。

    within を指定した場合は、そのサービスIDの中に空きがある事業所に限定する。
    """
    wanted = set(within or ())

    def has_vacancy(fac: Facility) -> bool:
        for fs in fac.services:
            if fs.availability != "available":
                continue
            if wanted and fs.service_id not in wanted:
                continue
            return True
        return False

    return [f for f in facilities if has_vacancy(f)]


def paginate(items: list, page: int, limit: int) -> Tuple[list, dict]:
    """1始まりのページで切り出す。範囲外のページは空リスト"""
    page = max(1, page)
    total = len(items)
    pages = math.ceil(total / limit) if limit else 0
    start = (page - 1) * limit
    return items[start:start + limit], {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "hasNext": page < pages,
        "hasPrev": page > 1,
    }


def shape_service(fs: FacilityService) -> dict:
    svc = fs.service
    return {
        "id": fs.id,
        "service_id": fs.service_id,
        "availability": fs.availability,
        "capacity": fs.capacity,
        "current_users": fs.current_users or 0,
        "service": {
            "name": svc.name,
            "category": svc.category,
            "description": svc.description,
        } if svc else None,
    }


def shape_facility(fac: Facility) -> dict:
    return {
        "id": fac.id,
        "profile_id": fac.profile_id,
        "name": fac.name,
        "description": fac.description,
        "appeal_points": fac.appeal_points,
        "address": fac.address,
        "district": fac.district,
        "latitude": fac.latitude,
        "longitude": fac.longitude,
        "phone_number": fac.phone_number,
        "website_url": fac.website_url,
        "image_url": fac.image_url,
        "is_active": fac.is_active,
        "created_at": fac.created_at,
        "updated_at": fac.updated_at,
        "services": [shape_service(fs) for fs in fac.services],
    }


def search_facilities(
    db: Session,
    query: Optional[str] = None,
    district: Optional[str] = None,
    service_ids: Optional[List[int]] = None,
    availability_only: bool = False,
    availability_scope: str = "any",
    page: int = 1,
    limit: int = DEFAULT_LIMIT,
) -> Tuple[List[dict], dict]:
    """事業所検索。(整形済み事業所リスト, ページ情報) を返す

    フィルタ順: 名称・地区(DB) → サービス種別 → 空き状況。
    空き状況は既定ではサービス種別と独立に全サービス行を対象に判定する。
    availability_scope="selected" のときのみ選択サービス内の空きに限定する。
    """
    facilities = fetch_matching_facilities(db, query=query, district=district)

    if service_ids:
        facilities = filter_by_services(facilities, service_ids)

    if availability_only:
        within = service_ids if availability_scope == "selected" else None
        facilities = filter_by_availability(facilities, within=within)

    items, pagination = paginate(facilities, page, limit)
    logger.debug(
        f"search query={query!r} district={district!r} service_ids={service_ids} "
        f"availability_only={availability_only} -> {pagination['total']} hits"
    )
    return [shape_facility(f) for f in items], pagination
