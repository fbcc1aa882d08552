"""ブックマークサービス"""
import logging
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ..errors import NotFoundError
from ..models import Bookmark, Facility

logger = logging.getLogger(__name__)


def list_bookmarks(db: Session, user_id: str) -> List[Bookmark]:
    """新しい順"""
    return (
        db.query(Bookmark)
        .options(joinedload(Bookmark.facility))
        .filter(Bookmark.user_id == user_id)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
        .all()
    )


def bookmarked_facility_ids(db: Session, user_id: str) -> List[int]:
    rows = db.query(Bookmark.facility_id).filter(Bookmark.user_id == user_id).order_by(Bookmark.id).all()
    return [r[0] for r in rows]


def is_bookmarked(db: Session, user_id: str, facility_id: int) -> bool:
    return (
        db.query(Bookmark.id)
        .filter(Bookmark.user_id == user_id, Bookmark.facility_id == facility_id)
        .first()
    ) is not None


def add_bookmark(db: Session, user_id: str, facility_id: int) -> Bookmark:
    """追加。既に登録済み（同時リクエスト含む）の場合は既存行を返す"""
    if db.get(Facility, facility_id) is None:
        raise NotFoundError("事業所が見つかりません")

    db.add(Bookmark(user_id=user_id, facility_id=facility_id))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"bookmark already exists: user={user_id} facility={facility_id}")

    return (
        db.query(Bookmark)
        .filter(Bookmark.user_id == user_id, Bookmark.facility_id == facility_id)
        .one()
    )


def remove_bookmark(db: Session, user_id: str, facility_id: int) -> bool:
    deleted = (
        db.query(Bookmark)
        .filter(Bookmark.user_id == user_id, Bookmark.facility_id == facility_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted > 0


def toggle_bookmark(db: Session, user_id: str, facility_id: int) -> bool:
    """追加/削除を切り替え、切り替え後の状態を返す"""
    if is_bookmarked(db, user_id, facility_id):
        remove_bookmark(db, user_id, facility_id)
        return False
    add_bookmark(db, user_id, facility_id)
    return True
