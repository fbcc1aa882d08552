"""マイページ・ブックマークのエンドポイント（ログイン必須）"""
import logging
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import get_auth_provider, get_current_account, get_current_profile
from ..errors import AppError, ValidationError
from ..models import Account, Profile
from ..schemas import (
    ProfileOut, ProfileUpdateIn, PasswordChangeIn, MessageOut,
    BookmarkOut, BookmarkStatusOut, AccountDeletedOut,
)
from ..services import bookmarks
from ..services.auth import AuthApiError, AuthProvider, localize_auth_error
from ..services.profiles import update_profile, delete_account
from ..services.validation import validate_password, validate_password_confirmation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mypage", tags=["mypage"])
bookmarks_router = APIRouter(prefix="/api/bookmarks", tags=["bookmarks"])


@router.get("/profile", response_model=ProfileOut)
def get_profile(profile: Profile = Depends(get_current_profile)):
    """プロフィール（未作成なら作成して返す）"""
    return profile


@router.put("/profile", response_model=ProfileOut)
def put_profile(
    payload: ProfileUpdateIn,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
):
    return update_profile(db, provider, account, payload)


@router.post("/password", response_model=MessageOut)
def change_password(
    payload: PasswordChangeIn,
    account: Account = Depends(get_current_account),
    provider: AuthProvider = Depends(get_auth_provider),
):
    for ok, message in (
        validate_password(payload.new_password),
        validate_password_confirmation(payload.new_password, payload.confirm_password),
    ):
        if not ok:
            raise ValidationError(message)
    try:
        provider.update_user(account, password=payload.new_password)
    except AuthApiError as e:
        raise AppError(localize_auth_error(e.message), status_code=e.status_code)
    logger.info(f"password changed: {account.id}")
    return {"message": "パスワードを変更しました"}


@router.delete("/account", response_model=AccountDeletedOut)
def delete_my_account(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
):
    """本人のアカウントと関連データを削除"""
    user_id = account.id
    delete_account(db, provider, account)
    logger.info(f"account self-deleted: {user_id}")
    return {"success": True, "message": "アカウントを削除しました", "deletedUserId": user_id}


# === ブックマーク ===

@bookmarks_router.get("", response_model=List[BookmarkOut])
def list_bookmarks(account: Account = Depends(get_current_account), db: Session = Depends(get_db)):
    return bookmarks.list_bookmarks(db, account.id)


@bookmarks_router.get("/ids", response_model=List[int])
def bookmark_ids(account: Account = Depends(get_current_account), db: Session = Depends(get_db)):
    return bookmarks.bookmarked_facility_ids(db, account.id)


@bookmarks_router.get("/{facility_id}", response_model=BookmarkStatusOut)
def bookmark_status(
    facility_id: int,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    return {"facility_id": facility_id, "bookmarked": bookmarks.is_bookmarked(db, account.id, facility_id)}


@bookmarks_router.put("/{facility_id}", response_model=BookmarkStatusOut)
def add_bookmark(
    facility_id: int,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    bookmarks.add_bookmark(db, account.id, facility_id)
    return {"facility_id": facility_id, "bookmarked": True}


@bookmarks_router.delete("/{facility_id}", response_model=BookmarkStatusOut)
def remove_bookmark(
    facility_id: int,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    bookmarks.remove_bookmark(db, account.id, facility_id)
    return {"facility_id": facility_id, "bookmarked": False}


@bookmarks_router.post("/{facility_id}/toggle", response_model=BookmarkStatusOut)
def toggle_bookmark(
    facility_id: int,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    return {"facility_id": facility_id, "bookmarked": bookmarks.toggle_bookmark(db, account.id, facility_id)}
