"""入力バリデーション：登録・パスワード変更フォーム用"""
import re
from typing import Optional, Tuple

from ..master import TOKYO_DISTRICTS

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6


def validate_email(email: Optional[str]) -> bool:
    return bool(email) and bool(EMAIL_RE.match(email))


def validate_password(password: Optional[str]) -> Tuple[bool, Optional[str]]:
    if not password:
        return False, "パスワードは必須です"
    if len(password) < MIN_PASSWORD_LENGTH:
        return False, "パスワードは6文字以上で入力してください"
    return True, None


def validate_password_confirmation(password: Optional[str], confirm: Optional[str]) -> Tuple[bool, Optional[str]]:
    if not confirm:
        return False, "パスワード確認は必須です"
    if password != confirm:
        return False, "パスワードが一致しません"
    return True, None


def is_valid_district(district: Optional[str]) -> bool:
    return district in TOKYO_DISTRICTS
