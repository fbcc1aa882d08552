#!/usr/bin/env python3
"""WAM NET 障害福祉サービス等情報 CSV を facilities / facility_services にインポート

東京都内の事業所のみ取り込む。同じ事業所（名称・地区・事業所番号）が
複数のサービス種別で出現する場合は1事業所にまとめる。

  python -m scripts.import_wamnet data/raw/wamnet.csv [--replace]

--replace を付けると既存の事業所データを削除してから取り込む。
空き状況は「空きなし」で登録する（事業所がダッシュボードから更新する）。
"""

import csv
import sys
import time
from pathlib import Path

from sqlalchemy import func
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from careconnect.database import Base, SessionLocal, engine
from careconnect.master import TOKYO_DISTRICTS, SERVICE_IDS_BY_NAME
from careconnect.models import Facility, FacilityService
from careconnect.services.facilities import seed_service_catalog

DEFAULT_CSV = Path(__file__).parent.parent / "data" / "raw" / "wamnet.csv"
BATCH_SIZE = 50

# リトライ設定
MAX_RETRIES = 3
RETRY_DELAY = 1.0  # 秒
BACKOFF_MULTIPLIER = 2

# リトライしても解決しないエラー
FATAL_MESSAGES = (
    "no such table",
    "unable to open database file",
    "permission denied",
    "authentication failed",
    "readonly database",
)


def extract_district(address):
    """住所から東京都の市区町村名を取り出す。都外なら None"""
    if not address:
        return None
    address = address.replace("東京都", "", 1)
    # 「北区」が「台東区」などの途中に一致しないよう、長い名前から照合
    for district in sorted(TOKYO_DISTRICTS, key=len, reverse=True):
        if address.startswith(district):
            return district
    for district in sorted(TOKYO_DISTRICTS, key=len, reverse=True):
        if district in address:
            return district
    return None


def format_phone_number(phone):
    if not phone:
        return None
    digits = "".join(c for c in phone if c.isdigit() or c == "-")
    return digits or None


def validate_url(url):
    url = (url or "").strip()
    if not url or url == "-":
        return None
    if not url.startswith("http"):
        return f"https://{url}"
    return url


def safe_float(v):
    if not v or not v.strip():
        return None
    try:
        f = float(v.strip())
        return f if f != 0.0 else None
    except ValueError:
        return None


def safe_int(v):
    if not v or not v.strip():
        return None
    try:
        return int(float(v.strip()))
    except ValueError:
        return None


def is_fatal(error):
    message = str(error).lower()
    return any(m in message for m in FATAL_MESSAGES)


def execute_with_retry(db, operation, description, stats):
    """一時的なDBエラーは指数バックオフでリトライ"""
    last_error = None
    for attempt in range(MAX_RETRIES + 1):
        if attempt > 0:
            delay = RETRY_DELAY * BACKOFF_MULTIPLIER ** (attempt - 1)
            print(f"  ⏳ {description} - リトライ {attempt}/{MAX_RETRIES} ({delay:.1f}秒待機)")
            time.sleep(delay)
            stats["retries"] += 1
        try:
            result = operation()
            if attempt > 0:
                print(f"  ✅ {description} - リトライ成功")
            return result
        except OperationalError as e:
            last_error = e
            db.rollback()
            print(f"  ❌ {description} - 試行 {attempt + 1} 失敗: {e.orig}")
            if is_fatal(e):
                print("  🚨 致命的エラーのため処理を中断します")
                raise
    print(f"  ❌ {description} - 全てのリトライが失敗しました")
    raise last_error


def parse_rows(rows, stats):
    """CSV行 → {key: 事業所dict}。services は サービスID → 定員"""
    facilities = {}
    for row in rows:
        district = extract_district(row.get("事業所住所（市区町村）"))
        if not district:
            continue

        service_name = (row.get("サービス種別") or "").strip()
        service_id = SERVICE_IDS_BY_NAME.get(service_name)
        if service_id is None:
            stats["unknown_services"].add(service_name)
            continue

        name = (row.get("事業所の名称") or row.get("法人の名称") or "").strip()
        if not name:
            stats["csv_errors"] += 1
            continue

        key = (name, district, (row.get("事業所番号") or "").strip())
        fac = facilities.get(key)
        if fac is None:
            corporate = (row.get("法人の名称") or "").strip()
            fac = {
                "name": name,
                "description": f"{corporate}が運営する{service_name}事業所です。" if corporate else None,
                "address": f"{row.get('事業所住所（市区町村）') or ''} {row.get('事業所住所（番地以降）') or ''}".strip(),
                "district": district,
                "latitude": safe_float(row.get("事業所緯度")),
                "longitude": safe_float(row.get("事業所経度")),
                "phone_number": format_phone_number(row.get("事業所電話番号")),
                "website_url": validate_url(row.get("事業所URL") or row.get("法人URL")),
                "services": {},
            }
            facilities[key] = fac
        fac["services"].setdefault(service_id, safe_int(row.get("定員")))
        stats["csv_rows"] += 1

    return facilities


def insert_batch(db, batch):
    for fac in batch:
        db.add(Facility(
            name=fac["name"],
            description=fac["description"],
            address=fac["address"],
            district=fac["district"],
            latitude=fac["latitude"],
            longitude=fac["longitude"],
            phone_number=fac["phone_number"],
            website_url=fac["website_url"],
            is_active=True,
            services=[
                FacilityService(service_id=sid, availability="unavailable", capacity=capacity, current_users=0)
                for sid, capacity in fac["services"].items()
            ],
        ))
    db.commit()


def import_wamnet(csv_path, replace=False):
    stats = {"csv_rows": 0, "csv_errors": 0, "inserted": 0, "failed": 0, "retries": 0, "unknown_services": set()}
    started = time.time()

    with open(csv_path, encoding="utf-8-sig", newline="") as f:
        facilities = list(parse_rows(csv.DictReader(f), stats).values())
    print(f"📄 CSV読み込み完了: {stats['csv_rows']:,}行 → 都内事業所 {len(facilities):,}件")
    for name in sorted(stats["unknown_services"]):
        print(f"  ⚠️ 未対応のサービス種別: {name}")

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_service_catalog(db)

        if replace:
            print("🗑️ 既存データを削除中...")

            def clear():
                db.query(FacilityService).delete()
                db.query(Facility).delete()
                db.commit()
            execute_with_retry(db, clear, "既存データ削除", stats)

        for i in range(0, len(facilities), BATCH_SIZE):
            batch = facilities[i:i + BATCH_SIZE]
            label = f"事業所バッチ ({i + 1}-{i + len(batch)})"
            try:
                execute_with_retry(db, lambda: insert_batch(db, batch), label, stats)
                stats["inserted"] += len(batch)
            except SQLAlchemyError as e:
                db.rollback()
                if is_fatal(e):
                    raise
                print(f"  ❌ {label} 失敗: {e}")
                stats["failed"] += len(batch)
            if (i // BATCH_SIZE) % 10 == 0:
                print(f"  {stats['inserted']:,}/{len(facilities):,} 件")

        total_facilities = db.query(func.count(Facility.id)).scalar()
        total_services = db.query(func.count(FacilityService.id)).scalar()
    finally:
        db.close()

    elapsed = int(time.time() - started)
    print(f"\n✅ インポート完了 ({elapsed}秒)")
    print(f"  事業所挿入: {stats['inserted']:,}件 (失敗: {stats['failed']:,}件, リトライ: {stats['retries']}回)")
    print(f"  DB内事業所数: {total_facilities:,}件 / サービス数: {total_services:,}件")
    return stats


def main():
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    csv_path = Path(args[0]) if args else DEFAULT_CSV
    if not csv_path.exists():
        print(f"❌ CSVが見つかりません: {csv_path}")
        sys.exit(1)
    try:
        import_wamnet(csv_path, replace="--replace" in sys.argv)
    except SQLAlchemyError as e:
        print(f"💥 インポート処理でエラーが発生しました: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
