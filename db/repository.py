# WORKFLOW: Parameterized reads and writes over the mirror, sync-log, agreement and override tables.
# Used by: services/rate_sources.py, services/taric_engine.py, etl/sync_pipeline.py, api/routers/*
# Functions:
# 1. upsert_tariff_rates() - batch upsert keyed on (hs_code, origin_country_code, measure_type)
# 2. list_tariff_rates() - prefix/origin/active/duty-range/text filters with pagination
# 3. get_base_tariff_row() / get_origin_tariff_rows() - mirror reads for the local rate source
# 4. save_rate_result() - persist one remote lookup result into the mirror
# 5. create_sync_log() / update_sync_log() / list_sync_logs() / get_latest_completed_sync()
# 6. get_tariff_stats() - totals for the sync status view
# 7. upsert_trade_agreements() / list_trade_agreements()
# 8. find_override() / list_overrides() / replace_overrides() - country-specific anti-dumping table
#
# Write flow: records -> coalesce into existing (or pending) row, or insert -> one commit per batch
# A row that cannot be built is counted as failed; it never aborts the batch.

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from db.models import AntiDumpingOverride, SyncLog, TariffRate, TradeAgreement

logger = logging.getLogger(__name__)

TARIFF_COLUMNS = {
    column.name for column in TariffRate.__table__.columns
    if column.name not in ("id", "created_at", "updated_at")
}


def _key_filter(query, column, value):
    return query.filter(column.is_(None)) if value is None else query.filter(column == value)


def _find_tariff_row(db: Session, hs_code: str, origin: Optional[str], measure_type: Optional[str]):
    query = db.query(TariffRate).filter(TariffRate.hs_code == hs_code)
    query = _key_filter(query, TariffRate.origin_country_code, origin)
    query = _key_filter(query, TariffRate.measure_type, measure_type)
    return query.first()


def _upsert_tariff_row(db: Session, record: Dict[str, Any], pending: Optional[Dict[tuple, TariffRate]] = None) -> str:
    values = {k: v for k, v in record.items() if k in TARIFF_COLUMNS}
    key = (values["hs_code"], values.get("origin_country_code") or None, values.get("measure_type") or None)
    existing = pending.get(key) if pending is not None else None
    if existing is None:
        existing = _find_tariff_row(db, *key)
    if existing is None:
        row = TariffRate(**values)
        db.add(row)
        if pending is not None:
            pending[key] = row
        return "inserted"

    # COALESCE(new, old): a missing value never erases what is stored
    for name, value in values.items():
        if value is not None:
            setattr(existing, name, value)
    existing.updated_at = datetime.utcnow()
    if pending is not None:
        pending[key] = existing
    return "updated"


def upsert_tariff_rates(db: Session, records: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    """
    Upsert a batch of mirror rows and commit once.

    Args:
        db: Database session
        records: Dicts whose keys are TariffRate column names

    Returns:
        {"inserted": n, "updated": n, "failed": n}
    """
    counts = {"inserted": 0, "updated": 0, "failed": 0}
    pending: Dict[tuple, TariffRate] = {}
    records = list(records)
    for record in records:
        try:
            outcome = _upsert_tariff_row(db, record, pending)
            counts[outcome] += 1
        except Exception as e:
            counts["failed"] += 1
            logger.warning(f"Failed to upsert tariff row {record.get('hs_code')}: {e}")
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Tariff batch commit failed, {len(records)} rows discarded: {e}")
        return {"inserted": 0, "updated": 0, "failed": len(records)}
    return counts


def list_tariff_rates(db: Session, prefix: Optional[str] = None, origin: Optional[str] = None,
                      is_active: Optional[bool] = None, min_duty: Optional[float] = None,
                      max_duty: Optional[float] = None, search: Optional[str] = None,
                      page: int = 1, page_size: int = 20) -> Tuple[List[TariffRate], int]:
    query = db.query(TariffRate)
    if prefix:
        query = query.filter(TariffRate.hs_code.like(f"{prefix}%"))
    if origin:
        query = query.filter(TariffRate.origin_country_code == origin)
    if is_active is not None:
        query = query.filter(TariffRate.is_active == is_active)
    if min_duty is not None:
        query = query.filter(TariffRate.duty_rate >= min_duty)
    if max_duty is not None:
        query = query.filter(TariffRate.duty_rate <= max_duty)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            TariffRate.goods_description.ilike(pattern),
            TariffRate.goods_description_cn.ilike(pattern),
        ))

    total = query.count()
    items = (
        query.order_by(TariffRate.hs_code, TariffRate.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def get_base_tariff_row(db: Session, code10: str) -> Optional[TariffRate]:
    """Active origin-less row: 10-digit match, then 8-digit, then the 4-digit heading row."""
    base = db.query(TariffRate).filter(
        TariffRate.is_active.is_(True),
        or_(TariffRate.origin_country_code.is_(None), TariffRate.origin_country_code == ""),
    )
    return (
        base.filter(TariffRate.hs_code_10 == code10).first()
        or base.filter(TariffRate.hs_code == code10[:8]).first()
        or base.filter(TariffRate.hs_code == code10[:4]).first()
    )


def get_origin_tariff_rows(db: Session, code8: str, origin: str) -> List[TariffRate]:
    return db.query(TariffRate).filter(
        TariffRate.is_active.is_(True),
        TariffRate.hs_code == code8,
        TariffRate.origin_country_code == origin,
    ).all()


def save_rate_result(db: Session, result, api_source: str) -> str:
    """Persist a RateResult into the mirror. Returns 'inserted' or 'updated'."""
    now = datetime.utcnow()
    record = {
        "hs_code": result.hs_code,
        "hs_code_10": result.hs_code10,
        "taric_code": result.hs_code10,
        "goods_description": result.goods_description or "",
        "goods_description_cn": result.goods_description_cn,
        "origin_country_code": result.origin_country_code,
        "duty_rate": result.duty_rate,
        "third_country_duty": result.third_country_duty,
        "vat_rate": result.vat_rate,
        "anti_dumping_rate": result.anti_dumping_rate,
        "countervailing_rate": result.countervailing_rate,
        "measure_type": None,
        "data_source": result.data_source or "taric",
        "api_source": api_source,
        "last_api_sync": now,
        "is_active": True,
    }
    try:
        outcome = _upsert_tariff_row(db, record)
        db.commit()
        return outcome
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to save lookup result for {result.hs_code10}: {e}")
        raise


def create_sync_log(db: Session, sync_id: str, sync_type: str, data_source: str,
                    file_name: Optional[str] = None, created_by: Optional[str] = None) -> SyncLog:
    log = SyncLog(
        id=sync_id,
        sync_type=sync_type,
        data_source=data_source,
        file_name=file_name,
        status="running",
        progress=0,
        started_at=datetime.utcnow(),
        created_by=created_by,
    )
    db.add(log)
    db.commit()
    db.refresh(log)
    return log


def update_sync_log(db: Session, sync_id: str, **fields) -> Optional[SyncLog]:
    log = db.get(SyncLog, sync_id)
    if log is None:
        logger.warning(f"Sync log {sync_id} not found")
        return None
    for name, value in fields.items():
        setattr(log, name, value)
    db.commit()
    return log


def list_sync_logs(db: Session, status: Optional[str] = None, sync_type: Optional[str] = None,
                   page: int = 1, page_size: int = 20) -> Tuple[List[SyncLog], int]:
    query = db.query(SyncLog)
    if status:
        query = query.filter(SyncLog.status == status)
    if sync_type:
        query = query.filter(SyncLog.sync_type == sync_type)
    total = query.count()
    items = (
        query.order_by(SyncLog.started_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def get_latest_completed_sync(db: Session) -> Optional[SyncLog]:
    return (
        db.query(SyncLog)
        .filter(SyncLog.status == "completed")
        .order_by(SyncLog.completed_at.desc())
        .first()
    )


def get_tariff_stats(db: Session) -> Dict[str, Any]:
    total = db.query(func.count(TariffRate.id)).scalar() or 0
    active = db.query(func.count(TariffRate.id)).filter(TariffRate.is_active.is_(True)).scalar() or 0
    from_taric = db.query(func.count(TariffRate.id)).filter(TariffRate.taric_version.isnot(None)).scalar() or 0
    last_sync = db.query(func.max(TariffRate.last_sync_time)).scalar()
    return {"total": total, "active": active, "from_taric": from_taric, "last_sync_time": last_sync}


def upsert_trade_agreements(db: Session, agreements: Iterable[Dict[str, Any]],
                            taric_version: Optional[str] = None) -> int:
    count = 0
    now = datetime.utcnow()
    for agreement in agreements:
        query = db.query(TradeAgreement).filter(TradeAgreement.agreement_code == agreement["agreement_code"])
        existing = _key_filter(query, TradeAgreement.country_code, agreement.get("country_code")).first()
        if existing is None:
            existing = TradeAgreement(agreement_code=agreement["agreement_code"])
            db.add(existing)
        for name, value in agreement.items():
            if value is not None:
                setattr(existing, name, value)
        existing.taric_version = taric_version
        existing.last_sync_at = now
        existing.is_active = True
        count += 1
    db.commit()
    return count


def list_trade_agreements(db: Session, agreement_type: Optional[str] = None, country_code: Optional[str] = None,
                          page: int = 1, page_size: int = 50) -> Tuple[List[TradeAgreement], int]:
    query = db.query(TradeAgreement).filter(TradeAgreement.is_active.is_(True))
    if agreement_type:
        query = query.filter(TradeAgreement.agreement_type == agreement_type)
    if country_code:
        query = query.filter(TradeAgreement.country_code == country_code)
    total = query.count()
    items = (
        query.order_by(TradeAgreement.agreement_code)
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def find_override(db: Session, origin: str, code10: str) -> Tuple[Optional[AntiDumpingOverride], bool]:
    """Exact 8-digit override first, else the first entry for the heading. Returns (row, exact)."""
    base = db.query(AntiDumpingOverride).filter(AntiDumpingOverride.origin_country_code == origin)
    exact = base.filter(AntiDumpingOverride.hs_code_8 == code10[:8]).first()
    if exact is not None:
        return exact, True
    heading = base.filter(AntiDumpingOverride.heading == code10[:4]).order_by(AntiDumpingOverride.id).first()
    return heading, False


def list_overrides(db: Session, origin: Optional[str] = None) -> List[AntiDumpingOverride]:
    query = db.query(AntiDumpingOverride)
    if origin:
        query = query.filter(AntiDumpingOverride.origin_country_code == origin)
    return query.order_by(AntiDumpingOverride.heading, AntiDumpingOverride.hs_code_8).all()


def replace_overrides(db: Session, origin: str, rows: Iterable[Dict[str, Any]]) -> int:
    """Replace every override of one origin with ``rows`` in a single transaction."""
    try:
        db.query(AntiDumpingOverride).filter(AntiDumpingOverride.origin_country_code == origin).delete()
        count = 0
        for row in rows:
            db.add(AntiDumpingOverride(origin_country_code=origin, **row))
            count += 1
        db.commit()
        return count
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to replace {origin} overrides: {e}")
        raise
