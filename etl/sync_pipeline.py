# WORKFLOW: Bulk TARIC import into the local tariff mirror with single-flight protection.
# Used by: api/routers/sync.py, api/main.py (daily scheduler), tests
# Components:
# 1. SyncCoordinator - idle | running(sync_id, started_at), atomic try_start() / finish()
# 2. SyncPipeline.start() - conflict check and sync log creation, synchronous for the caller
# 3. SyncPipeline.execute() - parse -> merge -> translate -> validate -> upsert -> agreements -> completed
# 4. get_sync_status() / get_sync_history() / cancel_sync()
# 5. run_daily_scheduler() - asyncio loop running an incremental sync at the configured hour
#
# Progress checkpoints: 10 nomenclature, 30 duties, 40 merge, 45 totals, 48-55 translation,
# 55-90 upsert batches, 95 agreements, 100 completed. The coordinator is released in a finally block.

"""
Bulk TARIC import into the local tariff mirror with single-flight protection.
"""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from api.schemas.response import SyncResult
from core.config import settings
from core.exceptions import SyncConflictError, SyncNotSupported
from db import repository
from db.models import SyncLog
from db.session import get_session_factory
from etl.ingest_zip import DUTIES, NOMENCLATURE, get_file_status, get_taric_version, has_local_files, read_local_file
from etl.taric_parser import parse_duties_excel, parse_nomenclature_excel
from etl.transform_canonical import extract_trade_agreements, merge_nomenclature_and_duties
from etl.validators import split_valid_records
from services.taric_engine import get_translator
from services.translation import TranslationService

logger = logging.getLogger(__name__)

TRANSLATION_CHUNK = 50


@dataclass(frozen=True)
class RunningSync:
    sync_id: str
    started_at: float


class SyncCoordinator:
    """Process-wide single-flight guard for bulk imports."""

    def __init__(self):
        self._lock = threading.Lock()
        self._running: Optional[RunningSync] = None

    def try_start(self, sync_id: str) -> bool:
        with self._lock:
            if self._running is not None:
                return False
            self._running = RunningSync(sync_id, time.monotonic())
            return True

    def finish(self, sync_id: str) -> None:
        with self._lock:
            if self._running is not None and self._running.sync_id == sync_id:
                self._running = None

    @property
    def current(self) -> Optional[RunningSync]:
        return self._running


@dataclass
class SyncInputs:
    nomenclature: Optional[bytes] = None
    duties: Optional[bytes] = None


class SyncPipeline:
    """Runs one import at a time; each run uses its own database session."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None,
                 translator: Optional[TranslationService] = None,
                 coordinator: Optional[SyncCoordinator] = None):
        self.session_factory = session_factory or get_session_factory()
        self._translator = translator
        self.coordinator = coordinator or SyncCoordinator()

    @property
    def translator(self) -> TranslationService:
        if self._translator is None:
            self._translator = get_translator()
        return self._translator

    def start(self, sync_type: str = "full", data_source: str = "excel", file_name: Optional[str] = None,
              created_by: Optional[str] = None) -> str:
        """
        Claim the single sync slot and create the running sync log.

        Raises:
            SyncConflictError: another sync is running; no sync log is written
        """
        sync_id = str(uuid.uuid4())
        if not self.coordinator.try_start(sync_id):
            running = self.coordinator.current
            raise SyncConflictError(running.sync_id if running else None)

        try:
            with self.session_factory() as db:
                repository.create_sync_log(db, sync_id, sync_type, data_source,
                                           file_name=file_name, created_by=created_by)
        except Exception:
            self.coordinator.finish(sync_id)
            raise
        logger.info(f"Sync {sync_id} started ({sync_type}, {data_source})")
        return sync_id

    async def execute(self, sync_id: str, inputs: Optional[SyncInputs] = None,
                      enable_translation: bool = True) -> SyncResult:
        """Run a started sync to completion. Marks the log failed and re-raises on error."""
        started = time.monotonic()
        db = self.session_factory()
        try:
            inputs = inputs or SyncInputs(read_local_file(NOMENCLATURE), read_local_file(DUTIES))
            if inputs.nomenclature is None and inputs.duties is None:
                raise ValueError("No TARIC data files available, upload files or place them in the data directory")

            taric_version = get_taric_version()
            repository.update_sync_log(db, sync_id, taric_version=taric_version)

            records = await self._parse(db, sync_id, inputs)
            repository.update_sync_log(db, sync_id, total_records=len(records), progress=45)

            if records and enable_translation:
                await self._translate(db, sync_id, records)
            repository.update_sync_log(db, sync_id, progress=55)

            counts = self._upsert(db, sync_id, records, taric_version)

            repository.update_sync_log(db, sync_id, progress=95)
            agreements = extract_trade_agreements(records)
            if agreements:
                stored = repository.upsert_trade_agreements(db, agreements, taric_version)
                logger.info(f"Sync {sync_id}: {stored} trade agreements stored")

            repository.update_sync_log(
                db, sync_id,
                status="completed",
                progress=100,
                inserted_count=counts["inserted"],
                updated_count=counts["updated"],
                failed_count=counts["failed"],
                completed_at=datetime.utcnow(),
            )
            duration = round(time.monotonic() - started, 2)
            logger.info(
                f"Sync {sync_id} completed in {duration}s: {counts['inserted']} inserted, "
                f"{counts['updated']} updated, {counts['failed']} failed"
            )
            return SyncResult(
                success=True,
                sync_id=sync_id,
                total_records=len(records),
                inserted_count=counts["inserted"],
                updated_count=counts["updated"],
                failed_count=counts["failed"],
                duration_seconds=duration,
                taric_version=taric_version,
            )
        except Exception as e:
            logger.error(f"Sync {sync_id} failed: {e}")
            db.rollback()
            repository.update_sync_log(db, sync_id, status="failed", error_message=str(e),
                                       completed_at=datetime.utcnow())
            raise
        finally:
            db.close()
            self.coordinator.finish(sync_id)

    async def run_sync(self, sync_type: str = "full", data_source: str = "excel",
                       inputs: Optional[SyncInputs] = None, created_by: Optional[str] = None,
                       enable_translation: bool = True) -> SyncResult:
        sync_id = self.start(sync_type, data_source, created_by=created_by)
        return await self.execute(sync_id, inputs, enable_translation)

    async def _parse(self, db: Session, sync_id: str, inputs: SyncInputs) -> List[Dict[str, Any]]:
        if inputs.nomenclature is None:
            repository.update_sync_log(db, sync_id, progress=30)
            return await asyncio.to_thread(parse_duties_excel, inputs.duties)

        repository.update_sync_log(db, sync_id, progress=10)
        nomenclature = await asyncio.to_thread(parse_nomenclature_excel, inputs.nomenclature)
        if inputs.duties is None:
            return nomenclature

        repository.update_sync_log(db, sync_id, progress=30)
        duties = await asyncio.to_thread(parse_duties_excel, inputs.duties)
        repository.update_sync_log(db, sync_id, progress=40)
        return merge_nomenclature_and_duties(nomenclature, duties)

    async def _translate(self, db: Session, sync_id: str, records: List[Dict[str, Any]]) -> None:
        """Fill goods_description_cn; failures never abort the import."""
        repository.update_sync_log(db, sync_id, progress=48)
        pending = list(dict.fromkeys(
            r["goods_description"] for r in records
            if r.get("goods_description") and not r.get("goods_description_cn")
        ))
        translations: Dict[str, str] = {}
        for start in range(0, len(pending), TRANSLATION_CHUNK):
            chunk = pending[start:start + TRANSLATION_CHUNK]
            try:
                translations.update(await self.translator.translate_batch(chunk))
            except Exception as e:
                logger.warning(f"Sync {sync_id}: translation chunk {start // TRANSLATION_CHUNK + 1} failed: {e}")
            done = min(start + TRANSLATION_CHUNK, len(pending))
            repository.update_sync_log(db, sync_id, progress=48 + round(done / len(pending) * 7))

        for record in records:
            if not record.get("goods_description_cn"):
                record["goods_description_cn"] = translations.get(record.get("goods_description") or "")
        logger.info(f"Sync {sync_id}: translated {len(translations)} of {len(pending)} descriptions")

    def _upsert(self, db: Session, sync_id: str, records: List[Dict[str, Any]], taric_version: str) -> Dict[str, int]:
        valid, invalid = split_valid_records(records)
        counts = {"inserted": 0, "updated": 0, "failed": invalid}
        now = datetime.utcnow()
        batch_size = settings.sync_batch_size

        for start in range(0, len(valid), batch_size):
            batch = [
                {**record, "taric_version": taric_version, "last_sync_time": now,
                 "data_source": "taric", "is_active": True}
                for record in valid[start:start + batch_size]
            ]
            result = repository.upsert_tariff_rates(db, batch)
            for key in counts:
                counts[key] += result[key]
            repository.update_sync_log(
                db, sync_id,
                progress=55 + round(start / len(valid) * 35),
                inserted_count=counts["inserted"],
                updated_count=counts["updated"],
                failed_count=counts["failed"],
            )
        repository.update_sync_log(db, sync_id, progress=90)
        return counts

    # ------------------------------------------------------------------ status

    def get_sync_status(self, db: Session) -> Dict[str, Any]:
        running = self.coordinator.current
        current = db.get(SyncLog, running.sync_id) if running else None
        return {
            "current_sync": current,
            "last_sync": repository.get_latest_completed_sync(db),
            "tariff_stats": repository.get_tariff_stats(db),
            "files": get_file_status(),
            "taric_version": get_taric_version(),
        }

    def get_sync_history(self, db: Session, status: Optional[str] = None, sync_type: Optional[str] = None,
                         page: int = 1, page_size: int = 20):
        return repository.list_sync_logs(db, status=status, sync_type=sync_type, page=page, page_size=page_size)

    def cancel_sync(self) -> None:
        raise SyncNotSupported("Cancelling a running sync is not supported")


def seconds_until(hour: int, now: Optional[datetime] = None) -> float:
    now = now or datetime.now()
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def run_daily_scheduler(pipeline: "SyncPipeline", hour: Optional[int] = None) -> None:
    """Sleep until ``hour`` every day and run an incremental sync from local files."""
    hour = settings.sync_scheduler_hour if hour is None else hour
    logger.info(f"Daily TARIC sync scheduled at {hour:02d}:00")
    while True:
        await asyncio.sleep(seconds_until(hour))
        if not has_local_files():
            logger.info("Scheduled sync skipped, no local TARIC files")
            continue
        try:
            await pipeline.run_sync(sync_type="incremental", data_source="excel", created_by="scheduler")
        except SyncConflictError as e:
            logger.info(f"Scheduled sync skipped: {e}")
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}")


# Lazy-loaded process-wide pipeline
_pipeline: Optional[SyncPipeline] = None


def get_sync_pipeline() -> SyncPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = SyncPipeline()
    return _pipeline
