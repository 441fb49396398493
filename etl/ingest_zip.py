# WORKFLOW: Local TARIC input files: uploads, ZIP archives, versions and file status.
# Used by: etl/sync_pipeline.py, api/routers/sync.py
# Functions:
# 1. local_file_path() / read_local_file() - configured nomenclature and duties workbooks
# 2. save_uploaded_file() - store an upload, keeping the previous file as a timestamped .backup. copy
# 3. extract_zip_file() - route .xlsx members of an archive to nomenclature / duties by file name
# 4. get_taric_version() - YYYYMMDD of the newest input file, today when none exist
# 5. get_file_status() - exists, size and modification time per input file
#
# Ingestion flow: upload (xlsx | zip) -> route by keyword -> save into taric_data_dir -> sync pipeline reads bytes

"""
Local TARIC input files: uploads, ZIP archives, versions and file status.
"""

import io
import logging
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from core.config import settings

logger = logging.getLogger(__name__)

NOMENCLATURE = "nomenclature"
DUTIES = "duties"
FILE_KINDS = (NOMENCLATURE, DUTIES)

# File-name keywords used to route archive members
KIND_KEYWORDS = {
    NOMENCLATURE: ("nomenclature", "goods"),
    DUTIES: ("duties", "duty", "measure"),
}


def data_dir() -> Path:
    path = Path(settings.taric_data_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def local_file_name(kind: str) -> str:
    if kind == NOMENCLATURE:
        return settings.nomenclature_file
    if kind == DUTIES:
        return settings.duties_file
    raise ValueError(f"Unknown TARIC file kind: {kind}")


def local_file_path(kind: str) -> Path:
    return data_dir() / local_file_name(kind)


def read_local_file(kind: str) -> Optional[bytes]:
    path = local_file_path(kind)
    if not path.exists():
        return None
    return path.read_bytes()


def classify_file_name(file_name: str) -> Optional[str]:
    """Route a workbook name to nomenclature or duties, None when neither keyword matches."""
    name = Path(file_name).name.lower()
    for kind, keywords in KIND_KEYWORDS.items():
        if any(keyword in name for keyword in keywords):
            return kind
    return None


def save_uploaded_file(kind: str, content: bytes) -> Path:
    """
    Save an uploaded workbook as the configured local file.

    Args:
        kind: "nomenclature" or "duties"
        content: Raw XLSX bytes

    Returns:
        Path of the saved file
    """
    target = local_file_path(kind)
    try:
        if target.exists():
            stamp = datetime.now().strftime("%Y%m%d%H%M%S")
            backup = target.with_name(f"{target.stem}.backup.{stamp}{target.suffix}")
            target.rename(backup)
            logger.info(f"Previous {kind} file kept as {backup.name}")
        target.write_bytes(content)
        logger.info(f"Saved {kind} upload to {target} ({len(content)} bytes)")
        return target
    except OSError as e:
        logger.error(f"Failed to save {kind} upload: {e}")
        raise


def extract_zip_file(content: bytes) -> Dict[str, bytes]:
    """
    Extract workbooks from a ZIP upload.

    Returns:
        {"nomenclature": bytes, "duties": bytes} for the members that could be routed
    """
    files: Dict[str, bytes] = {}
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            for member in archive.namelist():
                if not member.lower().endswith(".xlsx"):
                    continue
                kind = classify_file_name(member)
                if kind is None:
                    logger.warning(f"Archive member {member} is neither nomenclature nor duties, skipped")
                    continue
                if kind in files:
                    logger.warning(f"Archive has more than one {kind} workbook, keeping the first")
                    continue
                files[kind] = archive.read(member)
    except zipfile.BadZipFile as e:
        logger.error(f"Invalid ZIP upload: {e}")
        raise ValueError(f"Invalid ZIP archive: {e}") from e

    logger.info(f"Extracted {sorted(files)} from ZIP upload")
    return files


def get_taric_version() -> str:
    mtimes = [local_file_path(kind).stat().st_mtime for kind in FILE_KINDS if local_file_path(kind).exists()]
    moment = datetime.fromtimestamp(max(mtimes)) if mtimes else datetime.now()
    return moment.strftime("%Y%m%d")


def get_file_status() -> Dict[str, Dict]:
    status = {}
    for kind in FILE_KINDS:
        path = local_file_path(kind)
        exists = path.exists()
        stat = path.stat() if exists else None
        status[kind] = {
            "name": kind,
            "local_file": local_file_name(kind),
            "file_path": str(path),
            "exists": exists,
            "size": stat.st_size if stat else None,
            "modified_time": datetime.fromtimestamp(stat.st_mtime) if stat else None,
        }
    return status


def has_local_files() -> bool:
    return any(local_file_path(kind).exists() for kind in FILE_KINDS)
