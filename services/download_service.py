"""
Download history.
Recording never interrupts a download: store errors are logged, not raised.
"""

import logging
import sqlite3
from collections import OrderedDict
from datetime import datetime, tzinfo
from typing import Dict, Iterable, List, Optional

from shared.database import DatabaseManager
from shared.models import DownloadRecord, generate_id, utc_now_iso

logger = logging.getLogger(__name__)

SPANISH_MONTHS = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)


def format_long_date(moment: datetime) -> str:
    """Spanish long date, e.g. '19 de octubre de 2026'."""
    return f"{moment.day} de {SPANISH_MONTHS[moment.month - 1]} de {moment.year}"


def _parse_timestamp(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


class DownloadService:
    def __init__(self, db: DatabaseManager):
        self.db = db

    def save_download_record(self, user_id: Optional[str], track_id: str,
                             track_title: str) -> Optional[DownloadRecord]:
        if not user_id:
            logger.warning("No user ID provided for download record")
            return None

        now = utc_now_iso()
        record = DownloadRecord(
            id=generate_id(),
            user_id=user_id,
            track_id=track_id,
            track_title=track_title,
            downloaded_at=now,
            created_at=now,
        )
        try:
            self.db.insert_download(record)
        except sqlite3.Error as e:
            logger.error(f"Error guardando descarga: {e}")
            return None
        return record

    def get_user_downloads(self, user_id: str) -> List[DownloadRecord]:
        try:
            return self.db.get_downloads_by_user(user_id)
        except sqlite3.Error as e:
            logger.error(f"Error obteniendo descargas: {e}")
            return []

    @staticmethod
    def group_downloads_by_date(downloads: Iterable[DownloadRecord],
                                tz: Optional[tzinfo] = None) -> Dict[str, List[DownloadRecord]]:
        """
        Group records by calendar day, keyed by the Spanish long date.
        Days appear in the order first seen. tz defaults to the local zone.
        """
        grouped: Dict[str, List[DownloadRecord]] = OrderedDict()
        for download in downloads:
            moment = _parse_timestamp(download.downloaded_at)
            if moment.tzinfo is not None or tz is not None:
                moment = moment.astimezone(tz)
            grouped.setdefault(format_long_date(moment), []).append(download)
        return grouped

    def delete_download_record(self, download_id: str, user_id: Optional[str] = None) -> bool:
        return self.db.delete_download(download_id, user_id)

    def clear_download_history(self, user_id: str) -> int:
        return self.db.delete_downloads_by_user(user_id)
