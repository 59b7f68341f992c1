"""
Track uploads, listing, editing and likes.

Audio objects are stored as {user_id}/{track_id}.mp3 in the 'audio' bucket;
covers as {kind}/{item_id}.{ext} in the 'covers' bucket.
"""

import logging
import sqlite3
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from shared.audio import AudioProcessor
from shared.constants import (
    AUDIO_BUCKET,
    AUDIO_LIMIT,
    COVER_KINDS,
    COVERS_BUCKET,
    DEFAULT_TRACKS_LIMIT,
    IMAGE_LIMIT,
    STORAGE_CACHE_CONTROL,
)
from shared.database import DatabaseManager
from shared.errors import NotFoundError, PermissionDeniedError, StorageError, ValidationError
from shared.models import Track, TrackInput, UploadedFile, utc_now_iso

logger = logging.getLogger(__name__)

TRACK_NOT_FOUND = "No se encontró el track"


def as_bool(value: Any) -> bool:
    """Interpret form/JSON values such as 'false', '0' or 'off' as False."""
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "off", "no", "")
    return bool(value)


def as_text(value: Any) -> str:
    """Trimmed text of a JSON/form value; None becomes an empty string."""
    return "" if value is None else str(value).strip()


def audio_key(user_id: str, track_id: str) -> str:
    return f"{user_id}/{track_id}.mp3"


class TrackService:
    def __init__(self, db: DatabaseManager, buckets, clock: Callable[[], float] = time.time):
        self.db = db
        self.buckets = buckets
        self._clock = clock

    # --- Uploads ---

    @staticmethod
    def validate_audio(file: UploadedFile) -> None:
        if file.size > AUDIO_LIMIT:
            raise ValidationError("El archivo no debe superar 50MB")
        if not AudioProcessor.is_audio_content_type(file.content_type):
            raise ValidationError("El archivo debe ser de audio")

    @staticmethod
    def validate_cover(file: UploadedFile) -> None:
        if not AudioProcessor.is_image_content_type(file.content_type):
            raise ValidationError("El archivo debe ser una imagen")
        if file.size > IMAGE_LIMIT:
            raise ValidationError("La imagen no debe superar 5MB")

    def upload_audio(self, user_id: str, track_id: str, file: UploadedFile) -> str:
        """Store the audio file and return its public URL."""
        self.validate_audio(file)
        file_path = audio_key(user_id, track_id)

        storage = self.buckets.get(AUDIO_BUCKET)
        if not storage.upload_bytes(file.data, file_path, content_type=file.content_type,
                                    cache_control=STORAGE_CACHE_CONTROL, upsert=True):
            logger.error(f"Error al subir audio: {file_path}")
            raise StorageError("Error al subir el audio")
        return self.buckets.public_url(AUDIO_BUCKET, file_path)

    def upload_cover(self, kind: str, item_id: str, file: UploadedFile) -> str:
        """Store a track or playlist cover and return its public URL."""
        if kind not in COVER_KINDS:
            raise ValidationError(f"Tipo de portada inválido: {kind}")
        self.validate_cover(file)
        file_path = f"{kind}/{item_id}.{file.extension}"

        storage = self.buckets.get(COVERS_BUCKET)
        if not storage.upload_bytes(file.data, file_path, content_type=file.content_type,
                                    cache_control=STORAGE_CACHE_CONTROL, upsert=True):
            logger.error(f"Error al subir portada: {file_path}")
            raise StorageError("Error al subir la portada")
        return self.buckets.public_url(COVERS_BUCKET, file_path)

    # --- Creation ---

    def create_track(self, user_id: str, track_data: TrackInput, audio_url: str,
                     cover_url: Optional[str] = None, duration: Optional[float] = None,
                     track_id: Optional[str] = None) -> Track:
        title = (track_data.title or "").strip()
        if not title:
            raise ValidationError("El título es requerido")
        if not track_data.content_type:
            raise ValidationError("El tipo de contenido es requerido")

        track = Track(
            id=track_id or Track.generate_id(),
            user_id=user_id,
            title=title,
            content_type=track_data.content_type,
            genre=(track_data.genre or "").strip() or None,
            audio_url=audio_url,
            cover_url=cover_url or None,
            duration=int(duration) if duration else None,
            is_downloadable=track_data.is_downloadable is not False,
            created_at=utc_now_iso(),
        )
        return self.db.insert_track(track)

    def publish_track(self, user_id: str, title: Optional[str], content_type: Optional[str],
                      genre: Optional[str] = None, is_downloadable: bool = True,
                      audio: Optional[UploadedFile] = None,
                      cover: Optional[UploadedFile] = None) -> Track:
        """
        Full upload flow: validate the form, upload the audio (and cover),
        read the duration and create the track row.
        """
        if not title or not title.strip():
            raise ValidationError("El título es requerido")
        if not content_type:
            raise ValidationError("El tipo de contenido es requerido")
        if audio is None:
            raise ValidationError("Debes seleccionar un archivo de audio")

        self.validate_audio(audio)
        if cover is not None:
            self.validate_cover(cover)

        track_id = Track.generate_id()
        audio_url = self.upload_audio(user_id, track_id, audio)

        duration = 0.0
        try:
            duration = AudioProcessor.get_duration(audio.data, audio.filename)
        except ValueError as e:
            logger.warning(f"No se pudo obtener duración: {e}")

        cover_url = None
        if cover is not None:
            cover_url = self.upload_cover("tracks", track_id, cover)

        track_input = TrackInput(title=title, content_type=content_type,
                                 genre=genre, is_downloadable=is_downloadable)
        track = self.create_track(user_id, track_input, audio_url, cover_url, duration, track_id=track_id)
        logger.info(f"Track publicado: {track.title} ({track.id})")
        return track

    # --- Queries ---

    def get_user_tracks(self, user_id: str) -> List[Track]:
        try:
            return self.db.get_tracks_by_user(user_id)
        except sqlite3.Error as e:
            logger.error(f"Error al obtener tracks: {e}")
            return []

    def get_all_tracks(self, limit: int = DEFAULT_TRACKS_LIMIT) -> List[Track]:
        try:
            return self.db.get_recent_tracks(limit)
        except sqlite3.Error as e:
            logger.error(f"Error al obtener todos los tracks: {e}")
            return []

    def get_track(self, track_id: str) -> Optional[Track]:
        try:
            return self.db.get_track(track_id)
        except sqlite3.Error as e:
            logger.error(f"Error al obtener track: {e}")
            return None

    def find_download_track(self, track_id: Optional[str], audio_url: str) -> Optional[Track]:
        """
        Track behind a download request. The track owning the streamed URL
        wins over the one named by track_id.
        """
        try:
            track = self.db.get_track_by_audio_url(audio_url)
        except sqlite3.Error as e:
            logger.error(f"Error al obtener track: {e}")
            track = None
        if track is None and track_id:
            track = self.get_track(track_id)
        return track

    @staticmethod
    def ensure_downloadable(track: Optional[Track], user_id: Optional[str]) -> None:
        """Only the owner may download a track marked as not downloadable."""
        if track is not None and not track.is_downloadable and track.user_id != user_id:
            raise PermissionDeniedError("Esta canción no está disponible para descarga")

    @staticmethod
    def filter_tracks(tracks: Iterable[Track], content_type: Optional[str] = None,
                      query: Optional[str] = None) -> List[Track]:
        """Filter by content type (exact, case-insensitive) and title/uploader search."""
        wanted_type = (content_type or "").strip().lower()
        needle = (query or "").strip().lower()

        result = []
        for track in tracks:
            if wanted_type and (track.content_type or "").lower() != wanted_type:
                continue
            if needle:
                uploader = ((track.profile or {}).get("display_name") or "").lower()
                if needle not in track.title.lower() and needle not in uploader:
                    continue
            result.append(track)
        return result

    @staticmethod
    def content_types(tracks: Iterable[Track]) -> List[str]:
        seen = []
        for track in tracks:
            if track.content_type and track.content_type not in seen:
                seen.append(track.content_type)
        return seen

    # --- Editing ---

    def update_track(self, track_id: str, user_id: str, updates: Dict[str, Any]) -> Track:
        """
        Partial update of an owned track. title and content_type apply only
        when non-empty; genre and is_downloadable apply whenever present.
        """
        changes: Dict[str, Any] = {}
        if updates.get("title"):
            title = as_text(updates["title"])
            if not title:
                raise ValidationError("El título es requerido")
            changes["title"] = title
        content_type = as_text(updates.get("content_type"))
        if content_type:
            changes["content_type"] = content_type
        if "genre" in updates:
            changes["genre"] = as_text(updates["genre"]) or None
        if "is_downloadable" in updates and updates["is_downloadable"] is not None:
            changes["is_downloadable"] = as_bool(updates["is_downloadable"])

        track = self.db.update_track(track_id, user_id, changes)
        if track is None:
            raise NotFoundError(TRACK_NOT_FOUND)
        return track

    def delete_track(self, user_id: str, track_id: str) -> bool:
        """Delete an owned track with its audio and cover objects."""
        track = self.db.get_track(track_id)
        if track is None or track.user_id != user_id:
            return False

        if not self.buckets.get(AUDIO_BUCKET).delete_file(audio_key(user_id, track_id)):
            logger.warning(f"No se pudo eliminar el audio del track {track_id}")
        cover_key = self.buckets.key_from_public_url(COVERS_BUCKET, track.cover_url)
        if cover_key and not self.buckets.get(COVERS_BUCKET).delete_file(cover_key):
            logger.warning(f"No se pudo eliminar la portada del track {track_id}")

        return self.db.delete_track(track_id, user_id)

    # --- Likes ---

    def toggle_track_like(self, user_id: str, track_id: str) -> bool:
        """Returns True when the track is now liked."""
        if self.db.get_track(track_id) is None:
            raise NotFoundError(TRACK_NOT_FOUND)

        if self.db.get_like(user_id, track_id):
            self.db.delete_like(user_id, track_id)
            return False
        self.db.insert_like(user_id, track_id, utc_now_iso())
        return True

    def get_track_like_count(self, track_id: str) -> int:
        try:
            return self.db.count_likes(track_id)
        except sqlite3.Error as e:
            logger.error(f"Error al contar likes: {e}")
            return 0

    def get_like_counts(self, track_ids: Iterable[str]) -> Dict[str, int]:
        return {track_id: self.get_track_like_count(track_id) for track_id in track_ids}
