"""
Profile avatar storage.
Avatars live in the 'avatars' bucket under public/{user_id}-{epoch_ms}.{ext}.
"""

import logging
import time
from typing import Callable, Optional

from shared.audio import AudioProcessor
from shared.constants import (
    AVATAR_FOLDER,
    AVATAR_LIST_LIMIT,
    AVATARS_BUCKET,
    IMAGE_LIMIT,
    STORAGE_CACHE_CONTROL,
)
from shared.database import DatabaseManager
from shared.errors import NotFoundError, StorageError, ValidationError
from shared.models import UploadedFile

logger = logging.getLogger(__name__)


class AvatarService:
    def __init__(self, db: DatabaseManager, buckets, clock: Callable[[], float] = time.time):
        self.db = db
        self.buckets = buckets
        self._clock = clock

    @staticmethod
    def validate_image(file: Optional[UploadedFile]) -> None:
        if file is None or not AudioProcessor.is_image_content_type(file.content_type):
            raise ValidationError("Por favor selecciona una imagen válida")
        if file.size > IMAGE_LIMIT:
            raise ValidationError("La imagen no debe superar 5MB")

    def upload_avatar(self, user_id: str, file: UploadedFile) -> str:
        """Store the image and return its public URL."""
        self.validate_image(file)
        timestamp = int(self._clock() * 1000)
        file_path = f"{AVATAR_FOLDER}/{user_id}-{timestamp}.{file.extension}"

        storage = self.buckets.get(AVATARS_BUCKET)
        if not storage.upload_bytes(file.data, file_path, content_type=file.content_type,
                                    cache_control=STORAGE_CACHE_CONTROL, upsert=True):
            raise StorageError("Error al subir la imagen")
        return self.buckets.public_url(AVATARS_BUCKET, file_path)

    def update_profile_avatar(self, user_id: str, avatar_url: str) -> None:
        if self.db.update_profile(user_id, {"avatar_url": avatar_url}) is None:
            raise NotFoundError("No se encontró el perfil")

    def delete_old_avatar(self, avatar_url: Optional[str]) -> None:
        """Best-effort removal of a previous avatar object; never raises."""
        file_path = self.buckets.key_from_public_url(AVATARS_BUCKET, avatar_url)
        if not file_path:
            return
        try:
            if not self.buckets.get(AVATARS_BUCKET).delete_file(file_path):
                logger.warning(f"Advertencia al eliminar avatar anterior: {file_path}")
        except Exception as e:
            logger.warning(f"Error al eliminar avatar anterior: {e}")

    def delete_avatar(self, user_id: str) -> None:
        """Remove every avatar object of the user and clear the profile reference."""
        storage = self.buckets.get(AVATARS_BUCKET)
        files = storage.list_files(AVATAR_FOLDER, limit=AVATAR_LIST_LIMIT, offset=0)
        user_files = [f"{AVATAR_FOLDER}/{f['name']}" for f in files if f['name'].startswith(user_id)]

        if user_files and not storage.delete_files(user_files):
            raise StorageError("Error al eliminar avatar")

        self.update_profile_avatar(user_id, "")

    def get_avatar_url(self, user_id: str) -> Optional[str]:
        profile = self.db.get_profile(user_id)
        return (profile.avatar_url or None) if profile else None

    def replace_avatar(self, user_id: str, file: UploadedFile) -> str:
        """Upload a new avatar, dropping the previous one first."""
        self.validate_image(file)
        if self.db.get_profile(user_id) is None:
            raise NotFoundError("No se encontró el perfil")

        old_url = self.get_avatar_url(user_id)
        if old_url:
            self.delete_old_avatar(old_url)

        new_url = self.upload_avatar(user_id, file)
        self.update_profile_avatar(user_id, new_url)
        return new_url
