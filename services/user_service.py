"""
DJ profiles: listings, search and profile details.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from shared.constants import POPULAR_USERS_LIMIT
from shared.database import DatabaseManager
from shared.errors import NotFoundError, ValidationError
from shared.models import Profile

logger = logging.getLogger(__name__)


def _required(value: Any, message: str) -> str:
    value = "" if value is None else str(value).strip()
    if not value:
        raise ValidationError(message)
    return value


class UserService:
    def __init__(self, db: DatabaseManager):
        self.db = db

    def get_popular_users(self, limit: int = POPULAR_USERS_LIMIT) -> List[Dict[str, Any]]:
        return [p.to_summary_dict() for p in self.db.list_profiles(limit=limit)]

    def get_all_users(self) -> List[Profile]:
        return self.db.list_profiles(order_by_name=True)

    @staticmethod
    def search_users(users: Iterable[Profile], query: Optional[str]) -> List[Profile]:
        needle = (query or "").strip().lower()
        if not needle:
            return list(users)
        return [u for u in users if needle in (u.display_name or "").lower()]

    def get_profile(self, user_id: str) -> Profile:
        profile = self.db.get_profile(user_id)
        if profile is None:
            raise NotFoundError("No se encontró el perfil")
        return profile

    def update_profile_details(self, user_id: str, display_name: Optional[str],
                               nombre: Optional[str], telefono: Optional[str],
                               bio: Optional[str] = None) -> Profile:
        changes = {
            "display_name": _required(display_name, "El apodo no puede estar vacío"),
            "nombre": _required(nombre, "El nombre no puede estar vacío"),
            "telefono": _required(telefono, "El teléfono no puede estar vacío"),
        }
        if bio is not None:
            changes["bio"] = str(bio).strip() or None

        profile = self.db.update_profile(user_id, changes)
        if profile is None:
            raise NotFoundError("No se encontró el perfil")
        logger.info(f"Perfil actualizado: {user_id}")
        return profile
