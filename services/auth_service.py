"""
Account registration, login and session management.

Passwords are hashed with werkzeug.security; sessions are opaque
access/refresh token pairs stored in the database.
"""

import logging
import secrets
import sqlite3
import time
from typing import Any, Callable, Dict, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from shared.auth_utils import format_expiration_time, is_token_expiring
from shared.constants import MIN_PASSWORD_LENGTH, REFRESH_THRESHOLD
from shared.database import DatabaseManager
from shared.errors import AuthError, HubError, ValidationError
from shared.models import AuthSession, AuthUser, Profile, generate_id

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def _validate_password(password: Optional[str]) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres"
        )


class AuthService:
    def __init__(self, db: DatabaseManager, config, clock: Callable[[], float] = time.time):
        self.db = db
        self.config = config
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def _new_session(self, user_id: str) -> AuthSession:
        now = self._now()
        return AuthSession(
            access_token=secrets.token_urlsafe(32),
            refresh_token=secrets.token_urlsafe(32),
            user_id=user_id,
            expires_at=now + self.config.access_token_ttl,
            refresh_expires_at=now + self.config.refresh_token_ttl,
        )

    def register_user(self, email: str, password: str, nombre: str, telefono: str) -> Dict[str, Any]:
        """Create the auth account and its profile row."""
        email = normalize_email(email)
        if not email or "@" not in email:
            raise ValidationError("Email inválido")
        _validate_password(password)
        if self.db.get_user_by_email(email):
            raise ValidationError("El email ya está registrado")

        user = AuthUser(id=generate_id(), email=email, password_hash=generate_password_hash(password))
        try:
            self.db.insert_user(user)
        except sqlite3.IntegrityError as e:
            logger.error(f"[Auth] Error registrando usuario: {e}")
            raise HubError("No se pudo crear usuario")

        nombre = (nombre or "").strip() or None
        profile = Profile(
            id=user.id,
            display_name=nombre,
            nombre=nombre,
            telefono=(telefono or "").strip() or None,
        )
        try:
            self.db.insert_profile(profile)
        except sqlite3.Error as e:
            logger.error(f"[Auth] Error creando perfil: {e}")
            self.db.delete_user(user.id)
            raise HubError("No se pudo crear usuario")

        logger.info(f"[Auth] Usuario registrado: {email}")
        return {"success": True, "user": user.to_public_dict()}

    def login_user(self, email: str, password: str) -> Dict[str, Any]:
        user = self.db.get_user_by_email(normalize_email(email))
        if not user or not password or not check_password_hash(user.password_hash, password):
            raise AuthError("Credenciales inválidas")

        session = self._new_session(user.id)
        self.db.insert_session(session)
        return {
            "success": True,
            "user": user.to_public_dict(),
            "session": session.to_client_dict(self._now()),
        }

    def logout_user(self, access_token: Optional[str]) -> Dict[str, Any]:
        if access_token:
            self.db.delete_session(access_token)
        return {"success": True}

    def authenticate(self, access_token: Optional[str]) -> Optional[AuthUser]:
        """User owning a valid, unexpired access token, else None."""
        if not access_token:
            return None
        session = self.db.get_session_by_access_token(access_token)
        if not session or session.expires_at <= self._now():
            return None
        return self.db.get_user(session.user_id)

    def get_session(self, access_token: Optional[str]) -> Optional[AuthSession]:
        """Stored session for an access token, as long as it can still be refreshed."""
        if not access_token:
            return None
        session = self.db.get_session_by_access_token(access_token)
        if not session or session.refresh_expires_at <= self._now():
            return None
        return session

    def get_current_session(self, access_token: Optional[str]) -> Dict[str, Any]:
        try:
            session = self.get_session(access_token)
        except sqlite3.Error as e:
            logger.error(f"[Auth] Error obteniendo sesión: {e}")
            return {"success": False, "session": None}
        return {
            "success": True,
            "session": session.to_client_dict(self._now()) if session else None,
        }

    def get_current_user(self, access_token: Optional[str]) -> Dict[str, Any]:
        try:
            user = self.authenticate(access_token)
        except sqlite3.Error as e:
            logger.error(f"[Auth] Error obteniendo usuario: {e}")
            return {"success": False, "user": None}
        if not user:
            return {"success": False, "user": None}
        return {"success": True, "user": user.to_public_dict()}

    def refresh_token(self, refresh_token: Optional[str]) -> Dict[str, Any]:
        """Rotate both tokens of a session; on failure the session is signed out."""
        session = self.db.get_session_by_refresh_token(refresh_token) if refresh_token else None
        if not session or session.refresh_expires_at <= self._now():
            logger.warning("[Auth] Error refrescando token: sesión inválida o expirada")
            if refresh_token:
                self.db.delete_session_by_refresh_token(refresh_token)
            return {"success": False, "session": None}

        rotated = self._new_session(session.user_id)
        self.db.replace_session(session.access_token, rotated)
        logger.debug(
            f"[Auth] Sesión refrescada, expira en {format_expiration_time(rotated.expires_at, self._now())}"
        )
        return {"success": True, "session": rotated.to_client_dict(self._now())}

    def is_token_expiring_soon(self, expires_at: Optional[int]) -> bool:
        return is_token_expiring(expires_at, REFRESH_THRESHOLD, now=self._now())

    def change_password(self, user_id: str, new_password: str) -> Dict[str, Any]:
        _validate_password(new_password)
        if not self.db.update_user_password(user_id, generate_password_hash(new_password)):
            raise AuthError("Usuario no encontrado")
        user = self.db.get_user(user_id)
        return {"success": True, "user": user.to_public_dict()}

    def request_password_reset(self, email: str, redirect_to: str) -> Dict[str, Any]:
        """
        Issue a one-time reset token. There is no mail delivery: the link is
        written to the log. Unknown emails succeed silently.
        """
        user = self.db.get_user_by_email(normalize_email(email))
        if user:
            token = secrets.token_urlsafe(32)
            self.db.insert_password_reset(token, user.id, self._now() + self.config.password_reset_ttl)
            logger.info(f"[Auth] Enlace de recuperación para {user.email}: {redirect_to}?token={token}")
        return {"success": True}

    def reset_password(self, token: str, new_password: str) -> Dict[str, Any]:
        _validate_password(new_password)
        reset = self.db.pop_password_reset(token) if token else None
        if not reset or reset["expires_at"] <= self._now():
            raise AuthError("El enlace de recuperación no es válido o ha expirado")

        self.db.update_user_password(reset["user_id"], generate_password_hash(new_password))
        self.db.delete_user_sessions(reset["user_id"])
        return {"success": True}

    def purge_expired_sessions(self) -> int:
        removed = self.db.delete_expired_sessions(self._now())
        if removed:
            logger.info(f"[Auth] {removed} sesiones expiradas eliminadas")
        return removed
