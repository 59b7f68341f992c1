"""
SQLite Database Manager for the hub.
Holds auth accounts, sessions, profiles, tracks, likes and download history.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import List, Dict, Any, Optional, Iterator

from shared.models import AuthUser, AuthSession, Profile, Track, TrackLike, DownloadRecord

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    access_token TEXT PRIMARY KEY,
    refresh_token TEXT UNIQUE NOT NULL,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    expires_at INTEGER NOT NULL,
    refresh_expires_at INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS password_resets (
    token TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    expires_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
    display_name TEXT,
    nombre TEXT,
    telefono TEXT,
    bio TEXT,
    avatar_url TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tracks (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    content_type TEXT NOT NULL,
    genre TEXT,
    audio_url TEXT NOT NULL,
    cover_url TEXT,
    duration INTEGER,
    is_downloadable BOOLEAN NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS track_likes (
    user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    track_id TEXT NOT NULL REFERENCES tracks(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL,
    PRIMARY KEY (user_id, track_id)
);

CREATE TABLE IF NOT EXISTS downloads (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    track_id TEXT NOT NULL,
    track_title TEXT NOT NULL,
    downloaded_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tracks_user_created ON tracks(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_tracks_created ON tracks(created_at);
CREATE INDEX IF NOT EXISTS idx_downloads_user_date ON downloads(user_id, downloaded_at);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);
"""

TRACK_COLUMNS = (
    "id", "user_id", "title", "content_type", "genre", "audio_url",
    "cover_url", "duration", "is_downloadable", "created_at",
)
PROFILE_UPDATABLE = {"display_name", "nombre", "telefono", "bio", "avatar_url"}
TRACK_UPDATABLE = {"title", "content_type", "genre", "is_downloadable", "cover_url"}
COUNTABLE_TABLES = {"users", "sessions", "profiles", "tracks", "track_likes", "downloads"}


class DatabaseManager:
    def __init__(self, db_path: str):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success, roll back on error."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize the database schema."""
        conn = self._get_connection()
        try:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()

    # --- Auth users ---

    def insert_user(self, user: AuthUser) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO users (id, email, password_hash, created_at) VALUES (?, ?, ?, ?)",
                (user.id, user.email, user.password_hash, user.created_at),
            )

    def get_user_by_email(self, email: str) -> Optional[AuthUser]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
            return AuthUser.from_dict(dict(row)) if row else None

    def get_user(self, user_id: str) -> Optional[AuthUser]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return AuthUser.from_dict(dict(row)) if row else None

    def update_user_password(self, user_id: str, password_hash: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("UPDATE users SET password_hash = ? WHERE id = ?", (password_hash, user_id))
            return cur.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            return cur.rowcount > 0

    # --- Sessions ---

    def insert_session(self, session: AuthSession) -> None:
        with self._transaction() as conn:
            conn.execute("""
                INSERT INTO sessions (access_token, refresh_token, user_id, expires_at, refresh_expires_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (session.access_token, session.refresh_token, session.user_id,
                  session.expires_at, session.refresh_expires_at, session.created_at))

    def get_session_by_access_token(self, access_token: str) -> Optional[AuthSession]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE access_token = ?", (access_token,)).fetchone()
            return AuthSession.from_dict(dict(row)) if row else None

    def get_session_by_refresh_token(self, refresh_token: str) -> Optional[AuthSession]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE refresh_token = ?", (refresh_token,)).fetchone()
            return AuthSession.from_dict(dict(row)) if row else None

    def replace_session(self, old_access_token: str, session: AuthSession) -> None:
        """Swap a session for a rotated one atomically."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM sessions WHERE access_token = ?", (old_access_token,))
            conn.execute("""
                INSERT INTO sessions (access_token, refresh_token, user_id, expires_at, refresh_expires_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (session.access_token, session.refresh_token, session.user_id,
                  session.expires_at, session.refresh_expires_at, session.created_at))

    def delete_session(self, access_token: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE access_token = ?", (access_token,))
            return cur.rowcount > 0

    def delete_session_by_refresh_token(self, refresh_token: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE refresh_token = ?", (refresh_token,))
            return cur.rowcount > 0

    def delete_user_sessions(self, user_id: str) -> int:
        with self._transaction() as conn:
            return conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,)).rowcount

    def delete_expired_sessions(self, now: int) -> int:
        with self._transaction() as conn:
            return conn.execute("DELETE FROM sessions WHERE refresh_expires_at <= ?", (now,)).rowcount

    # --- Password resets ---

    def insert_password_reset(self, token: str, user_id: str, expires_at: int) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO password_resets (token, user_id, expires_at) VALUES (?, ?, ?)",
                (token, user_id, expires_at),
            )

    def pop_password_reset(self, token: str) -> Optional[Dict[str, Any]]:
        """Fetch and delete a reset token in one step."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM password_resets WHERE token = ?", (token,)).fetchone()
            if not row:
                return None
            conn.execute("DELETE FROM password_resets WHERE token = ?", (token,))
            return dict(row)

    # --- Profiles ---

    def insert_profile(self, profile: Profile) -> None:
        with self._transaction() as conn:
            conn.execute("""
                INSERT INTO profiles (id, display_name, nombre, telefono, bio, avatar_url, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (profile.id, profile.display_name, profile.nombre, profile.telefono,
                  profile.bio, profile.avatar_url, profile.created_at))

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM profiles WHERE id = ?", (user_id,)).fetchone()
            return Profile.from_dict(dict(row)) if row else None

    def list_profiles(self, limit: Optional[int] = None, order_by_name: bool = False) -> List[Profile]:
        sql = "SELECT * FROM profiles"
        if order_by_name:
            sql += " ORDER BY display_name COLLATE NOCASE, created_at"
        else:
            sql += " ORDER BY created_at, rowid"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        with self._transaction() as conn:
            return [Profile.from_dict(dict(row)) for row in conn.execute(sql, params).fetchall()]

    def update_profile(self, user_id: str, changes: Dict[str, Any]) -> Optional[Profile]:
        """Apply column changes and return the updated profile (None if missing)."""
        unknown = set(changes) - PROFILE_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update profile columns: {sorted(unknown)}")
        with self._transaction() as conn:
            if changes:
                assignments = ", ".join(f"{col} = ?" for col in changes)
                conn.execute(f"UPDATE profiles SET {assignments} WHERE id = ?", (*changes.values(), user_id))
            row = conn.execute("SELECT * FROM profiles WHERE id = ?", (user_id,)).fetchone()
            return Profile.from_dict(dict(row)) if row else None

    # --- Tracks ---

    def insert_track(self, track: Track) -> Track:
        with self._transaction() as conn:
            conn.execute(f"""
                INSERT INTO tracks ({', '.join(TRACK_COLUMNS)})
                VALUES ({', '.join('?' * len(TRACK_COLUMNS))})
            """, (track.id, track.user_id, track.title, track.content_type, track.genre,
                  track.audio_url, track.cover_url, track.duration, track.is_downloadable,
                  track.created_at))
        return self.get_track(track.id)

    def get_track(self, track_id: str) -> Optional[Track]:
        with self._transaction() as conn:
            row = conn.execute(self._track_select("WHERE t.id = ?"), (track_id,)).fetchone()
            return self._row_to_track(row) if row else None

    def get_track_by_audio_url(self, audio_url: str) -> Optional[Track]:
        with self._transaction() as conn:
            row = conn.execute(self._track_select("WHERE t.audio_url = ?"), (audio_url,)).fetchone()
            return self._row_to_track(row) if row else None

    def get_tracks_by_user(self, user_id: str) -> List[Track]:
        with self._transaction() as conn:
            cursor = conn.execute(
                self._track_select("WHERE t.user_id = ? ORDER BY t.created_at DESC, t.rowid DESC"),
                (user_id,),
            )
            return [self._row_to_track(row) for row in cursor.fetchall()]

    def get_recent_tracks(self, limit: int) -> List[Track]:
        with self._transaction() as conn:
            cursor = conn.execute(
                self._track_select("ORDER BY t.created_at DESC, t.rowid DESC LIMIT ?"),
                (limit,),
            )
            return [self._row_to_track(row) for row in cursor.fetchall()]

    def update_track(self, track_id: str, user_id: str, changes: Dict[str, Any]) -> Optional[Track]:
        """Update an owned track; returns None when no row matches id and owner."""
        unknown = set(changes) - TRACK_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update track columns: {sorted(unknown)}")
        with self._transaction() as conn:
            owned = conn.execute(
                "SELECT 1 FROM tracks WHERE id = ? AND user_id = ?", (track_id, user_id)
            ).fetchone()
            if not owned:
                return None
            if changes:
                assignments = ", ".join(f"{col} = ?" for col in changes)
                conn.execute(
                    f"UPDATE tracks SET {assignments} WHERE id = ? AND user_id = ?",
                    (*changes.values(), track_id, user_id),
                )
        return self.get_track(track_id)

    def delete_track(self, track_id: str, user_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM tracks WHERE id = ? AND user_id = ?", (track_id, user_id))
            return cur.rowcount > 0

    def _track_select(self, tail: str) -> str:
        cols = ", ".join(f"t.{c}" for c in TRACK_COLUMNS)
        return f"""
            SELECT {cols}, p.display_name AS profile_display_name, p.avatar_url AS profile_avatar_url
            FROM tracks t LEFT JOIN profiles p ON p.id = t.user_id
            {tail}
        """

    def _row_to_track(self, row: sqlite3.Row) -> Track:
        data = dict(row)
        display_name = data.pop("profile_display_name", None)
        avatar_url = data.pop("profile_avatar_url", None)
        data["profile"] = {"display_name": display_name, "avatar_url": avatar_url}
        return Track.from_dict(data)

    # --- Likes ---

    def get_like(self, user_id: str, track_id: str) -> Optional[TrackLike]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM track_likes WHERE user_id = ? AND track_id = ?", (user_id, track_id)
            ).fetchone()
            return TrackLike(**dict(row)) if row else None

    def insert_like(self, user_id: str, track_id: str, created_at: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO track_likes (user_id, track_id, created_at) VALUES (?, ?, ?)",
                (user_id, track_id, created_at),
            )

    def delete_like(self, user_id: str, track_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "DELETE FROM track_likes WHERE user_id = ? AND track_id = ?", (user_id, track_id)
            )
            return cur.rowcount > 0

    def count_likes(self, track_id: str) -> int:
        with self._transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM track_likes WHERE track_id = ?", (track_id,)).fetchone()[0]

    # --- Downloads ---

    def insert_download(self, record: DownloadRecord) -> None:
        with self._transaction() as conn:
            conn.execute("""
                INSERT INTO downloads (id, user_id, track_id, track_title, downloaded_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (record.id, record.user_id, record.track_id, record.track_title,
                  record.downloaded_at, record.created_at or record.downloaded_at))

    def get_downloads_by_user(self, user_id: str) -> List[DownloadRecord]:
        with self._transaction() as conn:
            cursor = conn.execute(
                "SELECT * FROM downloads WHERE user_id = ? ORDER BY downloaded_at DESC, rowid DESC",
                (user_id,),
            )
            return [DownloadRecord.from_dict(dict(row)) for row in cursor.fetchall()]

    def delete_download(self, download_id: str, user_id: Optional[str] = None) -> bool:
        with self._transaction() as conn:
            if user_id is None:
                cur = conn.execute("DELETE FROM downloads WHERE id = ?", (download_id,))
            else:
                cur = conn.execute("DELETE FROM downloads WHERE id = ? AND user_id = ?", (download_id, user_id))
            return cur.rowcount > 0

    def delete_downloads_by_user(self, user_id: str) -> int:
        with self._transaction() as conn:
            return conn.execute("DELETE FROM downloads WHERE user_id = ?", (user_id,)).rowcount

    # --- Stats ---

    def count_rows(self, table: str) -> int:
        if table not in COUNTABLE_TABLES:
            raise ValueError(f"Unknown table: {table}")
        with self._transaction() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def get_stats(self) -> Dict[str, int]:
        return {table: self.count_rows(table) for table in sorted(COUNTABLE_TABLES)}
