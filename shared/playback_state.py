"""
Currently playing track, per user scope.
Starting a track replaces whatever that user was playing before.
"""
import threading
import time
from typing import Any, Optional

_lock = threading.Lock()
_current: dict[str, dict[str, Any]] = {}  # scope -> {"track_id", "updated_at"}


def get_current_track(scope: str) -> Optional[str]:
    """Track id currently playing for this scope, or None."""
    with _lock:
        state = _current.get(scope)
        return state["track_id"] if state else None


def get_state(scope: str) -> dict[str, Any]:
    with _lock:
        state = _current.get(scope)
        if not state:
            return {"track_id": None, "updated_at": None}
        return dict(state)


def set_current_track(scope: str, track_id: Optional[str]) -> Optional[str]:
    """
    Set (or clear, with None) the playing track for this scope.
    Returns the previously playing track id.
    """
    with _lock:
        previous = _current.get(scope)
        if track_id:
            _current[scope] = {"track_id": track_id, "updated_at": time.time()}
        else:
            _current.pop(scope, None)
    return previous["track_id"] if previous else None


def reset() -> None:
    """Forget every scope's playback state."""
    with _lock:
        _current.clear()
