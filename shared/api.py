"""
Unified API Server for Zona Mix.
Serves the JSON API, the page shells and public storage objects.
"""

import functools
import ipaddress
import logging
import mimetypes
import os
import threading
import uuid
from typing import Optional
from urllib.parse import quote, urlparse

import requests
from flask import Flask, Response, g, jsonify, redirect, request, send_from_directory, stream_with_context
from flask_cors import CORS
from flask_socketio import SocketIO, join_room
from werkzeug.exceptions import HTTPException

from services.core import HubCore
from shared import playback_state
from shared.auth_utils import (
    AUTH_COOKIES,
    AuthConfig,
    is_gated_path,
    is_token_expiring,
    resolve_route_redirect,
)
from shared.config import HubConfig
from shared.constants import (
    ALL_BUCKETS,
    AUDIO_LIMIT,
    DEFAULT_DOWNLOAD_CHUNK_SIZE,
    DEFAULT_DOWNLOAD_NAME,
    DEFAULT_TRACKS_LIMIT,
    EXPLORE_TRACKS_LIMIT,
    IMAGE_LIMIT,
    POPULAR_USERS_LIMIT,
    PUBLIC_OBJECT_PATH,
    STORAGE_CACHE_CONTROL,
)
from shared.errors import AuthError, HubError, NotFoundError, PermissionDeniedError, ValidationError
from shared.models import UploadedFile

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = AUDIO_LIMIT + IMAGE_LIMIT + 1024 * 1024
CORS(app, supports_credentials=True)
socketio = SocketIO(app, cors_allowed_origins="*")

# Characters left unescaped in download file names, as in JS encodeURIComponent
URI_COMPONENT_SAFE = "!*'()~"

# Path to the page shells
WEB_UI_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), 'ui_web')

# Global instances
_config: Optional[HubConfig] = None
_core: Optional[HubCore] = None
_core_lock = threading.Lock()


def configure(config: HubConfig) -> None:
    """Use `config` from now on; services are rebuilt on next access."""
    global _config, _core
    with _core_lock:
        _config = config
        _core = None
    app.config['SECRET_KEY'] = config.secret_key


def get_config() -> HubConfig:
    global _config
    if _config is None:
        configure(HubConfig.from_env())
    return _config


def get_core() -> HubCore:
    global _core
    config = get_config()
    with _core_lock:
        if _core is None:
            logger.info("API: Initializing core services...")
            _core = HubCore(config)
            _core.notifications.add_change_callback(_emit_download_progress)
        return _core


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def _emit_download_progress(scope, notification):
    socketio.emit('download_progress', notification.to_dict(), to=user_room(scope))


@socketio.on('register')
def on_register(data):
    """Join the caller's private room so it receives its own progress/playback events."""
    token = (data or {}).get('access_token') or request.cookies.get(AUTH_COOKIES["ACCESS_TOKEN"])
    user = get_core().auth.authenticate(token)
    if not user:
        return
    join_room(user_room(user.id), sid=request.sid)


# --- Auth helpers ---

def _auth_config() -> AuthConfig:
    config = get_config()
    return AuthConfig(
        max_age=config.cookie_max_age,
        refresh_threshold=config.refresh_threshold,
        secure=config.cookie_secure,
    )


def _access_token() -> Optional[str]:
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header[7:].strip() or None
    return request.cookies.get(AUTH_COOKIES["ACCESS_TOKEN"])


def current_user():
    if 'user' not in g:
        g.user = get_core().auth.authenticate(_access_token())
    return g.user


def require_auth(view):
    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        if current_user() is None:
            raise AuthError("No autenticado")
        return view(*args, **kwargs)
    return wrapped


def _set_auth_cookies(response, session: dict):
    cfg = _auth_config()
    for name, value in (
        (AUTH_COOKIES["ACCESS_TOKEN"], session["access_token"]),
        (AUTH_COOKIES["REFRESH_TOKEN"], session["refresh_token"]),
    ):
        response.set_cookie(name, value, max_age=cfg.max_age, secure=cfg.secure,
                            httponly=True, samesite=cfg.same_site)
    return response


def _clear_auth_cookies(response):
    for name in AUTH_COOKIES.values():
        response.delete_cookie(name)
    return response


def _resolve_page_user():
    """
    User behind the page request cookies. Refreshes the session when the
    access token is about to expire; the new tokens go out in after_request.
    """
    core = get_core()
    config = get_config()
    access_token = request.cookies.get(AUTH_COOKIES["ACCESS_TOKEN"])
    refresh_token = request.cookies.get(AUTH_COOKIES["REFRESH_TOKEN"])

    session = core.auth.get_session(access_token)
    if session is None and not refresh_token:
        return None

    if session is None or is_token_expiring(session.expires_at, config.refresh_threshold):
        result = core.auth.refresh_token(refresh_token or session.refresh_token)
        if result["success"]:
            g.refreshed_session = result["session"]
            return core.db.get_user(result["session"]["user_id"])
        g.clear_auth_cookies = True

    return core.auth.authenticate(access_token)


@app.before_request
def gate_routes():
    path = request.path
    if not is_gated_path(path):
        return None
    try:
        user = _resolve_page_user()
        g.user = user
    except Exception as e:
        logger.error(f"[Middleware] Error al procesar autenticación: {e}")
        if path.startswith('/platform'):
            return redirect('/auth/login')
        return None

    target = resolve_route_redirect(path, user is not None)
    if target:
        return redirect(target)
    return None


@app.after_request
def apply_session_cookies(response):
    if g.get('refreshed_session'):
        _set_auth_cookies(response, g.refreshed_session)
    elif g.get('clear_auth_cookies'):
        _clear_auth_cookies(response)
    return response


# --- Error handlers ---

@app.errorhandler(HubError)
def handle_hub_error(e: HubError):
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(404)
def handle_not_found(e):
    return jsonify({"error": "No encontrado"}), 404


@app.errorhandler(413)
def handle_too_large(e):
    return jsonify({"error": "El archivo es demasiado grande"}), 413


@app.errorhandler(500)
def handle_server_error(e):
    original = getattr(e, 'original_exception', None)
    if original is not None and not isinstance(original, HTTPException):
        logger.exception(f"Unhandled error: {original}")
    return jsonify({"error": "Error interno del servidor"}), 500


# --- Request helpers ---

def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _uploaded_file(*field_names) -> Optional[UploadedFile]:
    for name in field_names:
        storage = request.files.get(name)
        if storage is not None and storage.filename:
            return UploadedFile(
                filename=storage.filename,
                content_type=storage.mimetype or storage.content_type or "",
                data=storage.read(),
            )
    return None


def _track_payload(track, likes: Optional[int] = None) -> dict:
    data = track.to_dict()
    if likes is not None:
        data["likes"] = likes
    return data


# --- Pages ---

@app.route('/')
def home():
    return send_from_directory(WEB_UI_PATH, 'index.html')


@app.route('/auth/login')
def login_page():
    return send_from_directory(WEB_UI_PATH, 'login.html')


@app.route('/auth/register')
def register_page():
    return redirect('/auth/login?mode=register')


@app.route('/auth/reset-password')
def reset_password_page():
    return send_from_directory(WEB_UI_PATH, 'reset-password.html')


@app.route('/platform')
@app.route('/platform/<path:section>')
def platform_page(section=None):
    return send_from_directory(WEB_UI_PATH, 'platform.html')


@app.route('/ui/<path:path>')
def serve_ui_assets(path):
    return send_from_directory(WEB_UI_PATH, path)


@app.route('/api/health')
def health_check():
    return jsonify({"status": "healthy"})


# --- Auth Endpoints ---

@app.route('/api/register', methods=['POST'])
def register():
    data = _json_body()
    try:
        get_core().auth.register_user(
            data.get('email'), data.get('password'), data.get('nombre'), data.get('telefono')
        )
    except HubError as e:
        return jsonify({"error": e.message}), 400
    return jsonify({"success": True})


@app.route('/api/login', methods=['POST'])
def login():
    data = _json_body()
    result = get_core().auth.login_user(data.get('email'), data.get('password'))
    response = jsonify(result)
    return _set_auth_cookies(response, result["session"])


@app.route('/api/logout', methods=['POST'])
def logout():
    result = get_core().auth.logout_user(_access_token())
    return _clear_auth_cookies(jsonify(result))


@app.route('/api/session', methods=['GET'])
def get_session():
    core = get_core()
    token = _access_token()
    result = core.auth.get_current_session(token)
    result["user"] = core.auth.get_current_user(token)["user"]
    return jsonify(result)


@app.route('/api/session/refresh', methods=['POST'])
def refresh_session():
    refresh_token = _json_body().get('refresh_token') or request.cookies.get(AUTH_COOKIES["REFRESH_TOKEN"])
    result = get_core().auth.refresh_token(refresh_token)
    response = jsonify(result)
    if not result["success"]:
        response.status_code = 401
        return _clear_auth_cookies(response)
    return _set_auth_cookies(response, result["session"])


@app.route('/api/password', methods=['POST'])
@require_auth
def change_password():
    data = _json_body()
    return jsonify(get_core().auth.change_password(g.user.id, data.get('password')))


@app.route('/api/password/reset', methods=['POST'])
def request_password_reset():
    data = _json_body()
    redirect_to = data.get('redirect_to') or f"{request.host_url.rstrip('/')}/auth/reset-password"
    return jsonify(get_core().auth.request_password_reset(data.get('email'), redirect_to))


@app.route('/api/password/reset/confirm', methods=['POST'])
def confirm_password_reset():
    data = _json_body()
    return jsonify(get_core().auth.reset_password(data.get('token'), data.get('password')))


# --- Download proxy ---

def _download_host_allowed(audio_url: str) -> bool:
    """
    Hosts the proxy may fetch from: the hub itself, the configured allow-list,
    and (without an allow-list) any host that is not a loopback, private or
    link-local address.
    """
    config = get_config()
    host = (urlparse(audio_url).hostname or "").lower()
    if not host:
        return False
    if host == (urlparse(config.public_base_url).hostname or "").lower():
        return True
    if config.download_allowed_hosts:
        return host in config.download_allowed_hosts
    if host == 'localhost' or host.endswith('.localhost'):
        return False
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return True
    return address.is_global


def _content_length(value) -> Optional[int]:
    try:
        length = int(value)
    except (TypeError, ValueError):
        return None
    return length if length >= 0 else None


@app.route('/api/download', methods=['GET'])
def download_audio():
    audio_url = request.args.get('url')
    file_name = request.args.get('name') or DEFAULT_DOWNLOAD_NAME
    track_id = request.args.get('track_id')

    if not audio_url:
        return Response('URL de audio faltante', status=400, mimetype='text/plain')
    if urlparse(audio_url).scheme not in ('http', 'https') or not _download_host_allowed(audio_url):
        return Response('URL de audio inválida', status=400, mimetype='text/plain')

    core = get_core()
    user = current_user()
    track = core.tracks.find_download_track(track_id, audio_url)
    try:
        core.tracks.ensure_downloadable(track, user.id if user else None)
    except PermissionDeniedError as e:
        return Response(e.message, status=e.status_code, mimetype='text/plain')

    try:
        upstream = requests.get(audio_url, stream=True, timeout=get_config().download_timeout)
    except requests.RequestException as e:
        logger.error(f"Error en descarga: {e}")
        return Response('Error al procesar la descarga', status=500, mimetype='text/plain')

    if not upstream.ok:
        upstream.close()
        return Response('Error al descargar el archivo', status=500, mimetype='text/plain')

    # iter_content decodes gzip/deflate, so an encoded length does not match the body
    total = None
    if not upstream.headers.get('Content-Encoding'):
        total = _content_length(upstream.headers.get('Content-Length'))

    title = track.title if track is not None else file_name
    notification_id = None
    if user is not None:
        if track is not None:
            core.downloads.save_download_record(user.id, track.id, track.title)
        notification_id = str(uuid.uuid4())
        core.notifications.add_download(user.id, notification_id, title)

    def stream():
        received = 0
        finished = False
        try:
            for chunk in upstream.iter_content(chunk_size=DEFAULT_DOWNLOAD_CHUNK_SIZE):
                if not chunk:
                    continue
                received += len(chunk)
                if notification_id and total:
                    core.notifications.update_progress(user.id, notification_id, received * 100 / total)
                yield chunk
            finished = True
        except requests.RequestException as e:
            logger.error(f"Error en descarga: {e}")
            raise
        finally:
            upstream.close()
            # Also reached when the client goes away mid-download
            if notification_id:
                if finished:
                    core.notifications.complete_download(user.id, notification_id)
                else:
                    core.notifications.fail_download(user.id, notification_id)

    encoded_name = quote(file_name, safe=URI_COMPONENT_SAFE)
    headers = {
        'Content-Disposition': f'attachment; filename="{encoded_name}.mp3"',
    }
    if total is not None:
        headers['Content-Length'] = str(total)
    return Response(stream_with_context(stream()), status=200, mimetype='audio/mpeg', headers=headers)


# --- Track Endpoints ---

@app.route('/api/tracks', methods=['GET'])
def list_tracks():
    core = get_core()
    limit = request.args.get('limit', DEFAULT_TRACKS_LIMIT, type=int)
    tracks = core.tracks.get_all_tracks(limit)
    tracks = core.tracks.filter_tracks(tracks, request.args.get('content_type'), request.args.get('q'))
    return jsonify([t.to_dict() for t in tracks])


@app.route('/api/tracks/content-types', methods=['GET'])
def list_content_types():
    core = get_core()
    return jsonify(core.tracks.content_types(core.tracks.get_all_tracks(EXPLORE_TRACKS_LIMIT)))


@app.route('/api/tracks', methods=['POST'])
@require_auth
def upload_track():
    form = request.form
    track = get_core().tracks.publish_track(
        g.user.id,
        title=form.get('title'),
        content_type=form.get('content_type'),
        genre=form.get('genre'),
        is_downloadable=form.get('is_downloadable', 'true').lower() not in ('false', '0', 'off'),
        audio=_uploaded_file('audio_file', 'audio'),
        cover=_uploaded_file('cover_file', 'cover'),
    )
    socketio.emit('tracks_updated', {'track_id': track.id, 'action': 'created'})
    return jsonify(track.to_dict()), 201


@app.route('/api/tracks/<track_id>', methods=['GET'])
def get_track(track_id):
    core = get_core()
    track = core.tracks.get_track(track_id)
    if track is None:
        raise NotFoundError("No se encontró el track")
    return jsonify(_track_payload(track, core.tracks.get_track_like_count(track_id)))


@app.route('/api/tracks/<track_id>', methods=['PATCH'])
@require_auth
def update_track(track_id):
    track = get_core().tracks.update_track(track_id, g.user.id, _json_body())
    socketio.emit('tracks_updated', {'track_id': track.id, 'action': 'updated'})
    return jsonify(track.to_dict())


@app.route('/api/tracks/<track_id>', methods=['DELETE'])
@require_auth
def delete_track(track_id):
    if not get_core().tracks.delete_track(g.user.id, track_id):
        raise NotFoundError("No se encontró el track")
    socketio.emit('tracks_updated', {'track_id': track_id, 'action': 'deleted'})
    return jsonify({"success": True})


@app.route('/api/tracks/<track_id>/like', methods=['POST'])
@require_auth
def toggle_like(track_id):
    core = get_core()
    liked = core.tracks.toggle_track_like(g.user.id, track_id)
    return jsonify({"liked": liked, "likes": core.tracks.get_track_like_count(track_id)})


@app.route('/api/tracks/<track_id>/likes', methods=['GET'])
def get_like_count(track_id):
    return jsonify({"track_id": track_id, "likes": get_core().tracks.get_track_like_count(track_id)})


@app.route('/api/users/<user_id>/tracks', methods=['GET'])
def list_user_tracks(user_id):
    return jsonify([t.to_dict() for t in get_core().tracks.get_user_tracks(user_id)])


@app.route('/api/me/tracks', methods=['GET'])
@require_auth
def list_my_tracks():
    core = get_core()
    tracks = core.tracks.get_user_tracks(g.user.id)
    counts = core.tracks.get_like_counts(t.id for t in tracks)
    return jsonify([_track_payload(t, counts.get(t.id, 0)) for t in tracks])


# --- Profile Endpoints ---

@app.route('/api/profiles', methods=['GET'])
def list_profiles():
    users = get_core().users
    found = users.search_users(users.get_all_users(), request.args.get('q'))
    return jsonify([p.to_dict() for p in found])


@app.route('/api/profiles/popular', methods=['GET'])
def popular_profiles():
    limit = request.args.get('limit', POPULAR_USERS_LIMIT, type=int)
    return jsonify(get_core().users.get_popular_users(limit))


@app.route('/api/profiles/me', methods=['GET'])
@require_auth
def get_own_profile():
    data = get_core().users.get_profile(g.user.id).to_dict()
    data["is_own_profile"] = True
    return jsonify(data)


@app.route('/api/profiles/<user_id>', methods=['GET'])
def get_profile(user_id):
    data = get_core().users.get_profile(user_id).to_dict()
    user = current_user()
    data["is_own_profile"] = user is not None and user.id == user_id
    return jsonify(data)


@app.route('/api/profiles/me', methods=['PATCH'])
@require_auth
def update_own_profile():
    data = _json_body()
    profile = get_core().users.update_profile_details(
        g.user.id, data.get('display_name'), data.get('nombre'), data.get('telefono'), data.get('bio')
    )
    return jsonify(profile.to_dict())


@app.route('/api/profiles/me/avatar', methods=['POST'])
@require_auth
def upload_own_avatar():
    file = _uploaded_file('avatar', 'file')
    if file is None:
        raise ValidationError("Por favor selecciona una imagen válida")
    avatar_url = get_core().avatars.replace_avatar(g.user.id, file)
    return jsonify({"avatar_url": avatar_url})


@app.route('/api/profiles/me/avatar', methods=['DELETE'])
@require_auth
def delete_own_avatar():
    get_core().avatars.delete_avatar(g.user.id)
    return jsonify({"success": True})


# --- Download history ---

@app.route('/api/downloads', methods=['GET'])
@require_auth
def list_downloads():
    downloads_service = get_core().downloads
    downloads = downloads_service.get_user_downloads(g.user.id)
    if request.args.get('grouped') in ('1', 'true'):
        grouped = downloads_service.group_downloads_by_date(downloads)
        return jsonify([
            {"date": date_key, "downloads": [d.to_dict() for d in items]}
            for date_key, items in grouped.items()
        ])
    return jsonify([d.to_dict() for d in downloads])


@app.route('/api/downloads/<download_id>', methods=['DELETE'])
@require_auth
def delete_download(download_id):
    if not get_core().downloads.delete_download_record(download_id, g.user.id):
        raise NotFoundError("No se encontró la descarga")
    return jsonify({"success": True})


@app.route('/api/downloads', methods=['DELETE'])
@require_auth
def clear_downloads():
    return jsonify({"success": True, "deleted": get_core().downloads.clear_download_history(g.user.id)})


@app.route('/api/downloads/notifications', methods=['GET'])
@require_auth
def list_download_notifications():
    return jsonify([n.to_dict() for n in get_core().notifications.list(g.user.id)])


@app.route('/api/downloads/notifications/<notification_id>', methods=['DELETE'])
@require_auth
def remove_download_notification(notification_id):
    if not get_core().notifications.remove_notification(g.user.id, notification_id):
        raise NotFoundError("No se encontró la notificación")
    return jsonify({"success": True})


# --- Playback ---

@app.route('/api/playback/current', methods=['GET'])
@require_auth
def get_current_playback():
    return jsonify(playback_state.get_state(g.user.id))


@app.route('/api/playback/current', methods=['PUT'])
@require_auth
def set_current_playback():
    track_id = _json_body().get('track_id') or None
    if track_id and get_core().tracks.get_track(track_id) is None:
        raise NotFoundError("No se encontró el track")
    previous = playback_state.set_current_track(g.user.id, track_id)
    payload = {"track_id": track_id, "previous_track_id": previous}
    socketio.emit('playback_changed', payload, to=user_room(g.user.id))
    return jsonify(payload)


# --- Public storage ---

@app.route(f'{PUBLIC_OBJECT_PATH}/<bucket>/<path:key>', methods=['GET'])
def serve_public_object(bucket, key):
    if bucket not in ALL_BUCKETS:
        raise NotFoundError("Bucket no encontrado")
    data = get_core().buckets.get(bucket).download_bytes(key)
    if data is None:
        raise NotFoundError("Objeto no encontrado")
    mimetype = mimetypes.guess_type(key)[0] or 'application/octet-stream'
    return Response(data, mimetype=mimetype,
                    headers={'Cache-Control': f'public, max-age={STORAGE_CACHE_CONTROL}'})


def start_api(port=None, debug=False):
    config = get_config()
    port = port or config.port
    logger.info("--- Zona Mix API Boot Sequence ---")
    logger.info(f"Target Port: {port}")

    core = get_core()
    core.init_storage()
    core.auth.purge_expired_sessions()
    logger.info("API: Core services initialized successfully.")
    logger.info(f"Local:  http://localhost:{port}/")

    socketio.run(app, host='0.0.0.0', port=port, debug=debug, allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    start_api()
