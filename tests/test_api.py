import io
from unittest.mock import MagicMock, patch
from urllib.parse import urlparse

import pytest
import requests

from shared import api


def _register(client, email="dj@example.com", nombre="DJ Uno"):
    resp = client.post("/api/register", json={
        "email": email, "password": "secreto123", "nombre": nombre, "telefono": "600111222",
    })
    assert resp.status_code == 200
    return resp


def _login(client, email="dj@example.com"):
    _register(client, email)
    resp = client.post("/api/login", json={"email": email, "password": "secreto123"})
    assert resp.status_code == 200
    return resp.get_json()


def _upload(client, title="Sunset Set", content_type="Set", **extra):
    data = {
        "title": title,
        "content_type": content_type,
        "audio_file": (io.BytesIO(b"\x00" * 512), "set.mp3", "audio/mpeg"),
    }
    data.update(extra)
    return client.post("/api/tracks", data=data, content_type="multipart/form-data")


def _upstream(chunks, ok=True, length=True):
    response = MagicMock()
    response.ok = ok
    response.headers = {"Content-Length": str(sum(len(c) for c in chunks))} if length else {}
    response.iter_content.return_value = iter(chunks)
    return response


def test_health(app_client):
    assert app_client.get("/api/health").get_json() == {"status": "healthy"}


def test_unknown_api_route_is_json_404(app_client):
    resp = app_client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "No encontrado"}


# --- Auth ---

def test_register_success_and_errors(app_client):
    assert _register(app_client).get_json() == {"success": True}

    resp = app_client.post("/api/register", json={
        "email": "dj@example.com", "password": "secreto123", "nombre": "X", "telefono": "1",
    })
    assert resp.status_code == 400
    assert "error" in resp.get_json()

    resp = app_client.post("/api/register", json={
        "email": "otro@example.com", "password": "123", "nombre": "X", "telefono": "1",
    })
    assert resp.status_code == 400


def test_login_sets_cookies_and_session_endpoint(app_client):
    data = _login(app_client)
    assert data["success"] is True
    cookies = app_client.get_cookie("sb-access-token")
    assert cookies is not None and cookies.value == data["session"]["access_token"]

    session = app_client.get("/api/session").get_json()
    assert session["success"] is True
    assert session["user"]["email"] == "dj@example.com"


def test_login_bad_credentials(app_client):
    _register(app_client)
    resp = app_client.post("/api/login", json={"email": "dj@example.com", "password": "mala12345"})
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "Credenciales inválidas"}


def test_logout_clears_session(app_client):
    _login(app_client)
    assert app_client.post("/api/logout").get_json() == {"success": True}
    assert app_client.get("/api/me/tracks").status_code == 401


def test_bearer_token_auth(app_client, config):
    token = _login(app_client)["session"]["access_token"]
    app_client.delete_cookie("sb-access-token")
    resp = app_client.get("/api/me/tracks", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200


def test_refresh_endpoint(app_client):
    session = _login(app_client)["session"]
    resp = app_client.post("/api/session/refresh", json={"refresh_token": session["refresh_token"]})
    assert resp.status_code == 200
    assert resp.get_json()["session"]["access_token"] != session["access_token"]

    resp = app_client.post("/api/session/refresh", json={"refresh_token": session["refresh_token"]})
    assert resp.status_code == 401
    assert resp.get_json() == {"success": False, "session": None}


def test_change_password_requires_auth(app_client):
    assert app_client.post("/api/password", json={"password": "nueva1234"}).status_code == 401
    _login(app_client)
    assert app_client.post("/api/password", json={"password": "nueva1234"}).get_json()["success"]


def test_password_reset_request_always_succeeds(app_client):
    resp = app_client.post("/api/password/reset", json={"email": "nadie@example.com"})
    assert resp.get_json() == {"success": True}
    resp = app_client.post("/api/password/reset/confirm", json={"token": "bad", "password": "nueva1234"})
    assert resp.status_code == 401


# --- Route gating ---

def test_home_page_for_visitor(app_client):
    resp = app_client.get("/")
    assert resp.status_code == 200
    assert b"Zona Mix" in resp.data


def test_platform_redirects_visitor_to_login(app_client):
    resp = app_client.get("/platform/descargas")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/auth/login?redirectTo=%2Fplatform%2Fdescargas")


def test_logged_in_user_is_sent_to_platform(app_client):
    _login(app_client)
    for path in ("/", "/auth/login", "/auth/register"):
        resp = app_client.get(path)
        assert resp.status_code == 302
        assert resp.headers["Location"].endswith("/platform")
    assert app_client.get("/platform/explorar").status_code == 200


def test_register_page_redirects_to_login_mode(app_client):
    resp = app_client.get("/auth/register")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/auth/login?mode=register")


def test_expiring_session_is_refreshed_on_page_load(app_client, config):
    config.access_token_ttl = 60
    api.configure(config)
    old = _login(app_client)["session"]["access_token"]

    resp = app_client.get("/platform")
    assert resp.status_code == 200
    set_cookies = resp.headers.getlist("Set-Cookie")
    assert any(c.startswith("sb-access-token=") and old not in c for c in set_cookies)
    assert any("SameSite=Lax" in c for c in set_cookies)


def test_refresh_cookie_alone_restores_session(app_client):
    _login(app_client)
    app_client.delete_cookie("sb-access-token")
    resp = app_client.get("/platform")
    assert resp.status_code == 200
    assert app_client.get_cookie("sb-access-token") is not None


# --- Download proxy ---

def test_download_requires_url(app_client):
    resp = app_client.get("/api/download")
    assert resp.status_code == 400
    assert resp.get_data(as_text=True) == "URL de audio faltante"


def test_download_rejects_non_http_urls(app_client):
    assert app_client.get("/api/download?url=file:///etc/passwd").status_code == 400


def test_download_streams_upstream(app_client):
    with patch("shared.api.requests.get", return_value=_upstream([b"abc", b"def"])) as mock_get:
        resp = app_client.get("/api/download", query_string={"url": "http://cdn.test/a.mp3", "name": "Mi Set"})
        assert resp.status_code == 200
        assert resp.data == b"abcdef"
    assert mock_get.call_args[0][0] == "http://cdn.test/a.mp3"
    assert mock_get.call_args[1]["stream"] is True
    assert resp.mimetype == "audio/mpeg"
    assert resp.headers["Content-Disposition"] == 'attachment; filename="Mi%20Set.mp3"'
    assert resp.headers["Content-Length"] == "6"


def test_download_default_name(app_client):
    with patch("shared.api.requests.get", return_value=_upstream([b"x"])):
        resp = app_client.get("/api/download?url=http://cdn.test/a.mp3")
        assert resp.headers["Content-Disposition"] == 'attachment; filename="cancion.mp3.mp3"'


def test_download_upstream_failure(app_client):
    with patch("shared.api.requests.get", return_value=_upstream([], ok=False)):
        resp = app_client.get("/api/download?url=http://cdn.test/a.mp3")
    assert resp.status_code == 500
    assert resp.get_data(as_text=True) == "Error al descargar el archivo"


def test_download_network_error(app_client):
    with patch("shared.api.requests.get", side_effect=requests.ConnectionError("down")):
        resp = app_client.get("/api/download?url=http://cdn.test/a.mp3")
    assert resp.status_code == 500
    assert resp.get_data(as_text=True) == "Error al procesar la descarga"


def test_authenticated_download_is_recorded(app_client):
    _login(app_client)
    track = _upload(app_client).get_json()

    with patch("shared.api.requests.get", return_value=_upstream([b"12", b"34"])):
        resp = app_client.get("/api/download", query_string={
            "url": track["audio_url"], "name": track["title"], "track_id": track["id"],
        })
        assert resp.data == b"1234"

    history = app_client.get("/api/downloads").get_json()
    assert [d["track_title"] for d in history] == ["Sunset Set"]

    notifications = app_client.get("/api/downloads/notifications").get_json()
    assert notifications[0]["status"] == "completed"
    assert notifications[0]["progress"] == 100.0


def test_non_downloadable_track_is_forbidden(app_client):
    _login(app_client)
    track = _upload(app_client, is_downloadable="false").get_json()
    assert track["is_downloadable"] is False

    app_client.post("/api/logout")
    with patch("shared.api.requests.get") as mock_get:
        resp = app_client.get("/api/download", query_string={"url": track["audio_url"], "track_id": track["id"]})
    assert resp.status_code == 403
    mock_get.assert_not_called()


# --- Tracks ---

def test_upload_requires_auth(app_client):
    assert _upload(app_client).status_code == 401


def test_upload_validation_message(app_client):
    _login(app_client)
    resp = _upload(app_client, title="")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "El título es requerido"}


def test_upload_and_public_object(app_client):
    _login(app_client)
    resp = _upload(app_client, genre="Techno",
                   cover_file=(io.BytesIO(b"\x89PNG0000"), "cover.png", "image/png"))
    assert resp.status_code == 201
    track = resp.get_json()
    assert track["profiles"]["display_name"] == "DJ Uno"
    assert track["genre"] == "Techno"

    audio = app_client.get(urlparse(track["audio_url"]).path)
    assert audio.status_code == 200
    assert audio.mimetype == "audio/mpeg"
    assert audio.data == b"\x00" * 512

    cover = app_client.get(urlparse(track["cover_url"]).path)
    assert cover.mimetype == "image/png"

    assert app_client.get("/storage/v1/object/public/secret/x").status_code == 404
    assert app_client.get("/storage/v1/object/public/audio/missing.mp3").status_code == 404


def test_list_filter_and_content_types(app_client):
    _login(app_client)
    _upload(app_client, title="Deep Sunset", content_type="Set")
    _upload(app_client, title="Loco", content_type="Remix")

    titles = [t["title"] for t in app_client.get("/api/tracks").get_json()]
    assert titles == ["Loco", "Deep Sunset"]
    assert [t["title"] for t in app_client.get("/api/tracks?content_type=set").get_json()] == ["Deep Sunset"]
    assert [t["title"] for t in app_client.get("/api/tracks?q=loco").get_json()] == ["Loco"]
    assert len(app_client.get("/api/tracks?limit=1").get_json()) == 1
    assert app_client.get("/api/tracks/content-types").get_json() == ["Remix", "Set"]


def test_edit_like_and_delete_track(app_client):
    _login(app_client)
    track = _upload(app_client).get_json()
    track_id = track["id"]

    resp = app_client.patch(f"/api/tracks/{track_id}", json={"title": "Renombrado", "genre": ""})
    assert resp.get_json()["title"] == "Renombrado"
    assert resp.get_json()["genre"] is None

    assert app_client.post(f"/api/tracks/{track_id}/like").get_json() == {"liked": True, "likes": 1}
    assert app_client.get(f"/api/tracks/{track_id}/likes").get_json()["likes"] == 1
    assert app_client.get(f"/api/tracks/{track_id}").get_json()["likes"] == 1
    assert app_client.get("/api/me/tracks").get_json()[0]["likes"] == 1

    assert app_client.delete(f"/api/tracks/{track_id}").get_json() == {"success": True}
    assert app_client.get(f"/api/tracks/{track_id}").status_code == 404
    assert app_client.delete(f"/api/tracks/{track_id}").status_code == 404


def test_cannot_edit_someone_elses_track(app_client):
    _login(app_client)
    track = _upload(app_client).get_json()
    app_client.post("/api/logout")
    _login(app_client, "otro@example.com")

    assert app_client.patch(f"/api/tracks/{track['id']}", json={"title": "X"}).status_code == 404
    assert app_client.delete(f"/api/tracks/{track['id']}").status_code == 404


def test_user_tracks_listing(app_client):
    data = _login(app_client)
    _upload(app_client)
    tracks = app_client.get(f"/api/users/{data['user']['id']}/tracks").get_json()
    assert len(tracks) == 1


# --- Profiles ---

def test_profiles_endpoints(app_client):
    data = _login(app_client)
    uid = data["user"]["id"]
    _register(app_client, "otro@example.com", "Otro DJ")

    assert len(app_client.get("/api/profiles").get_json()) == 2
    assert [p["display_name"] for p in app_client.get("/api/profiles?q=otro").get_json()] == ["Otro DJ"]
    assert len(app_client.get("/api/profiles/popular?limit=1").get_json()) == 1

    mine = app_client.get(f"/api/profiles/{uid}").get_json()
    assert mine["is_own_profile"] is True
    assert app_client.get("/api/profiles/me").get_json()["id"] == uid

    resp = app_client.patch("/api/profiles/me", json={"display_name": "", "nombre": "A", "telefono": "1"})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "El apodo no puede estar vacío"}

    resp = app_client.patch("/api/profiles/me", json={"display_name": "Nuevo", "nombre": "A", "telefono": "1"})
    assert resp.get_json()["display_name"] == "Nuevo"

    assert app_client.get("/api/profiles/ghost").status_code == 404


def test_avatar_upload_and_delete(app_client):
    _login(app_client)
    resp = app_client.post("/api/profiles/me/avatar", data={
        "avatar": (io.BytesIO(b"\x89PNG0000"), "me.png", "image/png"),
    }, content_type="multipart/form-data")
    url = resp.get_json()["avatar_url"]
    assert "/avatars/public/" in url
    assert app_client.get(urlparse(url).path).status_code == 200

    resp = app_client.post("/api/profiles/me/avatar", data={
        "avatar": (io.BytesIO(b"text"), "me.txt", "text/plain"),
    }, content_type="multipart/form-data")
    assert resp.status_code == 400

    assert app_client.delete("/api/profiles/me/avatar").get_json() == {"success": True}
    assert app_client.get("/api/profiles/me").get_json()["avatar_url"] == ""


# --- Download history & playback ---

def test_download_history_grouped_and_cleared(app_client):
    _login(app_client)
    track = _upload(app_client).get_json()
    for _ in range(2):
        with patch("shared.api.requests.get", return_value=_upstream([b"x"])):
            app_client.get("/api/download", query_string={"url": track["audio_url"], "track_id": track["id"]}).data

    grouped = app_client.get("/api/downloads?grouped=1").get_json()
    assert len(grouped) == 1
    assert " de " in grouped[0]["date"]
    assert len(grouped[0]["downloads"]) == 2

    first_id = grouped[0]["downloads"][0]["id"]
    assert app_client.delete(f"/api/downloads/{first_id}").get_json() == {"success": True}
    assert app_client.delete(f"/api/downloads/{first_id}").status_code == 404
    assert app_client.delete("/api/downloads").get_json() == {"success": True, "deleted": 1}


def test_notification_removal(app_client):
    _login(app_client)
    assert app_client.delete("/api/downloads/notifications/nope").status_code == 404


def test_playback_current(app_client):
    _login(app_client)
    first = _upload(app_client, title="Uno").get_json()
    second = _upload(app_client, title="Dos").get_json()

    assert app_client.get("/api/playback/current").get_json()["track_id"] is None
    assert app_client.put("/api/playback/current", json={"track_id": first["id"]}).get_json() == \
        {"track_id": first["id"], "previous_track_id": None}
    resp = app_client.put("/api/playback/current", json={"track_id": second["id"]})
    assert resp.get_json()["previous_track_id"] == first["id"]
    assert app_client.get("/api/playback/current").get_json()["track_id"] == second["id"]

    assert app_client.put("/api/playback/current", json={"track_id": "ghost"}).status_code == 404
    assert app_client.put("/api/playback/current", json={"track_id": None}).get_json()["track_id"] is None


@pytest.mark.parametrize("path", ["/api/downloads", "/api/playback/current", "/api/profiles/me"])
def test_protected_endpoints_reject_anonymous(app_client, path):
    resp = app_client.get(path)
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "No autenticado"}


def _upload_as_other(client):
    _login(client, "otro@example.com")
    return _upload(client, title="Abierto").get_json()


def test_non_downloadable_track_is_forbidden_by_url_alone(app_client):
    _login(app_client)
    track = _upload(app_client, is_downloadable="false").get_json()
    app_client.post("/api/logout")

    with patch("shared.api.requests.get") as mock_get:
        resp = app_client.get("/api/download", query_string={"url": track["audio_url"]})
        assert resp.status_code == 403
        assert resp.get_data(as_text=True) == "Esta canción no está disponible para descarga"

        other = _upload_as_other(app_client)
        resp = app_client.get("/api/download", query_string={"url": track["audio_url"], "track_id": other["id"]})
        assert resp.status_code == 403
    mock_get.assert_not_called()


def test_owner_can_download_own_locked_track(app_client):
    _login(app_client)
    track = _upload(app_client, is_downloadable="false").get_json()
    with patch("shared.api.requests.get", return_value=_upstream([b"mine"])):
        resp = app_client.get("/api/download", query_string={"url": track["audio_url"]})
        assert resp.status_code == 200
        assert resp.data == b"mine"


def test_encoded_upstream_length_is_not_forwarded(app_client):
    upstream = _upstream([b"abc", b"def"])
    upstream.headers = {"Content-Length": "3", "Content-Encoding": "gzip"}
    with patch("shared.api.requests.get", return_value=upstream):
        resp = app_client.get("/api/download?url=http://cdn.test/a.mp3")
        assert resp.data == b"abcdef"
    assert resp.headers.get("Content-Length") in (None, "6")


def test_bad_upstream_length_is_ignored(app_client):
    upstream = _upstream([b"abc"])
    upstream.headers = {"Content-Length": "lots"}
    with patch("shared.api.requests.get", return_value=upstream):
        resp = app_client.get("/api/download?url=http://cdn.test/a.mp3")
        assert resp.status_code == 200
        assert resp.data == b"abc"
    assert resp.headers.get("Content-Length") in (None, "3")


def test_download_failing_midway_is_marked_failed(app_client):
    _login(app_client)
    upstream = _upstream([])

    def broken_body(chunk_size=None):
        yield b"12"
        raise requests.ConnectionError("reset by peer")

    upstream.iter_content.side_effect = broken_body
    with patch("shared.api.requests.get", return_value=upstream):
        with pytest.raises(requests.ConnectionError):
            app_client.get("/api/download?url=http://cdn.test/a.mp3").get_data()

    upstream.close.assert_called()
    notifications = app_client.get("/api/downloads/notifications").get_json()
    assert [n["status"] for n in notifications] == ["error"]


def test_download_abandoned_by_client_is_marked_failed(app_client):
    _login(app_client)
    upstream = _upstream([b"12", b"34", b"56"])
    with patch("shared.api.requests.get", return_value=upstream):
        resp = app_client.get("/api/download?url=http://cdn.test/a.mp3")
        body = iter(resp.response)
        assert next(body) == b"12"
        resp.close()

    upstream.close.assert_called()
    notifications = app_client.get("/api/downloads/notifications").get_json()
    assert [n["status"] for n in notifications] == ["error"]


@pytest.mark.parametrize("url", [
    "http://127.0.0.1:6379/",
    "http://localhost:9000/a.mp3",
    "http://169.254.169.254/latest/meta-data",
    "http://10.0.0.5/a.mp3",
    "http://[::1]/a.mp3",
])
def test_download_refuses_internal_hosts(app_client, url):
    with patch("shared.api.requests.get") as mock_get:
        resp = app_client.get("/api/download", query_string={"url": url})
    assert resp.status_code == 400
    assert resp.get_data(as_text=True) == "URL de audio inválida"
    mock_get.assert_not_called()


def test_download_allow_list(app_client, config):
    config.download_allowed_hosts = ("cdn.test",)
    api.configure(config)
    with patch("shared.api.requests.get", return_value=_upstream([b"ok"])) as mock_get:
        assert app_client.get("/api/download?url=http://other.test/a.mp3").status_code == 400
        resp = app_client.get("/api/download?url=https://cdn.test/a.mp3")
        assert resp.data == b"ok"
        # The hub's own objects stay reachable
        assert app_client.get("/api/download?url=http://hub.test/storage/v1/object/public/audio/x.mp3").status_code == 200
    assert mock_get.call_count == 2


def test_non_string_json_fields_are_coerced(app_client):
    _login(app_client)
    track = _upload(app_client).get_json()

    resp = app_client.patch(f"/api/tracks/{track['id']}", json={"genre": 5, "content_type": 7})
    assert resp.status_code == 200
    assert resp.get_json()["genre"] == "5"
    assert resp.get_json()["content_type"] == "7"

    resp = app_client.patch("/api/profiles/me", json={"display_name": "DJ", "nombre": 1, "telefono": 600, "bio": 2})
    assert resp.status_code == 200
    assert resp.get_json()["nombre"] == "1"
    assert resp.get_json()["telefono"] == "600"
    assert resp.get_json()["bio"] == "2"
