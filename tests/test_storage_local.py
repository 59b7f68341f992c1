import pytest

from setup_tool.local_provider import LocalStorageProvider
from setup_tool.provider_factory import BucketSet, StorageProviderFactory, build_public_url, open_bucket
from shared.errors import StorageError
from shared.models import StorageProvider


@pytest.fixture
def provider(tmp_path):
    p = LocalStorageProvider()
    assert p.authenticate({"base_path": str(tmp_path / "storage")})
    p.create_bucket("avatars", public=True)
    return p


def test_authenticate_requires_path():
    assert not LocalStorageProvider().authenticate({})


def test_upload_download_and_delete(provider):
    assert provider.upload_bytes(b"abc", "public/u1-1.png", content_type="image/png", upsert=True)
    assert provider.file_exists("public/u1-1.png")
    assert provider.download_bytes("public/u1-1.png") == b"abc"

    assert provider.delete_file("public/u1-1.png")
    assert not provider.file_exists("public/u1-1.png")
    assert provider.download_bytes("public/u1-1.png") is None
    # Deleting a missing key is fine
    assert provider.delete_file("public/u1-1.png")


def test_upload_without_upsert_refuses_existing_key(provider):
    assert provider.upload_bytes(b"one", "a.txt")
    assert not provider.upload_bytes(b"two", "a.txt")
    assert provider.download_bytes("a.txt") == b"one"
    assert provider.upload_bytes(b"two", "a.txt", upsert=True)
    assert provider.download_bytes("a.txt") == b"two"


def test_keys_cannot_escape_bucket(provider, tmp_path):
    assert not provider.upload_bytes(b"x", "../covers/evil.txt", upsert=True)
    assert not (tmp_path / "storage" / "covers" / "evil.txt").exists()
    assert provider.download_bytes("../../etc/passwd") is None
    assert not provider.file_exists("../avatars")


def test_list_files_under_prefix_sorted_and_paginated(provider):
    for name in ("u2-3.png", "u1-2.png", "u1-1.png"):
        provider.upload_bytes(b"img", f"public/{name}", upsert=True)
    provider.upload_bytes(b"other", "private/x.png", upsert=True)

    files = provider.list_files("public")
    assert [f["name"] for f in files] == ["u1-1.png", "u1-2.png", "u2-3.png"]
    assert files[0]["Key"] == "public/u1-1.png"
    assert files[0]["Size"] == 3

    page = provider.list_files("public", limit=2, offset=1)
    assert [f["name"] for f in page] == ["u1-2.png", "u2-3.png"]

    assert provider.list_files("missing") == []
    assert len(provider.list_files()) == 4


def test_delete_files_and_bucket_size(provider):
    provider.upload_bytes(b"12345", "a", upsert=True)
    provider.upload_bytes(b"123", "b", upsert=True)
    assert provider.get_bucket_size() == 8
    assert provider.delete_files(["a", "b"])
    assert provider.get_bucket_size() == 0


def test_factory_creates_providers():
    assert isinstance(StorageProviderFactory.create(StorageProvider.LOCAL), LocalStorageProvider)
    assert StorageProviderFactory.get_provider_name(StorageProvider.CLOUDFLARE_R2) == "Cloudflare R2"


def test_open_bucket_uses_prefix(config, tmp_path):
    config.bucket_prefix = "zm-"
    provider = open_bucket(config, "audio")
    assert provider.bucket_name == "zm-audio"
    assert provider.bucket_exists("zm-audio")


def test_open_bucket_fails_without_local_path(config):
    config.storage_base_path = None
    with pytest.raises(StorageError):
        open_bucket(config, "audio")


def test_public_urls_round_trip(config):
    buckets = BucketSet(config)
    url = buckets.public_url("avatars", "public/u1-123.png")
    assert url == "http://hub.test/storage/v1/object/public/avatars/public/u1-123.png"
    assert build_public_url("http://hub.test/", "audio", "u/t.mp3") == \
        "http://hub.test/storage/v1/object/public/audio/u/t.mp3"
    assert buckets.key_from_public_url("avatars", url) == "public/u1-123.png"
    assert buckets.key_from_public_url("avatars", "https://elsewhere/img.png") is None
    assert buckets.key_from_public_url("avatars", "") is None
