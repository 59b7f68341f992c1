import pytest

from services.core import HubCore
from shared import api, playback_state
from shared.config import HubConfig
from shared.models import UploadedFile


class FakeClock:
    def __init__(self, now=1_760_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return HubConfig.for_directory(str(tmp_path / "hub"), public_base_url="http://hub.test")


@pytest.fixture
def core(config, clock):
    return HubCore(config, clock=clock)


@pytest.fixture
def registered(core):
    """A registered DJ; returns the user dict."""
    result = core.auth.register_user("dj@example.com", "secreto123", "DJ Uno", "600111222")
    return result["user"]


@pytest.fixture
def app_client(config):
    api.configure(config)
    api.app.config["TESTING"] = True
    playback_state.reset()
    with api.app.test_client() as client:
        yield client
    playback_state.reset()


def make_audio(name="set.mp3", size=2048, content_type="audio/mpeg"):
    return UploadedFile(filename=name, content_type=content_type, data=b"\x00" * size)


def make_image(name="cover.png", size=1024, content_type="image/png"):
    return UploadedFile(filename=name, content_type=content_type, data=b"\x89PNG" + b"\x00" * size)
