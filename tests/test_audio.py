import pytest

from shared.audio import AudioProcessor


@pytest.mark.parametrize("seconds, expected", [
    (None, "00:00"),
    (0, "00:00"),
    (59.9, "00:59"),
    (3725, "62:05"),
])
def test_format_duration(seconds, expected):
    assert AudioProcessor.format_duration(seconds) == expected


def test_content_type_checks():
    assert AudioProcessor.is_audio_content_type("audio/mpeg")
    assert AudioProcessor.is_audio_content_type("AUDIO/WAV")
    assert not AudioProcessor.is_audio_content_type("image/png")
    assert not AudioProcessor.is_audio_content_type(None)
    assert AudioProcessor.is_image_content_type("image/jpeg")
    assert not AudioProcessor.is_image_content_type("")


def test_get_duration_rejects_garbage():
    with pytest.raises(ValueError):
        AudioProcessor.get_duration(b"not really audio", "notes.txt")
