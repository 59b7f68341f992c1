"""
Audio file utilities.

Content-type checks for uploads and duration extraction with mutagen.
"""

import io
from typing import Optional

from mutagen import File as MutagenFile, MutagenError


class AudioProcessor:
    """Handler for uploaded audio and image files."""

    @staticmethod
    def is_audio_content_type(content_type: Optional[str]) -> bool:
        return bool(content_type) and content_type.lower().startswith("audio/")

    @staticmethod
    def is_image_content_type(content_type: Optional[str]) -> bool:
        return bool(content_type) and content_type.lower().startswith("image/")

    @staticmethod
    def get_duration(data: bytes, filename: str = "") -> float:
        """
        Read the duration of an in-memory audio file using mutagen.

        Args:
            data: Raw file content
            filename: Original file name, used as a format hint

        Returns:
            Duration in seconds

        Raises:
            ValueError: If the data is not readable audio
        """
        fileobj = io.BytesIO(data)
        fileobj.name = filename or "upload"
        try:
            audio = MutagenFile(fileobj)
        except (MutagenError, EOFError, OSError, ValueError) as e:
            raise ValueError(f"Failed to read audio file {filename!r}: {e}")

        if audio is None or not hasattr(audio.info, 'length'):
            raise ValueError(f"Failed to open audio file: {filename!r}")
        return float(audio.info.length)

    @staticmethod
    def format_duration(seconds: Optional[float]) -> str:
        """Format seconds as MM:SS ("00:00" when unknown)."""
        if not seconds:
            return "00:00"
        total = int(seconds)
        minutes, secs = divmod(total, 60)
        return f"{minutes:02d}:{secs:02d}"
