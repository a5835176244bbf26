"""Tests for duration probing and container classification."""

from unittest.mock import MagicMock, patch

import pytest
from pydub.exceptions import CouldntDecodeError

from media2txt.models import MediaSource
from media2txt.prober import is_container_format, probe


class TestIsContainerFormat:
    @pytest.mark.parametrize("name", ["a.m4a", "a.MP4", "a.mov", "a.webm", "a.mkv", "a.ogg", "a.opus", "a.flac"])
    def test_container_extensions(self, name) -> None:
        assert is_container_format(name, "")

    @pytest.mark.parametrize("name", ["a.mp3", "a.wav"])
    def test_simple_formats(self, name) -> None:
        assert not is_container_format(name, "audio/mpeg")

    def test_mime_type_when_extension_unknown(self) -> None:
        assert is_container_format("recording", "audio/webm")
        assert not is_container_format("recording", "audio/mpeg")


class TestProbe:
    def test_metadata_duration(self, media_file) -> None:
        source = MediaSource.from_path(media_file("talk.m4a"))
        with patch("media2txt.prober.mediainfo", return_value={"duration": "5400.25"}):
            result = probe(source)
        assert result.duration_seconds == 5400.25
        assert result.is_container_format

    def test_non_finite_duration_falls_back_to_decode(self, media_file) -> None:
        source = MediaSource.from_path(media_file("live.webm"))
        decoded = MagicMock()
        decoded.__len__.return_value = 93_500
        with patch("media2txt.prober.mediainfo", return_value={"duration": "N/A"}), \
                patch("media2txt.prober.AudioSegment.from_file", return_value=decoded) as from_file:
            result = probe(source)
        from_file.assert_called_once()
        assert result.duration_seconds == 93.5

    def test_large_files_are_not_decoded(self, media_file) -> None:
        source = MediaSource.from_path(media_file("live.webm"))
        with patch("media2txt.prober.FULL_DECODE_LIMIT_BYTES", 10), \
                patch("media2txt.prober.mediainfo", return_value={}), \
                patch("media2txt.prober.AudioSegment.from_file") as from_file:
            result = probe(source)
        from_file.assert_not_called()
        assert result.duration_seconds == 0

    def test_unknown_duration_is_zero(self, media_file) -> None:
        source = MediaSource.from_path(media_file("broken.mp3"))
        with patch("media2txt.prober.mediainfo", side_effect=OSError("ffprobe missing")), \
                patch("media2txt.prober.AudioSegment.from_file", side_effect=CouldntDecodeError("bad")):
            result = probe(source)
        assert result.duration_seconds == 0
        assert not result.is_container_format
