from __future__ import annotations

import asyncio

import pytest

from adapters import ffmpeg_transcoder
from adapters.ffmpeg_transcoder import STICKER_SCALE, FFmpegTranscoder, _output_args
from core.errors import TranscodeFailed


@pytest.mark.parametrize(
    ("from_kind", "to_kind", "codec"),
    [
        ("webp", "mp4", "libx264"),
        ("tgs", "mp4", "libx264"),
        ("webm", "webp", "libwebp"),
        ("gif", "webp", "libwebp"),
    ],
)
def test_animated_targets_pick_codec_and_duration(from_kind, to_kind, codec) -> None:
    args = _output_args(from_kind, to_kind)

    assert args[:2] == ["-vf", STICKER_SCALE]
    assert args[args.index("-c:v") + 1] == codec
    assert args[args.index("-t") + 1] == "3"


def test_static_webp_is_only_scaled() -> None:
    assert _output_args("png", "webp") == ["-vf", STICKER_SCALE]


def test_unsupported_target_is_rejected() -> None:
    with pytest.raises(TranscodeFailed):
        _output_args("webp", "avi")


def test_missing_binary_fails_without_running() -> None:
    transcoder = FFmpegTranscoder(binary="definitely-not-ffmpeg-on-path")

    with pytest.raises(TranscodeFailed):
        asyncio.run(transcoder.transcode(b"webp", "webp", "mp4"))


def test_staging_error_becomes_transcode_failure(monkeypatch) -> None:
    def no_tempdir(*args, **kwargs):
        raise OSError("No space left on device")

    monkeypatch.setattr(FFmpegTranscoder, "available", lambda self: True)
    monkeypatch.setattr(ffmpeg_transcoder.tempfile, "TemporaryDirectory", no_tempdir)

    with pytest.raises(TranscodeFailed) as excinfo:
        asyncio.run(FFmpegTranscoder().transcode(b"webp", "webp", "mp4"))
    assert isinstance(excinfo.value.__cause__, OSError)
