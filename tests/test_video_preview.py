"""
Tests for the video preview module. ffprobe/ffmpeg are never executed;
subprocess calls are replaced through monkeypatch.
"""

import subprocess
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

import gifmux.video_preview as video_preview
from gifmux import (
    PreviewConfig,
    UpstreamFailure,
    VideoInfo,
    build_gif_preview,
    draw_film_border,
    extract_frame,
    probe,
    probe_light,
    sample_timestamps,
    square_crop,
)

FFPROBE_OUTPUT = """\
# ffprobe output

[streams.stream.0]
index=0
codec_name=h264
codec_type=video
width=1920
height=1080

[streams.stream.1]
index=1
codec_name=aac
codec_type=audio
channels=2

[format]
filename=movie.mp4
nb_streams=2
format_name=mov,mp4,m4a,3gp,3g2,mj2
duration=12.500000
size=1048576
; a comment
"""


def completed(stdout="", returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")


def write_still(path: Path, color="red", size=(160, 90)) -> Path:
    Image.new("RGB", size, color).save(path, format="PNG")
    return path


class TestParseIni:
    """Tests for parse_ini function."""

    def test_sections(self):
        sections = video_preview.parse_ini(FFPROBE_OUTPUT)
        assert sections["format"]["duration"] == "12.500000"
        assert sections["streams.stream.0"]["codec_type"] == "video"
        assert sections["streams.stream.1"]["channels"] == "2"

    def test_ignores_comments_and_short_lines(self):
        sections = video_preview.parse_ini("; c=1\nx\n[a]\nk=v\n")
        assert sections == {"": {}, "a": {"k": "v"}}

    def test_keys_before_section(self):
        sections = video_preview.parse_ini("key=value\n")
        assert sections[""] == {"key": "value"}

    def test_empty_value(self):
        sections = video_preview.parse_ini("[tags]\ntitle=\n")
        assert sections["tags"] == {"title": ""}


class TestProbe:
    """Tests for probe and probe_light functions."""

    def test_probe_runs_ffprobe(self, monkeypatch):
        commands = []

        def fake_run(command, **kwargs):
            commands.append(command)
            return completed(FFPROBE_OUTPUT)

        monkeypatch.setattr(video_preview.subprocess, "run", fake_run)
        sections = probe("movie.mp4")
        assert sections["format"]["nb_streams"] == "2"
        assert commands[0][0] == "ffprobe"
        assert commands[0][-2:] == ["-i", "movie.mp4"]
        assert "ini" in commands[0]

    def test_probe_failure(self, monkeypatch):
        monkeypatch.setattr(video_preview.subprocess, "run", lambda command, **kwargs: completed(returncode=1))
        with pytest.raises(UpstreamFailure):
            probe("movie.mp4")

    def test_missing_executable(self):
        config = PreviewConfig(ffprobe="gifmux-missing-ffprobe-binary")
        with pytest.raises(UpstreamFailure, match="not found"):
            probe("movie.mp4", config)

    def test_timeout(self, monkeypatch):
        def fake_run(command, **kwargs):
            raise subprocess.TimeoutExpired(command, kwargs["timeout"])

        monkeypatch.setattr(video_preview.subprocess, "run", fake_run)
        with pytest.raises(UpstreamFailure, match="timed out"):
            probe("movie.mp4")

    def test_probe_light(self, monkeypatch):
        monkeypatch.setattr(video_preview.subprocess, "run", lambda command, **kwargs: completed(FFPROBE_OUTPUT))
        info = probe_light("movie.mp4")
        assert info == VideoInfo(
            width=1920,
            height=1080,
            video_codec="h264",
            channels=2,
            audio_codec="aac",
            container="mov,mp4,m4a,3gp,3g2,mj2",
            duration=12.5,
            size=1048576,
        )

    def test_probe_light_without_format(self, monkeypatch):
        monkeypatch.setattr(video_preview.subprocess, "run", lambda command, **kwargs: completed(""))
        assert probe_light("movie.mp4") == VideoInfo()


class TestExtractFrame:
    """Tests for extract_frame function."""

    def test_returns_written_file(self, monkeypatch, tmp_path: Path):
        def fake_run(command, **kwargs):
            write_still(Path(command[-1]))
            return completed()

        monkeypatch.setattr(video_preview.subprocess, "run", fake_run)
        still = extract_frame("movie.mp4", 1.5, directory=tmp_path)
        assert still is not None
        assert still.parent == tmp_path
        assert still.suffix == ".png"

    def test_returns_none_without_output(self, monkeypatch, tmp_path: Path):
        monkeypatch.setattr(video_preview.subprocess, "run", lambda command, **kwargs: completed(returncode=1))
        assert extract_frame("movie.mp4", 1.5, directory=tmp_path) is None
        assert list(tmp_path.iterdir()) == []

    def test_missing_ffmpeg_cleans_up(self, tmp_path: Path):
        config = PreviewConfig(ffmpeg="gifmux-missing-ffmpeg-binary")
        with pytest.raises(UpstreamFailure):
            extract_frame("movie.mp4", 1.5, directory=tmp_path, config=config)
        assert list(tmp_path.iterdir()) == []


class TestImageHelpers:
    """Tests for square_crop, draw_film_border and sample_timestamps."""

    def test_square_crop_landscape(self):
        image = Image.new("RGB", (200, 100), "blue")
        image.paste((255, 0, 0), (50, 0, 150, 100))
        result = square_crop(image, 50)
        assert result.size == (50, 50)
        assert result.getpixel((25, 25)) == (255, 0, 0)

    def test_square_crop_portrait(self):
        result = square_crop(Image.new("RGBA", (60, 300), "green"), 40)
        assert result.size == (40, 40)
        assert result.mode == "RGB"

    def test_square_crop_invalid_size(self):
        with pytest.raises(ValueError):
            square_crop(Image.new("RGB", (10, 10)), 0)

    def test_film_border(self):
        frame = Image.new("RGB", (150, 150), (0, 255, 0))
        result = draw_film_border(frame, 1, 9)
        assert result.size == (150, 150)
        assert result.getpixel((0, 149)) == (0, 0, 0)
        assert result.getpixel((149, 149)) == (0, 0, 0)
        assert result.getpixel((75, 75)) == (0, 255, 0)
        assert (255, 255, 255) in [result.getpixel((4, y)) for y in range(150)]

    def test_sample_timestamps(self):
        assert sample_timestamps(10.0, 4) == [2.0, 4.0, 6.0, 8.0]

    def test_sample_timestamps_degenerate(self):
        assert sample_timestamps(0.0, 4) == []
        assert sample_timestamps(10.0, 0) == []


class TestBuildGifPreview:
    """Tests for build_gif_preview function."""

    @pytest.fixture
    def fake_video(self, monkeypatch, tmp_path: Path):
        """Stub probing and extraction; returns the list of requested timestamps."""
        requested = []
        failing = set()

        def fake_probe_light(filename, config):
            return VideoInfo(width=320, height=180, duration=10.0)

        def fake_extract(filename, timestamp, directory=None, config=None):
            requested.append(timestamp)
            if len(requested) in failing:
                return None
            return write_still(tmp_path / f"still_{len(requested)}.png")

        monkeypatch.setattr(video_preview, "probe_light", fake_probe_light)
        monkeypatch.setattr(video_preview, "extract_frame", fake_extract)
        return requested, failing, tmp_path

    def test_builds_animation(self, fake_video):
        requested, _, workdir = fake_video
        data = build_gif_preview("movie.mp4", size=60, count=4)
        assert requested == [2.0, 4.0, 6.0, 8.0]
        with Image.open(BytesIO(data)) as gif:
            assert gif.size == (60, 60)
            assert gif.n_frames == 4
        assert list(workdir.glob("still_*.png")) == []

    def test_last_frame_delay(self, fake_video):
        data = build_gif_preview("movie.mp4", size=30, count=3)
        durations = []
        with Image.open(BytesIO(data)) as gif:
            for index in range(gif.n_frames):
                gif.seek(index)
                durations.append(gif.info["duration"])
        assert durations == [500, 500, 2000]

    def test_skips_failed_timestamps(self, fake_video):
        _, failing, _ = fake_video
        failing.add(2)
        data = build_gif_preview("movie.mp4", size=30, count=3)
        with Image.open(BytesIO(data)) as gif:
            assert gif.n_frames == 2

    def test_skips_upstream_failures(self, fake_video, monkeypatch):
        calls = []

        def flaky_extract(filename, timestamp, directory=None, config=None):
            calls.append(timestamp)
            if len(calls) == 1:
                raise UpstreamFailure("ffmpeg crashed")
            return write_still(fake_video[2] / f"flaky_{len(calls)}.png")

        monkeypatch.setattr(video_preview, "extract_frame", flaky_extract)
        data = build_gif_preview("movie.mp4", size=30, count=3)
        with Image.open(BytesIO(data)) as gif:
            assert gif.n_frames == 2

    def test_unavailable_without_frames(self, fake_video):
        _, failing, _ = fake_video
        failing.update({1, 2, 3})
        assert build_gif_preview("movie.mp4", size=30, count=3) is None

    def test_unavailable_without_duration(self, monkeypatch):
        monkeypatch.setattr(video_preview, "probe_light", lambda filename, config: VideoInfo())
        assert build_gif_preview("movie.mp4") is None

    def test_without_border(self, fake_video):
        config = PreviewConfig(film_border=False)
        data = build_gif_preview("movie.mp4", size=30, count=1, config=config)
        with Image.open(BytesIO(data)) as gif:
            assert gif.convert("RGB").getpixel((0, 0)) == (255, 0, 0)

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            build_gif_preview("movie.mp4", size=0)

    def test_probe_failure_propagates(self, monkeypatch):
        def failing_probe(filename, config):
            raise UpstreamFailure("ffprobe missing")

        monkeypatch.setattr(video_preview, "probe_light", failing_probe)
        with pytest.raises(UpstreamFailure):
            build_gif_preview("movie.mp4")
