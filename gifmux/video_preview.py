"""
Animated GIF previews of video files.

Wraps ``ffprobe``/``ffmpeg`` to read a video's metadata and grab still frames
at evenly spaced timestamps, crops each still to a square thumbnail, draws a
film strip border and multiplexes the thumbnails into a looping GIF.
"""

import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from PIL import Image, ImageDraw, ImageOps

from .gif_container import GifContainer
from .gif_format import FormatError, UpstreamFailure

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class PreviewConfig:
    """Configuration for video preview generation."""

    size: int = 100
    count: int = 9
    frame_delay: int = 50
    last_frame_delay: int = 200
    loop: int = 0
    film_border: bool = True
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    timeout: float = 60.0


DEFAULT_PREVIEW_CONFIG = PreviewConfig()


@dataclass
class VideoInfo:
    """The subset of ffprobe output the preview needs, plus a few extras."""

    width: Optional[int] = None
    height: Optional[int] = None
    video_codec: Optional[str] = None
    channels: Optional[int] = None
    audio_codec: Optional[str] = None
    container: Optional[str] = None
    duration: Optional[float] = None
    size: Optional[int] = None


def ffmpeg_available(config: PreviewConfig = DEFAULT_PREVIEW_CONFIG) -> bool:
    return shutil.which(config.ffmpeg) is not None and shutil.which(config.ffprobe) is not None


def _run(command: List[str], timeout: float) -> subprocess.CompletedProcess:
    logger.debug("Running: %s", " ".join(command))
    try:
        return subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as exc:
        raise UpstreamFailure(f"Executable not found: {command[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise UpstreamFailure(f"{command[0]} timed out after {timeout} seconds") from exc


def parse_ini(text: str) -> Dict[str, Dict[str, str]]:
    """
    Parse ffprobe's ``-print_format ini`` output into {section: {key: value}}.

    Keys that appear before any section header land in the "" section.
    """
    sections: Dict[str, Dict[str, str]] = {"": {}}
    group = ""
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if len(line) < 3 or line.startswith(";"):
            continue
        if line.startswith("[") and line.endswith("]"):
            group = line[1:-1]
            sections[group] = {}
            continue
        name, sep, value = line.partition("=")
        if sep and name:
            sections.setdefault(group, {})[name] = value
    return sections


def probe(filename: PathLike, config: PreviewConfig = DEFAULT_PREVIEW_CONFIG) -> Dict[str, Dict[str, str]]:
    """Run ffprobe on a local video and return its format and stream sections."""
    command = [
        config.ffprobe, "-hide_banner", "-v", "quiet", "-print_format", "ini",
        "-show_format", "-show_streams", "-i", str(filename),
    ]
    result = _run(command, config.timeout)
    if result.returncode != 0:
        raise UpstreamFailure(f"ffprobe failed on {filename} (exit code {result.returncode})")
    return parse_ini(result.stdout)


def _to_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def _to_float(value: Optional[str]) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def probe_light(filename: PathLike, config: PreviewConfig = DEFAULT_PREVIEW_CONFIG) -> VideoInfo:
    """Summarise ffprobe output: resolution, codecs, container, duration, size."""
    sections = probe(filename, config)
    info = VideoInfo()
    fmt = sections.get("format")
    if fmt is None:
        return info

    for index in range(_to_int(fmt.get("nb_streams")) or 0):
        stream = sections.get(f"streams.stream.{index}", {})
        codec_type = stream.get("codec_type")
        if codec_type == "video":
            info.width = _to_int(stream.get("width"))
            info.height = _to_int(stream.get("height"))
            info.video_codec = stream.get("codec_name")
        elif codec_type == "audio":
            info.channels = _to_int(stream.get("channels"))
            info.audio_codec = stream.get("codec_name")

    info.container = fmt.get("format_name")
    info.duration = _to_float(fmt.get("duration"))
    info.size = _to_int(fmt.get("size"))
    return info


def extract_frame(
    filename: PathLike,
    timestamp: float,
    directory: Optional[PathLike] = None,
    config: PreviewConfig = DEFAULT_PREVIEW_CONFIG,
) -> Optional[Path]:
    """
    Grab one still frame at ``timestamp`` seconds into a temporary PNG.

    Returns the PNG path, or None if ffmpeg produced no file. The caller owns
    the returned file.
    """
    handle, name = tempfile.mkstemp(prefix=".tmp_", suffix=".png", dir=directory)
    os.close(handle)
    target = Path(name)

    command = [
        config.ffmpeg, "-hide_banner", "-loglevel", "error", "-y",
        "-ss", f"{timestamp:.3f}", "-i", str(filename), "-frames:v", "1", str(target),
    ]
    try:
        _run(command, config.timeout)
    except UpstreamFailure:
        target.unlink(missing_ok=True)
        raise
    if target.exists() and target.stat().st_size > 0:
        return target
    if target.exists():
        target.unlink()
    return None


def square_crop(image: Image.Image, size: int) -> Image.Image:
    """Centre-crop the longer axis and resize to a ``size`` x ``size`` RGB square."""
    if size <= 0:
        raise ValueError("size must be positive")
    return ImageOps.fit(image.convert("RGB"), (size, size), Image.Resampling.LANCZOS)


def draw_film_border(image: Image.Image, index: int, count: int) -> Image.Image:
    """
    Draw black side bars with white sprocket holes onto a square frame.

    The holes shift by one pixel per frame ``index`` so the strip appears to
    roll through the animation.
    """
    size = image.width
    bar = size // 15
    hole = bar * 2 // 3
    margin = (bar - hole) // 2
    spacing = max(1, size // max(1, count))

    draw = ImageDraw.Draw(image)
    draw.rectangle((0, 0, bar, size), fill=(0, 0, 0))
    draw.rectangle((size - bar, 0, size, size), fill=(0, 0, 0))

    top = index - spacing
    for _ in range(count + 3):
        draw.rectangle((margin, top, margin + hole, top + hole), fill=(255, 255, 255))
        draw.rectangle((size - hole - margin, top, size - margin, top + hole), fill=(255, 255, 255))
        top += spacing
    return image


def sample_timestamps(duration: float, count: int) -> List[float]:
    """``count`` timestamps evenly spaced strictly inside ``(0, duration)``."""
    if count <= 0 or duration <= 0:
        return []
    return [duration * i / (count + 1) for i in range(1, count + 1)]


def build_gif_preview(
    filename: PathLike,
    size: Optional[int] = None,
    count: Optional[int] = None,
    config: PreviewConfig = DEFAULT_PREVIEW_CONFIG,
) -> Optional[bytes]:
    """
    Build a square animated GIF made of snapshots taken at regular intervals.

    Args:
        filename: Local video file
        size: Width and height in pixels (defaults to ``config.size``)
        count: Number of snapshots (defaults to ``config.count``)
        config: Preview configuration

    Returns:
        The GIF bytes, or None when the duration is unknown or no frame could
        be extracted
    """
    size = config.size if size is None else size
    count = config.count if count is None else count
    if size <= 0 or count <= 0:
        raise ValueError("size and count must be positive")

    info = probe_light(filename, config)
    if not info.duration:
        logger.warning("No duration reported for %s; preview unavailable", filename)
        return None

    container = GifContainer(config.loop)
    timestamps = sample_timestamps(info.duration, count)
    for index, timestamp in enumerate(timestamps, start=1):
        try:
            still = extract_frame(filename, timestamp, config=config)
        except UpstreamFailure as exc:
            logger.warning("Skipping frame at %.3fs: %s", timestamp, exc)
            continue
        if still is None:
            logger.warning("Skipping frame at %.3fs: ffmpeg produced no image", timestamp)
            continue

        try:
            with Image.open(still) as raw:
                frame = square_crop(raw, size)
            if config.film_border:
                draw_film_border(frame, index, count)
            delay = config.last_frame_delay if index == len(timestamps) else config.frame_delay
            container.add(frame, delay)
        except (OSError, FormatError) as exc:
            logger.warning("Skipping frame at %.3fs: %s", timestamp, exc)
        finally:
            still.unlink(missing_ok=True)

    if not len(container) or not container.width or not container.height:
        logger.warning("No frames could be extracted from %s", filename)
        return None
    return container.serialize()
