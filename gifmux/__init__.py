"""
gifmux - assemble animated GIFs from single-frame GIF images.
Frames are multiplexed without decoding or re-encoding their LZW data.
"""

from .gif_format import (
    GifMuxError,
    FormatError,
    NotAGifError,
    UnknownBlockTagError,
    NoImageBlockError,
    TruncatedDataError,
    InvalidGraphicControlError,
    NoColorTableError,
    UpstreamFailure,
)
from .gif_container import (
    FrameRecord,
    ParsedFrame,
    GifContainer,
    parse_frame,
    load_gif_bytes,
    encode_gif,
)
from .video_preview import (
    PreviewConfig,
    DEFAULT_PREVIEW_CONFIG,
    VideoInfo,
    ffmpeg_available,
    probe,
    probe_light,
    extract_frame,
    square_crop,
    draw_film_border,
    sample_timestamps,
    build_gif_preview,
)

__version__ = "1.0.0"

__all__ = [
    "GifMuxError",
    "FormatError",
    "NotAGifError",
    "UnknownBlockTagError",
    "NoImageBlockError",
    "TruncatedDataError",
    "InvalidGraphicControlError",
    "NoColorTableError",
    "UpstreamFailure",
    "FrameRecord",
    "ParsedFrame",
    "GifContainer",
    "parse_frame",
    "load_gif_bytes",
    "encode_gif",
    "PreviewConfig",
    "DEFAULT_PREVIEW_CONFIG",
    "VideoInfo",
    "ffmpeg_available",
    "probe",
    "probe_light",
    "extract_frame",
    "square_crop",
    "draw_film_border",
    "sample_timestamps",
    "build_gif_preview",
]
