"""
GIF89a format constants, byte helpers and the error taxonomy shared by the
frame parser and the container builder.
"""

import struct
from typing import Tuple

GIF_SIGNATURE = b"GIF"
GIF89A_HEADER = b"GIF89a"

EXTENSION_INTRODUCER = 0x21
IMAGE_SEPARATOR = 0x2C
TRAILER = 0x3B

GRAPHIC_CONTROL_LABEL = 0xF9
APPLICATION_LABEL = 0xFF

# Offsets inside the 13 byte header (signature + logical screen descriptor)
SCREEN_WIDTH_OFFSET = 6
SCREEN_HEIGHT_OFFSET = 8
SCREEN_FLAGS_OFFSET = 10
HEADER_SIZE = 13

# Introducer, label, block size 4, four data bytes, terminator
GRAPHIC_CONTROL_SIZE = 8
GRAPHIC_CONTROL_DATA_SIZE = 4

# Packed field masks, shared by the logical screen and image descriptors
COLOR_TABLE_FLAG = 0x80
INTERLACE_FLAG = 0x40
COLOR_RESOLUTION_MASK = 0x70
SCREEN_SORT_FLAG = 0x08
LOCAL_SORT_FLAG = 0x20
TABLE_SIZE_MASK = 0x07

# Disposal 3 ("restore to previous"), no user input, no transparency
DEFAULT_GRAPHIC_CONTROL_FLAGS = 0x0C

UINT16_MAX = 0xFFFF


class GifMuxError(Exception):
    """Base class for all gifmux errors."""


class FormatError(GifMuxError, ValueError):
    """The input is not a well-formed single-frame GIF."""


class NotAGifError(FormatError):
    def __init__(self, message: str = "Could not load image as GIF file.") -> None:
        super().__init__(message)


class UnknownBlockTagError(FormatError):
    def __init__(self, tag: int, offset: int) -> None:
        super().__init__(f"Unknown block tag 0x{tag:02X} at offset {offset}.")
        self.tag = tag
        self.offset = offset


class NoImageBlockError(FormatError):
    def __init__(self, message: str = "GIF contains no image block (empty animation frame).") -> None:
        super().__init__(message)


class TruncatedDataError(FormatError):
    def __init__(self, offset: int, needed: int) -> None:
        super().__init__(f"GIF data truncated: needed {needed} byte(s) at offset {offset}.")
        self.offset = offset
        self.needed = needed


class InvalidGraphicControlError(FormatError):
    def __init__(self, offset: int, length: int) -> None:
        super().__init__(
            f"Malformed Graphic Control Extension at offset {offset}: "
            f"{length} byte(s), expected 8 with block size 4."
        )
        self.offset = offset
        self.length = length


class NoColorTableError(FormatError):
    def __init__(self, message: str = "GIF image has neither a global nor a local colour table.") -> None:
        super().__init__(message)


class UpstreamFailure(GifMuxError, RuntimeError):
    """An external tool (ffprobe/ffmpeg) failed or is unavailable."""


def check_uint16(name: str, value: int) -> int:
    """Validate that ``value`` fits an unsigned little-endian 16-bit field."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value < 0 or value > UINT16_MAX:
        raise ValueError(f"{name} must be between 0 and {UINT16_MAX}, got {value}")
    return value


def pack_u16(value: int) -> bytes:
    return struct.pack("<H", value)


def read_u16(data: bytes, offset: int) -> int:
    require(data, offset, 2)
    return struct.unpack_from("<H", data, offset)[0]


def require(data: bytes, offset: int, count: int) -> None:
    """Raise TruncatedDataError unless ``count`` bytes are available at ``offset``."""
    if offset + count > len(data):
        raise TruncatedDataError(offset, count)


def color_table_length(flags: int) -> int:
    """Byte length of the colour table announced by a packed flags byte."""
    return 3 * (1 << ((flags & TABLE_SIZE_MASK) + 1))


def color_resolution(flags: int) -> int:
    return (flags & COLOR_RESOLUTION_MASK) >> 4


def skip_sub_blocks(data: bytes, offset: int) -> int:
    """
    Skip a length-prefixed, zero-terminated chain of data sub-blocks.

    Returns the offset just past the zero-length terminator.
    """
    while True:
        require(data, offset, 1)
        length = data[offset]
        offset += 1
        if length == 0:
            return offset
        require(data, offset, length)
        offset += length


def graphic_control_block(delay: int, flags: int = DEFAULT_GRAPHIC_CONTROL_FLAGS,
                          transparent_index: int = 0) -> bytes:
    """Build an 8 byte Graphic Control Extension block."""
    return (
        bytes((EXTENSION_INTRODUCER, GRAPHIC_CONTROL_LABEL, GRAPHIC_CONTROL_DATA_SIZE, flags & 0xFF))
        + pack_u16(delay)
        + bytes((transparent_index & 0xFF, 0x00))
    )


def netscape_loop_block(loop_count: int) -> bytes:
    """Build the NETSCAPE2.0 application extension that makes viewers loop."""
    return (
        bytes((EXTENSION_INTRODUCER, APPLICATION_LABEL, 0x0B))
        + b"NETSCAPE2.0"
        + b"\x03\x01"
        + pack_u16(loop_count)
        + b"\x00"
    )


def logical_screen_descriptor(width: int, height: int, resolution: int) -> bytes:
    """Screen descriptor without a global colour table."""
    return pack_u16(width) + pack_u16(height) + bytes(((resolution & 0x07) << 4, 0x00, 0x00))


def graphic_control_fields(block: bytes) -> Tuple[int, int, bool, int]:
    """Decode (disposal, delay, transparent, transparent_index) from a GCE block."""
    flags = block[3]
    delay = struct.unpack_from("<H", block, 4)[0]
    return (flags >> 2) & 0x07, delay, bool(flags & 0x01), block[6]
