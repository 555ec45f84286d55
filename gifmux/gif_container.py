"""
Animated GIF container assembly from single-frame GIF images.

Each added image is parsed once into a ``FrameRecord``: its Graphic Control
Extension plus a self-contained Image Descriptor that always carries a local
colour table. The LZW compressed pixel data is copied verbatim, so frames are
never decoded or re-encoded. ``GifContainer`` concatenates the records under a
GIF89a header without a global colour table and a NETSCAPE2.0 looping block.
"""

import logging
import threading
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Tuple, Union

import requests
from PIL import Image, UnidentifiedImageError

from .gif_format import (
    COLOR_TABLE_FLAG,
    EXTENSION_INTRODUCER,
    GIF89A_HEADER,
    GIF_SIGNATURE,
    GRAPHIC_CONTROL_DATA_SIZE,
    GRAPHIC_CONTROL_LABEL,
    GRAPHIC_CONTROL_SIZE,
    HEADER_SIZE,
    IMAGE_SEPARATOR,
    INTERLACE_FLAG,
    LOCAL_SORT_FLAG,
    SCREEN_FLAGS_OFFSET,
    SCREEN_HEIGHT_OFFSET,
    SCREEN_SORT_FLAG,
    SCREEN_WIDTH_OFFSET,
    TABLE_SIZE_MASK,
    TRAILER,
    InvalidGraphicControlError,
    NoColorTableError,
    NoImageBlockError,
    NotAGifError,
    UnknownBlockTagError,
    check_uint16,
    color_resolution,
    color_table_length,
    graphic_control_block,
    graphic_control_fields,
    logical_screen_descriptor,
    netscape_loop_block,
    pack_u16,
    read_u16,
    require,
    skip_sub_blocks,
)

logger = logging.getLogger(__name__)

ImageSource = Union[bytes, bytearray, memoryview, str, Path, Image.Image]

DEFAULT_DELAY = 20
URL_TIMEOUT = 30
TRANSPARENT_INDEX = 255


@dataclass(frozen=True)
class FrameRecord:
    """One animation frame, ready to be appended to a container."""

    graphic_control: bytes
    image_data: bytes

    @property
    def delay(self) -> int:
        """Display time in hundredths of a second."""
        return graphic_control_fields(self.graphic_control)[1]

    @property
    def transparent_index(self) -> Optional[int]:
        _, _, transparent, index = graphic_control_fields(self.graphic_control)
        return index if transparent else None

    def to_bytes(self) -> bytes:
        return self.graphic_control + self.image_data


@dataclass(frozen=True)
class ParsedFrame:
    """A frame record plus the source screen values the container folds in."""

    record: FrameRecord
    width: int
    height: int
    color_resolution: int


@dataclass(frozen=True)
class _ColorTable:
    data: bytes
    size_exponent: int
    is_sorted: bool


def _read_extension(data: bytes, offset: int) -> Tuple[int, int, bytes]:
    """Returns (next offset, extension label, whole block bytes)."""
    require(data, offset, 2)
    label = data[offset + 1]
    end = skip_sub_blocks(data, offset + 2)
    return end, label, data[offset:end]


def _read_image(
    data: bytes,
    offset: int,
    position: Optional[Tuple[int, int]],
    global_table: Optional[_ColorTable],
) -> Tuple[int, bytes]:
    """Returns (next offset, self-contained image descriptor bytes)."""
    require(data, offset, 10)
    if position is None:
        placement = data[offset + 1:offset + 5]
    else:
        placement = pack_u16(position[0]) + pack_u16(position[1])
    size = data[offset + 5:offset + 9]
    flags = data[offset + 9]
    offset += 10

    if flags & COLOR_TABLE_FLAG:
        length = color_table_length(flags)
        require(data, offset, length)
        table = data[offset:offset + length]
        offset += length
    elif global_table is not None:
        # Promote the global table so the frame decodes without a screen palette
        flags = (
            COLOR_TABLE_FLAG
            | (flags & INTERLACE_FLAG)
            | (LOCAL_SORT_FLAG if global_table.is_sorted else 0x00)
            | global_table.size_exponent
        )
        table = global_table.data
    else:
        raise NoColorTableError()

    require(data, offset, 1)
    min_code_size = data[offset:offset + 1]
    start = offset + 1
    end = skip_sub_blocks(data, start)
    image_data = (
        bytes((IMAGE_SEPARATOR,)) + placement + size + bytes((flags,))
        + table + min_code_size + data[start:end]
    )
    return end, image_data


def parse_frame(
    data: Union[bytes, bytearray, memoryview],
    delay: int = DEFAULT_DELAY,
    position: Optional[Tuple[int, int]] = None,
) -> ParsedFrame:
    """
    Parse the first image of a GIF file into a frame record.

    Args:
        data: Raw GIF file bytes
        delay: Delay in 1/100 s used when the source has no Graphic Control Extension
        position: Optional (x, y) replacing the source image position

    Returns:
        The parsed frame with the source's screen width, height and colour resolution

    Raises:
        NotAGifError: The data does not start with the GIF signature
        UnknownBlockTagError: An unknown block tag precedes the image block
        NoImageBlockError: The trailer or the end of data is reached first
        TruncatedDataError: A block runs past the end of the data
        InvalidGraphicControlError: A Graphic Control Extension is not 8 bytes with block size 4
        NoColorTableError: The image has neither a local nor a global colour table
    """
    data = bytes(data)
    if data[:3] != GIF_SIGNATURE:
        raise NotAGifError()
    check_uint16("delay", delay)
    if position is not None:
        position = (check_uint16("x", position[0]), check_uint16("y", position[1]))

    require(data, 0, HEADER_SIZE)
    width = read_u16(data, SCREEN_WIDTH_OFFSET)
    height = read_u16(data, SCREEN_HEIGHT_OFFSET)
    screen_flags = data[SCREEN_FLAGS_OFFSET]
    offset = HEADER_SIZE

    global_table = None
    if screen_flags & COLOR_TABLE_FLAG:
        length = color_table_length(screen_flags)
        require(data, offset, length)
        global_table = _ColorTable(
            data=data[offset:offset + length],
            size_exponent=screen_flags & TABLE_SIZE_MASK,
            is_sorted=bool(screen_flags & SCREEN_SORT_FLAG),
        )
        offset += length

    graphic_control = None
    image_data = None
    while image_data is None and offset < len(data):
        tag = data[offset]
        if tag == EXTENSION_INTRODUCER:
            start = offset
            offset, label, block = _read_extension(data, offset)
            if label == GRAPHIC_CONTROL_LABEL:
                if len(block) != GRAPHIC_CONTROL_SIZE or block[2] != GRAPHIC_CONTROL_DATA_SIZE:
                    raise InvalidGraphicControlError(start, len(block))
                graphic_control = block
        elif tag == IMAGE_SEPARATOR:
            offset, image_data = _read_image(data, offset, position, global_table)
        elif tag == TRAILER:
            break
        else:
            raise UnknownBlockTagError(tag, offset)

    if image_data is None:
        raise NoImageBlockError()
    if graphic_control is None:
        graphic_control = graphic_control_block(delay)

    logger.debug(
        "Parsed %dx%d frame: %d image bytes, global table %s",
        width, height, len(image_data), "promoted" if global_table else "absent",
    )
    return ParsedFrame(
        record=FrameRecord(graphic_control=graphic_control, image_data=image_data),
        width=width,
        height=height,
        color_resolution=color_resolution(screen_flags),
    )


def has_transparency(image: Image.Image) -> bool:
    """Returns True if an RGBA image has any pixel that is not fully opaque."""
    if image.mode != "RGBA":
        return False
    return image.split()[3].getextrema()[0] < 255


def encode_gif(image: Image.Image, delay: Optional[int] = None) -> bytes:
    """
    Encode a Pillow image as single-frame GIF bytes.

    Pixels with alpha below 128 are mapped to a reserved transparent index.
    When ``delay`` is given it is written to the frame's Graphic Control Extension.
    """
    options = {}
    if delay:
        options["duration"] = delay * 10

    if image.mode in ("RGBA", "LA", "PA"):
        rgba = image.convert("RGBA")
        if has_transparency(rgba):
            alpha = rgba.split()[3]
            frame = rgba.convert("RGB").convert("P", palette=Image.Palette.ADAPTIVE, colors=255)
            mask = Image.eval(alpha, lambda a: 255 if a < 128 else 0)
            frame.paste(TRANSPARENT_INDEX, mask=mask)
            options["transparency"] = TRANSPARENT_INDEX
        else:
            frame = rgba.convert("RGB").convert("P", palette=Image.Palette.ADAPTIVE)
    elif image.mode in ("P", "L"):
        frame = image
    else:
        frame = image.convert("RGB").convert("P", palette=Image.Palette.ADAPTIVE)

    output = BytesIO()
    frame.save(output, format="GIF", **options)
    return output.getvalue()


def _is_url(text: str) -> bool:
    return text.lower().startswith(("http://", "https://"))


def fetch_url(url: str) -> bytes:
    response = requests.get(url, timeout=URL_TIMEOUT)
    response.raise_for_status()
    return response.content


def load_gif_bytes(image: ImageSource, delay: Optional[int] = None) -> bytes:
    """
    Normalise an image source to single-frame GIF bytes.

    Accepts raw bytes, a file path, an http(s) URL or a Pillow image. GIF bytes
    are returned untouched; anything else is decoded and re-encoded with Pillow.
    """
    if isinstance(image, Image.Image):
        return encode_gif(image, delay)

    if isinstance(image, (bytes, bytearray, memoryview)):
        data = bytes(image)
    elif isinstance(image, str) and _is_url(image):
        data = fetch_url(image)
    elif isinstance(image, (str, Path)):
        path = Path(image)
        if not path.is_file():
            raise FileNotFoundError(f"Image file not found: {path}")
        data = path.read_bytes()
    else:
        raise TypeError(f"Unsupported image source: {type(image).__name__}")

    if data[:3] == GIF_SIGNATURE:
        return data

    try:
        with Image.open(BytesIO(data)) as decoded:
            decoded.load()
            return encode_gif(decoded, delay)
    except (UnidentifiedImageError, OSError) as exc:
        raise NotAGifError("Could not load image as GIF file.") from exc


class GifContainer:
    """
    Accumulates frames and serialises them as one animated GIF89a stream.

    The canvas width, height and colour resolution are running maxima over all
    added frames and never decrease. ``serialize`` does not consume state and
    can be called any number of times.
    """

    def __init__(self, loop_count: int = 0, width: int = 0, height: int = 0) -> None:
        self._loop_count = check_uint16("loop_count", loop_count)
        self._width = check_uint16("width", width)
        self._height = check_uint16("height", height)
        self._color_resolution = 0
        self._frames: List[FrameRecord] = []
        self._lock = threading.Lock()

    @property
    def loop_count(self) -> int:
        return self._loop_count

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def color_resolution(self) -> int:
        return self._color_resolution

    @property
    def frames(self) -> Tuple[FrameRecord, ...]:
        with self._lock:
            return tuple(self._frames)

    def __len__(self) -> int:
        with self._lock:
            return len(self._frames)

    def add(
        self,
        image: ImageSource,
        delay: int = DEFAULT_DELAY,
        x: Optional[int] = None,
        y: Optional[int] = None,
    ) -> FrameRecord:
        """
        Add an image as the next frame.

        Args:
            image: GIF bytes, other image bytes, a file path, a URL or a Pillow image
            delay: Frame delay in 1/100 s, used when the source carries none
            x: Left position overriding the source position (requires ``y``)
            y: Top position overriding the source position (requires ``x``)

        Returns:
            The appended frame record

        Raises:
            FormatError: The image cannot be read as a single-frame GIF; the
                container is left unchanged
        """
        if (x is None) != (y is None):
            raise ValueError("x and y must be given together")
        position = None if x is None else (x, y)
        check_uint16("delay", delay)

        data = load_gif_bytes(image, delay)
        parsed = parse_frame(data, delay, position)
        return self.add_record(parsed)

    def add_record(self, parsed: ParsedFrame) -> FrameRecord:
        """Fold a parsed frame into the running maxima and append it."""
        with self._lock:
            self._width = max(self._width, parsed.width)
            self._height = max(self._height, parsed.height)
            self._color_resolution = max(self._color_resolution, parsed.color_resolution)
            self._frames.append(parsed.record)
            count = len(self._frames)
        logger.debug("Added frame %d (%dx%d)", count, parsed.width, parsed.height)
        return parsed.record

    def serialize(self) -> bytes:
        """Returns the complete animated GIF byte stream."""
        with self._lock:
            width, height = self._width, self._height
            resolution = self._color_resolution
            frames = list(self._frames)

        parts = [
            GIF89A_HEADER,
            logical_screen_descriptor(width, height, resolution),
            netscape_loop_block(self._loop_count),
        ]
        parts.extend(frame.to_bytes() for frame in frames)
        parts.append(bytes((TRAILER,)))
        return b"".join(parts)

    def save(self, path: Union[str, Path]) -> Path:
        """Write the serialised GIF to ``path``, creating parent folders."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self.serialize())
        return target
