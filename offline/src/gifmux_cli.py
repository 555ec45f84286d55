import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence

# Add the repository root so the gifmux package imports without installation
REPO_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(REPO_ROOT))

from gifmux import (
    GifContainer,
    PreviewConfig,
    UpstreamFailure,
    build_gif_preview,
)

IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp"})
MAX_FRAMES_WITHOUT_CONFIRM = 100


@dataclass(frozen=True)
class Config:
    """Default configuration values for the CLI."""

    size: tuple[int, int] = (0, 0)
    delay: int = 20
    loop: int = 0
    preview_size: int = 100
    preview_count: int = 9


DEFAULT_CONFIG = Config()


def parse_arguments(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gifmux",
        description=(
            "Multiplex single-frame GIF images into one animated GIF without "
            "re-encoding, or build an animated preview of a video."
        ),
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log parsing and extraction details to stderr.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    assemble = commands.add_parser("assemble", help="Combine images into an animated GIF.")
    assemble.add_argument(
        "inputs",
        type=Path,
        nargs="+",
        help="Image files or folders of images, in display order.",
    )
    assemble.add_argument(
        "--output",
        type=Path,
        default=Path("animation.gif"),
        help="Output GIF path (defaults to animation.gif in the current directory).",
    )
    assemble.add_argument(
        "--delay",
        type=int,
        default=DEFAULT_CONFIG.delay,
        help=(
            f"Frame delay in 1/100 seconds (default: {DEFAULT_CONFIG.delay}). Frames "
            "that already carry a delay keep their own."
        ),
    )
    assemble.add_argument(
        "--last-delay",
        type=int,
        default=None,
        help="Delay for the last frame in 1/100 seconds (default: same as --delay).",
    )
    assemble.add_argument(
        "--loop",
        type=int,
        default=DEFAULT_CONFIG.loop,
        help="How many times to loop the animation (0 = infinite).",
    )
    assemble.add_argument(
        "--size",
        type=str,
        default=None,
        help=(
            "Minimum canvas size formatted as WIDTHxHEIGHT. The canvas grows to "
            "fit the largest frame."
        ),
    )
    assemble.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Skip confirmation prompt for large frame counts.",
    )

    preview = commands.add_parser("preview", help="Build an animated preview of a video.")
    preview.add_argument("video", type=Path, help="Path to a local video file.")
    preview.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Output GIF path (defaults to <video name>.gif next to the video).",
    )
    preview.add_argument(
        "--size",
        type=int,
        default=DEFAULT_CONFIG.preview_size,
        help=f"Square preview size in pixels (default: {DEFAULT_CONFIG.preview_size}).",
    )
    preview.add_argument(
        "--count",
        type=int,
        default=DEFAULT_CONFIG.preview_count,
        help=f"Number of snapshots (default: {DEFAULT_CONFIG.preview_count}).",
    )
    preview.add_argument(
        "--loop",
        type=int,
        default=DEFAULT_CONFIG.loop,
        help="How many times to loop the animation (0 = infinite).",
    )
    preview.add_argument(
        "--no-border",
        action="store_true",
        help="Do not draw the film strip border.",
    )
    return parser.parse_args(argv)


def resolve_unique_path(path: Path) -> Path:
    if not path.exists():
        return path
    stem = path.stem
    suffix = path.suffix
    index = 1
    while True:
        candidate = path.with_name(f"{stem}-{index}{suffix}")
        if not candidate.exists():
            return candidate
        index += 1


def parse_size(size_text: str | None) -> tuple[int, int]:
    if not size_text:
        return DEFAULT_CONFIG.size
    try:
        width_text, height_text = size_text.lower().split("x", maxsplit=1)
        width = int(width_text)
        height = int(height_text)
        if width <= 0 or height <= 0 or width > 0xFFFF or height > 0xFFFF:
            raise ValueError
        return width, height
    except ValueError as exc:
        raise ValueError(
            "Size must be provided as WIDTHxHEIGHT with positive integers up to 65535."
        ) from exc


def find_image_files(inputs: Sequence[Path]) -> List[Path]:
    """Expand folders to their sorted image files, keeping the given order."""
    images: List[Path] = []
    for item in inputs:
        if item.is_dir():
            images.extend(
                path for path in sorted(item.iterdir())
                if path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS
            )
        elif item.is_file():
            images.append(item)
        else:
            raise FileNotFoundError(f"Input not found: {item}")

    if not images:
        raise FileNotFoundError(
            "No supported image files found. Supported extensions: "
            f"{', '.join(sorted(IMAGE_EXTENSIONS))}"
        )
    return images


def frame_delays(count: int, delay: int, last_delay: int | None) -> List[int]:
    delays = [delay] * count
    if delays and last_delay is not None:
        delays[-1] = last_delay
    return delays


def assemble_gif(
    image_paths: Sequence[Path],
    delays: Sequence[int],
    loop: int,
    size: tuple[int, int],
) -> GifContainer:
    container = GifContainer(loop, *size)
    for path, delay in zip(image_paths, delays):
        try:
            container.add(path, delay)
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from exc
    return container


def run_assemble(args: argparse.Namespace) -> int:
    image_paths = find_image_files(args.inputs)
    size = parse_size(args.size)

    if len(image_paths) > MAX_FRAMES_WITHOUT_CONFIRM and not args.yes:
        print(f"This will assemble {len(image_paths)} frames.")
        response = input("Continue? [y/N] ").strip().lower()
        if response not in ("y", "yes"):
            print("Aborted.")
            return 0

    delays = frame_delays(len(image_paths), args.delay, args.last_delay)
    container = assemble_gif(image_paths, delays, args.loop, size)
    final_output = container.save(resolve_unique_path(args.output))
    if final_output != args.output:
        print(
            "Existing file detected. Saved new animation as"
            f" {final_output} instead."
        )
    print(
        f"Created GIF with {len(container)} frames "
        f"({container.width}x{container.height}) at {final_output}"
    )
    return 0


def run_preview(args: argparse.Namespace) -> int:
    if not args.video.is_file():
        raise FileNotFoundError(f"Video not found: {args.video}")
    config = PreviewConfig(
        size=args.size,
        count=args.count,
        loop=args.loop,
        film_border=not args.no_border,
    )
    data = build_gif_preview(args.video, config=config)
    if data is None:
        print(f"Error: No preview available for {args.video}", file=sys.stderr)
        return 1

    output = args.output or args.video.with_suffix(".gif")
    final_output = resolve_unique_path(output)
    final_output.parent.mkdir(parents=True, exist_ok=True)
    final_output.write_bytes(data)
    print(f"Created preview with {config.count} snapshots at {final_output}")
    return 0


def main(argv: Iterable[str]) -> int:
    try:
        args = parse_arguments(argv)
        if args.verbose:
            logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
        if args.command == "assemble":
            return run_assemble(args)
        return run_preview(args)
    except FileNotFoundError as not_found_err:
        print(f"Error: {not_found_err}", file=sys.stderr)
    except ValueError as value_err:
        print(f"Error: {value_err}", file=sys.stderr)
    except UpstreamFailure as upstream_err:
        print(f"Error: {upstream_err}", file=sys.stderr)
    except Exception as unexpected_err:  # noqa: BLE001
        print(f"Unexpected error: {unexpected_err}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
