"""
gifmux - Local Server
Flask-based server that multiplexes uploaded GIF frames and builds video
previews on the local machine.
"""

import os
import sys
import tempfile
from io import BytesIO
from pathlib import Path

from flask import Flask, request, send_file, jsonify
from flask_cors import CORS

# Add the repository root so the gifmux package imports without installation
REPO_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(REPO_ROOT))

from gifmux import (
    FormatError,
    GifContainer,
    PreviewConfig,
    UpstreamFailure,
    __version__,
    build_gif_preview,
    ffmpeg_available,
)

# Configuration
HOST = os.environ.get("GIFMUX_HOST", "localhost")
PORT = int(os.environ.get("GIFMUX_PORT", "5000"))
MAX_PREVIEW_SIZE = 1000
MAX_PREVIEW_COUNT = 60

app = Flask(__name__)
CORS(app)


def int_field(name: str, default: int) -> int:
    """Read an integer form field, raising ValueError with the field name."""
    raw = request.form.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Field '{name}' must be an integer.") from exc


@app.route("/api/health")
def health_check():
    return jsonify({"status": "healthy", "version": __version__, "ffmpeg": ffmpeg_available()})


@app.route("/api/assemble", methods=["POST"])
def assemble():
    """Multiplex uploaded single-frame images into one animated GIF."""
    try:
        delay = int_field("delay", 20)
        last_delay = int_field("lastDelay", delay)
        loop = int_field("loop", 0)
        uploads = request.files.getlist("frames")

        if not uploads:
            return jsonify({"error": "No frames provided"}), 400

        container = GifContainer(loop)
        for index, upload in enumerate(uploads):
            frame_delay = last_delay if index == len(uploads) - 1 else delay
            try:
                container.add(upload.read(), frame_delay)
            except FormatError as e:
                return jsonify({"error": f"{upload.filename or f'frame {index + 1}'}: {e}"}), 400

        return send_file(
            BytesIO(container.serialize()),
            mimetype="image/gif",
            as_attachment=True,
            download_name="animation.gif",
        )

    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        print(f"Error assembling GIF: {e}")
        import traceback
        traceback.print_exc()
        return jsonify({"error": str(e)}), 500


@app.route("/api/preview", methods=["POST"])
def preview():
    """Build an animated preview of an uploaded video."""
    if not ffmpeg_available():
        return jsonify({"error": "ffmpeg and ffprobe are required for previews"}), 503

    video = request.files.get("video")
    if video is None:
        return jsonify({"error": "No video provided"}), 400

    try:
        size = int_field("size", 100)
        count = int_field("count", 9)
        if not 0 < size <= MAX_PREVIEW_SIZE or not 0 < count <= MAX_PREVIEW_COUNT:
            return jsonify({"error": "Size or count out of range"}), 400

        suffix = Path(video.filename or "").suffix or ".bin"
        with tempfile.TemporaryDirectory() as workdir:
            video_path = Path(workdir) / f"upload{suffix}"
            video.save(video_path)
            data = build_gif_preview(video_path, config=PreviewConfig(size=size, count=count))

        if data is None:
            return jsonify({"error": "Preview unavailable for this video"}), 422

        return send_file(
            BytesIO(data),
            mimetype="image/gif",
            as_attachment=True,
            download_name="preview.gif",
        )

    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except UpstreamFailure as e:
        return jsonify({"error": str(e)}), 502
    except Exception as e:
        print(f"Error building preview: {e}")
        import traceback
        traceback.print_exc()
        return jsonify({"error": str(e)}), 500


def main():
    """Run the server."""
    print("=" * 50)
    print("gifmux - Local Server")
    print("=" * 50)
    print(f"\nffmpeg available: {ffmpeg_available()}")
    print(f"Listening on http://{HOST}:{PORT}")
    print("Press Ctrl+C to stop the server.\n")

    app.run(host=HOST, port=PORT, debug=False)


if __name__ == "__main__":
    main()
