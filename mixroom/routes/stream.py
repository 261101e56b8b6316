from flask import Blueprint, current_app, request, abort, Response
from pathlib import Path
import logging
import re

from mixroom.errors import StorageError
from mixroom.util_fs import resolve

bp = Blueprint("stream", __name__)
log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
    ".aif": "audio/aiff",
    ".aiff": "audio/aiff",
}

_RANGE = re.compile(r"^bytes=(\d*)-(\d*)$")


class RangeNotSatisfiable(Exception):
    pass


def content_type_for(path: Path) -> str:
    return CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")


def parse_range(header: str | None, size: int):
    """Return ``(start, end)`` for a single byte range, or ``None`` to send all.

    Malformed and multi-range headers are ignored.  Raises
    ``RangeNotSatisfiable`` when the range lies outside the file.
    """
    if not header:
        return None
    m = _RANGE.match(header.strip())
    if not m or (not m.group(1) and not m.group(2)):
        return None
    start_s, end_s = m.groups()
    if not start_s:
        # suffix range: last N bytes
        length = int(end_s)
        if length == 0 or size == 0:
            raise RangeNotSatisfiable()
        return max(0, size - length), size - 1
    start = int(start_s)
    end = int(end_s) if end_s else size - 1
    if start >= size or end < start:
        raise RangeNotSatisfiable()
    return start, min(end, size - 1)


def _cors_headers() -> dict:
    return {
        "Access-Control-Allow-Origin": current_app.config["CORS_ORIGIN"],
        "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
        "Access-Control-Allow-Headers": "Range",
        "Access-Control-Expose-Headers": "Content-Range, Content-Length, Accept-Ranges",
    }


def _iter_file(fh, remaining: int):
    try:
        while remaining > 0:
            chunk = fh.read(min(CHUNK_SIZE, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
    finally:
        fh.close()


@bp.route("/audio-stream/<path:file_path>", methods=["GET", "OPTIONS"])
def stream(file_path):
    if request.method == "OPTIONS":
        return Response(status=200, headers=_cors_headers())
    # file_path was percent-decoded once by the WSGI layer; it is never decoded again
    p = resolve(current_app.config["STORAGE_ROOT"], file_path)
    if not p.is_file():
        abort(404)

    headers = {
        "Accept-Ranges": "bytes",
        "Cache-Control": f"public, max-age={current_app.config['STREAM_MAX_AGE']}, immutable",
        **_cors_headers(),
    }
    try:
        size = p.stat().st_size
    except OSError as exc:
        raise StorageError(f"Could not read {p}: {exc}")
    try:
        rng = parse_range(request.headers.get("Range"), size)
    except RangeNotSatisfiable:
        headers["Content-Range"] = f"bytes */{size}"
        return Response(status=416, headers=headers)
    if rng is None:
        code, start, length = 200, 0, size
    else:
        start, end = rng
        code, length = 206, end - start + 1
        headers["Content-Range"] = f"bytes {start}-{end}/{size}"
    mimetype = content_type_for(p)

    if request.method == "HEAD":
        resp = Response(status=code, headers=headers, mimetype=mimetype)
        # an empty body would otherwise report Content-Length: 0
        resp.headers["Content-Length"] = str(length)
        return resp

    try:
        fh = p.open("rb")
    except OSError as exc:
        raise StorageError(f"Could not read {p}: {exc}")
    try:
        fh.seek(start)
    except OSError as exc:
        fh.close()
        raise StorageError(f"Could not read {p}: {exc}")

    headers["Content-Length"] = str(length)
    return Response(_iter_file(fh, length), status=code, headers=headers, mimetype=mimetype)
