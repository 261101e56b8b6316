import logging
import os
from pathlib import Path

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from . import settings
from .engine.normalize import FfmpegNormalizer
from .engine.versions import VersionManager
from .errors import MixroomError
from .log import configure_logging
from .services.ffmpeg import tool_available
from .store import Store
from .util_fs import storage_root

log = logging.getLogger(__name__)

CONFIG_KEYS = (
    "STORAGE_ROOT",
    "DATABASE_PATH",
    "MAX_UPLOAD_MB",
    "PROCESSING_WORKERS",
    "FFMPEG_TIMEOUT",
    "WAVEFORM_WIDTH",
    "STREAM_MAX_AGE",
    "CORS_ORIGIN",
    "LOG_LEVEL",
    "LOG_FILE",
)


def create_app(overrides: dict | None = None, normalizer=None):
    """Create and configure the Flask application.

    Configuration is read from :mod:`mixroom.settings` (environment
    variables) and then updated with ``overrides``.  The storage root is
    resolved to an absolute directory and created; the database defaults to
    ``mixroom.db`` in the working directory, outside the storage root so it
    can never be streamed.

    ``normalizer`` replaces the ffmpeg-backed engine; it must provide
    ``analyze(path)`` and ``normalize(input, output, version_type, cancel=)``.
    """
    app = Flask(__name__)
    for key in CONFIG_KEYS:
        app.config[key] = getattr(settings, key)
    app.config.update(overrides or {})

    configure_logging(app.config["LOG_LEVEL"], app.config["LOG_FILE"] or None)

    root = storage_root(app.config["STORAGE_ROOT"])
    app.config["STORAGE_ROOT"] = root
    db_path = app.config["DATABASE_PATH"] or os.path.join(os.getcwd(), "mixroom.db")
    app.config["DATABASE_PATH"] = str(Path(db_path).resolve())
    # multipart framing on top of the file itself
    app.config["MAX_CONTENT_LENGTH"] = (app.config["MAX_UPLOAD_MB"] + 1) * 1024 * 1024

    store = Store(app.config["DATABASE_PATH"])
    app.extensions["mixroom"] = VersionManager(
        store,
        normalizer or FfmpegNormalizer(timeout=app.config["FFMPEG_TIMEOUT"]),
        root,
        workers=app.config["PROCESSING_WORKERS"],
        waveform_width=app.config["WAVEFORM_WIDTH"],
    )

    @app.errorhandler(MixroomError)
    def mixroom_error(e):
        if e.status_code >= 500:
            log.error("%s: %s %s", type(e).__name__, e.message, e.diagnostics)
        body = {"ok": False, "error": e.public_message}
        if e.retryable:
            body["retryable"] = True
        return jsonify(body), e.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def too_large(e):
        limit = app.config["MAX_UPLOAD_MB"]
        return jsonify({"ok": False, "error": f"File size too large. Maximum {limit}MB"}), 413

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"ok": False, "error": e.description}), e.code

    @app.get("/healthz")
    def healthz():
        return jsonify({"status": "ok", "ffmpeg": tool_available("ffmpeg"), "ffprobe": tool_available("ffprobe")})

    from .routes.stream import bp as stream_bp
    from .routes.upload import bp as upload_bp
    from .routes.versions import bp as versions_bp

    app.register_blueprint(stream_bp)
    app.register_blueprint(upload_bp)
    app.register_blueprint(versions_bp)

    return app


__all__ = ["create_app"]
