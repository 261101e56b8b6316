import logging
import threading
from pathlib import Path

from flask import Blueprint, current_app, request, jsonify
from werkzeug.utils import secure_filename

from mixroom import util_fs
from mixroom.auth import current_user, require_track_access
from mixroom.errors import ValidationError
from mixroom.models import specs
from mixroom.models.specs import VersionType

bp = Blueprint("upload", __name__)
log = logging.getLogger(__name__)


def _check_type(filename: str, mimetype: str | None, version_type: VersionType) -> None:
    ext = Path(filename).suffix.lower()
    allowed = specs.ALLOWED_EXTS[version_type]
    if ext not in allowed:
        if version_type is VersionType.ATMOS:
            raise ValidationError("Invalid file type. Allowed for Atmos: BIN, WAV, MP3, FLAC, AIFF")
        raise ValidationError("Invalid file type. Allowed: WAV, MP3, FLAC, AIFF")
    if not specs.mimetype_allowed(mimetype):
        raise ValidationError(f"Unsupported content type {mimetype}")


@bp.post("/upload/audio")
def upload():
    user = current_user()
    f = request.files.get("file")
    track_id = (request.form.get("trackId") or "").strip()
    raw_type = request.form.get("versionType") or ""
    if f is None or not f.filename or not track_id or not raw_type:
        raise ValidationError("File, trackId, and versionType are required")

    version_type = VersionType.parse(raw_type)
    if version_type is None:
        raise ValidationError("Invalid version type")
    _check_type(f.filename, f.mimetype, version_type)

    manager = current_app.extensions["mixroom"]
    require_track_access(user, manager.track(track_id))

    # secure_filename drops non-ASCII text, so the suffix comes from the raw name
    ext = Path(f.filename).suffix.lower()
    stem = secure_filename(Path(f.filename).stem) or "upload"
    original_name = f"{stem}{ext}"
    src = util_fs.incoming_path(current_app.config["STORAGE_ROOT"], ext)
    cancel = threading.Event()
    try:
        f.save(src)
        max_bytes = current_app.config["MAX_UPLOAD_MB"] * 1024 * 1024
        if src.stat().st_size > max_bytes:
            raise ValidationError(
                f"File size too large. Maximum {current_app.config['MAX_UPLOAD_MB']}MB", status_code=413
            )
        version = manager.upload(track_id, version_type, src, original_name, cancel=cancel)
    finally:
        util_fs.unlink_quietly(src)

    return (
        jsonify(
            {
                "ok": True,
                "audio_version": version.to_dict(),
                "message": f"{version_type.value} version uploaded successfully",
            }
        ),
        201,
    )
