from pathlib import Path, PurePosixPath
import logging
import os
import re
import shutil
import uuid

from .errors import StorageError, ValidationError

log = logging.getLogger(__name__)

INCOMING_DIR = ".incoming"
TRASH_DIR = ".trash"


def storage_root(root) -> Path:
    """Return the absolute, existing storage root."""
    p = Path(root).expanduser().resolve()
    p.mkdir(parents=True, exist_ok=True)
    return p


def safe_stem(filename: str, fallback: str = "mix") -> str:
    stem = Path(filename or "").stem
    stem = re.sub(r"[^A-Za-z0-9_\-]+", "_", stem).strip("_")
    return stem or fallback


def track_dir(project_id: str, track_id: str) -> PurePosixPath:
    return PurePosixPath("projects", project_id, track_id)


def project_dir(project_id: str) -> PurePosixPath:
    return PurePosixPath("projects", project_id)


def version_relpath(project_id, track_id, version_type, number, original_name, ext) -> PurePosixPath:
    """Storage-relative path of one version; unique per (track, type, number)."""
    kind = version_type.lower()
    name = f"v{number}_{safe_stem(original_name)}_{kind}{ext.lower()}"
    return track_dir(project_id, track_id) / kind / name


def resolve(root, relpath: str) -> Path:
    """Map a storage-relative path onto ``root``.

    ``relpath`` must already be decoded exactly once by the caller.  Absolute
    paths, NUL bytes, ``..`` and hidden segments (staging and trash areas)
    are refused, and the resolved path must stay inside ``root`` even after
    symlinks are followed.
    """
    base = Path(root).resolve()
    if not relpath or "\x00" in relpath or "\\" in relpath:
        raise ValidationError("Invalid path")
    rel = PurePosixPath(relpath)
    if rel.is_absolute() or any(part.startswith(".") for part in rel.parts):
        raise ValidationError("Invalid path")
    target = (base / relpath).resolve()
    if target != base and base not in target.parents:
        raise ValidationError("Invalid path")
    return target


def incoming_path(root, ext: str) -> Path:
    d = Path(root) / INCOMING_DIR
    d.mkdir(parents=True, exist_ok=True)
    return d / f"{uuid.uuid4().hex}{ext.lower()}"


def move_into_place(src: Path, dst: Path) -> None:
    """Atomically move ``src`` to ``dst``, creating parent directories."""
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        os.replace(src, dst)
    except OSError as exc:
        raise StorageError(f"Could not store {dst}: {exc}")


def unlink_quietly(path: Path) -> bool:
    """Remove ``path`` if present.  Failures are logged, never raised."""
    try:
        Path(path).unlink(missing_ok=True)
        return True
    except OSError as exc:
        log.warning("Could not delete %s: %s", path, exc)
        return False


def stage_for_removal(root, reldir: PurePosixPath) -> Path | None:
    """Move ``reldir`` into the trash area, returning its new location.

    Returns ``None`` when the directory does not exist.
    """
    src = Path(root) / reldir
    if not src.exists():
        return None
    trash = Path(root) / TRASH_DIR
    trash.mkdir(parents=True, exist_ok=True)
    dst = trash / uuid.uuid4().hex
    try:
        os.replace(src, dst)
    except OSError as exc:
        raise StorageError(f"Could not stage {src} for removal: {exc}")
    return dst


def restore(staged: Path | None, root, reldir: PurePosixPath) -> None:
    if staged is None:
        return
    dst = Path(root) / reldir
    dst.parent.mkdir(parents=True, exist_ok=True)
    os.replace(staged, dst)


def purge(staged: Path | None) -> None:
    if staged is None:
        return
    try:
        shutil.rmtree(staged)
    except OSError as exc:
        log.warning("Could not remove %s: %s", staged, exc)
