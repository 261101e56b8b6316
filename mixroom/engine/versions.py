"""Version lifecycle for (track, version type) keys.

Every key holds an ordered history of versions of which exactly one is
active.  Numbering, activation and deletion for a key are serialized by a
per-key lock and performed inside a single store transaction; keys never
block each other.  Audio processing runs on a bounded worker pool before any
lock is taken, so a slow render does not hold up other uploads.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import CancelledError, ThreadPoolExecutor
from contextlib import ExitStack
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .. import util_fs
from ..errors import ConflictError, NotFoundError, ProcessingCancelled
from ..models import specs
from ..models.records import AudioVersion, NormalizationResult, Track
from ..models.specs import VersionType
from ..store import Store
from ..waveform import peaks_for_file

log = logging.getLogger(__name__)


class KeyLocks:
    """Lazily created lock per key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, VersionType], threading.Lock] = {}

    def get(self, key) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def discard(self, keys) -> None:
        with self._guard:
            for key in keys:
                self._locks.pop(key, None)

    def __contains__(self, key) -> bool:
        with self._guard:
            return key in self._locks


class VersionManager:
    def __init__(
        self,
        store: Store,
        normalizer,
        storage_root,
        workers: int = 2,
        waveform_width: int = 1000,
    ):
        self.store = store
        self.normalizer = normalizer
        self.root = util_fs.storage_root(storage_root)
        self.waveform_width = waveform_width
        self._locks = KeyLocks()
        self._inflight: Set[threading.Event] = set()
        self._inflight_guard = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="mixroom-proc")

    def shutdown(self) -> None:
        """Cancel in-flight processing and wait for the workers to exit."""
        with self._inflight_guard:
            for event in self._inflight:
                event.set()
        self._pool.shutdown(wait=True, cancel_futures=True)

    # -- queries -------------------------------------------------------------

    def track(self, track_id: str) -> Track:
        track = self.store.get_track(track_id)
        if track is None:
            raise NotFoundError("Track not found")
        return track

    def list_versions(self, track_id: str) -> List[AudioVersion]:
        self.track(track_id)
        return self.store.list_versions(track_id)

    def version(self, track_id: str, version_id: str) -> AudioVersion:
        version = self.store.get_version(version_id)
        if version is None or version.track_id != track_id:
            raise NotFoundError("Version not found")
        return version

    def get_waveform(self, track_id: str, version_id: str) -> Optional[List[float]]:
        return self.version(track_id, version_id).waveform_data

    # -- upload --------------------------------------------------------------

    def upload(
        self,
        track_id: str,
        version_type: VersionType,
        source_path,
        original_name: str,
        cancel: Optional[threading.Event] = None,
    ) -> AudioVersion:
        """Process ``source_path`` and append it as the new active version."""
        track = self.track(track_id)
        source_path = Path(source_path)
        if specs.target_for(version_type) is not None:
            ext = ".wav"
        else:
            ext = (Path(original_name).suffix or source_path.suffix).lower()
        if cancel is None:
            cancel = threading.Event()
        staged = util_fs.incoming_path(self.root, ext)
        with self._inflight_guard:
            self._inflight.add(cancel)
        try:
            try:
                future = self._pool.submit(self._process, source_path, staged, version_type, cancel)
            except RuntimeError:
                raise ProcessingCancelled("processing pool is shut down")
            try:
                result, waveform = future.result()
            except CancelledError:
                raise ProcessingCancelled("processing cancelled before it started")
            if cancel.is_set():
                raise ProcessingCancelled("processing cancelled")
            version = self._commit(track, version_type, staged, original_name, ext, result, waveform)
        finally:
            with self._inflight_guard:
                self._inflight.discard(cancel)
            util_fs.unlink_quietly(staged)
        log.info(
            "Track %s: %s v%d uploaded (%s, lufs=%s)",
            track_id, version_type.value, version.version_number, version.file_name, version.lufs_level,
        )
        return version

    def _process(self, source: Path, staged: Path, version_type: VersionType, cancel):
        result = self.normalizer.normalize(source, staged, version_type, cancel=cancel)
        waveform = None
        if version_type is not VersionType.ATMOS:
            try:
                waveform = peaks_for_file(staged, self.waveform_width)
            except (RuntimeError, OSError, ValueError) as exc:
                log.warning("No waveform for %s: %s", staged.name, exc)
        return result, waveform

    def _commit(
        self,
        track: Track,
        version_type: VersionType,
        staged: Path,
        original_name: str,
        ext: str,
        result: NormalizationResult,
        waveform,
    ) -> AudioVersion:
        moved = None
        with self._locks.get((track.id, version_type)):
            try:
                with self.store.transaction() as conn:
                    if self.store.get_track(track.id) is None:
                        raise NotFoundError("Track not found")
                    number = self.store.next_version_number(conn, track.id, version_type)
                    rel = util_fs.version_relpath(
                        track.project_id, track.id, version_type.value, number, original_name, ext
                    )
                    dst = self.root / rel
                    util_fs.move_into_place(staged, dst)
                    moved = dst
                    vid = self.store.insert_version(
                        conn,
                        track_id=track.id,
                        version_type=version_type,
                        version_number=number,
                        file_name=dst.name,
                        file_path=rel.as_posix(),
                        file_size=dst.stat().st_size,
                        is_normalized=result.is_normalized,
                        lufs_level=result.lufs_level,
                        waveform_data=waveform,
                    )
                    self.store.activate(conn, self.store.get_version(vid, conn))
            except BaseException:
                if moved is not None:
                    util_fs.unlink_quietly(moved)
                raise
        return self.store.get_version(vid)

    # -- activation / deletion -----------------------------------------------

    def activate(self, track_id: str, version_id: str) -> AudioVersion:
        version = self.version(track_id, version_id)
        with self._locks.get((track_id, version.version_type)):
            with self.store.transaction() as conn:
                current = self.store.get_version(version_id, conn)
                if current is None:
                    raise NotFoundError("Version not found")
                self.store.activate(conn, current)
        log.info("Track %s: %s v%d activated", track_id, version.version_type.value, version.version_number)
        return self.store.get_version(version_id)

    def delete(self, track_id: str, version_id: str) -> None:
        version = self.version(track_id, version_id)
        with self._locks.get((track_id, version.version_type)):
            with self.store.transaction() as conn:
                current = self.store.get_version(version_id, conn)
                if current is None:
                    raise NotFoundError("Version not found")
                siblings = self.store.list_versions(track_id, current.version_type, conn)
                if len(siblings) <= 1:
                    raise ConflictError("Cannot delete the only version of this type")
                self.store.delete_version(conn, version_id)
                if current.is_active:
                    # siblings are ordered newest first
                    promoted = next(v for v in siblings if v.id != version_id)
                    self.store.activate(conn, promoted)
        if not util_fs.unlink_quietly(self.root / current.file_path):
            log.warning("Version %s removed but its file %s was left behind", version_id, current.file_path)
        log.info("Track %s: %s v%d deleted", track_id, current.version_type.value, current.version_number)

    def delete_track(self, track_id: str) -> None:
        track = self.track(track_id)
        reldir = util_fs.track_dir(track.project_id, track.id)
        with ExitStack() as stack:
            for version_type in VersionType:
                stack.enter_context(self._locks.get((track.id, version_type)))
            staged = util_fs.stage_for_removal(self.root, reldir)
            try:
                with self.store.transaction() as conn:
                    self.store.delete_track(conn, track.id)
            except BaseException:
                util_fs.restore(staged, self.root, reldir)
                raise
        util_fs.purge(staged)
        self._locks.discard([(track.id, vt) for vt in VersionType])
        log.info("Track %s deleted", track_id)

    def delete_project(self, project_id: str) -> None:
        if self.store.get_project(project_id) is None:
            raise NotFoundError("Project not found")
        reldir = util_fs.project_dir(project_id)
        track_ids = sorted(self.store.track_ids(project_id))
        with ExitStack() as stack:
            for track_id in track_ids:
                for version_type in VersionType:
                    stack.enter_context(self._locks.get((track_id, version_type)))
            staged = util_fs.stage_for_removal(self.root, reldir)
            try:
                with self.store.transaction() as conn:
                    self.store.delete_project(conn, project_id)
            except BaseException:
                util_fs.restore(staged, self.root, reldir)
                raise
        util_fs.purge(staged)
        self._locks.discard([(tid, vt) for tid in track_ids for vt in VersionType])
        log.info("Project %s deleted", project_id)
