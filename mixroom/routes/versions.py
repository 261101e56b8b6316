from flask import Blueprint, current_app, jsonify

from mixroom.auth import STAFF_ROLES, current_user, require_track_access
from mixroom.errors import ForbiddenError, NotFoundError

bp = Blueprint("versions", __name__)


def _manager():
    return current_app.extensions["mixroom"]


@bp.get("/tracks/<track_id>/versions")
def list_versions(track_id):
    current_user()
    versions = _manager().list_versions(track_id)
    return jsonify([v.to_dict() for v in versions])


@bp.put("/tracks/<track_id>/versions/<version_id>/activate")
def activate(track_id, version_id):
    user = current_user()
    manager = _manager()
    require_track_access(user, manager.track(track_id))
    version = manager.activate(track_id, version_id)
    return jsonify(version.to_dict())


@bp.delete("/tracks/<track_id>/versions/<version_id>")
def delete_version(track_id, version_id):
    user = current_user()
    manager = _manager()
    require_track_access(user, manager.track(track_id))
    manager.delete(track_id, version_id)
    return jsonify({"ok": True})


@bp.get("/tracks/<track_id>/versions/<version_id>/waveform")
def waveform(track_id, version_id):
    current_user()
    data = _manager().get_waveform(track_id, version_id)
    return jsonify({"version_id": version_id, "waveform": data})


@bp.delete("/tracks/<track_id>")
def delete_track(track_id):
    user = current_user()
    manager = _manager()
    require_track_access(user, manager.track(track_id))
    manager.delete_track(track_id)
    return jsonify({"ok": True})


@bp.delete("/projects/<project_id>")
def delete_project(project_id):
    user = current_user()
    manager = _manager()
    project = manager.store.get_project(project_id)
    if project is None:
        raise NotFoundError("Project not found")
    if user.role not in STAFF_ROLES and project["user_id"] != user.id:
        raise ForbiddenError("Access denied")
    manager.delete_project(project_id)
    return jsonify({"ok": True})
