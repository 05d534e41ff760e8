"""Routes for the API blueprint."""

from flask import current_app, g, jsonify, request, session

from basket.errors import ValidationError
from basket.extensions import sessions
from basket.storage.visits import Scope
from basket.sync.pipeline import Outcome

from . import bp
from .decorators import session_required

OUTCOME_STATUS = {
    Outcome.CONFIRMED: 200,
    Outcome.DEFERRED: 202,
    Outcome.REJECTED: 409,
}


def _payload():
    return request.get_json(silent=True) or {}


def _outcome_response(outcome):
    """Render a mutation outcome together with any notices it produced."""
    notices = [n.to_dict() for n in g.sync.notices.drain()]
    return (
        jsonify({"outcome": outcome.value, "notices": notices}),
        OUTCOME_STATUS[outcome],
    )


@bp.route("/session", methods=["POST"])
def select_user():
    """Select which user this device syncs for."""
    user_id = (_payload().get("userId") or "").strip()
    if not user_id:
        raise ValidationError("userId is required.")
    session["user_id"] = user_id
    return jsonify({"userId": user_id})


@bp.route("/session", methods=["DELETE"])
def clear_user():
    """Stop syncing for the current device user."""
    user_id = g.get("user_id")
    session.pop("user_id", None)
    if user_id:
        sessions.close(user_id)
    return jsonify({"userId": None})


@bp.route("/status")
@session_required
def status():
    """Connectivity, pending work and snapshot state for the device user."""
    data = g.sync.status()
    data["pending"] = [
        {"id": op.id, "kind": op.kind, "description": op.description, "timestamp": op.timestamp}
        for op in g.sync.pending.all()
    ]
    return jsonify(data)


@bp.route("/connectivity", methods=["POST"])
@session_required
def report_connectivity():
    """Report whether the device can reach the store."""
    online = _payload().get("online")
    if not isinstance(online, bool):
        raise ValidationError("online must be true or false.")
    changed = g.sync.set_online(online)
    current_app.logger.info(f"Connectivity reported: online={online} (changed={changed})")
    return jsonify({"online": g.sync.connectivity.is_online, "changed": changed})


@bp.route("/notices")
@session_required
def notices():
    """Drain the notices posted since the last call."""
    return jsonify({"notices": [n.to_dict() for n in g.sync.notices.drain()]})


@bp.route("/profile")
@session_required
def profile():
    """The device user's profile; null when it could not be resolved in time."""
    resolved = g.sync.resolve_profile()
    return jsonify({"profile": resolved.to_dict() if resolved else None})


@bp.route("/profile", methods=["PATCH"])
@session_required
def update_profile():
    """Change the device user's display name."""
    return _outcome_response(
        g.sync.pipeline.update_display_name(_payload().get("displayName") or "")
    )


@bp.route("/visits/<scope>/<scope_id>", methods=["POST"])
@session_required
def mark_visited(scope, scope_id):
    """Record that the user opened a group, list or chat."""
    try:
        scope = Scope(scope)
    except ValueError:
        raise ValidationError(f"Unknown scope: {scope}") from None
    last_visit = g.sync.mark_visited(scope, scope_id)
    return jsonify({"scope": scope.value, "id": scope_id, "lastVisit": last_visit})


# Groups


@bp.route("/groups")
@session_required
def list_groups():
    """Groups the user belongs to, with unread flags."""
    return jsonify(g.sync.groups_view().to_dict())


@bp.route("/groups", methods=["POST"])
@session_required
def create_group():
    """Create a group owned by the user."""
    return _outcome_response(g.sync.pipeline.create_group(_payload().get("name") or ""))


@bp.route("/groups/<group_id>", methods=["PATCH"])
@session_required
def rename_group(group_id):
    """Rename a group (owner only)."""
    return _outcome_response(
        g.sync.pipeline.rename_group(group_id, _payload().get("name") or "")
    )


@bp.route("/groups/<group_id>", methods=["DELETE"])
@session_required
def delete_group(group_id):
    """Delete a group with all its lists and items (owner only)."""
    return _outcome_response(g.sync.pipeline.delete_group(group_id))


@bp.route("/groups/<group_id>/members", methods=["POST"])
@session_required
def add_member(group_id):
    """Add a user to the group by display name."""
    return _outcome_response(
        g.sync.pipeline.add_member(group_id, _payload().get("displayName") or "")
    )


@bp.route("/groups/<group_id>/members/<member_id>", methods=["DELETE"])
@session_required
def remove_member(group_id, member_id):
    """Remove a member from the group (owner only)."""
    return _outcome_response(g.sync.pipeline.remove_member(group_id, member_id))


@bp.route("/groups/<group_id>/leave", methods=["POST"])
@session_required
def leave_group(group_id):
    """Leave a group."""
    return _outcome_response(g.sync.pipeline.leave_group(group_id))


# Lists


@bp.route("/groups/<group_id>/lists")
@session_required
def list_lists(group_id):
    """Shopping lists of a group."""
    return jsonify(g.sync.lists_view(group_id).to_dict())


@bp.route("/groups/<group_id>/lists", methods=["POST"])
@session_required
def create_list(group_id):
    """Create a shopping list in the group."""
    return _outcome_response(
        g.sync.pipeline.create_list(group_id, _payload().get("name") or "")
    )


@bp.route("/lists/<list_id>", methods=["PATCH"])
@session_required
def rename_list(list_id):
    """Rename a shopping list."""
    return _outcome_response(
        g.sync.pipeline.rename_list(list_id, _payload().get("name") or "")
    )


@bp.route("/lists/<list_id>", methods=["DELETE"])
@session_required
def delete_list(list_id):
    """Delete a shopping list and its items."""
    return _outcome_response(g.sync.pipeline.delete_list(list_id))


# Items


@bp.route("/lists/<list_id>/items")
@session_required
def list_items(list_id):
    """Items of a shopping list with pending and unread flags."""
    return jsonify(g.sync.items_view(list_id).to_dict())


@bp.route("/lists/<list_id>/items", methods=["POST"])
@session_required
def add_item(list_id):
    """Add an item to a shopping list."""
    data = _payload()
    return _outcome_response(
        g.sync.pipeline.add_item(list_id, data.get("text") or "", data.get("photoURL"))
    )


@bp.route("/lists/<list_id>/items/<item_id>/toggle", methods=["POST"])
@session_required
def toggle_item(list_id, item_id):
    """Flip an item's done flag, or set it when ``done`` is given."""
    done = _payload().get("done")
    if done is not None and not isinstance(done, bool):
        raise ValidationError("done must be true or false.")
    return _outcome_response(g.sync.pipeline.toggle_item(list_id, item_id, done))


@bp.route("/lists/<list_id>/items/<item_id>", methods=["PATCH"])
@session_required
def edit_item(list_id, item_id):
    """Change an item's text or photo."""
    data = _payload()
    return _outcome_response(
        g.sync.pipeline.edit_item(list_id, item_id, data.get("text") or "", data.get("photoURL"))
    )


@bp.route("/lists/<list_id>/items/<item_id>", methods=["DELETE"])
@session_required
def delete_item(list_id, item_id):
    """Delete an item."""
    return _outcome_response(g.sync.pipeline.delete_item(list_id, item_id))


# Chat


@bp.route("/groups/<group_id>/chat")
@session_required
def chat(group_id):
    """Messages of the group chat, newest first."""
    return jsonify(g.sync.chat_view(group_id).to_dict())


@bp.route("/groups/<group_id>/chat", methods=["POST"])
@session_required
def send_message(group_id):
    """Send a chat message."""
    data = _payload()
    return _outcome_response(
        g.sync.pipeline.send_message(group_id, data.get("text") or "", data.get("imageUrls"))
    )


# Backup


@bp.route("/backup")
@session_required
def backup_info():
    """Existence, size and modification time of the device snapshot."""
    return jsonify(g.sync.snapshots.info())


@bp.route("/backup", methods=["POST"])
@session_required
def backup_now():
    """Write a snapshot now, subject to the backup interval and connectivity."""
    written = g.sync.backup.perform("manual")
    return jsonify({"written": written, **g.sync.snapshots.info()})


@bp.route("/backup", methods=["DELETE"])
@session_required
def delete_backup():
    """Remove the device snapshot."""
    g.sync.delete_backup()
    return jsonify(g.sync.snapshots.info())
