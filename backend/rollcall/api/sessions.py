"""Session lifecycle and token endpoints."""
from flask import Blueprint, current_app, request

from rollcall.utils.errors import InvalidConfig
from rollcall.utils.helpers import get_services, success_response

sessions_bp = Blueprint('sessions', __name__)


@sessions_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Session service is running')


@sessions_bp.route('', methods=['POST'])
def start_session():
    """Start a session and issue its first token window."""
    data = request.get_json(silent=True) or {}
    interval = data.get('rotation_interval_seconds', current_app.config['DEFAULT_ROTATION_SECONDS'])
    if isinstance(interval, str) and interval.isdigit():
        interval = int(interval)

    session = get_services().sessions.start_session(
        data.get('class_id'),
        data.get('issuer_id'),
        interval
    )
    window = session.current_window
    return success_response(
        data={
            'session': session.to_dict(),
            'token': window.render_payload()
        },
        message='Session started',
        status_code=201
    )


@sessions_bp.route('', methods=['GET'])
def list_sessions():
    include_ended = request.args.get('include_ended', 'true').lower() != 'false'
    sessions = get_services().sessions.list_sessions(include_ended=include_ended)
    return success_response(data={
        'sessions': [s.to_dict() for s in sessions],
        'total': len(sessions)
    })


@sessions_bp.route('/<session_id>', methods=['GET'])
def get_session(session_id):
    session = get_services().sessions.get_session(session_id)
    return success_response(data=session.to_dict())


@sessions_bp.route('/<session_id>/token', methods=['GET'])
def current_token(session_id):
    """
    Current token window of a session.

    ``?format=qr`` adds a base64 PNG QR code of the payload.
    """
    services = get_services()
    session = services.sessions.get_session(session_id)
    window = services.sessions.current_window(session_id)

    fmt = request.args.get('format', 'json')
    if fmt == 'qr':
        return success_response(data=services.renderer.render(window, paused=session.is_paused))
    if fmt != 'json':
        raise InvalidConfig(f"Unsupported format: {fmt}")
    return success_response(data=window.render_payload(paused=session.is_paused))


@sessions_bp.route('/<session_id>/rotate', methods=['POST'])
def rotate(session_id):
    """Rotate now, ahead of the timer."""
    window = get_services().sessions.rotate_now(session_id)
    return success_response(data=window.render_payload(), message='Token rotated')


@sessions_bp.route('/<session_id>/pause', methods=['POST'])
def pause(session_id):
    session = get_services().sessions.pause(session_id)
    return success_response(data=session.to_dict(), message='Session paused')


@sessions_bp.route('/<session_id>/resume', methods=['POST'])
def resume(session_id):
    services = get_services()
    session = services.sessions.resume(session_id)
    return success_response(
        data={
            'session': session.to_dict(),
            'token': session.current_window.render_payload()
        },
        message='Session resumed'
    )


@sessions_bp.route('/<session_id>/end', methods=['POST'])
def end(session_id):
    session = get_services().sessions.end_session(session_id)
    return success_response(data=session.to_dict(), message='Session ended')


@sessions_bp.route('/<session_id>/timer', methods=['GET'])
def timer(session_id):
    """Rotation timer status for the issuer's countdown."""
    return success_response(data=get_services().sessions.timer_status(session_id))
