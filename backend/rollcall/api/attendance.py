"""Attendance redemption, moderation and ledger endpoints."""
from flask import Blueprint, Response, current_app, request

from rollcall import limiter
from rollcall.models import Scope
from rollcall.utils.errors import ValidationError
from rollcall.utils.helpers import get_services, success_response
from rollcall.utils.validators import require_fields

attendance_bp = Blueprint('attendance', __name__)


def _flag(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes')


def _scope(source, required: bool = True) -> Scope:
    """Read ``session_id``/``class_id``/``all`` from query args or a JSON body."""
    scope = Scope.parse(
        session_id=source.get('session_id'),
        class_id=source.get('class_id'),
        everything=_flag(source.get('all', False))
    )
    if required and scope.is_everything and not _flag(source.get('all', False)):
        raise ValidationError("Provide session_id, class_id or all=true")
    return scope


def _redeem_limit():
    return current_app.config.get('REDEEM_RATE_LIMIT', '120 per minute')


@attendance_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Attendance service is running')


@attendance_bp.route('/redeem', methods=['POST'])
@limiter.limit(_redeem_limit)
def redeem():
    """
    Redeem a token.

    Body: participant_id, token, signature, and optionally
    client_timestamp, pin, device_hash, auth_method, display_name.
    The response carries the classification; duplicates return the
    existing record.
    """
    data = require_fields(request.get_json(silent=True), ['participant_id', 'token'])

    result = get_services().verification.verify(
        data['participant_id'],
        data['token'],
        data.get('signature'),
        data.get('client_timestamp'),
        pin=data.get('pin'),
        device_hash=data.get('device_hash'),
        auth_method=data.get('auth_method'),
        display_name=data.get('display_name')
    )
    if result.duplicate:
        message = 'Attendance already recorded'
    else:
        message = f'Attendance recorded as {result.state.value}'
    return success_response(
        data=result.to_dict(),
        message=message,
        status_code=200 if result.duplicate else 201
    )


@attendance_bp.route('/records/<record_id>/approve', methods=['POST'])
def approve(record_id):
    result = get_services().moderation.approve(record_id)
    return success_response(
        data=result.to_dict(),
        message='Record approved' if result.changed else 'Record already present'
    )


@attendance_bp.route('/records/<record_id>/reject', methods=['POST'])
def reject(record_id):
    result = get_services().moderation.reject(record_id)
    return success_response(
        data=result.to_dict(),
        message='Record rejected' if result.changed else 'Record already rejected'
    )


@attendance_bp.route('/bulk-approve', methods=['POST'])
def bulk_approve():
    """Approve every pending or flagged record of a session."""
    data = require_fields(request.get_json(silent=True), ['session_id', 'scope'])
    count = get_services().moderation.bulk_approve(data['session_id'], data['scope'])
    return success_response(data={'count': count}, message=f'{count} records approved')


@attendance_bp.route('/bulk-reject', methods=['POST'])
def bulk_reject():
    """Reject every pending or flagged record of a session."""
    data = require_fields(request.get_json(silent=True), ['session_id', 'scope'])
    count = get_services().moderation.bulk_reject(data['session_id'], data['scope'])
    return success_response(data={'count': count}, message=f'{count} records rejected')


@attendance_bp.route('/clear', methods=['POST'])
def clear():
    scope = _scope(request.get_json(silent=True) or request.args)
    deleted = get_services().moderation.clear_attendance(scope)
    return success_response(
        data={'deleted': deleted, 'scope': scope.to_dict()},
        message=f'Cleared {deleted} records'
    )


@attendance_bp.route('/export-and-clear', methods=['POST'])
def export_and_clear():
    """Export the scope as CSV, then clear it."""
    scope = _scope(request.get_json(silent=True) or request.args)
    result = get_services().moderation.export_and_clear(scope)
    message = result.warning or f'Exported and cleared {result.cleared} records'
    return success_response(data=result.to_dict(), message=message)


@attendance_bp.route('/export', methods=['GET'])
def export():
    """Download the scope as a CSV file without clearing it."""
    scope = _scope(request.args, required=False)
    result = get_services().moderation.export(scope)
    return Response(
        result.csv,
        mimetype='text/csv',
        headers={
            'Content-Disposition': f'attachment; filename={result.filename()}',
            'X-Record-Count': str(result.count)
        }
    )


@attendance_bp.route('/feed', methods=['GET'])
def feed():
    """Present/pending/flagged projection for polling dashboards."""
    scope = _scope(request.args, required=False)
    projection = get_services().feed.project(scope)
    return success_response(data=projection.to_dict())


@attendance_bp.route('/records', methods=['GET'])
def records():
    """Every record in scope, rejected ones included."""
    scope = _scope(request.args, required=False)
    entries = get_services().feed.records(scope)
    return success_response(data={'records': entries, 'total': len(entries)})
