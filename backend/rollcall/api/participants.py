"""Participant enrollment endpoints."""
from flask import Blueprint, request

from rollcall.models import Participant
from rollcall.utils.errors import RecordNotFound, ValidationError
from rollcall.utils.helpers import get_services, success_response, utcnow
from rollcall.utils.validators import Validator, require_fields

participants_bp = Blueprint('participants', __name__)


@participants_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Participant service is running')


@participants_bp.route('', methods=['POST'])
def enroll():
    """
    Enroll or update a participant.

    A device hash, once bound, is kept unless the request supplies
    ``rebind_device``.
    """
    data = require_fields(request.get_json(silent=True), ['participant_id', 'display_name'])

    participant_id = data['participant_id']
    if not Validator.validate_identifier(participant_id):
        raise ValidationError("Invalid participant_id")
    name_check = Validator.validate_name(data['display_name'])
    if not name_check['is_valid']:
        raise ValidationError('; '.join(name_check['errors']))

    store = get_services().store
    existing = store.get_participant(participant_id)
    device_hash = data.get('device_hash') or None

    if existing is None:
        participant = Participant(
            participant_id=participant_id,
            display_name=data['display_name'].strip(),
            enrolled_at=utcnow(),
            device_hash=device_hash
        )
        status_code, message = 201, 'Participant enrolled'
    else:
        keep_device = existing.device_hash and not data.get('rebind_device')
        participant = existing.copy(
            display_name=data['display_name'].strip(),
            device_hash=existing.device_hash if keep_device else (device_hash or existing.device_hash)
        )
        status_code, message = 200, 'Participant updated'

    participant = store.save_participant(participant)
    return success_response(data=participant.to_dict(), message=message, status_code=status_code)


@participants_bp.route('/<participant_id>', methods=['GET'])
def get_participant(participant_id):
    participant = get_services().store.get_participant(participant_id)
    if participant is None:
        raise RecordNotFound(f"Participant {participant_id} not found", participant_id=participant_id)
    return success_response(data=participant.to_dict())
