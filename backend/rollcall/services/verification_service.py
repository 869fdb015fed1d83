"""Redemption verification pipeline."""
import hmac
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from rollcall.models import AttendanceRecord, ClassificationState, FlagReason, Participant
from rollcall.services.session_service import SessionService, TokenLookup
from rollcall.services.signature_service import SignatureVerifier
from rollcall.storage.base import LedgerStore
from rollcall.utils.errors import InvalidConfig, SessionEnded, UnknownToken, ValidationError
from rollcall.utils.helpers import utcnow
from rollcall.utils.validators import Validator

logger = logging.getLogger(__name__)

GRACE_POLICIES = ('pending', 'accept')
FALLBACK_AUTH = 'fallback'
CLIENT_TIMESTAMP_MAX_LENGTH = 64


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of one redemption."""
    state: ClassificationState
    record: AttendanceRecord
    reason: Optional[str] = None
    duplicate: bool = False
    superseded_record_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'reason': self.reason,
            'duplicate': self.duplicate,
            'superseded_record_id': self.superseded_record_id,
            'record': self.record.to_dict()
        }


class VerificationService:
    """
    Classifies redemptions and writes the outcome to the ledger.

    Decision order:
        1. unknown token              -> UnknownToken (no record)
        2. ended session              -> SessionEnded (no record)
        3. age < 0 or > ttl + grace   -> flagged/expired
        4. missing or bad signature   -> flagged/missing_signature, invalid_signature
        5. fallback auth, other device, wrong PIN -> flagged
        6. already present            -> duplicate, existing record returned
        7. current window within ttl  -> present
        8. previous window within grace of the rotation -> pending
        9. anything else              -> flagged/stale_or_replayed

    A current window of a paused session has no upper age bound.
    """

    def __init__(
        self,
        sessions: SessionService,
        store: LedgerStore,
        clock: Callable[[], datetime] = utcnow,
        grace_seconds: int = 5,
        grace_policy: str = 'pending',
        verifier: Optional[SignatureVerifier] = None,
        signature_max_length: int = 4096
    ):
        if grace_seconds < 0:
            raise InvalidConfig("grace_seconds must not be negative")
        if grace_policy not in GRACE_POLICIES:
            raise InvalidConfig(f"grace_policy must be one of {', '.join(GRACE_POLICIES)}")
        self.sessions = sessions
        self.store = store
        self.clock = clock
        self.grace_seconds = grace_seconds
        self.grace_policy = grace_policy
        self.verifier = verifier
        self.signature_max_length = signature_max_length

    def verify(
        self,
        participant_id: str,
        token_string: str,
        signature: Optional[str],
        client_timestamp: Any = None,
        *,
        pin: Optional[str] = None,
        device_hash: Optional[str] = None,
        auth_method: Optional[str] = None,
        display_name: Optional[str] = None
    ) -> VerificationResult:
        """Classify a redemption and record it."""
        if not Validator.validate_identifier(participant_id):
            raise ValidationError("A valid participant_id is required")
        if not isinstance(token_string, str) or not token_string:
            raise ValidationError("token is required")

        receipt = self.clock()
        lookup = self.sessions.lookup_token(token_string)
        if lookup is None:
            logger.warning("Unknown token redeemed by %s", participant_id)
            raise UnknownToken()
        if lookup.session.is_ended:
            raise SessionEnded(session_id=lookup.session.session_id)

        participant = self.store.get_participant(participant_id)
        state, reason = self.classify(
            lookup, receipt, participant_id, signature,
            participant=participant, pin=pin, device_hash=device_hash, auth_method=auth_method
        )

        if participant is None:
            # first sighting enrolls the participant and binds the device
            self.store.add_participant(Participant(
                participant_id=participant_id,
                display_name=display_name or participant_id,
                enrolled_at=receipt,
                device_hash=device_hash or None
            ))

        result = self._record(lookup, participant_id, state, reason, receipt, client_timestamp)
        logger.info(
            "Redemption by %s for session %s window %s: %s%s%s",
            participant_id, lookup.session.session_id, lookup.window.sequence_number,
            result.state.value,
            f" ({result.reason})" if result.reason else "",
            " [duplicate]" if result.duplicate else ""
        )
        return result

    def classify(
        self,
        lookup: TokenLookup,
        receipt: datetime,
        participant_id: str,
        signature: Optional[str],
        participant: Optional[Participant] = None,
        pin: Optional[str] = None,
        device_hash: Optional[str] = None,
        auth_method: Optional[str] = None
    ) -> Tuple[ClassificationState, Optional[str]]:
        """Pure classification of a resolved redemption, ignoring the ledger."""
        window = lookup.window
        ttl = window.ttl_seconds
        age = window.age(receipt)
        frozen = lookup.session.is_paused and lookup.is_current

        if age < 0 or (not frozen and age > ttl + self.grace_seconds):
            return ClassificationState.FLAGGED, FlagReason.EXPIRED.value

        if not Validator.validate_signature(signature, self.signature_max_length):
            return ClassificationState.FLAGGED, FlagReason.MISSING_SIGNATURE.value
        if self.verifier is not None and not self.verifier.verify(participant_id, window.token_string, signature.strip()):
            return ClassificationState.FLAGGED, FlagReason.INVALID_SIGNATURE.value

        if auth_method == FALLBACK_AUTH:
            return ClassificationState.FLAGGED, FlagReason.FALLBACK_AUTH.value
        if participant is not None and participant.device_hash and device_hash \
                and device_hash != participant.device_hash:
            return ClassificationState.FLAGGED, FlagReason.DEVICE_MISMATCH.value
        if pin is not None and not hmac.compare_digest(str(pin).encode('utf-8'), window.pin.encode('utf-8')):
            return ClassificationState.FLAGGED, FlagReason.PIN_MISMATCH.value

        if lookup.is_current:
            if frozen or age <= ttl:
                return ClassificationState.PRESENT, None
            # current window past its ttl but inside grace: rotation is late
            return self._grace_state(), None

        if lookup.is_previous:
            since_rotation = (receipt - lookup.current.issued_at).total_seconds()
            if since_rotation <= self.grace_seconds:
                return self._grace_state(), None

        return ClassificationState.FLAGGED, FlagReason.STALE_OR_REPLAYED.value

    def _grace_state(self) -> ClassificationState:
        if self.grace_policy == 'accept':
            return ClassificationState.PRESENT
        return ClassificationState.PENDING

    def _record(
        self,
        lookup: TokenLookup,
        participant_id: str,
        state: ClassificationState,
        reason: Optional[str],
        receipt: datetime,
        client_timestamp: Any
    ) -> VerificationResult:
        session = lookup.session
        with self.store.pair_lock(session.session_id, participant_id):
            existing = self.store.find_live_record(session.session_id, participant_id)
            superseded = None

            if existing is not None:
                if existing.state == ClassificationState.PRESENT or state != ClassificationState.PRESENT:
                    return VerificationResult(
                        state=existing.state,
                        record=existing,
                        reason=existing.reason,
                        duplicate=True
                    )

            if client_timestamp is not None:
                client_timestamp = str(client_timestamp)[:CLIENT_TIMESTAMP_MAX_LENGTH]
            record = AttendanceRecord(
                record_id=uuid.uuid4().hex,
                session_id=session.session_id,
                class_id=session.class_id,
                participant_id=participant_id,
                state=state,
                submitted_at=receipt,
                token_sequence_number=lookup.window.sequence_number,
                reason=reason,
                client_timestamp=client_timestamp
            )
            if existing is None:
                record = self.store.insert_record(record)
            else:
                # a clean redemption replaces an earlier pending/flagged one
                self.store.replace_live_record(existing.copy(
                    state=ClassificationState.REJECTED,
                    reason=FlagReason.SUPERSEDED.value,
                    decided_at=receipt
                ), record)
                superseded = existing.record_id

        return VerificationResult(
            state=record.state,
            record=record,
            reason=record.reason,
            superseded_record_id=superseded
        )
