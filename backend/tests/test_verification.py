"""Tests for the redemption verification pipeline."""
import threading

import pytest

from rollcall.models import ClassificationState, Participant, Scope
from rollcall.storage import MemoryLedgerStore
from rollcall.utils.errors import (
    InvalidConfig, SessionEnded, StorageUnavailable, UnknownToken, ValidationError
)

from conftest import SIGNATURE, make_services

PRESENT = ClassificationState.PRESENT
PENDING = ClassificationState.PENDING
FLAGGED = ClassificationState.FLAGGED
REJECTED = ClassificationState.REJECTED


def redeem(services, token, participant='stu-1', signature=SIGNATURE, **kwargs):
    return services.verification.verify(participant, token, signature, **kwargs)


def session_scope(session):
    return Scope(session_id=session.session_id)


def test_current_token_is_present(clock, services, session):
    clock.advance(3)
    result = redeem(services, session.current_window.token_string)

    assert result.state == PRESENT
    assert result.reason is None
    assert not result.duplicate
    assert result.record.submitted_at == clock()
    assert result.record.token_sequence_number == 1
    assert result.record.class_id == 'CS101'


def test_age_equal_to_ttl_is_present(clock, services, session):
    clock.advance(15)
    assert redeem(services, session.current_window.token_string).state == PRESENT


def test_age_past_ttl_without_grace_is_expired(clock):
    services = make_services(clock, GRACE_SECONDS=0)
    session = services.sessions.start_session('CS101', 'teacher-1', 15)
    clock.advance(16)

    result = redeem(services, session.current_window.token_string)
    assert result.state == FLAGGED
    assert result.reason == 'expired'


def test_age_past_ttl_and_grace_is_expired(clock, services, session):
    clock.advance(21)
    result = redeem(services, session.current_window.token_string)
    assert (result.state, result.reason) == (FLAGGED, 'expired')


def test_late_rotation_within_grace_is_pending(clock, services, session):
    clock.advance(18)
    assert redeem(services, session.current_window.token_string).state == PENDING


def test_negative_age_is_expired(clock, services, session):
    clock.advance(-1)
    result = redeem(services, session.current_window.token_string)
    assert (result.state, result.reason) == (FLAGGED, 'expired')


def test_previous_window_within_grace_is_pending(clock, services, session):
    clock.advance(10)
    services.sessions.rotate_now(session.session_id)
    clock.advance(2)

    result = redeem(services, session.current_window.token_string)
    assert result.state == PENDING
    assert result.reason is None


def test_previous_window_within_grace_accept_policy(clock):
    services = make_services(clock, GRACE_POLICY='accept')
    session = services.sessions.start_session('CS101', 'teacher-1', 15)
    clock.advance(10)
    services.sessions.rotate_now(session.session_id)
    clock.advance(2)

    assert redeem(services, session.current_window.token_string).state == PRESENT


def test_previous_window_after_grace_is_stale(clock, services, session):
    clock.advance(10)
    services.sessions.rotate_now(session.session_id)
    clock.advance(6)

    result = redeem(services, session.current_window.token_string)
    assert (result.state, result.reason) == (FLAGGED, 'stale_or_replayed')


def test_older_retained_window_is_stale(clock, services, session):
    for _ in range(2):
        clock.advance(1)
        services.sessions.rotate_now(session.session_id)
    clock.advance(1)

    result = redeem(services, session.current_window.token_string)
    assert (result.state, result.reason) == (FLAGGED, 'stale_or_replayed')


def test_unknown_token_creates_no_record(services, session):
    with pytest.raises(UnknownToken):
        redeem(services, 'not-a-token')
    assert services.store.snapshot_records(session_scope(session)) == []


def test_token_beyond_retention_is_unknown(services, session):
    for _ in range(4):
        services.sessions.rotate_now(session.session_id)
    with pytest.raises(UnknownToken):
        redeem(services, session.current_window.token_string)


def test_ended_session(services, session):
    services.sessions.end_session(session.session_id)
    with pytest.raises(SessionEnded):
        redeem(services, session.current_window.token_string)
    assert services.store.snapshot_records(session_scope(session)) == []


def test_paused_window_has_no_age_limit(clock, services, session):
    services.sessions.pause(session.session_id)
    clock.advance(600)
    assert redeem(services, session.current_window.token_string).state == PRESENT


@pytest.mark.parametrize('signature', [None, '', '   ', 'has spaces in it', 'x' * 5000, 42])
def test_missing_or_malformed_signature(services, session, signature):
    result = redeem(services, session.current_window.token_string, signature=signature)
    assert (result.state, result.reason) == (FLAGGED, 'missing_signature')


def test_pluggable_verifier(clock):
    services = make_services(clock, SIGNATURE_VERIFIER='hmac-jwt', SIGNATURE_SECRET='test-secret')
    session = services.sessions.start_session('CS101', 'teacher-1', 15)
    token = session.current_window.token_string
    verifier = services.verification.verifier

    result = redeem(services, token, participant='stu-1', signature=verifier.sign('stu-1', token))
    assert result.state == PRESENT

    # signed for someone else
    result = redeem(services, token, participant='stu-2', signature=verifier.sign('stu-1', token))
    assert (result.state, result.reason) == (FLAGGED, 'invalid_signature')

    # signed for another token
    result = redeem(services, token, participant='stu-3', signature=verifier.sign('stu-3', 'other'))
    assert (result.state, result.reason) == (FLAGGED, 'invalid_signature')


def test_hmac_verifier_requires_secret(clock):
    with pytest.raises(InvalidConfig):
        make_services(clock, SIGNATURE_VERIFIER='hmac-jwt', SIGNATURE_SECRET='')
    with pytest.raises(InvalidConfig):
        make_services(clock, SIGNATURE_VERIFIER='rsa')


def test_invalid_grace_settings(clock):
    with pytest.raises(InvalidConfig):
        make_services(clock, GRACE_POLICY='maybe')
    with pytest.raises(InvalidConfig):
        make_services(clock, GRACE_SECONDS=-1)


def test_fallback_auth_is_flagged(services, session):
    result = redeem(services, session.current_window.token_string, auth_method='fallback')
    assert (result.state, result.reason) == (FLAGGED, 'fallback_auth')


def test_device_mismatch_is_flagged(clock, services, session):
    services.store.save_participant(Participant('stu-1', 'Ada', clock(), device_hash='device-a'))

    result = redeem(services, session.current_window.token_string, device_hash='device-b')
    assert (result.state, result.reason) == (FLAGGED, 'device_mismatch')


def test_enrolled_device_is_present(clock, services, session):
    services.store.save_participant(Participant('stu-1', 'Ada', clock(), device_hash='device-a'))
    assert redeem(services, session.current_window.token_string, device_hash='device-a').state == PRESENT


def test_pin(services, session):
    window = session.current_window
    wrong = '0000' if window.pin != '0000' else '1111'

    result = redeem(services, window.token_string, participant='stu-1', pin=wrong)
    assert (result.state, result.reason) == (FLAGGED, 'pin_mismatch')

    assert redeem(services, window.token_string, participant='stu-2', pin=window.pin).state == PRESENT


def test_invalid_participant_id(services, session):
    with pytest.raises(ValidationError):
        redeem(services, session.current_window.token_string, participant='')
    with pytest.raises(ValidationError):
        redeem(services, session.current_window.token_string, participant='has space')


def test_unknown_participant_is_enrolled(services, session):
    redeem(services, session.current_window.token_string, participant='stu-9', device_hash='device-z')

    participant = services.store.get_participant('stu-9')
    assert participant.display_name == 'stu-9'
    assert participant.device_hash == 'device-z'


def test_client_timestamp_is_kept_for_audit(services, session):
    result = redeem(services, session.current_window.token_string, client_timestamp=1725267600000)
    assert result.record.client_timestamp == '1725267600000'
    assert result.state == PRESENT


def test_present_redemption_is_idempotent(clock, services, session):
    token = session.current_window.token_string
    first = redeem(services, token)
    clock.advance(1)
    second = redeem(services, token)

    assert second.duplicate
    assert second.record.record_id == first.record.record_id
    assert len(services.store.snapshot_records(session_scope(session))) == 1


def test_present_wins_over_later_flag(services, session):
    token = session.current_window.token_string
    first = redeem(services, token)
    later = redeem(services, token, signature=None)

    assert later.duplicate
    assert later.state == PRESENT
    assert later.record.record_id == first.record.record_id


def test_present_supersedes_earlier_flag(services, session):
    token = session.current_window.token_string
    flagged = redeem(services, token, signature=None)
    present = redeem(services, token)

    assert present.state == PRESENT
    assert present.superseded_record_id == flagged.record.record_id

    old = services.store.get_record(flagged.record.record_id)
    assert old.state == REJECTED
    assert old.reason == 'superseded'
    live = [r for r in services.store.snapshot_records(session_scope(session)) if r.is_live]
    assert [r.record_id for r in live] == [present.record.record_id]


def test_second_flag_keeps_first(services, session):
    token = session.current_window.token_string
    first = redeem(services, token, signature=None)
    second = redeem(services, token, auth_method='fallback')

    assert second.duplicate
    assert second.record.record_id == first.record.record_id
    assert second.reason == 'missing_signature'


def test_concurrent_redemptions_record_once(services, session):
    token = session.current_window.token_string
    results, errors = [], []

    def worker():
        try:
            results.append(redeem(services, token))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(25)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    assert len({r.record.record_id for r in results}) == 1
    assert sum(1 for r in results if not r.duplicate) == 1
    assert len(services.store.snapshot_records(session_scope(session))) == 1


def test_clear_during_redemptions(services, session):
    """Every redemption lands entirely before or entirely after the clear."""
    token = session.current_window.token_string
    scope = session_scope(session)
    results, errors = [], []
    start = threading.Barrier(21)

    def worker(n):
        start.wait()
        try:
            results.append(redeem(services, token, participant=f'stu-{n}'))
        except Exception as e:
            errors.append(e)

    def clearer():
        start.wait()
        services.moderation.clear_attendance(scope)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(20)]
    threads.append(threading.Thread(target=clearer))
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    assert len(results) == 20
    remaining = services.store.snapshot_records(scope)
    ids = {r.record.record_id for r in results}
    assert {r.record_id for r in remaining} <= ids
    for record in remaining:
        assert record.state == PRESENT


@pytest.mark.parametrize('pin', ['١٢٣٤', 'é123', '12 4'])
def test_non_ascii_pin_is_a_mismatch(services, session, pin):
    result = redeem(services, session.current_window.token_string, pin=pin)
    assert (result.state, result.reason) == (FLAGGED, 'pin_mismatch')


def test_long_client_timestamp_is_truncated(services, session):
    result = redeem(services, session.current_window.token_string, client_timestamp='9' * 500)
    assert result.record.client_timestamp == '9' * 64


def test_failed_supersede_keeps_earlier_record(clock):
    class FlakyStore(MemoryLedgerStore):
        def replace_live_record(self, old, new):
            raise StorageUnavailable('ledger offline')

    services = make_services(clock, store=FlakyStore())
    session = services.sessions.start_session('CS101', 'teacher-1', 15)
    token = session.current_window.token_string
    flagged = redeem(services, token, signature=None)

    with pytest.raises(StorageUnavailable):
        redeem(services, token)

    live = services.store.find_live_record(session.session_id, 'stu-1')
    assert live.record_id == flagged.record.record_id
    assert live.state == FLAGGED


def test_concurrent_first_redemptions_enroll_once(services):
    sessions = [services.sessions.start_session(f'CS10{n}', 'teacher-1', 15) for n in range(4)]
    results, errors = [], []
    start = threading.Barrier(len(sessions) * 5)

    def worker(s):
        start.wait()
        try:
            results.append(redeem(services, s.current_window.token_string, participant='newcomer',
                                  device_hash='device-n'))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(s,)) for s in sessions for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    assert len({r.record.record_id for r in results}) == len(sessions)
    assert all(r.state == PRESENT for r in results)
    assert services.store.get_participant('newcomer').device_hash == 'device-n'


def test_pair_locks_are_released(services, session):
    token = session.current_window.token_string
    for n in range(200):
        redeem(services, token, participant=f'stu-{n}')
    services.moderation.clear_attendance(Scope.everything())

    assert len(services.store._pairs) == 0
