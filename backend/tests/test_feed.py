"""Tests for the feed projection."""
from rollcall.models import Participant, Scope

from conftest import SIGNATURE


def redeem(services, session, participant, signature=SIGNATURE):
    return services.verification.verify(participant, session.current_window.token_string, signature).record


def test_projection_buckets(clock, services, session):
    services.store.save_participant(Participant('stu-1', 'Ada Lovelace', clock()))
    redeem(services, session, 'stu-1')
    clock.advance(1)
    flagged = redeem(services, session, 'stu-2', signature=None)
    clock.advance(1)
    rejected = redeem(services, session, 'stu-3', signature=None)
    services.moderation.reject(rejected.record_id)

    projection = services.feed.project(Scope(session_id=session.session_id))

    assert [e['participant_id'] for e in projection.present] == ['stu-1']
    assert projection.present[0]['display_name'] == 'Ada Lovelace'
    assert [e['record_id'] for e in projection.flagged] == [flagged.record_id]
    assert projection.pending == []
    assert projection.total == 2


def test_projection_order(clock, services, session):
    for n in range(5):
        redeem(services, session, f'stu-{n}')
        clock.advance(0.5)

    projection = services.feed.project(Scope(class_id='CS101'))
    assert [e['participant_id'] for e in projection.present] == [f'stu-{n}' for n in range(5)]


def test_records_include_rejected(services, session):
    record = redeem(services, session, 'stu-1', signature=None)
    services.moderation.reject(record.record_id)

    entries = services.feed.records(Scope.everything())
    assert [e['state'] for e in entries] == ['rejected']
    assert services.feed.project(Scope.everything()).total == 0


def test_version_moves_with_every_write(services, session):
    before = services.feed.project(Scope.everything()).version
    record = redeem(services, session, 'stu-1', signature=None)
    after_insert = services.feed.project(Scope.everything()).version
    services.moderation.approve(record.record_id)
    after_approve = services.feed.project(Scope.everything()).version

    assert before < after_insert < after_approve


def test_clear_bumps_generation_and_suppresses(clock, services, session):
    scope = Scope(session_id=session.session_id)
    redeem(services, session, 'stu-1')
    assert services.feed.project(scope).generation == 0

    services.moderation.clear_attendance(scope)
    projection = services.feed.project(scope)
    assert projection.generation == 1
    assert projection.suppressed
    assert projection.total == 0

    clock.advance(1)
    assert services.feed.project(scope).suppressed
    clock.advance(1)
    assert not services.feed.project(scope).suppressed


def test_suppression_follows_scope(services, session):
    other = services.sessions.start_session('CS102', 'teacher-2', 15)

    services.moderation.clear_attendance(Scope(class_id='CS101'))

    assert services.feed.project(Scope(session_id=session.session_id)).suppressed
    assert services.feed.project(Scope.everything()).suppressed
    assert not services.feed.project(Scope(session_id=other.session_id)).suppressed
    assert not services.feed.project(Scope(class_id='CS102')).suppressed


def test_scope_parse():
    assert Scope.parse(everything=True, session_id='s1').is_everything
    assert Scope.parse(session_id='s1') == Scope(session_id='s1')
    assert Scope.parse(session_id='', class_id='CS101') == Scope(class_id='CS101')
