from __future__ import annotations

import pytest
from sqlalchemy import event, func, insert, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm.exc import StaleDataError

from reqflow.core import errors
from reqflow.db.session import make_engine, make_sessionmaker
from reqflow.models import Base, RequestSequence, RequestStatus, RequestType, Role, ServiceRequest, User
from reqflow.services import requests as request_service
from reqflow.services import workflow

FILES = [
    {"id": "file-a", "file_name": "plan.pdf", "letter_number": None},
    {"id": "file-b", "file_name": "budget.xlsx", "letter_number": "LN-7"},
]


@pytest.fixture()
def people(make_user):
    return {
        "requester": make_user("requester", Role.REQUESTER),
        "lead": make_user("lead", Role.GROUP_LEAD),
        "deputy": make_user("deputy", Role.DEPUTY, group_ids=(0,)),
    }


def _create(db, requester, request_type=RequestType.FILE_TRANSFER, payload=None):
    return request_service.create_request(
        db,
        requester=requester,
        request_type=request_type,
        payload=payload or [dict(item) for item in FILES],
    )


def test_request_ids_are_sequential(db, people):
    first = _create(db, people["requester"])
    second = _create(db, people["requester"], RequestType.BACKUP)
    db.commit()

    assert first.id == "req-001"
    assert second.id == "req-002"
    assert second.current_approver == Role.GROUP_LEAD
    assert second.version == 1


def test_request_sequence_seeds_from_existing_ids(db, people):
    db.add(
        request_service.build_request(
            request_id="req-041",
            requester=people["requester"],
            request_type=RequestType.VDI,
            payload=[{"id": "item-1"}],
        )
    )
    db.flush()

    assert request_service.next_request_id(db) == "req-042"
    assert request_service.next_request_id(db) == "req-043"


def test_create_with_taken_id_is_a_conflict(db, people):
    first = _create(db, people["requester"])
    db.commit()
    # A row written outside the counter, e.g. by an import.
    db.execute(
        insert(ServiceRequest.__table__).values(
            id="req-002",
            requester_id=people["requester"].id,
            requester_name="Imported",
            department="IT Unit",
            request_type=RequestType.BACKUP,
            payload=[],
            status=RequestStatus.PENDING,
            current_approver=Role.GROUP_LEAD,
            approval_history=[],
            version=1,
        )
    )
    db.commit()

    with pytest.raises(errors.ConcurrencyConflictError):
        _create(db, people["requester"])

    assert set(db.execute(select(ServiceRequest.id)).scalars()) == {first.id, "req-002"}
    assert db.get(ServiceRequest, "req-002").requester_name == "Imported"
    assert db.get(RequestSequence, request_service.REQUEST_SEQUENCE).last_value == 1


def test_request_id_format():
    assert request_service.format_request_id(7) == "req-007"
    assert request_service.format_request_id(1234) == "req-1234"
    assert request_service.parse_request_number("req-010") == 10
    assert request_service.parse_request_number("REQ-1") is None


def test_create_request_requires_details(db, people):
    with pytest.raises(errors.ValidationError):
        request_service.create_request(db, requester=people["requester"], request_type=RequestType.BACKUP, payload=[])


def test_missing_request_is_not_found(db, people):
    with pytest.raises(errors.NotFoundError):
        request_service.approve_request(db, request_id="req-999", user=people["lead"])


def test_approve_bumps_version(db, people):
    request = _create(db, people["requester"])
    db.commit()

    updated = request_service.approve_request(db, request_id=request.id, user=people["lead"], expected_version=1)
    db.commit()

    assert updated.version == 2
    assert updated.current_approver == Role.DEPUTY


def test_stale_expected_version_is_a_conflict(db, people):
    request = _create(db, people["requester"])
    db.commit()
    request_service.approve_request(db, request_id=request.id, user=people["lead"])
    db.commit()

    with pytest.raises(errors.ConcurrencyConflictError):
        request_service.approve_request(db, request_id=request.id, user=people["deputy"], expected_version=1)

    reloaded = request_service.get_request(db, request.id)
    assert reloaded.current_approver == Role.DEPUTY
    assert len(reloaded.approval_history) == 1


def test_failed_rejection_leaves_request_untouched(db, people):
    request = _create(db, people["requester"])
    db.commit()

    with pytest.raises(errors.ValidationError):
        request_service.reject_request(db, request_id=request.id, user=people["lead"], reason=" ")
    db.rollback()

    reloaded = request_service.get_request(db, request.id)
    assert reloaded.status == RequestStatus.PENDING
    assert reloaded.approval_history == []


@pytest.fixture()
def file_engine(tmp_path):
    engine = make_engine(f"sqlite+pysqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


def _seed_race(engine):
    Session = make_sessionmaker(engine)
    with Session() as setup:
        requester = User(username="r", name="R", hashed_password="x", role=Role.REQUESTER, department="IT", group_ids=[1])
        lead = User(username="l", name="L", hashed_password="x", role=Role.GROUP_LEAD, department="IT", group_ids=[1])
        setup.add_all([requester, lead])
        setup.flush()
        request = _create(setup, requester)
        setup.commit()
        return Session, request.id, lead.id


def test_version_check_rejects_stale_write(file_engine):
    Session, request_id, lead_id = _seed_race(file_engine)
    first, second = Session(), Session()
    try:
        stale = first.get(ServiceRequest, request_id)
        winner = second.get(ServiceRequest, request_id)

        workflow.apply_approval(winner, second.get(User, lead_id))
        second.commit()

        workflow.apply_approval(stale, first.get(User, lead_id))
        with pytest.raises(StaleDataError):
            first.flush()
    finally:
        first.close()
        second.close()


def test_concurrent_decision_raises_conflict(file_engine):
    Session, request_id, lead_id = _seed_race(file_engine)
    session = Session()

    def competing_write(*_args):
        with file_engine.begin() as conn:
            conn.execute(text("UPDATE requests SET version = version + 1 WHERE id = :id"), {"id": request_id})

    event.listen(session, "before_flush", competing_write, once=True)
    try:
        lead = session.get(User, lead_id)
        with pytest.raises(errors.ConcurrencyConflictError):
            request_service.approve_request(session, request_id=request_id, user=lead)
    finally:
        session.close()

    with Session() as check:
        request = check.get(ServiceRequest, request_id)
        assert request.version == 2
        assert request.approval_history == []
        assert request.current_approver == Role.GROUP_LEAD


def test_first_counter_use_race_is_a_conflict(file_engine):
    Session = make_sessionmaker(file_engine)
    with Session() as setup:
        requester = User(username="r", name="R", hashed_password="x", role=Role.REQUESTER, department="IT", group_ids=[1])
        setup.add(requester)
        setup.commit()
        requester_id = requester.id

    session = Session()

    def competing_create(*_args):
        with file_engine.begin() as conn:
            conn.execute(text("INSERT INTO request_sequences (name, last_value) VALUES ('request', 1)"))

    event.listen(session, "before_flush", competing_create, once=True)
    try:
        with pytest.raises(errors.ConcurrencyConflictError):
            _create(session, session.get(User, requester_id))
    finally:
        session.close()

    with Session() as check:
        assert check.scalar(select(func.count()).select_from(ServiceRequest)) == 0
        assert check.get(RequestSequence, request_service.REQUEST_SEQUENCE).last_value == 1


def test_letter_number_is_set_once(db, people):
    request = _create(db, people["requester"])
    db.commit()

    updated = request_service.set_letter_number(
        db, request_id=request.id, file_id="file-a", user=people["requester"], letter_number=" LN-1 "
    )
    db.commit()
    assert updated.payload[0]["letter_number"] == "LN-1"
    assert updated.payload[1]["letter_number"] == "LN-7"

    with pytest.raises(errors.ValidationError):
        request_service.set_letter_number(
            db, request_id=request.id, file_id="file-a", user=people["requester"], letter_number="LN-2"
        )


def test_letter_number_rules(db, people):
    request = _create(db, people["requester"])
    backup = _create(db, people["requester"], RequestType.BACKUP, payload=[{"id": "item-1"}])
    db.commit()

    with pytest.raises(errors.AuthorizationError):
        request_service.set_letter_number(
            db, request_id=request.id, file_id="file-a", user=people["lead"], letter_number="LN-1"
        )
    with pytest.raises(errors.ValidationError):
        request_service.set_letter_number(
            db, request_id=request.id, file_id="file-a", user=people["requester"], letter_number="  "
        )
    with pytest.raises(errors.NotFoundError):
        request_service.set_letter_number(
            db, request_id=request.id, file_id="file-z", user=people["requester"], letter_number="LN-1"
        )
    with pytest.raises(errors.ValidationError):
        request_service.set_letter_number(
            db, request_id=backup.id, file_id="item-1", user=people["requester"], letter_number="LN-1"
        )


def test_inbox_for_requester_and_approvers(db, people, make_user):
    outsider = make_user("outsider", Role.REQUESTER, group_ids=(2,))
    own = _create(db, people["requester"])
    foreign = _create(db, outsider)
    vdi = _create(db, people["requester"], RequestType.VDI, payload=[{"id": "item-1"}])
    db.commit()

    assert {r.id for r in request_service.list_inbox(db, people["requester"])} == {own.id, vdi.id}
    assert {r.id for r in request_service.list_inbox(db, people["lead"])} == {own.id}
    assert {r.id for r in request_service.list_inbox(db, people["deputy"])} == {vdi.id}
    assert foreign.id not in {r.id for r in request_service.list_inbox(db, people["lead"])}


def test_history_lists_requests_the_user_decided(db, people):
    request = _create(db, people["requester"])
    untouched = _create(db, people["requester"])
    db.commit()
    request_service.approve_request(db, request_id=request.id, user=people["lead"])
    db.commit()

    assert [r.id for r in request_service.list_history(db, people["lead"])] == [request.id]
    assert {r.id for r in request_service.list_history(db, people["requester"])} == {request.id, untouched.id}
    assert request_service.list_inbox(db, people["deputy"])[0].id == request.id


def test_history_query_narrows_on_postgres(people):
    lead = people["lead"]

    narrowed = str(request_service.history_statement(lead, "postgresql").compile(dialect=postgresql.dialect()))
    assert "@>" in narrowed
    assert "requester_id" in narrowed

    scan = str(request_service.history_statement(lead, "sqlite").compile(dialect=sqlite.dialect()))
    assert "@>" not in scan
    assert "WHERE" not in scan


def test_visible_request_rules(db, people, make_user):
    request = _create(db, people["requester"])
    db.commit()
    stranger = make_user("stranger", Role.NETWORK_HEAD, group_ids=(5,))

    assert request_service.get_visible_request(db, request.id, people["lead"]).id == request.id
    assert request_service.get_visible_request(db, request.id, people["requester"]).id == request.id
    with pytest.raises(errors.AuthorizationError):
        request_service.get_visible_request(db, request.id, stranger)


def test_count_pending_and_refresh_interval(db, people):
    _create(db, people["requester"])
    done = _create(db, people["requester"])
    db.commit()
    request_service.reject_request(db, request_id=done.id, user=people["lead"], reason="Duplicate")
    db.commit()

    assert request_service.count_pending(db) == 1
    kwargs = {"approver_seconds": 300, "requester_seconds": 30}
    assert request_service.refresh_interval_for(people["requester"], **kwargs) == 30
    assert request_service.refresh_interval_for(people["lead"], **kwargs) == 300
