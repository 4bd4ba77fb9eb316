"""Tests for the pipeline models: timestamps, ledger ordering, write-once fields, cascades."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from common.errors import ErrorCode, ValidationError
from modules.applications.models import (
    Application,
    Comment,
    StageEntry,
    StageTemplate,
    as_utc,
)
from tests.fixtures.pipeline import (
    T0,
    days,
    make_application,
    make_comment,
    make_entry,
    make_templates,
)


class TestTimestamps:

    def test_as_utc_treats_naive_as_utc(self):
        naive = datetime(2026, 3, 2, 9, 0)
        assert as_utc(naive) == T0
        assert as_utc(naive).tzinfo is timezone.utc

    def test_as_utc_converts_offsets(self):
        cet = timezone(timedelta(hours=1))
        assert as_utc(datetime(2026, 3, 2, 10, 0, tzinfo=cet)) == T0

    def test_as_utc_none(self):
        assert as_utc(None) is None

    def test_round_trip_returns_aware_utc(self, session):
        templates = make_templates(session)
        app = make_application(session, applied_at=datetime(2026, 3, 2, 9, 0))
        make_entry(session, app, templates["Applied"])
        session.commit()
        session.expire_all()

        loaded = session.get(Application, app.id)
        assert loaded.applied_at == T0
        assert loaded.applied_at.tzinfo is not None
        entry = session.scalars(select(StageEntry)).one()
        assert entry.started_at.tzinfo is not None


class TestLedgerRelationship:

    def test_stages_ordered_by_order_then_created_at(self, session):
        t = make_templates(session)
        app = make_application(session)
        interview = make_entry(session, app, t["Interview"], started_at=T0 + days(5))
        applied = make_entry(session, app, t["Applied"], started_at=T0 + days(9))
        screen_again = make_entry(session, app, t["Phone Screen"], started_at=T0 + days(4))
        screen = make_entry(session, app, t["Phone Screen"], started_at=T0 + days(2))
        session.commit()
        session.expire_all()

        loaded = session.get(Application, app.id)
        assert [e.id for e in loaded.stages] == [
            applied.id, screen.id, screen_again.id, interview.id,
        ]

    def test_is_terminal(self, session):
        t = make_templates(session)
        app = make_application(session)
        entry = make_entry(session, app, t["Applied"], status="skipped")
        assert entry.is_terminal
        entry.status = "pending"
        assert not entry.is_terminal


class TestWriteOnceFields:

    def test_entry_order_cannot_change(self, session):
        t = make_templates(session)
        app = make_application(session)
        entry = make_entry(session, app, t["Applied"])

        entry.order = 7
        with pytest.raises(ValidationError) as exc:
            session.flush()
        assert exc.value.code == ErrorCode.IMMUTABLE_FIELD

    def test_entry_template_cannot_change(self, session):
        t = make_templates(session)
        app = make_application(session)
        entry = make_entry(session, app, t["Applied"])

        entry.stage_template_id = t["Offer"].id
        with pytest.raises(ValidationError):
            session.flush()

    def test_application_owner_cannot_change(self, session):
        app = make_application(session)
        app.owner_id = "mallory"
        with pytest.raises(ValidationError) as exc:
            session.flush()
        assert exc.value.details["field"] == "owner_id"

    def test_status_and_completed_at_may_change(self, session):
        t = make_templates(session)
        app = make_application(session)
        entry = make_entry(session, app, t["Applied"])

        entry.status = "completed"
        entry.completed_at = T0 + days(1)
        session.flush()
        assert entry.completed_at == T0 + days(1)


class TestCascades:

    def test_deleting_application_removes_ledger_and_comments(self, session):
        t = make_templates(session)
        app = make_application(session)
        entry = make_entry(session, app, t["Applied"])
        make_comment(session, app, stage=entry)
        session.commit()

        session.delete(app)
        session.commit()

        assert session.scalars(select(StageEntry)).all() == []
        assert session.scalars(select(Comment)).all() == []

    def test_referenced_template_cannot_be_deleted(self, session):
        t = make_templates(session)
        app = make_application(session)
        make_entry(session, app, t["Applied"])
        session.commit()

        session.delete(t["Applied"])
        with pytest.raises(IntegrityError):
            session.commit()

    def test_template_order_unique_per_owner(self, session):
        make_templates(session, owner="alice")
        make_templates(session, owner="bob")
        session.add(StageTemplate(owner_id="alice", name="Take-home", order=2))
        with pytest.raises(IntegrityError):
            session.flush()
