"""Tests for the analytics reports.

Covers:
  - Overview totals, response rate, days to first response
  - Funnel counts, conversion and drop-off (empty previous stage, skip-ahead)
  - Stage timing with completed and still-open entries
  - Resume and source effectiveness, grouping and ordering
  - Half-up rounding to 2 decimals and owner scoping
"""
import json
from datetime import timedelta

import pytest

from common import config as config_module
from modules.analytics.service import (
    get_funnel,
    get_overview,
    get_resume_effectiveness,
    get_source_analytics,
    get_stage_time,
    percent,
    round2,
    to_days,
)
from tests.fixtures.pipeline import (
    T0,
    days,
    make_application,
    make_entry,
    make_job,
    make_resume,
    make_templates,
)


@pytest.fixture
def pipeline(session):
    return make_templates(session)


def _is_two_decimals(value: float) -> bool:
    return round(value, 2) == value


class TestNumericHelpers:

    def test_percent_rounds_half_up(self):
        assert percent(2, 3) == 66.67
        assert percent(1, 3) == 33.33
        assert percent(1, 8) == 12.5
        assert percent(0, 0) == 0.0

    def test_round2_half_up_not_bankers(self):
        assert round2(to_days(timedelta(hours=27))) == 1.13
        assert round2(to_days(timedelta(hours=-27))) == -1.13

    def test_to_days(self):
        assert to_days(timedelta(days=2, hours=12)) == 2.5


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------

class TestOverview:

    def test_empty(self, session, alice):
        report = get_overview(session, alice)
        assert report.model_dump() == {
            "total_applications": 0,
            "active_applications": 0,
            "closed_applications": 0,
            "response_rate": 0.0,
            "avg_days_to_first_response": 0.0,
        }

    def test_counts_and_first_response(self, session, alice, pipeline):
        a1 = make_application(session, status="active")
        make_entry(session, a1, pipeline["Applied"], started_at=T0)
        make_entry(session, a1, pipeline["Phone Screen"], started_at=T0 + days(2))
        make_entry(session, a1, pipeline["Interview"], started_at=T0 + days(1))
        a2 = make_application(session, status="on_hold")
        make_entry(session, a2, pipeline["Phone Screen"], started_at=T0 + days(3))
        a3 = make_application(session, status="rejected")
        make_entry(session, a3, pipeline["Applied"], started_at=T0)
        make_application(session, status="offer")
        make_application(session, status="archived")

        report = get_overview(session, alice)

        assert report.total_applications == 5
        assert report.active_applications == 2
        assert report.closed_applications == 3
        assert report.response_rate == 40.0
        # a1 first responds after 1 day (Interview), a2 after 3 days; a3 excluded
        assert report.avg_days_to_first_response == 2.0

    def test_avg_days_rounded_half_up(self, session, alice, pipeline):
        app = make_application(session)
        make_entry(session, app, pipeline["Phone Screen"], started_at=T0 + timedelta(hours=27))
        assert get_overview(session, alice).avg_days_to_first_response == 1.13

    def test_no_responses(self, session, alice, pipeline):
        app = make_application(session)
        make_entry(session, app, pipeline["Applied"])
        report = get_overview(session, alice)
        assert report.response_rate == 0.0
        assert report.avg_days_to_first_response == 0.0

    def test_response_threshold_configurable(self, session, alice, pipeline, monkeypatch):
        app = make_application(session)
        make_entry(session, app, pipeline["Phone Screen"])
        monkeypatch.setenv("CONFIG__ANALYTICS__RESPONSE_MIN_ORDER", "2")
        config_module.reload_config()
        assert get_overview(session, alice).response_rate == 0.0

    def test_other_owner_excluded(self, session, alice, bob, pipeline):
        bobs = make_templates(session, owner="bob")
        theirs = make_application(session, owner="bob")
        make_entry(session, theirs, bobs["Interview"])
        make_application(session)

        report = get_overview(session, alice)
        assert report.total_applications == 1
        assert report.response_rate == 0.0
        assert get_overview(session, bob).response_rate == 100.0


# ---------------------------------------------------------------------------
# Funnel
# ---------------------------------------------------------------------------

class TestFunnel:

    def test_three_applied_two_screened(self, session, alice, pipeline):
        apps = [make_application(session) for _ in range(3)]
        for app in apps:
            make_entry(session, app, pipeline["Applied"])
        make_entry(session, apps[0], pipeline["Applied"], started_at=T0 + days(1))
        for app in apps[:2]:
            make_entry(session, app, pipeline["Phone Screen"])
        make_entry(session, apps[0], pipeline["Offer"])

        stages = {s.stage_name: s for s in get_funnel(session, alice).stages}

        assert stages["Applied"].count == 3
        assert stages["Applied"].conversion_rate == 100.0
        assert stages["Applied"].drop_off_rate == 0.0
        assert stages["Phone Screen"].count == 2
        assert stages["Phone Screen"].conversion_rate == 66.67
        assert stages["Phone Screen"].drop_off_rate == 33.33
        assert stages["Interview"].count == 0
        assert stages["Interview"].conversion_rate == 0.0
        assert stages["Interview"].drop_off_rate == 100.0
        # previous stage empty
        assert stages["Offer"].count == 1
        assert stages["Offer"].conversion_rate == 100.0
        assert stages["Offer"].drop_off_rate == 0.0

    def test_ordered_by_template_order(self, session, alice, pipeline):
        report = get_funnel(session, alice)
        assert [s.stage_order for s in report.stages] == [1, 2, 3, 4]
        assert report.stages[0].conversion_rate == 100.0
        assert all(s.count == 0 for s in report.stages)

    def test_no_templates(self, session, alice):
        assert get_funnel(session, alice).stages == []

    def test_rates_bounded_and_two_decimals(self, session, alice, pipeline):
        apps = [make_application(session) for _ in range(7)]
        for app in apps:
            make_entry(session, app, pipeline["Applied"])
        for app in apps[:3]:
            make_entry(session, app, pipeline["Phone Screen"])
        make_entry(session, apps[0], pipeline["Interview"])

        for stage in get_funnel(session, alice).stages:
            assert 0.0 <= stage.drop_off_rate <= 100.0
            assert 0.0 <= stage.conversion_rate <= 100.0
            assert _is_two_decimals(stage.conversion_rate)
            assert _is_two_decimals(stage.drop_off_rate)

    def test_skipping_ahead_is_not_clamped(self, session, alice, pipeline):
        first, second = make_application(session), make_application(session)
        make_entry(session, first, pipeline["Applied"])
        make_entry(session, first, pipeline["Phone Screen"])
        make_entry(session, second, pipeline["Phone Screen"])

        screen = get_funnel(session, alice).stages[1]

        assert screen.stage_name == "Phone Screen"
        assert screen.count == 2
        assert screen.conversion_rate == 200.0
        assert screen.drop_off_rate == -100.0

    def test_other_owner_entries_not_counted(self, session, alice, pipeline):
        make_templates(session, owner="bob")
        theirs = make_application(session, owner="bob")
        make_entry(session, theirs, pipeline["Applied"])
        assert get_funnel(session, alice).stages[0].count == 0


# ---------------------------------------------------------------------------
# Stage timing
# ---------------------------------------------------------------------------

class TestStageTime:

    def test_completed_and_open_entries(self, session, alice, pipeline):
        a1 = make_application(session)
        a2 = make_application(session)
        make_entry(session, a1, pipeline["Applied"], status="completed",
                   started_at=T0, completed_at=T0 + days(1))
        make_entry(session, a2, pipeline["Applied"], status="completed",
                   started_at=T0, completed_at=T0 + days(3))
        make_entry(session, a1, pipeline["Phone Screen"], status="active",
                   started_at=T0 + days(4))
        make_entry(session, a1, pipeline["Phone Screen"], status="completed",
                   started_at=T0 + days(7), completed_at=T0 + days(8))

        report = get_stage_time(session, alice, now=T0 + days(10))

        assert [s.stage_name for s in report.stages] == ["Applied", "Phone Screen"]
        applied, screen = report.stages
        assert (applied.avg_days, applied.min_days, applied.max_days) == (2.0, 1.0, 3.0)
        assert applied.applications_count == 2
        # open entry counts 6 elapsed days
        assert (screen.avg_days, screen.min_days, screen.max_days) == (3.5, 1.0, 6.0)
        assert screen.applications_count == 1

    def test_open_entry_uses_now(self, session, alice, pipeline):
        app = make_application(session)
        make_entry(session, app, pipeline["Interview"], status="active", started_at=T0)
        report = get_stage_time(session, alice, now=T0 + timedelta(hours=36))
        assert report.stages[0].avg_days == 1.5

    def test_naive_now_taken_as_utc(self, session, alice, pipeline):
        app = make_application(session)
        make_entry(session, app, pipeline["Interview"], started_at=T0)
        report = get_stage_time(session, alice, now=(T0 + days(2)).replace(tzinfo=None))
        assert report.stages[0].max_days == 2.0

    def test_no_entries(self, session, alice, pipeline):
        assert get_stage_time(session, alice).stages == []


# ---------------------------------------------------------------------------
# Resume effectiveness
# ---------------------------------------------------------------------------

class TestResumeEffectiveness:

    def test_counts_rates_and_order(self, session, alice, pipeline):
        main = make_resume(session, title="Main CV")
        short = make_resume(session, title="Short CV")
        make_resume(session, title="Zeta CV")
        make_resume(session, title="Alpha CV")

        main_apps = [make_application(session, resume=main) for _ in range(4)]
        for app in main_apps:
            make_entry(session, app, pipeline["Applied"])
        make_entry(session, main_apps[0], pipeline["Phone Screen"])
        short_app = make_application(session, resume=short)
        make_entry(session, short_app, pipeline["Interview"])
        make_entry(session, short_app, pipeline["Interview"], started_at=T0 + days(1))

        rows = get_resume_effectiveness(session, alice).resumes

        assert [r.resume_title for r in rows] == ["Main CV", "Short CV", "Alpha CV", "Zeta CV"]
        main_row, short_row, alpha_row, _ = rows
        assert main_row.applications_count == 4
        assert main_row.responses_count == 1
        assert main_row.interviews_count == 0
        assert main_row.response_rate == 25.0
        assert (short_row.responses_count, short_row.interviews_count) == (1, 1)
        assert short_row.response_rate == 100.0
        assert alpha_row.applications_count == 0
        assert alpha_row.response_rate == 0.0

    def test_interview_match_is_case_insensitive_substring(self, session, alice):
        onsite = make_templates(session, names=("x1", "x2", "x3", "x4", "Final INTERVIEW round"))[
            "Final INTERVIEW round"
        ]
        app = make_application(session)
        make_entry(session, app, onsite)
        row = get_resume_effectiveness(session, alice).resumes[0]
        assert row.interviews_count == 1

    def test_other_owner_resumes_excluded(self, session, alice):
        make_resume(session, owner="bob")
        assert get_resume_effectiveness(session, alice).resumes == []


# ---------------------------------------------------------------------------
# Source effectiveness
# ---------------------------------------------------------------------------

class TestSourceAnalytics:

    def test_blank_and_missing_sources_grouped(self, session, alice, pipeline):
        for source in ("", None, "   "):
            make_application(session, job=make_job(session, source=source))
        linkedin = make_job(session, source="LinkedIn")
        for _ in range(2):
            make_application(session, job=linkedin)
        referral = make_application(session, job=make_job(session, source="Referral"))
        make_entry(session, referral, pipeline["Interview"])

        rows = get_source_analytics(session, alice).sources

        assert [(r.source_name, r.applications_count) for r in rows] == [
            ("Unknown", 3),
            ("LinkedIn", 2),
            ("Referral", 1),
        ]
        assert rows[2].responses_count == 1
        assert rows[2].interviews_count == 1
        assert rows[2].response_rate == 100.0
        assert rows[0].response_rate == 0.0

    def test_ties_ordered_by_name(self, session, alice):
        for source in ("Xing", "Indeed", "Glassdoor"):
            make_application(session, job=make_job(session, source=source))
        names = [r.source_name for r in get_source_analytics(session, alice).sources]
        assert names == ["Glassdoor", "Indeed", "Xing"]

    def test_unknown_label_configurable(self, session, alice, monkeypatch):
        make_application(session, job=make_job(session, source=None))
        monkeypatch.setenv("CONFIG__ANALYTICS__UNKNOWN_SOURCE_LABEL", "Other")
        config_module.reload_config()
        assert get_source_analytics(session, alice).sources[0].source_name == "Other"

    def test_serializes_to_json(self, session, alice):
        make_application(session, job=make_job(session, source="LinkedIn"))
        payload = json.loads(get_source_analytics(session, alice).model_dump_json())
        assert payload["sources"][0] == {
            "source_name": "LinkedIn",
            "applications_count": 1,
            "responses_count": 0,
            "interviews_count": 0,
            "response_rate": 0.0,
        }
