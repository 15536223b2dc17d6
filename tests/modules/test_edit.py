"""Tests for the field-editing modules."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from icalrelay.errors import InvalidParameter, MissingParameter
from icalrelay.modules import call_module, parse_invocation
from icalrelay.modules.base import OverwriteMode, apply_overwrite, parse_go_duration

pytestmark = pytest.mark.unit


def run(document, name, ctx, **params):
    return call_module(document, parse_invocation(name, params), ctx)


def event(document, uid):
    return document.find_event(uid)[1]


# ---------------------------------------------------------------------------
# Overwrite policy
# ---------------------------------------------------------------------------


class TestApplyOverwrite:
    def test_true_replaces(self):
        assert apply_overwrite("old", "new", OverwriteMode.TRUE) == "new"

    def test_false_appends(self):
        assert apply_overwrite("old", "new", OverwriteMode.FALSE) == "old; new"

    def test_fillempty_keeps_existing(self):
        assert apply_overwrite("old", "new", OverwriteMode.FILL_EMPTY) is None

    def test_fillempty_fills_empty(self):
        assert apply_overwrite("", "new", OverwriteMode.FILL_EMPTY) == "new"

    @pytest.mark.parametrize("mode", list(OverwriteMode))
    def test_absent_field_is_always_created(self, mode):
        assert apply_overwrite(None, "new", mode) == "new"


class TestParseGoDuration:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("1h", timedelta(hours=1)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("-15m", timedelta(minutes=-15)),
            ("1.5h", timedelta(minutes=90)),
            ("90s", timedelta(seconds=90)),
            ("3000ns", timedelta(microseconds=3)),
            ("1ms500us", timedelta(microseconds=1500)),
            ("0", timedelta(0)),
        ],
    )
    def test_valid(self, text, expected):
        assert parse_go_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "1d", "h", "one hour"])
    def test_invalid(self, text):
        with pytest.raises(InvalidParameter):
            parse_go_duration(text)


# ---------------------------------------------------------------------------
# edit-byid
# ---------------------------------------------------------------------------


class TestEditById:
    def test_overwrites_by_default(self, make_document, make_event, ctx):
        doc = make_document(make_event("a", "Old"))
        assert run(doc, "edit-byid", ctx, id="a", **{"new-summary": "New"}) == 0
        assert event(doc, "a").summary == "New"

    def test_append_mode(self, make_document, make_event, ctx):
        doc = make_document(make_event("a", "Old", description="Notes"))
        run(
            doc,
            "edit-byid",
            ctx,
            id="a",
            overwrite="false",
            **{"new-summary": "New", "new-description": "More"},
        )
        assert event(doc, "a").summary == "Old; New"
        assert event(doc, "a").description == "Notes; More"

    def test_fillempty_only_fills_missing(self, make_document, make_event, ctx):
        doc = make_document(make_event("a", "Old"))
        run(
            doc,
            "edit-byid",
            ctx,
            id="a",
            overwrite="fillempty",
            **{"new-summary": "New", "new-location": "Room 2"},
        )
        assert event(doc, "a").summary == "Old"
        assert event(doc, "a").location == "Room 2"

    def test_forced_creation_is_per_field(self, make_document, make_event, ctx):
        # Creating a missing location must not turn the summary edit into an overwrite.
        doc = make_document(make_event("a", "Old"))
        run(
            doc,
            "edit-byid",
            ctx,
            id="a",
            overwrite="false",
            **{"new-location": "Room 2", "new-summary": "New"},
        )
        assert event(doc, "a").location == "Room 2"
        assert event(doc, "a").summary == "Old; New"

    def test_new_start_and_end(self, make_document, make_event, ctx):
        doc = make_document(make_event("a", "x"))
        run(
            doc,
            "edit-byid",
            ctx,
            id="a",
            **{"new-start": "2024-02-01T09:00:00Z", "new-end": "2024-02-01T10:00:00Z"},
        )
        assert event(doc, "a").start == datetime(2024, 2, 1, 9, tzinfo=UTC)
        assert event(doc, "a").end == datetime(2024, 2, 1, 10, tzinfo=UTC)

    def test_only_first_match_is_edited(self, make_document, make_event, ctx):
        doc = make_document(make_event("a", "one"), make_event("a", "two"))
        run(doc, "edit-byid", ctx, id="a", **{"new-summary": "edited"})
        assert [e.summary for _, e in doc.events()] == ["edited", "two"]

    def test_no_match(self, make_document, make_event, ctx):
        doc = make_document(make_event("a", "Old"))
        assert run(doc, "edit-byid", ctx, id="zzz", **{"new-summary": "New"}) == 0
        assert event(doc, "a").summary == "Old"

    def test_missing_id(self):
        with pytest.raises(MissingParameter, match="'id'"):
            parse_invocation("edit-byid", {"new-summary": "x"})

    def test_invalid_overwrite(self):
        with pytest.raises(InvalidParameter, match="overwrite"):
            parse_invocation("edit-byid", {"id": "a", "overwrite": "sometimes"})

    def test_invalid_new_start(self):
        with pytest.raises(InvalidParameter, match="new-start"):
            parse_invocation("edit-byid", {"id": "a", "new-start": "soon"})


# ---------------------------------------------------------------------------
# edit-bysummary-regex
# ---------------------------------------------------------------------------


class TestEditBySummaryRegex:
    def test_edits_every_match(self, make_document, make_event, ctx):
        doc = make_document(
            make_event("1", "Lunch"), make_event("2", "Standup"), make_event("3", "Lunch break")
        )
        delta = run(doc, "edit-bysummary-regex", ctx, regex="^Lunch", **{"new-location": "Cafe"})
        assert delta == 0
        assert [e.location for _, e in doc.events()] == ["Cafe", None, "Cafe"]

    def test_move_time_shifts_matches(self, make_document, make_event, ctx):
        doc = make_document(make_event("1", "Gym"), make_event("2", "Other"))
        run(doc, "edit-bysummary-regex", ctx, regex="Gym", **{"move-time": "-30m"})
        assert event(doc, "1").start == datetime(2024, 1, 5, 9, 30, tzinfo=UTC)
        assert event(doc, "1").end == datetime(2024, 1, 5, 10, 30, tzinfo=UTC)
        assert event(doc, "2").start == datetime(2024, 1, 5, 10, tzinfo=UTC)

    def test_move_time_on_all_day_event_becomes_datetime(self, make_document, make_event, ctx):
        doc = make_document(make_event("allday", "Gym", "20240105", "20240106"))
        run(doc, "edit-bysummary-regex", ctx, regex="Gym", **{"move-time": "2h"})
        assert event(doc, "allday").raw_start == datetime(2024, 1, 5, 2, tzinfo=UTC)
        assert event(doc, "allday").raw_end == datetime(2024, 1, 6, 2, tzinfo=UTC)

    def test_move_time_whole_days_keeps_all_day_dates(self, make_document, make_event, ctx):
        doc = make_document(make_event("allday", "Gym", "20240105", "20240106"))
        run(doc, "edit-bysummary-regex", ctx, regex="Gym", **{"move-time": "48h"})
        assert event(doc, "allday").raw_start == date(2024, 1, 7)
        assert event(doc, "allday").raw_end == date(2024, 1, 8)

    def test_window_lower_bound_from_after(self, make_document, make_event, ctx):
        doc = make_document(
            make_event("jan", "Gym", "20240105T100000Z", "20240105T110000Z"),
            make_event("mar", "Gym", "20240305T100000Z", "20240305T110000Z"),
        )
        run(
            doc,
            "edit-bysummary-regex",
            ctx,
            regex="Gym",
            after="2024-03-01T00:00:00Z",
            **{"new-summary": "Gym (moved)"},
        )
        assert event(doc, "jan").summary == "Gym"
        assert event(doc, "mar").summary == "Gym (moved)"

    def test_window_excludes_events_without_start(self, make_document, make_event, ctx):
        doc = make_document(make_event("n", "Gym", start=None, end=None))
        run(
            doc,
            "edit-bysummary-regex",
            ctx,
            regex="Gym",
            before="now",
            **{"new-summary": "changed"},
        )
        assert event(doc, "n").summary == "Gym"

    def test_no_window_matches_events_without_start(self, make_document, make_event, ctx):
        doc = make_document(make_event("n", "Gym", start=None, end=None))
        run(doc, "edit-bysummary-regex", ctx, regex="Gym", **{"new-summary": "changed"})
        assert event(doc, "n").summary == "changed"

    def test_move_time_excludes_new_start(self):
        with pytest.raises(InvalidParameter, match="exclusive"):
            parse_invocation(
                "edit-bysummary-regex",
                {"regex": "x", "move-time": "1h", "new-start": "2024-01-01T00:00:00Z"},
            )

    def test_invalid_move_time(self):
        with pytest.raises(InvalidParameter, match="move-time"):
            parse_invocation("edit-bysummary-regex", {"regex": "x", "move-time": "soon"})

    def test_missing_regex(self):
        with pytest.raises(MissingParameter, match="regex"):
            parse_invocation("edit-bysummary-regex", {"new-summary": "x"})


class TestOverwriteProperties:
    def test_append_to_existing_summary(self, make_document, make_event, ctx):
        doc = make_document(make_event("a", "Standup"))
        run(doc, "edit-byid", ctx, id="a", overwrite="false", **{"new-summary": "moved"})
        assert event(doc, "a").summary == "Standup; moved"

    def test_fillempty_leaves_non_empty_field(self, make_document, make_event, ctx):
        doc = make_document(make_event("a", "Standup"))
        run(doc, "edit-byid", ctx, id="a", overwrite="fillempty", **{"new-summary": "moved"})
        assert event(doc, "a").summary == "Standup"
