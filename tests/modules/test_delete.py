"""Tests for the deletion modules."""

from __future__ import annotations

import pytest

from icalrelay.errors import InvalidParameter, MissingParameter
from icalrelay.modules import call_module, parse_invocation
from icalrelay.rrule import parse_rule

pytestmark = pytest.mark.unit


def run(document, name, ctx, **params):
    return call_module(document, parse_invocation(name, params), ctx)


def ids(document):
    return [event.id for _, event in document.events()]


# ---------------------------------------------------------------------------
# delete-bysummary-regex
# ---------------------------------------------------------------------------


class TestDeleteBySummaryRegex:
    def test_removes_matches(self, make_document, make_event, ctx):
        doc = make_document(
            make_event("1", "Lunch with Bob"),
            make_event("2", "Standup"),
            make_event("3", "Lunch"),
        )
        assert run(doc, "delete-bysummary-regex", ctx, regex="^Lunch") == -2
        assert ids(doc) == ["2"]

    def test_delta_matches_removed_count(self, make_document, make_event, ctx):
        doc = make_document(*(make_event(str(i), f"Event {i}") for i in range(5)))
        before = doc.event_count()
        delta = run(doc, "delete-bysummary-regex", ctx, regex="Event [13]")
        assert doc.event_count() == before + delta

    def test_missing_summary_matches_empty_pattern(self, make_document, make_event, ctx):
        doc = make_document(make_event("1"), make_event("2", "Kept"))
        assert run(doc, "delete-bysummary-regex", ctx, regex="^$") == -1
        assert ids(doc) == ["2"]

    def test_window_applies_when_both_bounds_given(self, make_document, make_event, ctx):
        doc = make_document(
            make_event("jan", "Gym", "20240105T100000Z", "20240105T110000Z"),
            make_event("mar", "Gym", "20240305T100000Z", "20240305T110000Z"),
        )
        delta = run(
            doc,
            "delete-bysummary-regex",
            ctx,
            regex="Gym",
            **{"from": "2024-03-01T00:00:00Z", "until": "2024-04-01T00:00:00Z"},
        )
        assert delta == -1
        assert ids(doc) == ["jan"]

    def test_single_bound_is_ignored(self, make_document, make_event, ctx, caplog):
        doc = make_document(
            make_event("jan", "Gym", "20240105T100000Z", "20240105T110000Z"),
            make_event("mar", "Gym", "20240305T100000Z", "20240305T110000Z"),
        )
        delta = run(
            doc, "delete-bysummary-regex", ctx, regex="Gym", **{"from": "2024-03-01T00:00:00Z"}
        )
        assert delta == -2
        assert "time filter ignored" in caplog.text

    def test_no_match(self, make_document, make_event, ctx):
        doc = make_document(make_event("1", "Standup"))
        assert run(doc, "delete-bysummary-regex", ctx, regex="Lunch") == 0
        assert doc.event_count() == 1

    def test_timezone_survives(self, make_document, make_event, ctx):
        doc = make_document(make_event("1", "Lunch"), timezone=True)
        run(doc, "delete-bysummary-regex", ctx, regex="Lunch")
        assert [c.name for c in doc.components] == ["VTIMEZONE"]

    def test_missing_regex(self, ctx):
        with pytest.raises(MissingParameter, match="regex"):
            parse_invocation("delete-bysummary-regex", {})

    def test_invalid_regex(self):
        with pytest.raises(InvalidParameter, match="regex"):
            parse_invocation("delete-bysummary-regex", {"regex": "("})


# ---------------------------------------------------------------------------
# delete-byid
# ---------------------------------------------------------------------------


class TestDeleteById:
    def test_removes_first_match_only(self, make_document, make_event, ctx):
        doc = make_document(make_event("a", "one"), make_event("a", "two"), make_event("b"))
        assert run(doc, "delete-byid", ctx, id="a") == -1
        assert [e.summary for _, e in doc.events()] == ["two", None]

    def test_no_match_is_not_an_error(self, make_document, make_event, ctx):
        doc = make_document(make_event("a", "one"))
        assert run(doc, "delete-byid", ctx, id="zzz") == 0
        assert doc.event_count() == 1

    def test_missing_id(self):
        with pytest.raises(MissingParameter, match="'id'"):
            parse_invocation("delete-byid", {"id": ""})


# ---------------------------------------------------------------------------
# delete-timeframe
# ---------------------------------------------------------------------------


class TestDeleteTimeframe:
    def test_removes_events_inside_window(self, make_document, make_event, ctx):
        doc = make_document(
            make_event("before", "x", "20240101T100000Z", "20240101T110000Z"),
            make_event("inside", "x", "20240115T100000Z", "20240115T110000Z"),
            make_event("after", "x", "20240201T100000Z", "20240201T110000Z"),
        )
        delta = run(
            doc,
            "delete-timeframe",
            ctx,
            after="2024-01-10T00:00:00Z",
            before="2024-01-20T00:00:00Z",
        )
        assert delta == -1
        assert ids(doc) == ["before", "after"]

    def test_window_is_open(self, make_document, make_event, ctx):
        doc = make_document(make_event("edge", "x", "20240110T000000Z", "20240110T010000Z"))
        delta = run(
            doc,
            "delete-timeframe",
            ctx,
            after="2024-01-10T00:00:00Z",
            before="2024-01-20T00:00:00Z",
        )
        assert delta == 0

    def test_after_now_uses_context_clock(self, make_document, make_event, ctx):
        # ctx clock is 2024-06-01T12:00Z.
        doc = make_document(
            make_event("past", "x", "20240501T100000Z", "20240501T110000Z"),
            make_event("future", "x", "20240701T100000Z", "20240701T110000Z"),
        )
        assert run(doc, "delete-timeframe", ctx, after="now") == -1
        assert ids(doc) == ["past"]

    def test_before_only(self, make_document, make_event, ctx):
        doc = make_document(
            make_event("past", "x", "20240501T100000Z", "20240501T110000Z"),
            make_event("future", "x", "20240701T100000Z", "20240701T110000Z"),
        )
        assert run(doc, "delete-timeframe", ctx, before="now") == -1
        assert ids(doc) == ["future"]

    def test_recurrence_is_truncated_at_after(self, make_document, make_event, ctx):
        doc = make_document(
            make_event("series", "x", "20240101T100000Z", "20240101T110000Z", rrule="FREQ=DAILY"),
        )
        delta = run(doc, "delete-timeframe", ctx, after="2024-03-01T00:00:00Z")
        assert delta == 0
        _, event = doc.events()[0]
        assert parse_rule(event.rrule)["UNTIL"] == "20240301T000000Z"

    def test_later_until_is_shortened(self, make_document, make_event, ctx):
        doc = make_document(
            make_event(
                "series",
                "x",
                "20240101T100000Z",
                "20240101T110000Z",
                rrule="FREQ=DAILY;UNTIL=20241231T000000Z",
            ),
        )
        run(doc, "delete-timeframe", ctx, after="2024-03-01T00:00:00Z")
        _, event = doc.events()[0]
        assert parse_rule(event.rrule)["UNTIL"] == "20240301T000000Z"

    def test_count_rule_left_unchanged(self, make_document, make_event, ctx):
        doc = make_document(
            make_event("series", "x", "20240101T100000Z", rrule="FREQ=DAILY;COUNT=100"),
        )
        run(doc, "delete-timeframe", ctx, after="2024-03-01T00:00:00Z")
        _, event = doc.events()[0]
        rule = parse_rule(event.rrule)
        assert rule["COUNT"] == "100"
        assert "UNTIL" not in rule

    def test_missing_start_is_kept(self, make_document, make_event, ctx):
        doc = make_document(make_event("nostart", "x", start=None, end=None))
        assert run(doc, "delete-timeframe", ctx, after="2024-01-01T00:00:00Z") == 0

    def test_both_bounds_missing(self):
        with pytest.raises(MissingParameter, match="one is required"):
            parse_invocation("delete-timeframe", {})

    def test_invalid_bound(self):
        with pytest.raises(InvalidParameter, match="after"):
            parse_invocation("delete-timeframe", {"after": "last tuesday"})


# ---------------------------------------------------------------------------
# delete-duplicates
# ---------------------------------------------------------------------------


class TestDeleteDuplicates:
    def test_last_occurrence_survives(self, make_document, make_event, ctx):
        doc = make_document(
            make_event("first", "Standup"),
            make_event("other", "Lunch"),
            make_event("last", "Standup"),
        )
        assert run(doc, "delete-duplicates", ctx) == -1
        assert ids(doc) == ["other", "last"]

    def test_different_end_is_not_duplicate(self, make_document, make_event, ctx):
        doc = make_document(
            make_event("a", "Standup", "20240105T100000Z", "20240105T110000Z"),
            make_event("b", "Standup", "20240105T100000Z", "20240105T120000Z"),
        )
        assert run(doc, "delete-duplicates", ctx) == 0

    def test_triplicate(self, make_document, make_event, ctx):
        doc = make_document(*(make_event(str(i), "Same") for i in range(3)))
        assert run(doc, "delete-duplicates", ctx) == -2
        assert ids(doc) == ["2"]

    def test_idempotent(self, make_document, make_event, ctx):
        doc = make_document(make_event("a", "Same"), make_event("b", "Same"))
        run(doc, "delete-duplicates", ctx)
        assert run(doc, "delete-duplicates", ctx) == 0


class TestDeletionProperties:
    def test_delete_byid_twice_is_idempotent(self, make_document, make_event, ctx):
        doc = make_document(make_event("a", "one"), make_event("b", "two"))
        assert run(doc, "delete-byid", ctx, id="a") == -1
        assert run(doc, "delete-byid", ctx, id="a") == 0

    @pytest.mark.parametrize(
        "instant", ["2024-01-05T10:00:00Z", "2024-01-05T10:30:00+01:00", "1999-12-31T23:59:59Z"]
    )
    def test_empty_window_removes_nothing(self, make_document, make_event, ctx, instant):
        doc = make_document(
            make_event("a", "x", "20240105T100000Z", "20240105T110000Z"),
            make_event("b", "x", "20240105T093000Z", "20240105T100000Z"),
        )
        assert run(doc, "delete-timeframe", ctx, after=instant, before=instant) == 0
        assert doc.event_count() == 2

    def test_positive_delta_raises_invariant_violation(
        self, make_document, make_event, ctx, monkeypatch
    ):
        from icalrelay.calendar import CalendarDocument
        from icalrelay.errors import InvariantViolation
        from icalrelay.modules.delete import DeleteSummaryRegexParams, delete_summary_regex

        doc = make_document(make_event("a", "Lunch"))
        monkeypatch.setattr(CalendarDocument, "remove_components", lambda self, positions: -1)
        params = DeleteSummaryRegexParams.model_validate({"regex": "Lunch"})
        with pytest.raises(InvariantViolation):
            delete_summary_regex(doc, params, ctx)
