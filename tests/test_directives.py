"""Tests for homeplan.lib.directives module."""

import pytest

from homeplan.lib.directives import (
    GENERATE_PLAN_MARKER,
    GeneratePlanRequested,
    SuggestTask,
    UpdatePlan,
    format_suggest_task,
    format_update_plan,
    parse_response,
)


class TestGeneratePlan:
    """Tests for the [GENERATE_PLAN] marker."""

    def test_marker_at_end(self):
        result = parse_response("Thanks, I have everything I need. [GENERATE_PLAN]")
        assert result.directives == [GeneratePlanRequested()]
        assert result.display_text == "Thanks, I have everything I need."
        assert result.generate_plan

    def test_marker_mid_text_still_honored(self):
        result = parse_response("Great. [GENERATE_PLAN] Let me put that together.")
        assert result.generate_plan
        assert GENERATE_PLAN_MARKER not in result.display_text
        assert result.display_text.startswith("Great.")

    def test_repeated_marker_yields_one_directive(self):
        result = parse_response("Done [GENERATE_PLAN] [GENERATE_PLAN]")
        assert result.directives == [GeneratePlanRequested()]
        assert result.display_text == "Done"

    def test_no_marker(self):
        text = "  What colour are the walls now?  "
        result = parse_response(text)
        assert result.directives == []
        assert result.display_text == text


class TestUpdatePlan:
    """Tests for the [UPDATE_PLAN] marker."""

    def test_valid_payload(self):
        text = 'Sure, updated. [UPDATE_PLAN] {"cost": "£150-£200"}'
        result = parse_response(text)
        assert result.directives == [UpdatePlan(fields={"cost": "£150-£200"})]
        assert result.display_text == "Sure, updated."

    def test_guide_payload_fields(self):
        text = 'Ok [UPDATE_PLAN] {"guide":[{"text":"Prime","completed":false},{"text":"Paint","completed":false}]}'
        update = parse_response(text).update_plan
        assert [step["text"] for step in update.guide] == ["Prime", "Paint"]
        assert update.materials is None
        assert update.tools is None

    def test_span_removed_exactly(self):
        text = 'Before [UPDATE_PLAN] {"time":"3 days"} after'
        result = parse_response(text)
        assert result.display_text == "Before  after"

    def test_invalid_json_left_verbatim(self):
        text = 'Updated! [UPDATE_PLAN] {"cost": "£150"'
        result = parse_response(text)
        assert result.directives == []
        assert result.display_text == text

    def test_unknown_field_rejected(self):
        text = '[UPDATE_PLAN] {"budget": "£150"}'
        result = parse_response(text)
        assert result.directives == []
        assert result.display_text == text

    def test_wrong_shape_rejected(self):
        text = '[UPDATE_PLAN] {"guide": [{"completed": true}]}'
        assert parse_response(text).directives == []

    def test_empty_object_rejected(self):
        text = "[UPDATE_PLAN] {}"
        assert parse_response(text).directives == []

    def test_empty_guide_rejected(self):
        text = 'Sure. [UPDATE_PLAN] {"guide": []}'
        result = parse_response(text)
        assert result.directives == []
        assert result.display_text == text

    def test_multiline_payload_rejected(self):
        text = '[UPDATE_PLAN] {"cost":\n "£150"}'
        result = parse_response(text)
        assert result.directives == []
        assert result.display_text == text

    def test_payload_on_next_line_rejected(self):
        text = '[UPDATE_PLAN]\n{"cost": "£150"}'
        assert parse_response(text).directives == []

    def test_only_first_update_honored(self):
        text = '[UPDATE_PLAN] {"cost":"a"} and [UPDATE_PLAN] {"cost":"b"}'
        result = parse_response(text)
        assert result.directives == [UpdatePlan(fields={"cost": "a"})]
        assert '[UPDATE_PLAN] {"cost":"b"}' in result.display_text

    def test_format_round_trips_through_parser(self):
        fields = {"materials": [{"text": "Filler", "cost": 4.5, "completed": False}]}
        result = parse_response("Done. " + format_update_plan(fields))
        assert result.update_plan == UpdatePlan(fields=fields)
        assert "\n" not in format_update_plan(fields)


class TestSuggestTask:
    """Tests for [SUGGEST_TASK:...] markers."""

    def test_single_suggestion(self):
        text = 'Let us start. [SUGGEST_TASK:{"title": "Strip wallpaper", "room": "Bedroom"}]'
        result = parse_response(text)
        assert result.suggestions == [SuggestTask("Strip wallpaper", "Bedroom")]
        assert result.display_text == "Let us start."

    def test_malformed_sibling_does_not_invalidate_valid_one(self):
        text = (
            'Great idea! [SUGGEST_TASK:{"title":"Sand floors","room":"Hallway"}] '
            'and also [SUGGEST_TASK:{"title":"Paint skirting","room":"Hallway"]'
        )
        result = parse_response(text)
        assert result.directives == [SuggestTask("Sand floors", "Hallway")]
        assert '[SUGGEST_TASK:{"title":"Paint skirting","room":"Hallway"]' in result.display_text
        assert "Sand floors" not in result.display_text

    def test_order_preserved(self):
        text = " ".join(format_suggest_task(t, "Kitchen") for t in ("Fill cracks", "Prime walls", "Paint walls"))
        result = parse_response(text)
        assert [s.title for s in result.suggestions] == ["Fill cracks", "Prime walls", "Paint walls"]
        assert result.display_text == ""

    def test_missing_closing_bracket_rejected(self):
        text = '[SUGGEST_TASK:{"title": "Tile splashback", "room": "Kitchen"} thanks'
        result = parse_response(text)
        assert result.directives == []
        assert result.display_text == text

    def test_missing_room_rejected(self):
        text = '[SUGGEST_TASK:{"title": "Tile splashback"}]'
        assert parse_response(text).directives == []

    def test_empty_title_rejected(self):
        text = '[SUGGEST_TASK:{"title": "", "room": "Kitchen"}]'
        assert parse_response(text).directives == []

    def test_values_are_trimmed(self):
        text = '[SUGGEST_TASK:{"title": " Regrout shower ", "room": "Bathroom "}]'
        assert parse_response(text).suggestions == [SuggestTask("Regrout shower", "Bathroom")]


class TestPhaseFilter:
    """Tests for the has_plan phase filter."""

    TEXT = 'Ok [UPDATE_PLAN] {"cost":"£90"} [GENERATE_PLAN]'

    def test_no_plan_keeps_generate(self):
        result = parse_response(self.TEXT, has_plan=False)
        assert result.directives == [GeneratePlanRequested()]
        assert result.display_text == "Ok"

    def test_plan_keeps_update(self):
        result = parse_response(self.TEXT, has_plan=True)
        assert result.directives == [UpdatePlan(fields={"cost": "£90"})]
        assert result.display_text == "Ok"

    def test_unknown_phase_keeps_both(self):
        result = parse_response(self.TEXT)
        assert len(result.directives) == 2

    def test_suggestions_unaffected(self):
        text = format_suggest_task("Sand floors", "Hallway") + " [GENERATE_PLAN]"
        result = parse_response(text, has_plan=True)
        assert result.directives == [SuggestTask("Sand floors", "Hallway")]


class TestTotality:
    """parse_response never raises."""

    @pytest.mark.parametrize("text", [
        "",
        "[SUGGEST_TASK:",
        "[UPDATE_PLAN]",
        "[SUGGEST_TASK:[1,2]]",
        "[UPDATE_PLAN] " + "[" * 5000,
        '[SUGGEST_TASK:{"title": "x", "room": "y"',
        "[[GENERATE_PLAN]]",
    ])
    def test_odd_inputs(self, text):
        result = parse_response(text)
        assert isinstance(result.display_text, str)

    def test_non_string_input(self):
        result = parse_response(None)
        assert result.directives == []
        assert result.display_text == ""
