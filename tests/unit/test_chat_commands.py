# ABOUTME: Validates slash command parsing, /config value ranges and auto-approve toggles.
# ABOUTME: Ensures unknown commands fall through to normal chat handling.

from __future__ import annotations

import pytest

from deckforge.chat.commands import help_text, parse_auto_approve, parse_config_change, parse_slash_command
from deckforge.chat.dispatcher import detect_generation_intent, infer_presentation_type, parse_validation_response


def test_parse_slash_command_splits_arguments() -> None:
    command = parse_slash_command("  /Export PDF ")

    assert command is not None
    assert command.command == "export"
    assert command.args == ("PDF",)
    assert parse_slash_command("/outline Our Q3 roadmap").args == ("Our", "Q3", "roadmap")
    assert parse_slash_command("/unknown thing") is None
    assert parse_slash_command("no slash here") is None


def test_parse_config_change_enforces_ranges() -> None:
    change = parse_config_change(("Bullets", "3"))

    assert change.field_name == "max_bullets"
    assert change.value == 3
    assert parse_config_change(("images", "0")).field_name == "image_frequency"
    with pytest.raises(ValueError, match="bullets <2-6>"):
        parse_config_change(("bullets", "9"))
    with pytest.raises(ValueError, match="Unknown setting"):
        parse_config_change(("fonts", "2"))
    with pytest.raises(ValueError, match="Invalid value"):
        parse_config_change(("words", "many"))
    with pytest.raises(ValueError, match="Usage"):
        parse_config_change(("words",))


def test_parse_auto_approve_defaults_to_enabled() -> None:
    assert parse_auto_approve(()) is True
    assert parse_auto_approve(("on",)) is True
    assert parse_auto_approve(("OFF",)) is False
    assert parse_auto_approve(("disable",)) is False


def test_help_lists_every_command() -> None:
    text = help_text()

    for usage in ("/outline", "/export", "/config", "/auto-approve", "/help"):
        assert usage in text


def test_generation_intent_and_type_inference() -> None:
    request = detect_generation_intent("Create a pitch deck about Acme logistics")

    assert request is not None
    assert request.presentation_type == "VC_PITCH"
    assert detect_generation_intent("slides on our engineering architecture").presentation_type == "TECHNICAL"
    assert detect_generation_intent("what colour is the title?") is None
    assert infer_presentation_type("quarterly board briefing") == "EXECUTIVE"
    assert infer_presentation_type("team offsite recap") == "STANDARD"


def test_parse_validation_response_handles_phrases_and_json_edits() -> None:
    assert parse_validation_response("Accept").action == "accept"
    assert parse_validation_response("remove slide").action == "reject"
    edit = parse_validation_response('{"action": "edit", "editedContent": {"title": "New", "body": "- a"}}')
    assert edit.action == "edit"
    assert edit.title == "New"
    assert edit.speaker_notes is None
    assert parse_validation_response('{"action": "edit"}') is None
    assert parse_validation_response("{not json") is None
    assert parse_validation_response("tell me more") is None
