from __future__ import annotations

from datetime import datetime, timezone

import pytest

from unicord.builders import (
    EmbedBuilder,
    build_action_row,
    build_button,
    build_link_button,
    build_modal,
    build_select_option,
    build_string_select,
    build_text_input,
)


def test_identical_inputs_build_equal_but_distinct_components() -> None:
    first = build_action_row(build_button("Approve", "approve", style=3))
    second = build_action_row(build_button("Approve", "approve", style=3))

    assert first == second
    assert first is not second
    assert first["components"][0] is not second["components"][0]
    assert first == {
        "type": 1,
        "components": [
            {"type": 2, "style": 3, "label": "Approve", "custom_id": "approve"}
        ],
    }


def test_button_optional_fields() -> None:
    button = build_button("Stop", "stop", emoji="🛑", disabled=True)
    assert button["disabled"] is True
    assert button["emoji"] == {"name": "🛑"}

    link = build_link_button("Docs", "https://example.com")
    assert link == {
        "type": 2,
        "style": 5,
        "label": "Docs",
        "url": "https://example.com",
    }


def test_string_select_caps_options() -> None:
    options = [build_select_option(f"opt {i}", str(i)) for i in range(30)]
    select = build_string_select("pick", options, placeholder="Choose", max_values=40)

    assert select["type"] == 3
    assert len(select["options"]) == 25
    assert select["max_values"] == 25
    assert select["placeholder"] == "Choose"
    assert select["options"][0] is not options[0]


def test_modal_wraps_each_input_in_row() -> None:
    reason = build_text_input("reason", "Reason", style=2, max_length=200)
    modal = build_modal("report", "Report user", reason)

    assert modal["custom_id"] == "report"
    assert modal["components"] == [{"type": 1, "components": [reason]}]
    assert reason["max_length"] == 200


def test_embed_builder_chain() -> None:
    moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    embed = (
        EmbedBuilder()
        .set_title("Status")
        .set_description("All good")
        .set_color(0x00FF00)
        .set_timestamp(moment)
        .set_footer("unicord", icon_url="https://example.com/i.png")
        .set_author("bot")
        .add_field("Latency", "42ms", inline=True)
        .to_dict()
    )

    assert embed == {
        "title": "Status",
        "description": "All good",
        "color": 0x00FF00,
        "timestamp": "2024-01-02T03:04:05+00:00",
        "footer": {"text": "unicord", "icon_url": "https://example.com/i.png"},
        "author": {"name": "bot"},
        "fields": [{"name": "Latency", "value": "42ms", "inline": True}],
    }


def test_embed_to_dict_returns_copies() -> None:
    builder = EmbedBuilder().set_image("https://example.com/a.png").add_field("a", "b")
    first = builder.to_dict()
    first["image"]["url"] = "mutated"
    first["fields"][0]["name"] = "mutated"

    second = builder.to_dict()
    assert second["image"] == {"url": "https://example.com/a.png"}
    assert second["fields"][0]["name"] == "a"


def test_embed_field_limit() -> None:
    builder = EmbedBuilder()
    for index in range(25):
        builder.add_field(str(index), "v")
    with pytest.raises(ValueError):
        builder.add_field("26", "v")
