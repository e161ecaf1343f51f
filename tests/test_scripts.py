"""Tests for the script repository and YAML export."""

import pytest
import yaml
from pydantic import ValidationError

from src.studio.models import Shot, TemplateCategory, ToolCall
from src.studio.scripts import ScriptRepository, script_to_yaml
from src.studio.storage import MemoryStore


@pytest.fixture
def script(scripts):
    created = scripts.create_script("Pilot")
    return scripts.update_script(
        created.id,
        shots=[
            Shot(id="a", title="Open", prompt="{{hero}} wakes up"),
            Shot(id="b", title="Close", prompt="sunset"),
        ],
    )


def test_create_script_defaults(scripts) -> None:
    script = scripts.create_script("New")
    assert script.shots == []
    assert script.templates == {}
    assert script.settings.default_audio == "video"
    assert script.created_at == script.updated_at
    assert scripts.get_script(script.id) == script


def test_update_script_bumps_updated_at(scripts, script) -> None:
    updated = scripts.update_script(script.id, title="Renamed", created_at="nope")
    assert updated.title == "Renamed"
    assert updated.created_at == script.created_at
    assert updated.updated_at > script.updated_at
    assert scripts.update_script("ghost", title="x") is None


def test_list_scripts_most_recent_first(scripts) -> None:
    first = scripts.create_script("One")
    second = scripts.create_script("Two")
    scripts.update_script(first.id, title="One again")
    assert [s.id for s in scripts.list_scripts()][0] == first.id
    assert {s.id for s in scripts.list_scripts()} == {first.id, second.id}


def test_delete_script(scripts, script) -> None:
    assert scripts.delete_script(script.id) is True
    assert scripts.get_script(script.id) is None
    assert scripts.delete_script(script.id) is False


def test_apply_tool_calls_persists_changes(scripts, script) -> None:
    result = scripts.apply_tool_calls(
        script.id,
        [ToolCall(name="update_shot_prompt", args={"shotId": "b", "prompt": "dawn"})],
    )
    assert result.shots[1].prompt == "dawn"
    assert scripts.get_script(script.id).shots[1].prompt == "dawn"


def test_apply_tool_calls_noop_does_not_write(scripts, script, store) -> None:
    before = store._get_raw("song-builder:video-scripts")
    result = scripts.apply_tool_calls(script.id, [ToolCall(name="delete_shot", args={})])
    assert result == script
    assert store._get_raw("song-builder:video-scripts") == before
    assert scripts.apply_tool_calls("ghost", []) is None


def test_takes(scripts, script) -> None:
    scripts.record_take(script.id, "a", "take1.mp4")
    updated = scripts.record_take(script.id, "a", "take2.mp4")
    video = updated.shots[0].video
    assert video.selected_url == "take2.mp4"
    assert [e.url for e in video.history] == ["take1.mp4", "take2.mp4"]

    selected = scripts.select_take(script.id, "a", "take1.mp4")
    assert selected.shots[0].video.selected_url == "take1.mp4"
    assert scripts.select_take(script.id, "a", "missing.mp4") is None

    pinned = scripts.pin_take(script.id, "a", "take1.mp4", True)
    entry = pinned.shots[0].video.history[0]
    assert entry.pinned is True
    assert entry.pinned_at is not None
    assert [(shot_id, e.url) for _, shot_id, e in scripts.list_pinned_takes()] == [
        ("a", "take1.mp4"),
    ]

    unpinned = scripts.pin_take(script.id, "a", "take1.mp4", False)
    entry = unpinned.shots[0].video.history[0]
    assert entry.pinned is False
    assert entry.pinned_at is None
    assert scripts.list_pinned_takes() == []


def test_take_on_unknown_shot(scripts, script) -> None:
    assert scripts.record_take(script.id, "ghost", "x.mp4") is None
    assert scripts.record_take("ghost", "a", "x.mp4") is None


def test_local_templates(scripts, script) -> None:
    updated = scripts.set_local_template(script.id, "hero", "Maya in a red coat")
    assert updated.templates["hero"].value == "Maya in a red coat"
    assert updated.templates["hero"].global_ is False
    removed = scripts.delete_local_template(script.id, "hero")
    assert removed.templates == {}
    assert scripts.delete_local_template(script.id, "hero") is None


def test_global_templates_upsert_by_name(scripts) -> None:
    scripts.create_global_template("hero", "Maya")
    scripts.create_global_template("city", "Lisbon", TemplateCategory.SCENERY)
    scripts.create_global_template("hero", "Maya, older")
    templates = scripts.list_global_templates()
    assert [(t.name, t.value) for t in templates] == [("hero", "Maya, older"), ("city", "Lisbon")]
    assert scripts.get_global_template("city").category is TemplateCategory.SCENERY


def test_global_template_invalid_name(scripts) -> None:
    with pytest.raises(ValidationError):
        scripts.create_global_template("bad name", "x")
    assert scripts.list_global_templates() == []


def test_update_and_delete_global_template(scripts) -> None:
    scripts.create_global_template("hero", "Maya")
    updated = scripts.update_global_template("hero", value="Ana", category="style", name="x")
    assert updated.name == "hero"
    assert updated.value == "Ana"
    assert updated.category is TemplateCategory.STYLE
    assert scripts.update_global_template("ghost", value="x") is None
    assert scripts.delete_global_template("hero") is True
    assert scripts.delete_global_template("hero") is False


def test_template_usage(scripts, script) -> None:
    usage = scripts.template_usage("hero")
    assert usage.usages[0].script_id == script.id
    assert usage.usages[0].shot_indices == [1]


def test_legacy_and_unreadable_scripts_survive_create(scripts, store) -> None:
    store.write(
        "song-builder:video-scripts",
        [
            {"id": "s1", "title": "Legacy", "createdAt": "t", "updatedAt": "t", "templates": None},
            {"id": "broken", "shots": "not a list"},
        ],
    )
    assert [s.id for s in scripts.get_scripts()] == ["s1"]

    created = scripts.create_script("New")

    assert [s.id for s in scripts.get_scripts()] == ["s1", created.id]
    assert scripts.get_script("s1").templates == {}
    stored_ids = [s["id"] for s in store.read("song-builder:video-scripts")]
    assert "broken" in stored_ids


def test_export_import_round_trip(scripts, script) -> None:
    scripts.create_global_template("hero", "Maya")
    target = ScriptRepository(MemoryStore())
    assert sorted(target.import_data(scripts.export_data())) == ["globalTemplates", "scripts"]
    assert target.get_scripts() == scripts.get_scripts()
    assert target.list_global_templates() == scripts.list_global_templates()


def test_reset_keeps_other_verticals(scripts, lyrics, store) -> None:
    scripts.create_script("x")
    lyrics.create_message("user", "hi")
    scripts.reset()
    assert scripts.get_scripts() == []
    assert len(lyrics.get_messages()) == 1


def test_script_to_yaml(scripts, script) -> None:
    scripts.set_local_template(script.id, "hero", "Maya")
    stored = scripts.record_take(script.id, "a", "take.mp4")
    document = yaml.safe_load(script_to_yaml(stored))

    assert document["title"] == "Pilot"
    assert document["created_at"] == script.created_at
    assert document["settings"]["default_audio"] == "video"
    assert document["templates"] == {"hero": {"value": "Maya", "global": False}}
    first = document["shots"][0]
    assert first["prompt"] == "{{hero}} wakes up"
    assert first["narration"] == {"enabled": False, "text": "", "audio": "video"}
    assert first["video"]["selected_url"] == "take.mp4"
    assert first["video"]["history"][0]["url"] == "take.mp4"
    assert first["video"]["history"][0]["pinned"] is False
    assert "id" not in first
