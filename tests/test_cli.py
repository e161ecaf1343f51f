import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from src.studio.cli import app
from src.studio.lyrics import LyricsRepository
from src.studio.models import ToolCall
from src.studio.storage import DiskStore

runner = CliRunner(env={"COLUMNS": "200"})

REPLY = """---
title: "Rain Song"
style: "lo-fi"
commentary: "short"
---
Drops on the window
"""


@pytest.fixture
def mock_service():
    with patch("src.studio.cli.GeminiService") as mock:
        yield mock


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def invoke(data_dir):
    def _invoke(*args: str, **kwargs):
        return runner.invoke(app, ["--data-dir", str(data_dir), *args], **kwargs)

    return _invoke


def _last_id(output: str) -> str:
    return output.split()[-1].rstrip(".")


def test_lyrics_new_and_list(invoke, mock_service) -> None:
    mock_service.return_value.chat.return_value = REPLY

    result = invoke("lyrics", "new", "a song about rain", "--api-key", "key")

    assert result.exit_code == 0
    assert "Rain Song" in result.stdout
    mock_service.assert_called_once_with("key")

    listed = invoke("lyrics", "list")
    assert listed.exit_code == 0
    assert "a song about rain" in listed.stdout


def test_lyrics_reply_unknown_parent(invoke, mock_service) -> None:
    result = invoke("lyrics", "reply", "ghost", "more", "--api-key", "key")
    assert result.exit_code == 1
    assert "not found" in result.stdout
    mock_service.return_value.chat.assert_not_called()


def test_lyrics_service_failure(invoke, mock_service) -> None:
    mock_service.return_value.chat.side_effect = RuntimeError("Failed to generate a reply")
    result = invoke("lyrics", "new", "rain", "--api-key", "key")
    assert result.exit_code == 1
    assert "Fatal Error" in result.stdout


def test_missing_api_key(invoke, monkeypatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    with patch("src.studio.cli.load_dotenv"):
        result = invoke("lyrics", "new", "rain")
    assert result.exit_code == 1
    assert "GEMINI_API_KEY not found" in result.stdout


def test_lyrics_show_latest_and_delete(invoke, data_dir, mock_service) -> None:
    mock_service.return_value.chat.return_value = REPLY
    invoke("lyrics", "new", "rain", "--api-key", "key")

    store = DiskStore(data_dir)
    messages = LyricsRepository(store).get_messages()
    store.close()
    root, reply = messages

    shown = invoke("lyrics", "show", reply.id)
    assert shown.exit_code == 0
    assert "checkpoint" in shown.stdout
    assert "Drops on the window" in shown.stdout

    latest = invoke("lyrics", "latest", root.id)
    assert latest.exit_code == 0
    assert reply.id in latest.stdout

    edited = invoke("lyrics", "edit", reply.id, "--title", "Storm Song")
    assert edited.exit_code == 0
    assert "Storm Song" in edited.stdout

    assert invoke("lyrics", "delete", root.id).exit_code == 0
    assert "rain" not in invoke("lyrics", "list").stdout

    assert invoke("lyrics", "show", "ghost").exit_code == 1
    assert invoke("lyrics", "latest", "ghost").exit_code == 1
    assert invoke("lyrics", "delete", "ghost").exit_code == 1


def test_songs(invoke, data_dir, mock_service) -> None:
    mock_service.return_value.chat.return_value = REPLY
    invoke("lyrics", "new", "rain", "--api-key", "key")
    store = DiskStore(data_dir)
    reply = LyricsRepository(store).get_messages()[-1]
    store.close()

    added = invoke("songs", "add", reply.id, "song.mp3", "--title", "Take one")
    assert added.exit_code == 0
    song_id = _last_id(added.stdout)

    assert invoke("songs", "pin", song_id).exit_code == 0
    pinned = invoke("songs", "list", "--pinned")
    assert "Take one" in pinned.stdout
    assert invoke("songs", "pin", "ghost").exit_code == 1
    assert invoke("songs", "add", "ghost", "x.mp3").exit_code == 1


def test_script_edit_and_usage(invoke) -> None:
    created = invoke("script", "new", "Pilot")
    assert created.exit_code == 0
    script_id = _last_id(created.stdout)

    edited = invoke(
        "script",
        "edit",
        script_id,
        "add_shot",
        "--args",
        json.dumps({"title": "Open", "prompt": "{{hero}} wakes"}),
    )
    assert edited.exit_code == 0
    assert "Applied add_shot" in edited.stdout

    usage = invoke("templates", "usage", "hero")
    assert "Used in: Pilot (All)" in usage.stdout

    unused = invoke("templates", "usage", "villain")
    assert "Not used in any script" in unused.stdout

    exported = invoke("script", "export", script_id)
    assert exported.exit_code == 0
    assert "title: Pilot" in exported.stdout


def test_script_edit_invalid_call(invoke) -> None:
    script_id = _last_id(invoke("script", "new", "Pilot").stdout)
    result = invoke("script", "edit", script_id, "delete_shot", "--args", '{"shotId": 1}')
    assert result.exit_code == 0
    assert "No change" in result.stdout

    bad_json = invoke("script", "edit", script_id, "delete_shot", "--args", "{nope")
    assert bad_json.exit_code == 1


def test_script_unknown(invoke) -> None:
    result = invoke("script", "show", "ghost")
    assert result.exit_code == 1
    assert "Script ghost not found" in result.stdout


def test_script_apply(invoke, mock_service) -> None:
    script_id = _last_id(invoke("script", "new", "Pilot").stdout)
    mock_service.return_value.propose_tool_calls.return_value = [
        ToolCall(name="add_shot", args={"title": "Open", "prompt": "sunrise"}),
    ]

    result = invoke("script", "apply", script_id, "add an opening", "--api-key", "key")

    assert result.exit_code == 0
    assert "Script updated (1 shots)" in result.stdout
    shown = invoke("script", "show", script_id)
    assert "sunrise" in shown.stdout


def test_templates_add_list_delete(invoke) -> None:
    added = invoke("templates", "add", "hero", "Maya", "--category", "style")
    assert added.exit_code == 0

    listed = invoke("templates", "list")
    assert "hero" in listed.stdout
    assert "style" in listed.stdout

    assert invoke("templates", "delete", "hero").exit_code == 0
    assert invoke("templates", "delete", "hero").exit_code == 1


def test_templates_add_invalid_name(invoke) -> None:
    result = invoke("templates", "add", "bad-name", "x")
    assert result.exit_code == 1
    assert "Invalid template name" in result.stdout


def test_images_new(invoke, mock_service, tmp_path) -> None:
    mock_service.return_value.generate_image.side_effect = (
        lambda prompt, output_path, config: str(output_path)
    )

    result = invoke(
        "images",
        "new",
        "a cat",
        "--count",
        "2",
        "--output-dir",
        str(tmp_path / "out"),
        "--api-key",
        "key",
    )

    assert result.exit_code == 0
    assert "step 1: 2/2 images saved" in result.stdout
    listed = invoke("images", "list")
    assert "a cat" in listed.stdout


def test_images_new_partial_failure(invoke, mock_service, tmp_path) -> None:
    mock_service.return_value.generate_image.side_effect = RuntimeError("boom")
    result = invoke(
        "images",
        "new",
        "a cat",
        "--count",
        "1",
        "--output-dir",
        str(tmp_path / "out"),
        "--api-key",
        "key",
    )
    assert result.exit_code == 0
    assert "0/1 images saved" in result.stdout


def test_data_export_import_reset(invoke, tmp_path) -> None:
    invoke("script", "new", "Pilot")
    export_file = tmp_path / "video.json"

    exported = invoke("data", "export", "video", "--output", str(export_file))
    assert exported.exit_code == 0
    document = json.loads(export_file.read_text())
    assert document["scripts"][0]["title"] == "Pilot"
    assert document["globalTemplates"] == []

    assert invoke("data", "reset", "video", "--yes").exit_code == 0
    assert "Pilot" not in invoke("script", "list").stdout

    imported = invoke("data", "import", "video", str(export_file))
    assert imported.exit_code == 0
    assert "scripts" in imported.stdout
    assert "Pilot" in invoke("script", "list").stdout


def test_data_import_missing_file(invoke, tmp_path) -> None:
    result = invoke("data", "import", "lyrics", str(tmp_path / "none.json"))
    assert result.exit_code == 1
    assert "not found" in result.stdout


def test_capacity_warning(tmp_path) -> None:
    result = runner.invoke(
        app,
        ["script", "new", "Pilot"],
        env={"STUDIO_DATA_DIR": str(tmp_path), "STUDIO_CAPACITY_BYTES": "10"},
    )
    assert result.exit_code == 0
    assert "storage is full" in result.stdout
