"""Tests for the image repository."""

from src.studio.images import ImageRepository
from src.studio.models import ImageSettings
from src.studio.storage import MemoryStore


def test_session_title_is_truncated_prompt(images) -> None:
    prompt = "a" * 100
    session = images.create_session(prompt)
    assert session.title == "a" * 60
    assert session.prompt == prompt
    assert images.get_session(session.id) == session


def test_step_ids_are_per_session(images) -> None:
    first = images.create_session("cats")
    second = images.create_session("dogs")
    steps = [images.create_generation(first.id, f"cats {i}").step_id for i in range(3)]
    other = images.create_generation(second.id, "dogs").step_id
    assert steps == [1, 2, 3]
    assert other == 1
    assert [g.step_id for g in images.get_generations_by_session(first.id)] == [1, 2, 3]


def test_generation_for_unknown_session(images) -> None:
    assert images.create_generation("ghost", "p") is None
    assert images.get_generations() == []


def test_items_by_generation_and_session(images) -> None:
    session = images.create_session("cats")
    gen1 = images.create_generation(session.id, "cats")
    gen2 = images.create_generation(session.id, "more cats")
    a = images.create_item(gen1.id, "a.png", model="imagen")
    b = images.create_item(gen2.id, "b.png")
    images.create_item("elsewhere", "c.png")

    assert [i.id for i in images.list_items_by_generation(gen1.id)] == [a.id]
    assert [i.id for i in images.list_items_by_session(session.id)] == [a.id, b.id]
    assert images.get_item(a.id).model == "imagen"


def test_pin_and_delete_items(images) -> None:
    session = images.create_session("cats")
    gen = images.create_generation(session.id, "cats")
    a = images.create_item(gen.id, "a.png")
    b = images.create_item(gen.id, "b.png")
    assert images.pin_item(a.id, True) is True
    assert images.pin_item(b.id, True) is True
    assert images.delete_item(b.id) is True
    assert [i.id for i in images.list_pinned_items()] == [a.id]
    assert images.pin_item("ghost", True) is False


def test_soft_delete_session(images) -> None:
    session = images.create_session("cats")
    assert images.delete_session(session.id) is True
    assert images.list_sessions() == []
    assert images.get_session(session.id).deleted is True
    assert images.delete_session("ghost") is False


def test_export_import_round_trip(images) -> None:
    session = images.create_session("cats")
    gen = images.create_generation(session.id, "cats")
    images.create_item(gen.id, "a.png")
    images.save_settings(ImageSettings(num_images=2))

    target = ImageRepository(MemoryStore())
    imported = target.import_data(images.export_data())

    assert sorted(imported) == ["generations", "items", "sessions", "settings"]
    assert target.get_sessions() == images.get_sessions()
    assert target.get_generations() == images.get_generations()
    assert target.get_items() == images.get_items()
    assert target.get_settings().num_images == 2


def test_reset_removes_image_keys_only(images, lyrics, store) -> None:
    images.create_session("cats")
    store.write("song-builder:image-cache", {"x": 1})
    lyrics_root = lyrics.create_message("user", "hi")

    images.reset()

    assert images.get_sessions() == []
    assert store.read("song-builder:image-cache") is None
    assert [m.id for m in lyrics.get_messages()] == [lyrics_root.id]
