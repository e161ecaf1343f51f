"""Tests for template usage analysis."""

from src.studio.models import Script, Shot
from src.studio.usage import (
    compute_template_usage,
    find_placeholders,
    format_template_usage,
    is_valid_template_name,
)


def make_script(id_: str, title: str, prompts: list[str]) -> Script:
    return Script(
        id=id_,
        title=title,
        created_at="t",
        updated_at="t",
        shots=[Shot(id=f"{id_}-{i}", prompt=p) for i, p in enumerate(prompts)],
    )


def test_no_scripts() -> None:
    usage = compute_template_usage("Maya", [])
    assert usage.template_name == "Maya"
    assert usage.usages == []
    assert format_template_usage(usage) == ["Not used in any script"]


def test_some_shots() -> None:
    script = make_script("s1", "Pilot", ["{{hero}} A", "plain", "{{hero}} B"])
    usage = compute_template_usage("hero", [script])
    assert len(usage.usages) == 1
    entry = usage.usages[0]
    assert entry.script_id == "s1"
    assert entry.script_title == "Pilot"
    assert entry.shot_indices == [1, 3]
    assert entry.all_shots is False
    assert format_template_usage(usage) == ["Used in: Pilot (Shots 1, 3)"]


def test_all_shots() -> None:
    script = make_script("s1", "Pilot", ["{{hero}} A", "x {{hero}}"])
    usage = compute_template_usage("hero", [script])
    assert usage.usages[0].all_shots is True
    assert format_template_usage(usage) == ["Used in: Pilot (All)"]


def test_exact_name_only() -> None:
    script = make_script("s1", "Pilot", ["{{heroine}}", "{{ hero }}", "{hero}", "hero"])
    assert compute_template_usage("hero", [script]).usages == []


def test_name_is_escaped() -> None:
    script = make_script("s1", "Pilot", ["{{a.b}}", "{{axb}}"])
    assert compute_template_usage("a.b", [script]).usages[0].shot_indices == [1]


def test_scripts_without_shots_or_matches_are_omitted() -> None:
    scripts = [
        make_script("empty", "Empty", []),
        make_script("other", "Other", ["nothing here"]),
        make_script("hit", "Hit", ["{{Maya}}"]),
    ]
    usage = compute_template_usage("Maya", scripts)
    assert [u.script_id for u in usage.usages] == ["hit"]


def test_find_placeholders() -> None:
    assert find_placeholders("{{b}} and {{a}} then {{b}} {{ c }}") == ["b", "a"]
    assert find_placeholders("") == []


def test_is_valid_template_name() -> None:
    assert is_valid_template_name("_hero2")
    assert not is_valid_template_name("2hero")
    assert not is_valid_template_name("hero-x")
