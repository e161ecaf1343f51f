"""Tool calls that edit a video script.

Each tool parses its loosely-typed arguments with a strict pydantic model
before touching the script. Anything that does not parse (unknown tool,
missing or wrong-typed required argument) returns the *same* script object,
so callers detect a no-op with ``result is script``. Successful calls return a
new Script and never mutate the input; untouched shots are shared.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator
from pydantic.alias_generators import to_camel, to_snake

from .models import (
    AUDIO_SOURCES,
    DEFAULT_SHOT_DURATION,
    AudioSource,
    Script,
    Shot,
    ShotNarration,
    ShotVideo,
    ToolCall,
)
from .storage import generate_id

logger = logging.getLogger(__name__)


class ToolArgs(BaseModel):
    """Strictly typed tool arguments; optional fields of the wrong type are dropped."""

    model_config = ConfigDict(
        strict=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    # Optional field alias -> accepted Python type (or tuple of allowed values).
    lenient: ClassVar[dict[str, Any]] = {}

    @model_validator(mode="before")
    @classmethod
    def drop_invalid_optionals(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        cleaned = dict(data)
        for alias, accepted in cls.lenient.items():
            for key in (alias, to_snake(alias)):
                if key in cleaned and not _accepts(accepted, cleaned[key]):
                    del cleaned[key]
        return cleaned


def _accepts(accepted: Any, value: Any) -> bool:
    if isinstance(accepted, tuple):
        return isinstance(value, str) and value in accepted
    if accepted is bool:
        return isinstance(value, bool)
    return isinstance(value, accepted) and not isinstance(value, bool)


class UpdateShotPromptArgs(ToolArgs):
    shot_id: str
    prompt: str


class UpdateShotNarrationArgs(ToolArgs):
    lenient: ClassVar[dict[str, Any]] = {
        "enabled": bool,
        "text": str,
        "audioSource": AUDIO_SOURCES,
    }

    shot_id: str
    enabled: bool | None = None
    text: str | None = None
    audio_source: AudioSource | None = None


class UpdateShotSubtitlesArgs(ToolArgs):
    shot_id: str
    subtitles: bool


class AddShotArgs(ToolArgs):
    lenient: ClassVar[dict[str, Any]] = {"afterShotId": str}

    title: str
    prompt: str
    after_shot_id: str | None = None


class DeleteShotArgs(ToolArgs):
    shot_id: str


class ReorderShotsArgs(ToolArgs):
    shot_ids: list[Any]


class UpdateScriptSettingsArgs(ToolArgs):
    lenient: ClassVar[dict[str, Any]] = {
        "narrationEnabled": bool,
        "subtitles": bool,
        "globalPrompt": str,
    }

    narration_enabled: bool | None = None
    subtitles: bool | None = None
    global_prompt: str | None = None


@dataclass(frozen=True)
class Tool:
    """A registered script mutation."""

    name: str
    description: str
    args_model: type[ToolArgs]
    apply: Callable[[Script, Any], Script]


TOOLS: dict[str, Tool] = {}


def tool(name: str, description: str, args_model: type[ToolArgs]):
    """Register ``func`` as the handler for tool ``name``."""

    def decorator(func: Callable[[Script, Any], Script]) -> Callable[[Script, Any], Script]:
        TOOLS[name] = Tool(name, description, args_model, func)
        return func

    return decorator


def _replace_shot(script: Script, index: int, shot: Shot) -> Script:
    shots = list(script.shots)
    shots[index] = shot
    return script.model_copy(update={"shots": shots})


@tool(
    "update_shot_prompt",
    "Replace the generation prompt of a shot.",
    UpdateShotPromptArgs,
)
def _update_shot_prompt(script: Script, args: UpdateShotPromptArgs) -> Script:
    index = script.shot_index(args.shot_id)
    if index is None:
        return script
    shot = script.shots[index]
    return _replace_shot(script, index, shot.model_copy(update={"prompt": args.prompt}))


@tool(
    "update_shot_narration",
    "Change the narration of a shot: enabled flag, text and audio source.",
    UpdateShotNarrationArgs,
)
def _update_shot_narration(script: Script, args: UpdateShotNarrationArgs) -> Script:
    index = script.shot_index(args.shot_id)
    if index is None:
        return script
    shot = script.shots[index]
    changes = {
        key: value
        for key, value in (
            ("enabled", args.enabled),
            ("text", args.text),
            ("audio_source", args.audio_source),
        )
        if value is not None
    }
    narration = shot.narration.model_copy(update=changes)
    return _replace_shot(script, index, shot.model_copy(update={"narration": narration}))


@tool(
    "update_shot_subtitles",
    "Turn burned-in subtitles on or off for a shot.",
    UpdateShotSubtitlesArgs,
)
def _update_shot_subtitles(script: Script, args: UpdateShotSubtitlesArgs) -> Script:
    index = script.shot_index(args.shot_id)
    if index is None:
        return script
    shot = script.shots[index]
    return _replace_shot(script, index, shot.model_copy(update={"subtitles": args.subtitles}))


@tool(
    "add_shot",
    "Insert a new shot after afterShotId, or at the end of the script.",
    AddShotArgs,
)
def _add_shot(script: Script, args: AddShotArgs) -> Script:
    settings = script.settings
    shot = Shot(
        id=generate_id({s.id for s in script.shots}),
        title=args.title,
        prompt=args.prompt,
        narration=ShotNarration(
            enabled=settings.narration_enabled,
            text="",
            audio_source=settings.default_audio,
        ),
        video=ShotVideo(),
        subtitles=settings.subtitles,
        duration=DEFAULT_SHOT_DURATION,
    )
    shots = list(script.shots)
    after = script.shot_index(args.after_shot_id) if args.after_shot_id else None
    if after is None:
        shots.append(shot)
    else:
        shots.insert(after + 1, shot)
    return script.model_copy(update={"shots": shots})


@tool("delete_shot", "Remove a shot from the script.", DeleteShotArgs)
def _delete_shot(script: Script, args: DeleteShotArgs) -> Script:
    index = script.shot_index(args.shot_id)
    if index is None:
        return script
    shots = script.shots[:index] + script.shots[index + 1 :]
    return script.model_copy(update={"shots": shots})


@tool(
    "reorder_shots",
    "Reorder the shots; shotIds must list every shot id exactly once.",
    ReorderShotsArgs,
)
def _reorder_shots(script: Script, args: ReorderShotsArgs) -> Script:
    by_id = {shot.id: shot for shot in script.shots}
    seen: set[str] = set()
    reordered: list[Shot] = []
    for shot_id in args.shot_ids:
        if not isinstance(shot_id, str) or shot_id in seen or shot_id not in by_id:
            continue
        seen.add(shot_id)
        reordered.append(by_id[shot_id])
    # A partial list would silently drop shots.
    if len(reordered) != len(script.shots):
        return script
    return script.model_copy(update={"shots": reordered})


@tool(
    "update_script_settings",
    "Change script-wide settings: narrationEnabled, subtitles, globalPrompt.",
    UpdateScriptSettingsArgs,
)
def _update_script_settings(script: Script, args: UpdateScriptSettingsArgs) -> Script:
    changes = {
        key: value
        for key, value in (
            ("narration_enabled", args.narration_enabled),
            ("subtitles", args.subtitles),
            ("global_prompt", args.global_prompt),
        )
        if value is not None
    }
    settings = script.settings.model_copy(update=changes)
    return script.model_copy(update={"settings": settings})


TOOL_NAMES: tuple[str, ...] = tuple(TOOLS)


def apply_tool_call(script: Script, tool_name: str, args: Any) -> Script:
    """Apply one named tool call to ``script``.

    Args:
        script: The script to edit. It is never mutated.
        tool_name: One of ``TOOL_NAMES``.
        args: Arguments as produced by the LLM (camelCase keys).

    Returns:
        Script: A new script, or ``script`` itself when the call is invalid
        or has nothing to change.

    """
    entry = TOOLS.get(tool_name) if isinstance(tool_name, str) else None
    if entry is None:
        logger.debug("Ignoring unknown tool %r", tool_name)
        return script
    if not isinstance(args, dict):
        logger.debug("Ignoring %s call with non-object arguments", tool_name)
        return script
    try:
        parsed = entry.args_model.model_validate(args)
    except ValidationError as e:
        logger.debug("Ignoring %s call with invalid arguments: %s", tool_name, e)
        return script
    return entry.apply(script, parsed)


def apply_tool_calls(script: Script, calls: Iterable[ToolCall]) -> Script:
    """Apply ``calls`` in order, each against the result of the previous one."""
    result = script
    for call in calls:
        result = apply_tool_call(result, call.name, call.args)
    return result
