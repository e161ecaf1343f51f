"""Pydantic data models for the content studio."""

import re
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_SHOT_DURATION = 8
TEMPLATE_NAME_PATTERN = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")

AudioSource = Literal["video", "elevenlabs"]
AUDIO_SOURCES: tuple[str, ...] = ("video", "elevenlabs")


class StoredModel(BaseModel):
    """Base for records persisted as camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json(self) -> dict[str, Any]:
        """Dump the record the way it is written to the store."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ─── Lyrics ──────────────────────────────────────────────────────────────────


class Role(str, Enum):
    """Author of a message in the conversation tree."""

    USER = "user"
    ASSISTANT = "assistant"


class Message(StoredModel):
    """A node in the conversation/version tree.

    Lyrics fields are only populated on assistant messages that carry
    generated content.
    """

    id: str
    role: Role
    content: str
    parent_id: str | None = None
    title: str | None = None
    style: str | None = None
    commentary: str | None = None
    lyrics_body: str | None = None
    duration: float | None = None  # seconds
    created_at: str
    deleted: bool = False

    def to_json(self) -> dict[str, Any]:
        """Dump the message, always writing ``parentId`` (None for roots)."""
        data = super().to_json()
        data["parentId"] = self.parent_id
        return data


class Song(StoredModel):
    """Generated audio referencing the assistant message it came from."""

    id: str
    message_id: str
    title: str = ""
    audio_url: str
    pinned: bool = False
    deleted: bool = False
    created_at: str


class LyricsSettings(StoredModel):
    """Settings of the lyrics vertical."""

    api_key: str = ""
    num_songs: int = 3
    chat_model: str | None = None


# ─── Video scripts ───────────────────────────────────────────────────────────


class VideoHistoryEntry(StoredModel):
    """A generated take in a shot's history."""

    url: str
    generated_at: str
    pinned: bool = False
    pinned_at: str | None = None
    audio_url: str | None = None


class ShotNarration(StoredModel):
    enabled: bool = False
    text: str = ""
    audio_source: AudioSource = "video"
    audio_url: str | None = None


class ShotVideo(StoredModel):
    selected_url: str | None = None
    history: list[VideoHistoryEntry] = Field(default_factory=list)


class Shot(StoredModel):
    """A single shot of a video script."""

    id: str
    title: str = ""
    prompt: str = ""
    narration: ShotNarration = Field(default_factory=ShotNarration)
    video: ShotVideo = Field(default_factory=ShotVideo)
    subtitles: bool = False
    duration: int = DEFAULT_SHOT_DURATION


class ScriptSettings(StoredModel):
    subtitles: bool = False
    default_audio: AudioSource = "video"
    narration_enabled: bool = False
    global_prompt: str = ""


class LocalTemplate(StoredModel):
    """Template variable scoped to a single script."""

    name: str
    value: str = ""
    global_: Literal[False] = Field(default=False, alias="global")


class TemplateCategory(str, Enum):
    CHARACTER = "character"
    STYLE = "style"
    SCENERY = "scenery"


class GlobalTemplate(StoredModel):
    """Template variable referenced by name from any shot prompt."""

    name: str
    category: TemplateCategory = TemplateCategory.CHARACTER
    value: str = ""
    global_: Literal[True] = Field(default=True, alias="global")

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        """Template names must be identifier-shaped."""
        if not TEMPLATE_NAME_PATTERN.fullmatch(value):
            msg = f"Invalid template name: {value!r}"
            raise ValueError(msg)
        return value


class Script(StoredModel):
    """A named video script: ordered shots, settings and local templates."""

    id: str
    title: str
    created_at: str
    updated_at: str
    settings: ScriptSettings = Field(default_factory=ScriptSettings)
    shots: list[Shot] = Field(default_factory=list)
    templates: dict[str, LocalTemplate] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def backfill_shots(cls, data: Any) -> Any:
        """Fill in what older script records left out.

        Null ``settings``, ``shots`` and ``templates`` read as empty, and shots
        written before per-shot subtitles inherit the script setting.
        """
        if not isinstance(data, dict):
            return data
        empty: dict[str, Any] = {"settings": {}, "shots": [], "templates": {}}
        data = {
            **data,
            **{k: v for k, v in empty.items() if k in data and data[k] is None},
        }
        settings = data.get("settings")
        subtitles = False
        if isinstance(settings, dict):
            subtitles = settings.get("subtitles", False)
        elif isinstance(settings, ScriptSettings):
            subtitles = settings.subtitles
        shots = data.get("shots")
        if isinstance(shots, list):
            data = {
                **data,
                "shots": [
                    {"subtitles": subtitles, **shot} if isinstance(shot, dict) else shot
                    for shot in shots
                ],
            }
        return data

    def shot_index(self, shot_id: str) -> int | None:
        """Position of the shot with ``shot_id``, or None."""
        for i, shot in enumerate(self.shots):
            if shot.id == shot_id:
                return i
        return None


# ─── Images ──────────────────────────────────────────────────────────────────


class ImageSession(StoredModel):
    id: str
    title: str
    prompt: str | None = None
    created_at: str
    deleted: bool = False


class ImageGeneration(StoredModel):
    """One prompt step of a session."""

    id: str
    session_id: str
    step_id: int
    prompt: str
    created_at: str


class ImageItem(StoredModel):
    id: str
    generation_id: str
    url: str
    pinned: bool = False
    deleted: bool = False
    created_at: str
    model: str | None = None


class ImageSettings(StoredModel):
    num_images: int = 3
    images_per_model: int = 3


# ─── Tool calls ──────────────────────────────────────────────────────────────


class ToolCall(BaseModel):
    """A named script mutation, typically proposed by the LLM."""

    name: str
    args: dict[str, Any] = Field(default_factory=dict)


# ─── Configuration ───────────────────────────────────────────────────────────


class StorageConfig(BaseModel):
    """Configuration for the key-value store."""

    data_dir: Path = Path("./.studio")
    capacity_bytes: int = 5 * 1024 * 1024
    key_prefix: str = "song-builder:"


class ChatConfig(BaseModel):
    """Configuration for lyrics conversations."""

    model: str = "gemini-1.5-pro"
    temperature: float = 0.9
    retries: int = 2
    min_wait: int = 2
    max_wait: int = 10


class ToolCallConfig(BaseModel):
    """Configuration for script editing through tool calls."""

    model: str = "gemini-1.5-pro"
    temperature: float = 0.2
    retries: int = 2
    min_wait: int = 2
    max_wait: int = 10


class ImageGenerationConfig(BaseModel):
    """Configuration for image generation."""

    model: str = "imagen-3.0-generate-001"
    retries: int = 2
    min_wait: int = 2
    max_wait: int = 10
