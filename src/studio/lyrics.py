"""Lyrics vertical: the message tree, generated songs and the chat flow."""

import logging
import re
from typing import TYPE_CHECKING, Any

from .models import ChatConfig, LyricsSettings, Message, Role, Song
from .repository import ExportField, Repository
from .storage import WriteStatus, generate_id, next_timestamp
from .tree import MessageIndex, get_ancestors, get_children, get_latest_leaf, is_checkpoint

if TYPE_CHECKING:
    from .service import GeminiService

logger = logging.getLogger(__name__)

LYRICS_SYSTEM_PROMPT = """You are a professional songwriter and lyricist.
Help the user write and refine song lyrics.

When producing lyrics always respond in this exact format:

---
title: "Song Title"
style: "genre / mood / instrumentation"
commentary: "Brief note about the creative choices"
---
<lyrics body here>

Rules:
- No emoji of any kind
- The YAML frontmatter block is mandatory in every reply
- Keep language poetic and evocative"""

_FRONTMATTER = re.compile(r"(?:^|\n)---\n([\s\S]*?)\n---\n?([\s\S]*)$")

_IMMUTABLE_FIELDS = {"id", "created_at", "createdAt"}
_LYRICS_FIELDS = {"title", "style", "commentary", "lyrics_body", "lyricsBody", "duration"}


class LyricsRepository(Repository):
    """Messages, songs and settings of the lyrics vertical."""

    SETTINGS = "settings"
    MESSAGES = "messages"
    SONGS = "songs"

    EXPORT_FIELDS = {
        "settings": ExportField(SETTINGS, is_list=False),
        "messages": ExportField(MESSAGES),
        "songs": ExportField(SONGS),
    }

    # ─── Settings ────────────────────────────────────────────────────────────

    def get_settings(self) -> LyricsSettings | None:
        return self._load_object(self.SETTINGS, LyricsSettings)

    def save_settings(self, settings: LyricsSettings) -> WriteStatus:
        return self._save_object(self.SETTINGS, settings)

    # ─── Messages ────────────────────────────────────────────────────────────

    def get_messages(self) -> list[Message]:
        """Every message, soft-deleted ones included."""
        return self._load(self.MESSAGES, Message)

    def list_messages(self) -> list[Message]:
        """Messages for list views, without soft-deleted ones."""
        return [m for m in self.get_messages() if not m.deleted]

    def get_message(self, message_id: str) -> Message | None:
        return next((m for m in self.get_messages() if m.id == message_id), None)

    def create_message(
        self,
        role: Role | str,
        content: str,
        parent_id: str | None = None,
        **lyrics: Any,
    ) -> Message | None:
        """Append a message to the tree.

        Args:
            role: ``user`` or ``assistant``.
            content: Message text.
            parent_id: Id of the parent message, or None for a new root.
            **lyrics: Optional lyrics payload (title, style, commentary,
                lyrics_body, duration). Other keys are ignored.

        Returns:
            Message | None: The new message, or None if ``parent_id`` is not
            an existing message.

        """
        messages = self.get_messages()
        ids = {m.id for m in messages}
        if parent_id is not None and parent_id not in ids:
            logger.info("Parent message %s not found", parent_id)
            return None
        message = Message(
            **{k: v for k, v in lyrics.items() if k in _LYRICS_FIELDS},
            id=generate_id(ids),
            role=role,
            content=content,
            parent_id=parent_id,
            created_at=next_timestamp([m.created_at for m in messages]),
            deleted=False,
        )
        self._save(self.MESSAGES, [*messages, message], Message)
        return message

    def update_message(self, message_id: str, **changes: Any) -> Message | None:
        """Merge ``changes`` into a message; ``id`` and ``created_at`` are kept."""
        messages = self.get_messages()
        for i, message in enumerate(messages):
            if message.id == message_id:
                break
        else:
            return None
        fields = {k: v for k, v in changes.items() if k not in _IMMUTABLE_FIELDS}
        updated = Message.model_validate({**message.model_dump(), **fields})
        messages[i] = updated
        self._save(self.MESSAGES, messages, Message)
        return updated

    def delete_message(self, message_id: str) -> bool:
        """Soft-delete a message; it stays in the tree."""
        return self.update_message(message_id, deleted=True) is not None

    # ─── Tree queries ────────────────────────────────────────────────────────

    def get_ancestors(self, message_id: str) -> list[Message]:
        return get_ancestors(self.get_messages(), message_id)

    def get_latest_leaf(self, message_id: str) -> Message | None:
        return get_latest_leaf(self.get_messages(), message_id)

    def is_checkpoint(self, message_id: str) -> bool:
        return is_checkpoint(self.get_messages(), message_id)

    def get_children(self, message_id: str) -> list[Message]:
        return get_children(self.get_messages(), message_id)

    def index(self) -> MessageIndex:
        """Index one snapshot of the messages for several queries."""
        return MessageIndex.build(self.get_messages())

    # ─── Songs ───────────────────────────────────────────────────────────────

    def get_songs(self) -> list[Song]:
        return self._load(self.SONGS, Song)

    def list_songs(self) -> list[Song]:
        return [s for s in self.get_songs() if not s.deleted]

    def list_pinned_songs(self) -> list[Song]:
        return [s for s in self.get_songs() if s.pinned and not s.deleted]

    def get_song(self, song_id: str) -> Song | None:
        return next((s for s in self.get_songs() if s.id == song_id), None)

    def get_songs_by_message(self, message_id: str) -> list[Song]:
        return [s for s in self.get_songs() if s.message_id == message_id]

    def create_song(self, message_id: str, audio_url: str, title: str = "") -> Song:
        songs = self.get_songs()
        song = Song(
            id=generate_id({s.id for s in songs}),
            message_id=message_id,
            title=title,
            audio_url=audio_url,
            pinned=False,
            deleted=False,
            created_at=next_timestamp([s.created_at for s in songs]),
        )
        self._save(self.SONGS, [*songs, song], Song)
        return song

    def update_song(self, song_id: str, **changes: Any) -> Song | None:
        songs = self.get_songs()
        for i, song in enumerate(songs):
            if song.id == song_id:
                break
        else:
            return None
        fields = {k: v for k, v in changes.items() if k not in _IMMUTABLE_FIELDS}
        updated = Song.model_validate({**song.model_dump(), **fields})
        songs[i] = updated
        self._save(self.SONGS, songs, Song)
        return updated

    def delete_song(self, song_id: str) -> bool:
        return self.update_song(song_id, deleted=True) is not None

    def pin_song(self, song_id: str, pinned: bool) -> bool:
        return self.update_song(song_id, pinned=pinned) is not None


def parse_lyrics_response(text: str) -> dict[str, str] | None:
    """Split an LLM reply into its frontmatter fields and lyrics body.

    Returns None when the reply has no ``---`` frontmatter block.
    """
    match = _FRONTMATTER.search(text)
    if not match:
        return None
    frontmatter, body = match.group(1), match.group(2).strip()

    def field(name: str) -> str:
        found = re.search(rf'^{name}:\s*"?([^"\n]+)"?', frontmatter, re.MULTILINE)
        return found.group(1).strip() if found else ""

    return {
        "title": field("title"),
        "style": field("style"),
        "commentary": field("commentary"),
        "lyrics_body": body,
    }


def submit_prompt(
    repo: LyricsRepository,
    service: "GeminiService",
    content: str,
    parent_id: str | None = None,
    config: ChatConfig | None = None,
) -> Message | None:
    """Add a user turn under ``parent_id`` and store the assistant's reply.

    The user message is written before the LLM is called, so it survives a
    failed generation; the service error then propagates to the caller.

    Returns:
        Message | None: The assistant message, or None if ``parent_id`` does
        not exist.

    """
    user_message = repo.create_message(Role.USER, content, parent_id=parent_id)
    if user_message is None:
        return None

    history = [
        {"role": m.role.value, "content": m.content}
        for m in repo.get_ancestors(user_message.id)
    ]
    reply = service.chat(history, system=LYRICS_SYSTEM_PROMPT, config=config)

    parsed = parse_lyrics_response(reply)
    if parsed is None:
        logger.info("Reply has no lyrics frontmatter; storing plain text")
    return repo.create_message(
        Role.ASSISTANT,
        reply,
        parent_id=user_message.id,
        **(parsed or {}),
    )
