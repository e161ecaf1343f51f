"""Image vertical: sessions, their generation steps and generated items."""

from typing import Any

from .models import ImageGeneration, ImageItem, ImageSession, ImageSettings
from .repository import ExportField, Repository
from .storage import WriteStatus, generate_id, next_timestamp

SESSION_TITLE_LENGTH = 60


class ImageRepository(Repository):
    """Sessions, generations, items and settings of the image vertical."""

    SESSIONS = "image-sessions"
    GENERATIONS = "image-generations"
    ITEMS = "image-items"
    SETTINGS = "image-settings"

    EXPORT_FIELDS = {
        "sessions": ExportField(SESSIONS),
        "generations": ExportField(GENERATIONS),
        "items": ExportField(ITEMS),
        "settings": ExportField(SETTINGS, is_list=False),
    }
    RESET_PREFIX = "image-"

    # ─── Sessions ────────────────────────────────────────────────────────────

    def get_sessions(self) -> list[ImageSession]:
        return self._load(self.SESSIONS, ImageSession)

    def list_sessions(self) -> list[ImageSession]:
        return [s for s in self.get_sessions() if not s.deleted]

    def get_session(self, session_id: str) -> ImageSession | None:
        return next((s for s in self.get_sessions() if s.id == session_id), None)

    def create_session(self, prompt: str) -> ImageSession:
        sessions = self.get_sessions()
        session = ImageSession(
            id=generate_id({s.id for s in sessions}),
            title=prompt[:SESSION_TITLE_LENGTH],
            prompt=prompt,
            created_at=next_timestamp([s.created_at for s in sessions]),
        )
        self._save(self.SESSIONS, [*sessions, session], ImageSession)
        return session

    def delete_session(self, session_id: str) -> bool:
        """Soft-delete a session; its generations and items are kept."""
        sessions = self.get_sessions()
        for i, session in enumerate(sessions):
            if session.id == session_id:
                sessions[i] = session.model_copy(update={"deleted": True})
                self._save(self.SESSIONS, sessions, ImageSession)
                return True
        return False

    # ─── Generations ─────────────────────────────────────────────────────────

    def get_generations(self) -> list[ImageGeneration]:
        return self._load(self.GENERATIONS, ImageGeneration)

    def get_generations_by_session(self, session_id: str) -> list[ImageGeneration]:
        """Generations of a session in step order."""
        return sorted(
            (g for g in self.get_generations() if g.session_id == session_id),
            key=lambda g: g.step_id,
        )

    def create_generation(self, session_id: str, prompt: str) -> ImageGeneration | None:
        """Append a prompt step; ``step_id`` is the session's running max + 1.

        Returns None if the session does not exist.
        """
        if self.get_session(session_id) is None:
            return None
        generations = self.get_generations()
        step = max(
            (g.step_id for g in generations if g.session_id == session_id),
            default=0,
        )
        generation = ImageGeneration(
            id=generate_id({g.id for g in generations}),
            session_id=session_id,
            step_id=step + 1,
            prompt=prompt,
            created_at=next_timestamp([g.created_at for g in generations]),
        )
        self._save(self.GENERATIONS, [*generations, generation], ImageGeneration)
        return generation

    # ─── Items ───────────────────────────────────────────────────────────────

    def get_items(self) -> list[ImageItem]:
        return self._load(self.ITEMS, ImageItem)

    def get_item(self, item_id: str) -> ImageItem | None:
        return next((i for i in self.get_items() if i.id == item_id), None)

    def list_items_by_generation(self, generation_id: str) -> list[ImageItem]:
        return [i for i in self.get_items() if i.generation_id == generation_id]

    def list_items_by_session(self, session_id: str) -> list[ImageItem]:
        generation_ids = {g.id for g in self.get_generations_by_session(session_id)}
        return [i for i in self.get_items() if i.generation_id in generation_ids]

    def list_pinned_items(self) -> list[ImageItem]:
        return [i for i in self.get_items() if i.pinned and not i.deleted]

    def create_item(
        self,
        generation_id: str,
        url: str,
        model: str | None = None,
    ) -> ImageItem:
        items = self.get_items()
        item = ImageItem(
            id=generate_id({i.id for i in items}),
            generation_id=generation_id,
            url=url,
            model=model,
            created_at=next_timestamp([i.created_at for i in items]),
        )
        self._save(self.ITEMS, [*items, item], ImageItem)
        return item

    def update_item(self, item_id: str, **changes: Any) -> ImageItem | None:
        items = self.get_items()
        for i, item in enumerate(items):
            if item.id == item_id:
                break
        else:
            return None
        fields = {k: v for k, v in changes.items() if k not in {"id", "created_at"}}
        updated = ImageItem.model_validate({**item.model_dump(), **fields})
        items[i] = updated
        self._save(self.ITEMS, items, ImageItem)
        return updated

    def pin_item(self, item_id: str, pinned: bool) -> bool:
        return self.update_item(item_id, pinned=pinned) is not None

    def delete_item(self, item_id: str) -> bool:
        return self.update_item(item_id, deleted=True) is not None

    # ─── Settings ────────────────────────────────────────────────────────────

    def get_settings(self) -> ImageSettings | None:
        return self._load_object(self.SETTINGS, ImageSettings)

    def save_settings(self, settings: ImageSettings) -> WriteStatus:
        return self._save_object(self.SETTINGS, settings)
