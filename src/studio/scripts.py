"""Video vertical: scripts, their shots' takes and template variables."""

import logging
from collections.abc import Callable, Iterable
from typing import Any

import yaml

from .models import (
    GlobalTemplate,
    LocalTemplate,
    Script,
    ScriptSettings,
    Shot,
    TemplateCategory,
    ToolCall,
    VideoHistoryEntry,
)
from .repository import ExportField, Repository
from .storage import generate_id, next_timestamp, now_timestamp
from .tools import apply_tool_calls
from .usage import TemplateUsage, compute_template_usage

logger = logging.getLogger(__name__)


class ScriptRepository(Repository):
    """Scripts and global templates of the video vertical."""

    SCRIPTS = "video-scripts"
    GLOBAL_TEMPLATES = "video-global-templates"

    EXPORT_FIELDS = {
        "scripts": ExportField(SCRIPTS),
        "globalTemplates": ExportField(GLOBAL_TEMPLATES),
    }
    RESET_PREFIX = "video-"

    # ─── Scripts ─────────────────────────────────────────────────────────────

    def get_scripts(self) -> list[Script]:
        return self._load(self.SCRIPTS, Script)

    def list_scripts(self) -> list[Script]:
        """Scripts, most recently updated first."""
        return sorted(self.get_scripts(), key=lambda s: s.updated_at, reverse=True)

    def get_script(self, script_id: str) -> Script | None:
        return next((s for s in self.get_scripts() if s.id == script_id), None)

    def create_script(self, title: str) -> Script:
        """Create an empty script with default settings."""
        scripts = self.get_scripts()
        now = now_timestamp()
        script = Script(
            id=generate_id({s.id for s in scripts}),
            title=title,
            created_at=now,
            updated_at=now,
            settings=ScriptSettings(),
            shots=[],
            templates={},
        )
        self._save(self.SCRIPTS, [*scripts, script], Script)
        return script

    def save_script(self, script: Script) -> Script | None:
        """Replace the stored script with the same id, bumping ``updated_at``.

        Returns None if no script with that id is stored.
        """
        scripts = self.get_scripts()
        for i, stored in enumerate(scripts):
            if stored.id == script.id:
                break
        else:
            return None
        updated = script.model_copy(
            update={
                "created_at": stored.created_at,
                "updated_at": next_timestamp([stored.updated_at]),
            },
        )
        scripts[i] = updated
        self._save(self.SCRIPTS, scripts, Script)
        return updated

    def update_script(self, script_id: str, **changes: Any) -> Script | None:
        """Merge top-level ``changes`` (title, settings, shots, templates)."""
        script = self.get_script(script_id)
        if script is None:
            return None
        fields = {
            k: v for k, v in changes.items() if k not in {"id", "created_at", "updated_at"}
        }
        merged = Script.model_validate({**script.model_dump(), **fields})
        return self.save_script(merged)

    def delete_script(self, script_id: str) -> bool:
        scripts = self.get_scripts()
        remaining = [s for s in scripts if s.id != script_id]
        if len(remaining) == len(scripts):
            return False
        self._save(self.SCRIPTS, remaining, Script)
        return True

    def apply_tool_calls(self, script_id: str, calls: Iterable[ToolCall]) -> Script | None:
        """Apply tool calls in order and persist the result if anything changed.

        Returns:
            Script | None: The resulting script (the stored one when every
            call was a no-op), or None if the script does not exist.

        """
        script = self.get_script(script_id)
        if script is None:
            return None
        result = apply_tool_calls(script, calls)
        if result is script:
            logger.info("Tool calls left script %s unchanged", script_id)
            return script
        return self.save_script(result)

    # ─── Takes ───────────────────────────────────────────────────────────────

    def _update_shot(
        self,
        script_id: str,
        shot_id: str,
        change: Callable[[Shot], Shot],
    ) -> Script | None:
        script = self.get_script(script_id)
        if script is None:
            return None
        index = script.shot_index(shot_id)
        if index is None:
            return None
        shots = list(script.shots)
        shots[index] = change(shots[index])
        return self.save_script(script.model_copy(update={"shots": shots}))

    def record_take(self, script_id: str, shot_id: str, url: str) -> Script | None:
        """Add a generated clip to a shot's history and select it."""

        def change(shot: Shot) -> Shot:
            entry = VideoHistoryEntry(url=url, generated_at=now_timestamp(), pinned=False)
            video = shot.video.model_copy(
                update={"selected_url": url, "history": [*shot.video.history, entry]},
            )
            return shot.model_copy(update={"video": video})

        return self._update_shot(script_id, shot_id, change)

    def select_take(self, script_id: str, shot_id: str, url: str) -> Script | None:
        """Select a take from the shot's history; unknown urls are a no-op."""
        script = self.get_script(script_id)
        if script is None:
            return None
        index = script.shot_index(shot_id)
        if index is None:
            return None
        if all(entry.url != url for entry in script.shots[index].video.history):
            return None

        def change(shot: Shot) -> Shot:
            return shot.model_copy(
                update={"video": shot.video.model_copy(update={"selected_url": url})},
            )

        return self._update_shot(script_id, shot_id, change)

    def pin_take(self, script_id: str, shot_id: str, url: str, pinned: bool) -> Script | None:
        """Pin or unpin every history entry with ``url``."""

        def change(shot: Shot) -> Shot:
            history = [
                entry.model_copy(
                    update={
                        "pinned": pinned,
                        "pinned_at": now_timestamp() if pinned else None,
                    },
                )
                if entry.url == url
                else entry
                for entry in shot.video.history
            ]
            return shot.model_copy(
                update={"video": shot.video.model_copy(update={"history": history})},
            )

        return self._update_shot(script_id, shot_id, change)

    def list_pinned_takes(self) -> list[tuple[Script, str, VideoHistoryEntry]]:
        """Pinned takes across all scripts as (script, shot id, entry)."""
        return [
            (script, shot.id, entry)
            for script in self.get_scripts()
            for shot in script.shots
            for entry in shot.video.history
            if entry.pinned
        ]

    # ─── Local templates ─────────────────────────────────────────────────────

    def set_local_template(self, script_id: str, name: str, value: str) -> Script | None:
        script = self.get_script(script_id)
        if script is None:
            return None
        template = LocalTemplate(name=name, value=value)
        templates = {**script.templates, name: template}
        return self.save_script(script.model_copy(update={"templates": templates}))

    def delete_local_template(self, script_id: str, name: str) -> Script | None:
        script = self.get_script(script_id)
        if script is None or name not in script.templates:
            return None
        templates = {k: v for k, v in script.templates.items() if k != name}
        return self.save_script(script.model_copy(update={"templates": templates}))

    # ─── Global templates ────────────────────────────────────────────────────

    def list_global_templates(self) -> list[GlobalTemplate]:
        """Global templates in insertion order."""
        return self._load(self.GLOBAL_TEMPLATES, GlobalTemplate)

    def get_global_template(self, name: str) -> GlobalTemplate | None:
        return next((t for t in self.list_global_templates() if t.name == name), None)

    def create_global_template(
        self,
        name: str,
        value: str,
        category: TemplateCategory | str = TemplateCategory.CHARACTER,
    ) -> GlobalTemplate:
        """Create a global template, replacing one with the same name.

        Raises:
            ValidationError: If ``name`` is not identifier-shaped.

        """
        template = GlobalTemplate(name=name, value=value, category=category)
        templates = self.list_global_templates()
        for i, existing in enumerate(templates):
            if existing.name == name:
                templates[i] = template
                break
        else:
            templates.append(template)
        self._save(self.GLOBAL_TEMPLATES, templates, GlobalTemplate)
        return template

    def update_global_template(self, name: str, **changes: Any) -> GlobalTemplate | None:
        """Change ``value`` and/or ``category``; the name is fixed."""
        templates = self.list_global_templates()
        for i, existing in enumerate(templates):
            if existing.name == name:
                break
        else:
            return None
        fields = {k: v for k, v in changes.items() if k in {"value", "category"}}
        updated = GlobalTemplate.model_validate({**existing.model_dump(), **fields})
        templates[i] = updated
        self._save(self.GLOBAL_TEMPLATES, templates, GlobalTemplate)
        return updated

    def delete_global_template(self, name: str) -> bool:
        templates = self.list_global_templates()
        remaining = [t for t in templates if t.name != name]
        if len(remaining) == len(templates):
            return False
        self._save(self.GLOBAL_TEMPLATES, remaining, GlobalTemplate)
        return True

    def template_usage(self, name: str) -> TemplateUsage:
        """Where ``name`` is referenced across every stored script."""
        return compute_template_usage(name, self.get_scripts())


def script_to_yaml(script: Script) -> str:
    """Render a script as the YAML export document.

    Global templates are never written; local ones are marked ``global: false``.
    """
    document = {
        "title": script.title,
        "created_at": script.created_at,
        "settings": {
            "subtitles": script.settings.subtitles,
            "default_audio": script.settings.default_audio,
            "narration_enabled": script.settings.narration_enabled,
            "global_prompt": script.settings.global_prompt,
        },
        "templates": {
            name: {"value": template.value, "global": False}
            for name, template in script.templates.items()
        },
        "shots": [
            {
                "title": shot.title,
                "prompt": shot.prompt,
                "subtitles": shot.subtitles,
                "duration": shot.duration,
                "narration": _narration_document(shot),
                "video": {
                    "selected_url": shot.video.selected_url,
                    "history": [
                        {
                            "url": entry.url,
                            "generated_at": entry.generated_at,
                            "pinned": entry.pinned,
                        }
                        for entry in shot.video.history
                    ],
                },
            }
            for shot in script.shots
        ],
    }
    return yaml.safe_dump(
        document,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=120,
    )


def _narration_document(shot: Shot) -> dict[str, Any]:
    narration: dict[str, Any] = {
        "enabled": shot.narration.enabled,
        "text": shot.narration.text,
        "audio": shot.narration.audio_source,
    }
    if shot.narration.audio_url:
        narration["audio_url"] = shot.narration.audio_url
    return narration
