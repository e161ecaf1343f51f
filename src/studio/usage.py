"""Where template variables are referenced across scripts."""

import re
from collections.abc import Iterable

from pydantic import BaseModel, Field

from .models import TEMPLATE_NAME_PATTERN, Script

PLACEHOLDER_PATTERN = re.compile(r"\{\{([a-zA-Z_][a-zA-Z0-9_]*)\}\}")


class ScriptTemplateUsage(BaseModel):
    """Usage of a template within one script."""

    script_id: str
    script_title: str
    shot_indices: list[int]  # 1-based
    all_shots: bool


class TemplateUsage(BaseModel):
    """Every script that references a template; empty when unused."""

    template_name: str
    usages: list[ScriptTemplateUsage] = Field(default_factory=list)


def compute_template_usage(template_name: str, scripts: Iterable[Script]) -> TemplateUsage:
    """Scan shot prompts for the exact placeholder ``{{template_name}}``.

    Whitespace inside the braces is not tolerated, and ``{{hero}}`` does not
    match ``{{heroine}}``.

    Args:
        template_name: Variable name, without braces.
        scripts: Scripts to scan.

    Returns:
        TemplateUsage: One entry per script with at least one matching shot.

    """
    placeholder = re.compile(r"\{\{" + re.escape(template_name) + r"\}\}")
    usages: list[ScriptTemplateUsage] = []

    for script in scripts:
        if not script.shots:
            continue
        indices = [
            i + 1 for i, shot in enumerate(script.shots) if placeholder.search(shot.prompt)
        ]
        if indices:
            usages.append(
                ScriptTemplateUsage(
                    script_id=script.id,
                    script_title=script.title,
                    shot_indices=indices,
                    all_shots=len(indices) == len(script.shots),
                ),
            )

    return TemplateUsage(template_name=template_name, usages=usages)


def format_template_usage(usage: TemplateUsage) -> list[str]:
    """Render a usage summary as one line per script."""
    if not usage.usages:
        return ["Not used in any script"]

    lines = []
    for entry in usage.usages:
        if entry.all_shots:
            shots = "All"
        else:
            shots = "Shots " + ", ".join(str(i) for i in sorted(entry.shot_indices))
        lines.append(f"Used in: {entry.script_title} ({shots})")
    return lines


def find_placeholders(prompt: str) -> list[str]:
    """Distinct placeholder names in ``prompt``, in order of first appearance."""
    names: list[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(prompt):
        if match.group(1) not in names:
            names.append(match.group(1))
    return names


def is_valid_template_name(name: str) -> bool:
    return bool(TEMPLATE_NAME_PATTERN.fullmatch(name))
