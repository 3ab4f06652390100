"""Slash command and skill library.

Commands and skills are markdown files with YAML frontmatter under a content
directory::

    content/
        commands/summarize.md
        skills/code-reviewer/SKILL.md
        skills/code-reviewer/references/checklist.md

A command chip carries its body inline as the instruction text. A skill chip
additionally loads the full SKILL.md (with linked references) into the
agent's system prompt.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from huddle.markup import command_markup
from huddle.utils import parse_yaml_frontmatter

logger = logging.getLogger(__name__)

SKILL_FILENAME = "SKILL.md"

_REFERENCE_LINK = re.compile(r"\[([^\]]+)\]\((references/[^)]+)\)")


@dataclass
class SlashCommand:
    """A slash menu entry."""

    id: str
    name: str
    label: str
    description: str
    category: str
    body: str
    path: Path
    icon: Optional[str] = None

    def to_markup(self) -> str:
        return command_markup(self.id, self.label, self.body, self.category)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "label": self.label,
            "description": self.description,
            "category": self.category,
            "icon": self.icon,
            "body": self.body,
        }


def _read_item(path: Path, category: str, default_name: str) -> Optional[SlashCommand]:
    try:
        text = path.read_text(encoding="utf-8")
        if text.startswith("---"):
            metadata, body = parse_yaml_frontmatter(text, label=str(path))
        else:
            metadata, body = {}, text.strip()
    except (OSError, ValueError) as e:
        logger.warning("Failed to parse %s file %s: %s", category, path, e)
        return None

    name = str(metadata.get("name") or default_name)
    return SlashCommand(
        id=f"{category}-{name}",
        name=name,
        label=str(metadata.get("label") or f"/{name}"),
        description=str(metadata.get("description") or ""),
        category=category,
        body=body,
        path=path,
        icon=metadata.get("icon"),
    )


class CommandLibrary:
    """Reads commands and skills from a content directory."""

    def __init__(self, content_dir: Path):
        self.content_dir = Path(content_dir)

    @property
    def commands_dir(self) -> Path:
        return self.content_dir / "commands"

    @property
    def skills_dir(self) -> Path:
        return self.content_dir / "skills"

    def list_commands(self) -> List[SlashCommand]:
        """All commands followed by all skills, each group sorted by name."""
        items: List[SlashCommand] = []
        if self.commands_dir.is_dir():
            for path in sorted(self.commands_dir.glob("*.md")):
                item = _read_item(path, "command", path.stem)
                if item:
                    items.append(item)

        skills = []
        seen = set()
        if self.skills_dir.is_dir():
            candidates = [(p, p.parent.name) for p in self.skills_dir.glob(f"*/{SKILL_FILENAME}")]
            candidates += [(p, p.stem) for p in self.skills_dir.glob("*.md")]
            for path, default_name in sorted(candidates):
                item = _read_item(path, "skill", default_name)
                if item is None:
                    continue
                if item.name in seen:
                    logger.debug("Skipping skill '%s' in %s: duplicate name", item.name, path)
                    continue
                seen.add(item.name)
                skills.append(item)
        items.extend(sorted(skills, key=lambda s: s.name))
        return items

    def get(self, command_id: str) -> Optional[SlashCommand]:
        for item in self.list_commands():
            if item.id == command_id or item.name == command_id:
                return item
        return None

    def _skill_path(self, skill_name: str) -> Optional[Path]:
        # Skill names come from message markup; keep lookups inside the skills dir
        if not skill_name or "/" in skill_name or "\\" in skill_name or skill_name.startswith("."):
            return None
        for path in (self.skills_dir / skill_name / SKILL_FILENAME, self.skills_dir / f"{skill_name}.md"):
            if path.is_file():
                return path
        return None

    def load_skill_instructions(self, skill_name: str) -> Optional[str]:
        """Full instructions for an activated skill.

        References linked as ``[title](references/...)`` in the skill body are
        inlined after it.

        Returns:
            Instruction text, or None if the skill does not exist or cannot be read
        """
        path = self._skill_path(skill_name)
        if path is None:
            return None

        item = _read_item(path, "skill", skill_name)
        if item is None:
            return None

        loaded_refs = []
        for title, ref in _REFERENCE_LINK.findall(item.body):
            ref_path = path.parent / ref
            if not ref_path.is_file():
                continue
            try:
                loaded_refs.append(f"\n\n---\n## Reference: {title}\n\n{ref_path.read_text(encoding='utf-8').strip()}")
            except OSError as e:
                logger.warning("Failed to read skill reference %s: %s", ref_path, e)

        header = f"## Active Skill: {item.name}"
        description = f"\n> {item.description}\n" if item.description else ""
        return "\n".join([header, description, item.body, *loaded_refs])
