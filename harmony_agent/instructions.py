"""Load and render instruction templates from disk.

Supports a two-layer override system:
  1. Personal overrides in ``~/.harmony-agent/instructions/`` (highest priority)
  2. Package defaults in ``harmony_agent/instructions/``

The system prompt and the developer prompt presets both live there, so a
deployment can reword either without touching the package.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Mapping

import yaml


_PERSONAL_DIR = Path("~/.harmony-agent/instructions").expanduser()

SYSTEM_PROMPT_TEMPLATE = "system_prompt.md"
DEVELOPER_PROMPTS_FILE = "developer_prompts.yaml"

_REASONING_LINE_RE = re.compile(r"Reasoning:\s*[^\n\r]*", re.IGNORECASE)


class _SafeFormatDict(dict[str, str]):
    """Leave unknown placeholders untouched instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class InstructionLoader:
    """Read and render instruction templates with personal-override support.

    Resolution order for every template:
      1. ``personal_dir / name``  (``~/.harmony-agent/instructions/``)
      2. ``base_dir / name``      (package ``instructions/``)
    """

    def __init__(
        self,
        base_dir: Path | str | None = None,
        personal_dir: Path | str | None = None,
    ):
        self.base_dir = self._resolve_base_dir(base_dir)
        self.personal_dir: Path = (
            Path(personal_dir).expanduser().resolve()
            if personal_dir is not None
            else _PERSONAL_DIR.resolve()
        )
        self._cache: dict[str, str] = {}

    @staticmethod
    def _resolve_base_dir(base_dir: Path | str | None) -> Path:
        if base_dir is not None:
            return Path(base_dir).expanduser().resolve()
        env_dir = os.getenv("HARMONY_INSTRUCTIONS_DIR")
        if env_dir:
            return Path(env_dir).expanduser().resolve()
        return (Path(__file__).resolve().parent / "instructions").resolve()

    def _path(self, name: str) -> Path:
        personal = self.personal_dir / name
        if personal.is_file():
            return personal
        return self.base_dir / name

    def is_overridden(self, name: str) -> bool:
        """Return ``True`` if a personal override exists for *name*."""
        return (self.personal_dir / name).is_file()

    def load(self, name: str) -> str:
        """Load instruction template content by filename."""
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        path = self._path(name)
        if not path.is_file():
            raise FileNotFoundError(
                f"Instruction template not found: {path}. "
                "Add the file under the instructions folder."
            )
        content = path.read_text(encoding="utf-8").strip()
        self._cache[name] = content
        return content

    def load_yaml(self, name: str) -> Any:
        """Load and parse a YAML instruction file."""
        return yaml.safe_load(self.load(name))

    def render(self, name: str, **variables: object) -> str:
        """Render template with simple ``str.format`` placeholder substitution."""
        template = self.load(name)
        values: Mapping[str, str] = {k: str(v) for k, v in variables.items()}
        return template.format_map(_SafeFormatDict(values))


_loader: InstructionLoader | None = None


def get_instruction_loader() -> InstructionLoader:
    global _loader
    if _loader is None:
        _loader = InstructionLoader()
    return _loader


def apply_reasoning_level(prompt: str, level: object) -> str:
    """Set the ``Reasoning:`` line of a system prompt.

    The first existing line is replaced (matched case-insensitively);
    otherwise the line is prepended followed by a blank line. A missing,
    blank or non-string level leaves the prompt unchanged.
    """
    if not isinstance(level, str):
        return prompt
    normalized = level.strip()
    if not normalized:
        return prompt
    reasoning_line = f"Reasoning: {normalized}"
    if _REASONING_LINE_RE.search(prompt):
        return _REASONING_LINE_RE.sub(lambda _: reasoning_line, prompt, count=1)
    return f"{reasoning_line}\n\n{prompt}"


def render_system_prompt(
    knowledge_cutoff: str,
    reasoning_level: str,
    today: date | None = None,
    loader: InstructionLoader | None = None,
) -> str:
    """Render the base system prompt for the current date."""
    current = today or date.today()
    return (loader or get_instruction_loader()).render(
        SYSTEM_PROMPT_TEMPLATE,
        knowledge_cutoff=knowledge_cutoff,
        current_date=current.strftime("%B %d, %Y"),
        reasoning_level=reasoning_level.lower(),
    )


@dataclass(frozen=True)
class DeveloperPreset:
    """A named developer prompt clients can offer."""

    id: str
    name: str
    description: str
    category: str
    prompt: str

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "prompt": self.prompt,
        }


def list_presets(loader: InstructionLoader | None = None) -> list[DeveloperPreset]:
    data = (loader or get_instruction_loader()).load_yaml(DEVELOPER_PROMPTS_FILE) or {}
    presets = []
    for entry in data.get("presets") or []:
        if not isinstance(entry, dict) or not entry.get("id"):
            continue
        presets.append(
            DeveloperPreset(
                id=str(entry["id"]),
                name=str(entry.get("name") or entry["id"]),
                description=str(entry.get("description") or ""),
                category=str(entry.get("category") or "general"),
                prompt=str(entry.get("prompt") or ""),
            )
        )
    return presets


def get_preset(preset_id: str, loader: InstructionLoader | None = None) -> DeveloperPreset | None:
    for preset in list_presets(loader):
        if preset.id == preset_id:
            return preset
    return None
