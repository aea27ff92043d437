"""
Prompt Loader

System prompts live in YAML under the prompts directory.
"""

import os
from dataclasses import dataclass

import yaml


DEFAULT_PROMPTS_FILE = "lighting.yaml"


@dataclass(frozen=True)
class SystemPrompts:
    restrictive: str
    general: str

    def select(self, restrictive: bool) -> str:
        return self.restrictive if restrictive else self.general


def load_prompts(prompts_dir: str, filename: str = DEFAULT_PROMPTS_FILE) -> SystemPrompts:
    """
    Load the restrictive and general system prompts.

    Raises:
        FileNotFoundError: The prompts file is missing
        ValueError: A prompt is missing or empty
    """
    path = os.path.join(prompts_dir, filename)
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    missing = [key for key in ("restrictive", "general") if not str(data.get(key) or "").strip()]
    if missing:
        raise ValueError(f"Prompt file {path} is missing: {', '.join(missing)}")

    return SystemPrompts(
        restrictive=data["restrictive"].strip(),
        general=data["general"].strip(),
    )
