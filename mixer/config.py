"""
Runtime settings — read from the environment (and .env via python-dotenv).

Required:
    GEMINI_API_KEY=...

Optional:
    MIXER_CONCEPT_MODEL=gemini-2.5-flash
    MIXER_IMAGE_MODEL=gemini-2.5-flash-image
    MIXER_SEARCH_MODEL=gemini-2.5-flash
    MIXER_MAX_LEADS=4
    MIXER_OUTPUT_DIR=outputs
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigError

DEFAULT_CONCEPT_MODEL = "gemini-2.5-flash"
DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"
DEFAULT_SEARCH_MODEL = "gemini-2.5-flash"
DEFAULT_MAX_LEADS = 4


@dataclass(frozen=True)
class Settings:
    api_key: str
    concept_model: str = DEFAULT_CONCEPT_MODEL
    image_model: str = DEFAULT_IMAGE_MODEL
    search_model: str = DEFAULT_SEARCH_MODEL
    max_leads: int = DEFAULT_MAX_LEADS
    output_root: Path = Path("outputs")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from ``env`` (defaults to os.environ after loading .env).

        Raises:
            ConfigError: GEMINI_API_KEY is missing or MIXER_MAX_LEADS is not an integer
        """
        if env is None:
            load_dotenv()
            env = os.environ

        api_key = (env.get("GEMINI_API_KEY") or "").strip()
        if not api_key:
            raise ConfigError("GEMINI_API_KEY not set in environment / .env")

        raw_leads = env.get("MIXER_MAX_LEADS", str(DEFAULT_MAX_LEADS))
        try:
            max_leads = int(raw_leads)
        except ValueError:
            raise ConfigError(f"MIXER_MAX_LEADS must be an integer, got {raw_leads!r}")
        if max_leads < 0:
            raise ConfigError("MIXER_MAX_LEADS must not be negative")

        return cls(
            api_key=api_key,
            concept_model=env.get("MIXER_CONCEPT_MODEL") or DEFAULT_CONCEPT_MODEL,
            image_model=env.get("MIXER_IMAGE_MODEL") or DEFAULT_IMAGE_MODEL,
            search_model=env.get("MIXER_SEARCH_MODEL") or DEFAULT_SEARCH_MODEL,
            max_leads=max_leads,
            output_root=Path(env.get("MIXER_OUTPUT_DIR") or "outputs"),
        )
