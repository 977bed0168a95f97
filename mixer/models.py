"""
Data model for a mixing run.

Two layers:
  - Wire schema (ConceptSeed & friends): the exact JSON shape requested from
    Gemini as ``response_schema``. Field names match the model contract.
  - Domain records (ConceptRecord, Theme, Lead): frozen snapshots published
    to subscribers. A merge always returns a new record.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

HEX_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")

DEFAULT_LEAD_TITLE = "Fashion Item"
DEFAULT_LEAD_URL = "#"


# ── Wire schema (structured Gemini output) ────────────────────────────────────

class ConceptDetailsSchema(BaseModel):
    fabrication: str = Field(description="Detailed analysis of materials and textures")
    silhouette_structure: str = Field(description="Breakdown of the cut, shape, and construction")
    color_theory: str = Field(description="Explanation of the palette and emotional impact")
    muse_character: str = Field(description="The archetype or character this outfit embodies")


class UIThemeSchema(BaseModel):
    theme_name: str
    primary_hex: str = Field(description="Dominant bright color hex code")
    secondary_hex: str = Field(description="Accent color hex code")
    css_gradient: str = Field(
        description="CSS linear-gradient string (e.g., 'linear-gradient(135deg, #123, #456)')"
    )
    text_color: str = Field(description="Hex for readability")

    @field_validator("primary_hex", "secondary_hex", "text_color")
    @classmethod
    def _check_hex(cls, value: str) -> str:
        value = value.strip()
        if not HEX_RE.match(value):
            raise ValueError(f"not a hex color: {value!r}")
        return value

    @field_validator("theme_name", "css_gradient")
    @classmethod
    def _check_non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()


class ConceptSeed(BaseModel):
    concept_name: str = Field(description="Creative title of the concept")
    rationale: str = Field(description="A concise, poetic summary of the fusion")
    concept_details: ConceptDetailsSchema
    visual_prompt: str = Field(
        description="Detailed image generation prompt for a high fashion lookbook photo"
    )
    design_dna_tags: List[str] = Field(description="Keywords describing the design DNA")
    ui_theme: UIThemeSchema

    @field_validator("concept_name", "rationale", "visual_prompt")
    @classmethod
    def _check_non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value


# ── Domain records ────────────────────────────────────────────────────────────

class Theme(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    primary_color: str
    secondary_color: str
    background_gradient: str
    text_color: str

    @property
    def button_text_color(self) -> str:
        # white buttons need dark labels regardless of the theme's text color
        if self.primary_color.lower() in ("#ffffff", "#fff"):
            return "#000000"
        return self.text_color

    @classmethod
    def from_schema(cls, ui: UIThemeSchema) -> "Theme":
        return cls(
            name=ui.theme_name,
            primary_color=ui.primary_hex,
            secondary_color=ui.secondary_hex,
            background_gradient=ui.css_gradient,
            text_color=ui.text_color,
        )


NEON_THEME = Theme(
    name="Neon Vogue",
    primary_color="#FF0080",
    secondary_color="#00FFFF",
    background_gradient="linear-gradient(135deg, #050505 0%, #1a0b2e 50%, #000000 100%)",
    text_color="#ffffff",
)


class ConceptDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    fabrication: str
    structure: str
    color_theory: str
    archetype: str


class Lead(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = DEFAULT_LEAD_TITLE
    url: str = DEFAULT_LEAD_URL


def dedupe_leads(leads: Iterable[Lead], limit: Optional[int] = None) -> List[Lead]:
    """Drop leads whose url was already seen (first seen wins), then cap at ``limit``."""
    seen = set()
    unique: List[Lead] = []
    for lead in leads:
        if lead.url in seen:
            continue
        seen.add(lead.url)
        unique.append(lead)
    if limit is not None:
        unique = unique[:limit]
    return unique


class Enrichment(str, Enum):
    ILLUSTRATION = "illustration"
    LEADS = "leads"
    MOOD_BOARD = "mood_board"


class ConceptRecord(BaseModel):
    """
    One run's evolving result. The four enrichment fields start as None and
    are each written at most once; every ``with_*`` call returns either
    ``self`` (no-op) or a fresh copy.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    rationale: str
    design_tags: Tuple[str, ...]
    details: ConceptDetails
    visual_prompt: str
    theme: Theme

    illustration: Optional[bytes] = None
    shopping_leads: Optional[Tuple[Lead, ...]] = None
    mood_board: Optional[Tuple[bytes, ...]] = None

    @classmethod
    def from_seed(cls, seed: ConceptSeed) -> "ConceptRecord":
        d = seed.concept_details
        return cls(
            name=seed.concept_name,
            rationale=seed.rationale,
            design_tags=tuple(seed.design_dna_tags),
            details=ConceptDetails(
                fabrication=d.fabrication,
                structure=d.silhouette_structure,
                color_theory=d.color_theory,
                archetype=d.muse_character,
            ),
            visual_prompt=seed.visual_prompt,
            theme=Theme.from_schema(seed.ui_theme),
        )

    def is_populated(self, kind: Enrichment) -> bool:
        if kind is Enrichment.ILLUSTRATION:
            return self.illustration is not None
        if kind is Enrichment.LEADS:
            return self.shopping_leads is not None
        return self.mood_board is not None

    def with_illustration(self, image: Optional[bytes]) -> "ConceptRecord":
        if image is None or self.illustration is not None:
            return self
        return self.model_copy(update={"illustration": image})

    def with_leads(self, leads: Optional[Iterable[Lead]]) -> "ConceptRecord":
        # an empty result still counts as resolved
        if self.shopping_leads is not None:
            return self
        return self.model_copy(update={"shopping_leads": tuple(dedupe_leads(leads or ()))})

    def with_mood_board(self, images: Optional[Iterable[bytes]]) -> "ConceptRecord":
        images = tuple(images or ())
        if not images or self.mood_board is not None:
            return self
        return self.model_copy(update={"mood_board": images})

    def merge(self, kind: Enrichment, value) -> "ConceptRecord":
        if kind is Enrichment.ILLUSTRATION:
            return self.with_illustration(value)
        if kind is Enrichment.LEADS:
            return self.with_leads(value)
        return self.with_mood_board(value)

    def summary(self) -> dict:
        """JSON-safe view of the record, binary fields reduced to counts."""
        return {
            "name": self.name,
            "rationale": self.rationale,
            "design_tags": list(self.design_tags),
            "details": self.details.model_dump(),
            "visual_prompt": self.visual_prompt,
            "theme": self.theme.model_dump(),
            "has_illustration": self.illustration is not None,
            "shopping_leads": (
                None if self.shopping_leads is None
                else [lead.model_dump() for lead in self.shopping_leads]
            ),
            "mood_board_count": None if self.mood_board is None else len(self.mood_board),
        }
