"""
Generation gateway — the four Gemini capability calls behind one async facade.

  synthesize_concept      → ConceptSeed (the only call allowed to raise)
  synthesize_illustration → PNG/JPEG bytes or None
  find_leads              → grounded shopping leads (Google Search tool)
  synthesize_mood_board   → up to 3 abstract images, fixed order
  synthesize_directed     → free-form directive + reference images → image or None

The gateway keeps no state between calls. Enrichment calls degrade to an
empty/absent result on any failure so they never abort a run.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import List, Optional, Sequence

from google import genai
from google.genai import types
from pydantic import ValidationError as SchemaError

from .config import Settings
from .errors import EnrichmentError, PrimaryGenerationError
from .models import DEFAULT_LEAD_TITLE, DEFAULT_LEAD_URL, ConceptSeed, Lead, dedupe_leads
from .staging import EncodedPayload

logger = logging.getLogger(__name__)


SYSTEM_INSTRUCTION = """\
You are an Avant-Garde Fashion Director. Analyze the 3 uploaded images (Texture, Silhouette, Color) to create a new fashion concept.
Return a strict JSON object.
Break down the concept into specific details (Fabrication, Silhouette, Color Theory, Muse) in the 'concept_details' section.
The 'ui_theme' should extract the aesthetic vibe of the generated concept to style the web application displaying the result.
"""

CONCEPT_REQUEST = (
    "Analyze these three images: 1. Texture, 2. Silhouette, 3. Color. "
    "Generate the fashion concept JSON."
)

ILLUSTRATION_STYLE = "High fashion photography, professional lookbook shot, cinematic lighting."

# (kind, template); the returned mood board follows this order
MOOD_BOARD_PROMPTS = (
    ("texture", "Abstract artistic texture pattern representing the {theme} aesthetic, "
                "high quality wallpaper, 8k resolution"),
    ("architecture", "Futuristic architectural geometry inspired by {theme}, "
                     "cinematic lighting, macro detail"),
    ("palette", "Fluid color gradient and light leak overlay in the style of {theme}, "
                "ethereal mood"),
)

LEADS_PROMPT = """\
Find {count} real, distinct, purchasable high-fashion items that match this style: "{name}".
Search query: {query}
Return a list of products."""


def build_leads_query(concept_name: str, tags: Sequence[str]) -> str:
    """Natural-language shopping query from the concept name + first three tags."""
    words = " ".join(t.strip() for t in list(tags)[:3] if t and t.strip())
    query = f"buy avant-garde fashion {concept_name.strip()}"
    if words:
        query += f" {words}"
    return query + " dress or outfit"


def mood_board_prompts(theme_name: str) -> List[str]:
    return [template.format(theme=theme_name) for _, template in MOOD_BOARD_PROMPTS]


def _inline_part(payload: EncodedPayload) -> types.Part:
    return types.Part.from_bytes(data=payload.data, mime_type=payload.mime_type)


def _first_image(response) -> Optional[bytes]:
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline and inline.data:
                data = inline.data
                if isinstance(data, str):
                    data = base64.b64decode(data)
                return data
    return None


def _grounded_leads(response) -> List[Lead]:
    leads: List[Lead] = []
    for candidate in getattr(response, "candidates", None) or []:
        metadata = getattr(candidate, "grounding_metadata", None)
        for chunk in getattr(metadata, "grounding_chunks", None) or []:
            web = getattr(chunk, "web", None)
            if web is None:
                continue
            leads.append(Lead(
                title=getattr(web, "title", None) or DEFAULT_LEAD_TITLE,
                url=getattr(web, "uri", None) or DEFAULT_LEAD_URL,
            ))
        # only the first candidate carries grounding for this request
        break
    return leads


class GenerationGateway:
    """Async wrapper around ``genai.Client.aio``."""

    def __init__(self, settings: Settings, client: Optional[genai.Client] = None) -> None:
        self.settings = settings
        self.client = client or genai.Client(api_key=settings.api_key)

    # ── 1. Primary concept ────────────────────────────────────────────────────

    async def synthesize_concept(
        self,
        texture: EncodedPayload,
        silhouette: EncodedPayload,
        color: EncodedPayload,
    ) -> ConceptSeed:
        """
        Fuse the three references into a concept seed.

        Raises:
            PrimaryGenerationError: the call failed, returned nothing, or the
                JSON does not match ConceptSeed (including malformed hex fields)
        """
        contents = [
            types.Part.from_text(text=CONCEPT_REQUEST),
            _inline_part(texture),
            _inline_part(silhouette),
            _inline_part(color),
        ]
        try:
            response = await self.client.aio.models.generate_content(
                model=self.settings.concept_model,
                contents=contents,
                config=types.GenerateContentConfig(
                    system_instruction=SYSTEM_INSTRUCTION,
                    response_mime_type="application/json",
                    response_schema=ConceptSeed,
                ),
            )
        except Exception as e:
            logger.error(f"Concept call failed: {e}")
            raise PrimaryGenerationError(f"concept generation failed: {e}") from e

        text = getattr(response, "text", None)
        if not text:
            raise PrimaryGenerationError("No response text received from Gemini")

        try:
            seed = ConceptSeed.model_validate_json(text)
        except SchemaError as e:
            logger.error(f"Concept response failed shape validation: {e}")
            raise PrimaryGenerationError(f"concept response has an invalid shape: {e}") from e

        logger.info(f"Concept synthesized: {seed.concept_name}")
        return seed

    # ── 2. Illustration ───────────────────────────────────────────────────────

    async def _generate_image(self, contents) -> Optional[bytes]:
        try:
            response = await self.client.aio.models.generate_content(
                model=self.settings.image_model,
                contents=contents,
                config=types.GenerateContentConfig(
                    response_modalities=["IMAGE", "TEXT"],
                ),
            )
            return _first_image(response)
        except Exception as e:
            raise EnrichmentError(f"image model call failed: {e}") from e

    async def synthesize_illustration(self, prompt: str) -> Optional[bytes]:
        """Render a lookbook image for ``prompt``. None when no image is produced or on error."""
        try:
            image = await self._generate_image(f"{ILLUSTRATION_STYLE} {prompt}")
        except EnrichmentError as e:
            logger.warning(f"Illustration call failed: {e}")
            return None
        if image is None:
            logger.info("Illustration call returned no image")
        return image

    # ── 3. Shopping leads ─────────────────────────────────────────────────────

    async def find_leads(self, concept_name: str, tags: Sequence[str]) -> List[Lead]:
        """Grounded search for purchasable pieces. [] on any failure."""
        query = build_leads_query(concept_name, tags)
        try:
            response = await self.client.aio.models.generate_content(
                model=self.settings.search_model,
                contents=LEADS_PROMPT.format(
                    count=self.settings.max_leads, name=concept_name, query=query,
                ),
                config=types.GenerateContentConfig(
                    tools=[types.Tool(google_search=types.GoogleSearch())],
                ),
            )
            leads = dedupe_leads(_grounded_leads(response), limit=self.settings.max_leads)
        except Exception as e:
            logger.warning(f"Lead search failed: {e}")
            return []
        logger.info(f"Lead search returned {len(leads)} lead(s)")
        return leads

    # ── 4. Mood board ─────────────────────────────────────────────────────────

    async def synthesize_mood_board(self, theme_name: str) -> List[bytes]:
        """
        Three concurrent abstractions of ``theme_name``.

        Returned in texture → architecture → palette order whatever the
        completion order; missing images are dropped, not padded.
        """
        try:
            results = await asyncio.gather(
                *(self.synthesize_illustration(p) for p in mood_board_prompts(theme_name))
            )
        except Exception as e:
            logger.warning(f"Mood board generation failed: {e}")
            return []
        images = [img for img in results if img is not None]
        logger.info(f"Mood board: {len(images)}/{len(results)} image(s)")
        return images

    # ── 5. Directed generation ────────────────────────────────────────────────

    async def synthesize_directed(
        self,
        directive: str,
        references: Sequence[EncodedPayload],
    ) -> Optional[bytes]:
        """Free-form directive steered by 1–3 reference images. None on failure."""
        contents = [types.Part.from_text(text=f"{ILLUSTRATION_STYLE} {directive.strip()}")]
        contents += [_inline_part(ref) for ref in references]
        try:
            image = await self._generate_image(contents)
        except EnrichmentError as e:
            logger.warning(f"Directed generation failed: {e}")
            return None
        if image is None:
            logger.info("Directed generation returned no image")
        return image
