"""
Pytest Configuration and Fixtures

Shared fixtures for all tests.
"""

import asyncio
from collections import defaultdict

import pytest

from mixer.config import Settings
from mixer.models import ConceptSeed
from mixer.staging import EncodedPayload


SAMPLE_CONCEPT = {
    "concept_name": "Liquid Relic",
    "rationale": "Molten chrome poured over a relic's bones.",
    "concept_details": {
        "fabrication": "Liquid-metal lamé over boiled wool",
        "silhouette_structure": "Cocooned shoulders, column skirt",
        "color_theory": "Mercury silver against oxblood",
        "muse_character": "The archivist who melted the vault",
    },
    "visual_prompt": "A model in a molten chrome column gown, museum vault backdrop",
    "design_dna_tags": ["chrome", "organic"],
    "ui_theme": {
        "theme_name": "Mercury Vault",
        "primary_hex": "#C0C0C0",
        "secondary_hex": "#4A0E0E",
        "css_gradient": "linear-gradient(135deg, #111 0%, #4A0E0E 100%)",
        "text_color": "#F5F5F5",
    },
}


class FakeGateway:
    """
    Gateway double whose calls return futures the test resolves by hand.

    Methods are plain functions (not coroutines) so a call is recorded the
    instant the orchestrator makes it.
    """

    def __init__(self):
        self.calls = defaultdict(list)   # kind → [(args, future)]

    def _call(self, kind, *args):
        future = asyncio.get_running_loop().create_future()
        self.calls[kind].append((args, future))
        return future

    def synthesize_concept(self, texture, silhouette, color):
        return self._call("concept", texture, silhouette, color)

    def synthesize_illustration(self, prompt):
        return self._call("illustration", prompt)

    def find_leads(self, concept_name, tags):
        return self._call("leads", concept_name, tags)

    def synthesize_mood_board(self, theme_name):
        return self._call("mood_board", theme_name)

    def synthesize_directed(self, directive, references):
        return self._call("directed", directive, references)

    def resolve(self, kind, value, index=-1):
        self.calls[kind][index][1].set_result(value)

    def fail(self, kind, exc, index=-1):
        self.calls[kind][index][1].set_exception(exc)


async def tick(rounds: int = 5) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settings():
    return Settings(api_key="test-key")


@pytest.fixture
def sample_seed():
    return ConceptSeed.model_validate(SAMPLE_CONCEPT)


@pytest.fixture
def payloads():
    return (
        EncodedPayload("image/jpeg", b"texture-bytes"),
        EncodedPayload("image/png", b"silhouette-bytes"),
        EncodedPayload("image/webp", b"color-bytes"),
    )


@pytest.fixture
def fake_gateway():
    return FakeGateway()
