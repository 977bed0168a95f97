"""Error taxonomy for the mixer pipeline."""

from __future__ import annotations


class MixerError(Exception):
    """Base class for every error raised by the mixer."""


class ConfigError(MixerError):
    """Required configuration is missing or malformed."""


class ValidationError(MixerError):
    """A run request is malformed or incomplete. Raised before any state change."""


class PrimaryGenerationError(MixerError):
    """The primary concept call failed or returned an unusable shape."""


class EnrichmentError(MixerError):
    """An enrichment call failed. Absorbed by the gateway, never surfaced to callers."""
