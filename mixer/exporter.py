"""Write a concept record to an output folder (json + markdown + images)."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List

from .models import ConceptRecord
from .staging import guess_mime

logger = logging.getLogger(__name__)

_MIME_SUFFIX = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp", "image/gif": ".gif"}


def timestamped_dir(root: Path) -> Path:
    return root / datetime.now().strftime("%Y%m%d_%H%M%S")


def image_suffix(data: bytes) -> str:
    """File suffix for image bytes as Pillow reads them; .png when unrecognised."""
    return _MIME_SUFFIX.get(guess_mime("", data), ".png")


def save_concept_md(record: ConceptRecord, output_dir: Path) -> Path:
    """Save the concept as a formatted markdown summary."""
    d = record.details
    t = record.theme
    lines = [
        f"# {record.name}",
        f"\n_Generated: {datetime.now().strftime('%Y-%m-%d %H:%M')}_\n",
        f"> {record.rationale}\n",
        f"**Design DNA:** {', '.join(record.design_tags)}\n",
        "## Details",
        f"**Fabrication:** {d.fabrication}  ",
        f"**Silhouette:** {d.structure}  ",
        f"**Color Theory:** {d.color_theory}  ",
        f"**Muse / Character:** {d.archetype}\n",
        "## Theme",
        f"**{t.name}** — primary `{t.primary_color}`, secondary `{t.secondary_color}`, "
        f"text `{t.text_color}`  ",
        f"`{t.background_gradient}`\n",
        "## Visual Prompt",
        f"{record.visual_prompt}\n",
    ]
    if record.shopping_leads:
        lines.append("## Curated Catalog")
        lines += [f"- [{lead.title}]({lead.url})" for lead in record.shopping_leads]

    md_path = output_dir / "concept.md"
    md_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return md_path


def save_concept_json(record: ConceptRecord, output_dir: Path) -> Path:
    json_path = output_dir / "concept.json"
    json_path.write_text(json.dumps(record.summary(), indent=2), encoding="utf-8")
    return json_path


def export_run(record: ConceptRecord, output_dir: Path) -> List[Path]:
    """Write every available artefact of ``record``. Returns the written paths."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written = [save_concept_json(record, output_dir), save_concept_md(record, output_dir)]

    if record.illustration is not None:
        path = output_dir / f"illustration{image_suffix(record.illustration)}"
        path.write_bytes(record.illustration)
        written.append(path)

    for i, image in enumerate(record.mood_board or (), start=1):
        path = output_dir / f"moodboard_{i}{image_suffix(image)}"
        path.write_bytes(image)
        written.append(path)

    logger.info(f"Exported {len(written)} file(s) to {output_dir}")
    return written
