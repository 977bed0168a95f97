"""
Fashion Mixer — command-line entry point.

Usage:
  python -m mixer.main mix --texture t.jpg --silhouette s.jpg --color c.jpg
  python -m mixer.main mix --texture t.jpg --silhouette s.jpg --color c.jpg --no-export
  python -m mixer.main direct "liquid chrome armor with holographic feathers" --ref r1.jpg
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console

from .config import Settings
from .errors import ConfigError, ValidationError
from .exporter import export_run, image_suffix, timestamped_dir
from .gateway import GenerationGateway
from .orchestrator import ConceptOrchestrator, RunState
from .staging import stage_file
from .view import PresentationView

load_dotenv()

logging.basicConfig(
    format="%(asctime)s — %(levelname)s — %(name)s — %(message)s",
    level=logging.WARNING,
)
logger = logging.getLogger(__name__)

console = Console()


# ── CLI ───────────────────────────────────────────────────────────────────────

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fashion Mixer — fuse texture, silhouette and color into a concept"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log pipeline progress")
    sub = parser.add_subparsers(dest="command", required=True)

    mix = sub.add_parser("mix", help="Synthesize a concept from three reference images")
    mix.add_argument("--texture", required=True, help="Texture / material reference")
    mix.add_argument("--silhouette", required=True, help="Silhouette / shape reference")
    mix.add_argument("--color", required=True, help="Color / mood reference")
    mix.add_argument("--output", default=None,
                     help="Output directory (default: outputs/<timestamp>)")
    mix.add_argument("--no-export", action="store_true", help="Do not write files")

    direct = sub.add_parser("direct", help="Directed generation from a text directive")
    direct.add_argument("directive", help="Creative directive")
    direct.add_argument("--ref", action="append", default=[], dest="refs",
                        help="Reference image (first is mandatory, up to 3)")
    direct.add_argument("--output", default=None, help="Where to save the image")

    return parser.parse_args(argv)


# ── Commands ──────────────────────────────────────────────────────────────────

async def run_mix(args: argparse.Namespace, settings: Settings) -> int:
    staged = [stage_file(p) for p in (args.texture, args.silhouette, args.color)]
    orchestrator = ConceptOrchestrator(GenerationGateway(settings))
    view = PresentationView(orchestrator, console, live=True)

    try:
        with console.status("[bold cyan]Weaving digital threads...[/bold cyan]"):
            record = await orchestrator.run(*(s.payload for s in staged))
    except ValidationError as e:
        view.close()
        console.print(f"[red]✗ {e}[/red]")
        return 2

    if record is None:
        view.close()
        return 1

    with console.status("[bold cyan]Materializing illustration, catalog and mood board...[/bold cyan]"):
        record = await orchestrator.wait_settled()
    view.close()

    if orchestrator.state is RunState.SETTLED and record is not None and not args.no_export:
        out_dir = Path(args.output) if args.output else timestamped_dir(settings.output_root)
        paths = export_run(record, out_dir)
        console.print(f"[green]✓ Saved {len(paths)} file(s) → {out_dir}[/green]")
    return 0


async def run_direct(args: argparse.Namespace, settings: Settings) -> int:
    staged = [stage_file(p) for p in args.refs]
    payloads = [s.payload for s in staged]
    reference = payloads[0] if payloads else None
    orchestrator = ConceptOrchestrator(GenerationGateway(settings))

    try:
        task = orchestrator.start_directed(args.directive, reference, payloads[1:])
    except ValidationError as e:
        console.print(f"[red]✗ {e}[/red]")
        return 2

    with console.status("[bold cyan]Materializing vision...[/bold cyan]"):
        image = await task
    if image is None:
        console.print("[yellow]⚠ No image was produced[/yellow]")
        return 1

    if args.output:
        out_path = Path(args.output)
    else:
        out_path = timestamped_dir(settings.output_root) / f"directed{image_suffix(image)}"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(image)
    console.print(f"[green]✓ Saved → {out_path}[/green]")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger("mixer").setLevel(logging.INFO)

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logger.error(str(e))
        return 1

    if args.command == "mix":
        return asyncio.run(run_mix(args, settings))
    return asyncio.run(run_direct(args, settings))


if __name__ == "__main__":
    sys.exit(main())
