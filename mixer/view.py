"""
Presentation view — terminal rendering of the live concept with rich.

Pure read side: subscribes to the orchestrator's record / theme / error
channels and re-renders from the latest snapshots. No ordering or merge
decisions are made here.
"""

from __future__ import annotations

from typing import Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from .models import ConceptRecord, Theme
from .orchestrator import ConceptOrchestrator, RunFailure

ILLUSTRATION_PENDING = "Materializing concept visualization..."
LEADS_PENDING = "Searching the curated catalog..."
LEADS_EMPTY = "No matching pieces found"
MOOD_BOARD_PENDING = "Composing mood board..."


def rich_color(hex_value: str) -> str:
    """rich only parses #rrggbb — expand #rgb, drop alpha from #rrggbbaa."""
    value = hex_value.strip().lstrip("#")
    if len(value) == 3:
        value = "".join(c * 2 for c in value)
    return f"#{value[:6].lower()}"


def _size(data: bytes) -> str:
    return f"{max(1, len(data) // 1024)} KB"


class PresentationView:
    """
    Renders the orchestrator's latest snapshots.

    With ``live`` set, every publication that leaves something to show
    (a record or an error) is printed to the console as it arrives.
    """

    def __init__(self, orchestrator: ConceptOrchestrator, console: Optional[Console] = None,
                 live: bool = False) -> None:
        self.console = console or Console()
        self.live = live
        self.record: Optional[ConceptRecord] = None
        self.theme: Theme = orchestrator.themes.value
        self.error: Optional[RunFailure] = None
        self.renders = 0

        self._unsubscribe = [
            orchestrator.themes.subscribe(self._on_theme),
            orchestrator.records.subscribe(self._on_record),
            orchestrator.errors.subscribe(self._on_error),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    # ── Subscriptions ─────────────────────────────────────────────────────────

    def _on_theme(self, theme: Theme) -> None:
        self.theme = theme
        self._refresh()

    def _on_record(self, record: Optional[ConceptRecord]) -> None:
        self.record = record
        self._refresh()

    def _on_error(self, error: Optional[RunFailure]) -> None:
        self.error = error
        self._refresh()

    def _refresh(self) -> None:
        self.renders += 1
        if self.live and (self.record is not None or self.error is not None):
            self.console.print(self.render())

    # ── Rendering ─────────────────────────────────────────────────────────────

    def render(self) -> Group:
        """Render the current state. Deterministic in (theme, record, error)."""
        theme = self.theme
        accent = rich_color(theme.primary_color)
        parts = [
            Rule(f"[bold {accent}]Fashion Mixer[/] [dim]· {theme.name}[/dim]",
                 style=accent),
        ]
        if self.error is not None:
            parts.append(Panel(
                f"Failed to generate concept. {self.error.message}",
                title="[bold red]Error[/bold red]",
                border_style="red",
            ))
        if self.record is not None:
            parts.append(self.render_record(self.record, theme))
        return Group(*parts)

    def render_record(self, record: ConceptRecord, theme: Theme) -> Panel:
        accent = rich_color(theme.primary_color)
        secondary = rich_color(theme.secondary_color)

        tags = Text()
        for tag in record.design_tags:
            tags.append(f" {tag.upper()} ", style=f"bold on {secondary}")
            tags.append(" ")

        details = Table.grid(padding=(0, 2))
        details.add_column(style="dim", no_wrap=True)
        details.add_column()
        details.add_row("Fabrication", record.details.fabrication)
        details.add_row("Silhouette", record.details.structure)
        details.add_row("Color Theory", record.details.color_theory)
        details.add_row("Muse / Character", record.details.archetype)

        body = Group(
            Text(record.name, style=f"bold {accent}"),
            tags,
            Text(f"“{record.rationale}”", style="italic"),
            details,
            Text(f"Visual DNA Prompt: {record.visual_prompt}", style="dim"),
            Rule(style=secondary),
            self._illustration_section(record),
            self._leads_section(record),
            self._mood_board_section(record),
        )
        return Panel(body, border_style=accent, title=f"[bold]{theme.name}[/bold]")

    def _illustration_section(self, record: ConceptRecord) -> Text:
        if record.illustration is None:
            return Text(f"Illustration: {ILLUSTRATION_PENDING}", style="dim italic")
        return Text(f"Illustration: ready ({_size(record.illustration)})")

    def _leads_section(self, record: ConceptRecord):
        if record.shopping_leads is None:
            return Text(f"Curated catalog: {LEADS_PENDING}", style="dim italic")
        if not record.shopping_leads:
            return Text(f"Curated catalog: {LEADS_EMPTY}", style="dim")
        table = Table(title="Curated Catalog", show_header=False, box=None)
        table.add_column()
        table.add_column(style="dim")
        for lead in record.shopping_leads:
            table.add_row(lead.title, lead.url)
        return table

    def _mood_board_section(self, record: ConceptRecord) -> Text:
        if record.mood_board is None:
            return Text(f"Mood board: {MOOD_BOARD_PENDING}", style="dim italic")
        return Text(f"Mood board: {len(record.mood_board)} image(s) "
                    + ", ".join(_size(img) for img in record.mood_board))
