"""Terminal rendering of an encounter's turn order."""

from typing import Any, Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from encounter_tracker.application.dtos import TurnView


_BORDER_ACTIVE = "red"
_BORDER_IDLE = "grey50"


def _hp_cell(row: Dict[str, Any]) -> str:
    if "current_hit_points" not in row:
        return ""
    current = int(row["current_hit_points"])
    maximum = int(row.get("max_hit_points") or 0)
    temporary = int(row.get("temporary_hit_points") or 0)
    if row.get("is_defeated"):
        style = "bold red"
    elif maximum and current * 2 <= maximum:
        style = "yellow"
    else:
        style = "green"
    text = f"[{style}]{current}/{maximum}[/{style}]"
    if temporary:
        text += f" [cyan]+{temporary}[/cyan]"
    return text


def _status_cell(row: Dict[str, Any]) -> str:
    flags = []
    if row.get("is_delayed"):
        flags.append("delayed")
    if row.get("ready_action"):
        flags.append(f"ready: {row['ready_action']}")
    if row.get("has_acted"):
        flags.append("acted")
    if not row.get("is_active", True):
        flags.append("out")
    return ", ".join(flags)


def build_turn_table(view: TurnView) -> Table:
    table = Table(show_header=True, header_style="bold yellow")
    table.add_column("", width=2)
    table.add_column("Init", justify="right")
    table.add_column("Name")
    table.add_column("HP", justify="right")
    table.add_column("AC", justify="right")
    table.add_column("Conditions")
    table.add_column("Status")
    for row in view.order:
        is_current = row["participant_id"] == view.current_participant_id
        name = str(row.get("name", ""))
        if row.get("is_lair"):
            name = f"[magenta]{name}[/magenta]"
        elif row.get("is_player"):
            name = f"[bold]{name}[/bold]"
        table.add_row(
            ">" if is_current else "",
            str(row.get("initiative", "")),
            name,
            _hp_cell(row),
            str(row.get("armor_class", "")),
            ", ".join(row.get("conditions") or []),
            _status_cell(row),
            style="reverse" if is_current else None,
        )
    return table


def _subtitle(view: TurnView) -> str:
    parts = [f"Round {view.round}", f"Turn {view.turn + 1}"]
    if view.is_lair_turn:
        parts.append("lair action")
    if view.time_remaining is not None:
        parts.append(f"{view.time_remaining}s left")
    return " | ".join(parts)


def render_turn_view(view: TurnView, title: str = "Encounter", console: Optional[Console] = None) -> None:
    console = console or Console()
    if not view.order:
        console.print(
            Panel.fit(
                "No initiative order yet. Start combat to roll initiative.",
                title=f"[bold yellow]{title}[/bold yellow]",
                border_style=_BORDER_IDLE,
            )
        )
        return
    console.print(
        Panel.fit(
            build_turn_table(view),
            title=f"[bold yellow]{title}[/bold yellow] ({view.phase})",
            subtitle=_subtitle(view),
            subtitle_align="left",
            border_style=_BORDER_ACTIVE if view.phase == "active" else _BORDER_IDLE,
        )
    )
