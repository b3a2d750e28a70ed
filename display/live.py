"""Rich live display — one panel per planned component, updating in real time.

The display layer is fully decoupled from the executor. It subscribes to an
asyncio.Queue of DeployEvents and renders them into a live terminal layout.
The executor runs whether or not a display is attached — it just puts events
into the queue and never checks if anyone is reading.

Usage:
    event_queue = asyncio.Queue()
    display = LiveDisplay(plan.names)

    with display.make_live() as live:
        run = asyncio.create_task(runtime.dispatch(event, event_queue))
        consumer = asyncio.create_task(display.consume(event_queue, live))
        outcome = await run
        await event_queue.put(None)  # sentinel: tells consume() to stop
        await consumer
"""

import asyncio
from dataclasses import dataclass, field

from rich.columns import Columns
from rich.console import Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from schemas.events import DeployEvent, EventType


# ── Per-component state ───────────────────────────────────────────────────────

@dataclass
class _ComponentState:
    """Mutable state for one component's panel.

    Updated by _apply() each time an event arrives. The display reads this
    to re-render the panel on every refresh tick.
    """
    name: str
    status: str = "queued"    # queued | deploying | succeeded | failed | timed_out | skipped
    elapsed_ms: float = 0.0
    messages: list[str] = field(default_factory=list)


_ICONS = {
    "queued":    "[dim]○[/dim]",
    "deploying": "[bold yellow]●[/bold yellow]",
    "succeeded": "[bold green]✓[/bold green]",
    "failed":    "[bold red]✗[/bold red]",
    "timed_out": "[bold red]⏱[/bold red]",
    "skipped":   "[dim]–[/dim]",
}

_BORDERS = {
    "queued":    "dim",
    "deploying": "yellow",
    "succeeded": "green",
    "failed":    "red",
    "timed_out": "red",
    "skipped":   "bright_black",
}


# ── Display ───────────────────────────────────────────────────────────────────

class LiveDisplay:
    """Manages the Rich live layout and subscribes to the event queue.

    Attributes:
        _states: Dict of component name → _ComponentState.
        _order:  Component names in plan order — preserves panel layout.
    """

    def __init__(self, components: list[str]) -> None:
        self._states = {name: _ComponentState(name=name) for name in components}
        self._order = list(components)

    def make_live(self) -> Live:
        """Return a Rich Live context manager ready to use with `with`."""
        return Live(self._render(), refresh_per_second=8, transient=False)

    async def consume(self, queue: asyncio.Queue, live: Live) -> None:
        """Read events from the queue and update the display until sentinel.

        Args:
            queue: The asyncio.Queue the executor writes DeployEvents into.
            live:  The active Rich Live context to update on each event.
        """
        while True:
            event = await queue.get()
            if event is None:
                break
            self.apply(event)
            live.update(self._render())

    def status_of(self, component: str) -> str | None:
        state = self._states.get(component)
        return state.status if state else None

    def apply(self, event: DeployEvent) -> None:
        """Update the component state from an incoming event."""
        state = self._states.get(event.component)
        if state is None:
            return

        state.elapsed_ms = event.timestamp_ms

        if event.event_type == EventType.STARTED:
            state.status = "deploying"
            state.messages.append("deploying...")

        elif event.event_type == EventType.SUCCEEDED:
            state.status = "succeeded"
            state.messages.append(f"✓ {event.message}")

        elif event.event_type == EventType.FAILED:
            state.status = "failed"
            state.messages.append(f"✗ {event.message}")

        elif event.event_type == EventType.TIMED_OUT:
            state.status = "timed_out"
            state.messages.append(f"✗ {event.message}")

        elif event.event_type == EventType.SKIPPED:
            state.status = "skipped"
            state.messages.append(event.message)

        # Keep only the last 3 lines so panels don't grow unbounded
        state.messages = state.messages[-3:]

    # ── Private ───────────────────────────────────────────────────────────────

    def _render_panel(self, state: _ComponentState) -> Panel:
        """Build a Rich Panel for one component from its current state."""
        icon = _ICONS.get(state.status, "○")
        elapsed = f"[dim][{state.elapsed_ms / 1000:.2f}s][/dim]"
        lines: list[Text] = [Text.from_markup(f"{elapsed}  {icon}")]
        for msg in state.messages:
            lines.append(Text(f"  {msg}", style="dim"))

        return Panel(
            Group(*lines),
            title=f"[bold]{state.name}[/bold]",
            border_style=_BORDERS.get(state.status, "dim"),
            width=36,
        )

    def _render(self) -> Group:
        """Build the full layout: panels arranged in rows of three."""
        panels = [self._render_panel(self._states[name]) for name in self._order]
        rows = []
        for i in range(0, len(panels), 3):
            rows.append(Columns(panels[i : i + 3], equal=True))
        return Group(*rows)
