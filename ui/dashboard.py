"""
Rich-based terminal dashboard for linkgauge runs.

All formatting helpers live in ``meter.stats`` -- this module only does
presentation via the ``rich`` library.
"""
from __future__ import annotations

from typing import List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from meter.config import SpeedTestConfig
from meter.constants import GAUGE_MAX_MBPS
from meter.engine import ThroughputResult
from meter.latency import LatencyResult
from meter.runner import MeasurementPhase, RunObserver, RunResult
from meter.sampler import RateSample
from meter.stats import format_latency, format_speed

console = Console()


# ---------------------------------------------------------------------------
# Histogram helper
# ---------------------------------------------------------------------------

_BARS = "▁▂▃▄▅▆▇█"


def create_histogram(values: List[float]) -> str:
    """Return a single-line Unicode bar-chart."""
    if not values:
        return "No data"

    lo, hi = min(values), max(values)
    span = hi - lo if hi > lo else 1.0
    return "".join(
        _BARS[min(int((v - lo) / span * (len(_BARS) - 1)), len(_BARS) - 1)]
        for v in values
    )


def gauge_fraction(speed_mbps: float, max_mbps: float = GAUGE_MAX_MBPS) -> float:
    """Linear gauge fill in ``[0, 1]``, capped at *max_mbps*."""
    if max_mbps <= 0 or speed_mbps <= 0:
        return 0.0
    return min(speed_mbps / max_mbps, 1.0)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header() -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]linkgauge[/bold cyan]\n"
            "[dim]Latency, download and upload against one endpoint pair[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_endpoints(config: SpeedTestConfig) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="dim")
    table.add_column(style="bold")
    table.add_row("Ping:", config.ping_target)
    table.add_row("Download:", config.download_target)
    table.add_row("Upload:", config.upload_target)
    console.print(Panel(table, title="[bold]Endpoints[/bold]", border_style="blue"))


def print_latency_details(result: LatencyResult) -> None:
    """Print latency statistics and a histogram, or a no-data note."""
    if not result.has_data:
        console.print(
            f"[yellow]Latency: no data[/yellow] "
            f"[dim]({result.attempts} attempts, all failed)[/dim]"
        )
        return

    stats = result.stats
    table = Table(title="Latency Details", box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Mean", format_latency(result.latency_ms))
    table.add_row("Min", format_latency(stats.min))
    table.add_row("Max", format_latency(stats.max))
    table.add_row("Median", format_latency(stats.median))
    table.add_row("Jitter", f"{stats.jitter:.2f} ms")
    table.add_row("Samples", f"{stats.count}/{result.attempts}")
    table.add_row("Loss", f"{result.packet_loss:.0f}%")
    console.print(table)

    console.print(
        Panel(
            f"[cyan]{create_histogram(result.samples)}[/cyan]\n"
            f"[dim]Min: {stats.min:.1f} ms  Max: {stats.max:.1f} ms[/dim]",
            title="Ping Histogram",
        )
    )


def print_speed_result(result: ThroughputResult, title: str, color: str = "green") -> None:
    """Print a download or upload result panel."""
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    speed = f"[bold {color}]{format_speed(result.mbps)}[/bold {color}]"
    if result.simulated:
        speed += " [yellow](simulated)[/yellow]"
    table.add_row("Speed", speed)
    if not result.simulated:
        table.add_row("Data Transferred", f"{result.bytes_total / 1_000_000:.1f} MB")
        table.add_row("Duration", f"{result.elapsed_s:.1f} s")
    table.add_row("Streams", str(len(result.workers)))
    console.print(table)

    values = [s.mbps for s in result.samples]
    if values:
        console.print(
            Panel(
                f"[{color}]{create_histogram(values)}[/{color}]\n"
                f"[dim]Min: {min(values):.1f} Mbps  Max: {max(values):.1f} Mbps[/dim]",
                title="Speed Over Time",
            )
        )

    if result.simulated and result.fallback_reason:
        console.print(f"[dim]Fallback reason: {result.fallback_reason}[/dim]")


def print_final_results(result: RunResult) -> None:
    ping = (
        f"[bold yellow]{format_latency(result.ping_ms)}[/bold yellow]"
        if result.ping_has_data
        else "[yellow]no data[/yellow]"
    )
    upload = f"[bold blue]{format_speed(result.upload_mbps)}[/bold blue]"
    if result.upload_simulated:
        upload += " [yellow](simulated)[/yellow]"

    console.print()
    console.print(
        Panel.fit(
            f"[bold white]   Ping:[/bold white]  {ping}\n"
            f"[bold white]   Download:[/bold white]  "
            f"[bold green]{format_speed(result.download_mbps)}[/bold green]\n"
            f"[bold white]   Upload:[/bold white]  {upload}",
            title="[bold]Results[/bold]",
            border_style="cyan",
        )
    )
    console.print()


def print_failure(error: BaseException) -> None:
    console.print(
        Panel.fit(
            f"[bold red]Test failed[/bold red]\n[red]{error}[/red]",
            border_style="red",
        )
    )


# ---------------------------------------------------------------------------
# Live gauge
# ---------------------------------------------------------------------------

class LiveGauge(RunObserver):
    """
    Observer that draws the live rate as a ``rich`` progress bar.

    The bar is the speed gauge: its fill is the current rate against
    ``max_mbps`` rather than elapsed time.
    """

    _LABELS = {
        MeasurementPhase.LATENCY: "Measuring latency",
        MeasurementPhase.DOWNLOAD: "Downloading",
        MeasurementPhase.UPLOAD: "Uploading",
    }

    def __init__(self, max_mbps: float = GAUGE_MAX_MBPS) -> None:
        self.max_mbps = max_mbps
        self.progress: Optional[Progress] = None
        self._task_id = None
        self._last_speed = -1.0

    # -- RunObserver --------------------------------------------------------

    def on_phase(self, phase: MeasurementPhase) -> None:
        self._close()
        label = self._LABELS.get(phase)
        if label is None:
            return
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[bold cyan]{task.fields[speed]}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
        )
        self.progress.start()
        self._task_id = self.progress.add_task(label, total=100, speed="")
        self._last_speed = -1.0

    def on_sample(self, phase: MeasurementPhase, sample: RateSample) -> None:
        if self.progress is None or self._task_id is None:
            return
        # Debounce: only redraw when the value changes noticeably
        if abs(sample.mbps - self._last_speed) < 0.05:
            return
        self.progress.update(
            self._task_id,
            completed=gauge_fraction(sample.mbps, self.max_mbps) * 100,
            speed=format_speed(sample.mbps),
        )
        self._last_speed = sample.mbps

    def on_result(self, result: RunResult) -> None:
        self._close()

    def on_error(self, error: BaseException) -> None:
        self._close()

    # -- Internals ----------------------------------------------------------

    def _close(self) -> None:
        if self.progress is not None:
            self.progress.stop()
            self.progress = None
            self._task_id = None
