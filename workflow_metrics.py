"""
Workflow metrics for the verification engine.

Counters and histograms for operation outcomes, screening results, and the
distribution of risk and document-quality scores. Purely observational:
nothing here is consulted for decisions. Displays as a Rich dashboard.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console(force_terminal=True, legacy_windows=True)

OPERATIONS_TOTAL = "compliance_operations_total"
RISK_SCORES = "compliance_risk_scores"
DOCUMENT_QUALITY_SCORES = "compliance_document_quality_scores"
CHECKS_TOTAL = "compliance_checks_total"
ERRORS_TOTAL = "compliance_errors_total"
SCREENINGS_TOTAL = "compliance_sanctions_screenings_total"

HISTOGRAM_BUCKETS = [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 0.95, 1.0]


def _label_key(labels: Optional[dict]) -> tuple:
    return tuple(sorted((labels or {}).items()))


class MetricsSink(ABC):
    """Counters and histograms. Implementations must never raise into the workflow."""

    @abstractmethod
    def increment(self, name: str, labels: Optional[dict] = None, value: int = 1):
        pass

    @abstractmethod
    def observe(self, name: str, value: float, labels: Optional[dict] = None):
        pass


@dataclass
class HistogramMetric:
    """Bucketed observations for one metric/label set."""
    count: int = 0
    total: float = 0.0
    buckets: dict[float, int] = field(default_factory=lambda: {b: 0 for b in HISTOGRAM_BUCKETS})

    def observe(self, value: float):
        self.count += 1
        self.total += value
        for bound in self.buckets:
            if value <= bound:
                self.buckets[bound] += 1

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0


@dataclass
class WorkflowMetrics(MetricsSink):
    """In-process metrics store."""
    counters: dict[str, dict[tuple, int]] = field(default_factory=dict)
    histograms: dict[str, dict[tuple, HistogramMetric]] = field(default_factory=dict)

    def increment(self, name: str, labels: Optional[dict] = None, value: int = 1):
        series = self.counters.setdefault(name, {})
        key = _label_key(labels)
        series[key] = series.get(key, 0) + value

    def observe(self, name: str, value: float, labels: Optional[dict] = None):
        series = self.histograms.setdefault(name, {})
        series.setdefault(_label_key(labels), HistogramMetric()).observe(value)

    def counter_value(self, name: str, labels: Optional[dict] = None) -> int:
        """Sum of all series whose labels include the given ones."""
        wanted = set((labels or {}).items())
        return sum(v for k, v in self.counters.get(name, {}).items() if wanted <= set(k))

    def histogram(self, name: str, labels: Optional[dict] = None) -> Optional[HistogramMetric]:
        return self.histograms.get(name, {}).get(_label_key(labels))

    def to_dict(self) -> dict:
        return {
            "counters": {
                name: [{"labels": dict(k), "value": v} for k, v in series.items()]
                for name, series in self.counters.items()
            },
            "histograms": {
                name: [
                    {
                        "labels": dict(k),
                        "count": h.count,
                        "mean": round(h.mean, 4),
                        "buckets": {str(b): n for b, n in h.buckets.items()},
                    }
                    for k, h in series.items()
                ]
                for name, series in self.histograms.items()
            },
        }


def _format_labels(key: tuple) -> str:
    return ", ".join(f"{k}={v}" for k, v in key) or "-"


def display_metrics(metrics: WorkflowMetrics, target_console: Console = None):
    """Display a Rich metrics dashboard."""
    c = target_console or console

    c.print("\n[bold blue]Workflow Metrics[/bold blue]\n")

    counter_table = Table(title="Counters", show_lines=False)
    counter_table.add_column("Metric", style="cyan", ratio=3)
    counter_table.add_column("Labels", style="dim", ratio=3)
    counter_table.add_column("Value", justify="right", width=8)

    for name, series in sorted(metrics.counters.items()):
        for key, value in sorted(series.items()):
            counter_table.add_row(name, _format_labels(key), str(value))
    c.print(counter_table)

    if metrics.histograms:
        c.print()
        hist_table = Table(title="Score Distributions", show_lines=False)
        hist_table.add_column("Metric", style="cyan", ratio=3)
        hist_table.add_column("Labels", style="dim", ratio=2)
        hist_table.add_column("Count", justify="right", width=7)
        hist_table.add_column("Mean", justify="right", width=7)
        hist_table.add_column("<=0.5", justify="right", width=7)
        hist_table.add_column("<=0.95", justify="right", width=7)

        for name, series in sorted(metrics.histograms.items()):
            for key, h in sorted(series.items()):
                hist_table.add_row(
                    name, _format_labels(key), str(h.count), f"{h.mean:.3f}",
                    str(h.buckets[0.5]), str(h.buckets[0.95]),
                )
        c.print(hist_table)

    errors = metrics.counter_value(ERRORS_TOTAL)
    summary_lines = [
        f"Operations: {metrics.counter_value(OPERATIONS_TOTAL)}",
        f"Screenings: {metrics.counter_value(SCREENINGS_TOTAL)}",
        f"Errors: [{'red' if errors else 'green'}]{errors}[/{'red' if errors else 'green'}]",
    ]
    c.print(Panel(
        "\n".join(summary_lines),
        title="Summary",
        border_style="blue",
    ))


def save_metrics(metrics: WorkflowMetrics, output_dir: Path):
    """Save metrics to JSON file."""
    output_dir.mkdir(parents=True, exist_ok=True)
    (output_dir / "workflow_metrics.json").write_text(
        json.dumps(metrics.to_dict(), indent=2),
        encoding="utf-8",
    )
