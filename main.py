#!/usr/bin/env python3
"""
KYC/KYB Verification Workflow

Runs identity (KYC) and business (KYB) verification cases through
screening, document analysis, risk scoring and compliance rules.
Clean cases auto-approve. Everything else goes to a human reviewer.

Usage:
    python main.py --case test_cases/kyc_basic_clean.json
    python main.py --case test_cases/kyb_llc.json --output results
    python main.py --expire-sweep
    python main.py --stale-sweep
    python main.py --stats
"""

import argparse
import asyncio
import json
import mimetypes
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Load .env file before other imports
from config import get_config

from events import LoggingEventBus
from exceptions import CollaboratorError, DocumentStorageError, ScreeningUnavailable, VerificationError
from logger import get_case_logger, get_logger, setup_logging
from models import (
    BeneficialOwner, BusinessDetails, CaseStatus, Declarations, PersonalInfo, VerificationCase,
)
from repository import JsonCaseRepository
from tools.document_capture import LocalDocumentCapture
from tools.screening_list import CslScreeningAdapter
from workflow import VerificationWorkflow
from workflow_metrics import WorkflowMetrics, display_metrics, save_metrics

# Use legacy_windows mode for better Windows compatibility
console = Console(force_terminal=True, legacy_windows=True)

logger = get_logger(__name__)

RETRY_BACKOFF_SECONDS = 1.0


def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="kyc-verification",
        description="KYC/KYB Verification Workflow - screening, document analysis and risk decisions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s --case test_cases/kyc_basic_clean.json     # Run one case end to end
    %(prog)s --case test_cases/kyb_llc.json -o results  # Also write metrics JSON
    %(prog)s --expire-sweep                             # Expire lapsed approvals
    %(prog)s --stale-sweep                              # Warn about idle cases
    %(prog)s --stats                                    # Repository statistics

Case files describe the subject, its declared data, documents on disk
(paths relative to the case file), beneficial owners and declarations.
Cases are stored as JSON under {DATA_DIR}/cases/.
        """
    )

    parser.add_argument(
        "--case",
        metavar="FILE",
        help="Path to a case description JSON file"
    )

    parser.add_argument(
        "--expire-sweep",
        action="store_true",
        help="Move approved cases past their validity window to EXPIRED"
    )

    parser.add_argument(
        "--stale-sweep",
        action="store_true",
        help="Emit stale warnings for cases idle past the threshold"
    )

    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print case statistics"
    )

    parser.add_argument(
        "--data-dir",
        help="Case repository directory (default: DATA_DIR or data/)"
    )

    parser.add_argument(
        "-o", "--output",
        help="Directory for the metrics JSON export"
    )

    parser.add_argument(
        "--log-file",
        metavar="FILE",
        help="Also write log records to this file"
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress progress output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0"
    )

    return parser


def build_workflow(data_dir: str, metrics: WorkflowMetrics) -> VerificationWorkflow:
    """Workflow wired to the CSL adapter, local document storage and the JSON repository."""
    config = get_config()
    return VerificationWorkflow(
        repository=JsonCaseRepository(data_dir),
        screening=CslScreeningAdapter(),
        capture=LocalDocumentCapture(str(Path(data_dir) / "documents")),
        event_bus=LoggingEventBus(),
        metrics=metrics,
        config=config,
    )


async def with_retries(operation, label: str, max_retries: int, retry_on: tuple = (CollaboratorError,)):
    """Await operation(), retrying retryable workflow errors up to max_retries times."""
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as e:
            if attempt >= max_retries:
                raise
            attempt += 1
            logger.warning(f"{label} failed ({e.message}), retry {attempt}/{max_retries}")
            await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)


async def run_case(workflow: VerificationWorkflow, case_data: dict, base_dir: Path) -> VerificationCase:
    """Drive one case description through initiation, owners, documents and submit."""
    retries = workflow.config.max_retries
    subject_id = case_data["subject_id"]
    kind = case_data.get("kind", "KYC").upper()

    if kind == "KYB":
        case = await with_retries(
            lambda: workflow.initiate_kyb(
                subject_id,
                case_data.get("business_type", "other"),
                BusinessDetails(**case_data["business_details"]),
            ),
            "initiate_kyb", retries,
        )
    else:
        case = await with_retries(
            lambda: workflow.initiate_kyc(
                subject_id,
                case_data.get("kyc_level", "BASIC"),
                PersonalInfo(**case_data["personal_info"]),
            ),
            "initiate_kyc", retries,
        )
    case_id = case.case_id
    case_log = get_case_logger(__name__, case_id)
    if case.status == CaseStatus.REJECTED:
        case_log.info("Rejected at pre-screening")
        return case

    for owner in case_data.get("owners", []):
        await with_retries(lambda: workflow.add_owner(case_id, BeneficialOwner(**owner)), "add_owner", retries)

    for doc in case_data.get("documents", []):
        path = base_dir / doc["path"]
        content = path.read_bytes()
        mime_type = doc.get("mime_type") or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        try:
            await with_retries(
                lambda: workflow.submit_document(
                    case_id, doc["document_type"], content, path.name, mime_type, doc.get("side"),
                ),
                "submit_document", retries, retry_on=(DocumentStorageError,),
            )
        except ScreeningUnavailable:
            # The document was kept; only the assessment it triggered needs retrying
            case_log.warning("Assessment after upload timed out, retrying assessment")
            await with_retries(lambda: workflow.assess_risk(case_id), "assess_risk", retries)

    case = workflow.get_case(case_id)
    if case.status == CaseStatus.IN_PROGRESS:
        declarations = Declarations(**case_data.get("declarations", {}))
        case = await with_retries(lambda: workflow.submit(case_id, declarations), "submit", retries)

    case_log.info(f"Finished in {case.status.value}")
    return case


def display_case(case: VerificationCase):
    """Display the outcome of one case."""
    status_colors = {
        "APPROVED": "green",
        "REQUIRES_MANUAL_REVIEW": "yellow",
        "IN_PROGRESS": "cyan",
        "PENDING": "cyan",
        "REJECTED": "bold red",
        "EXPIRED": "dim",
    }
    status = case.status.value
    color = status_colors.get(status, "white")

    info_lines = [
        f"[bold]{case.subject_name}[/bold]",
        f"Case: {case.case_id} ({case.kind.value} / {case.tier})",
        f"Status: [{color}]{status}[/{color}]",
    ]
    if case.stage:
        info_lines.append(f"Stage: {case.stage.value}")
    if case.risk_assessment:
        ra = case.risk_assessment
        info_lines.append(f"Risk score: {ra.score:.3f} ({ra.decision.value}, rules: {ra.rule_action.value})")
    if case.expires_at:
        info_lines.append(f"Expires: {case.expires_at:%Y-%m-%d}")
    if case.rejection_reason:
        info_lines.append(f"Rejection reason: {case.rejection_reason}")
    if case.risk_flags:
        info_lines.append(f"Flags: {', '.join(case.risk_flags)}")
    if case.enhanced_monitoring:
        info_lines.append("[yellow]Enhanced monitoring[/yellow]")

    console.print(Panel("\n".join(info_lines), title="Verification Case", border_style="blue"))

    if case.risk_assessment and case.risk_assessment.factors:
        table = Table(title="Risk Factors")
        table.add_column("Factor", style="cyan")
        table.add_column("Weight", justify="right")
        table.add_column("Category", style="dim")
        table.add_column("Source", style="dim")
        for rf in case.risk_assessment.factors:
            table.add_row(rf.factor, f"{rf.weight:.3f}", rf.category, rf.source)
        console.print(table)

    if case.alerts:
        table = Table(title="Compliance Alerts")
        table.add_column("Rule", style="cyan")
        table.add_column("Severity")
        table.add_column("Action")
        for alert in case.alerts:
            table.add_row(alert.rule_name, alert.severity.value, alert.action.value)
        console.print(table)


def display_statistics(stats: dict):
    table = Table(title="Cases by Status")
    table.add_column("Status", style="cyan")
    table.add_column("Count", justify="right")
    for status, count in sorted(stats["by_status"].items()):
        table.add_row(status, str(count))
    console.print(table)

    avg = stats["average_risk_score"]
    by_kind = ", ".join(f"{k}={v}" for k, v in sorted(stats["by_kind"].items())) or "-"
    summary_lines = [
        f"Total: {stats['total']}",
        f"By kind: {by_kind}",
        f"Pending review: {stats['pending_review']}",
        f"Average risk score: {avg:.3f}" if avg is not None else "Average risk score: -",
    ]
    console.print(Panel("\n".join(summary_lines), title="Statistics", border_style="blue"))
    console.print(f"Open alerts: {stats['open_alerts']}")


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    verbose = not args.quiet
    config = get_config()
    setup_logging(level="WARNING" if args.quiet else config.log_level, log_file=args.log_file)
    data_dir = args.data_dir or config.data_dir

    if not (args.case or args.expire_sweep or args.stale_sweep or args.stats):
        console.print("[bold red]Error:[/bold red] Provide --case, --expire-sweep, --stale-sweep or --stats.")
        return 1

    if verbose:
        console.print(Panel.fit(
            "[bold blue]KYC/KYB Verification Workflow[/bold blue]\n"
            "Screen. Score. Humans decide the rest.",
            border_style="blue"
        ))

    metrics = WorkflowMetrics()
    workflow = build_workflow(data_dir, metrics)

    try:
        if args.case:
            case_path = Path(args.case)
            if not case_path.exists():
                console.print(f"[bold red]Error:[/bold red] Case file not found: {args.case}")
                return 1
            case_data = json.loads(case_path.read_text(encoding="utf-8"))
            if verbose:
                console.print(f"\nProcessing: [bold]{case_data.get('subject_id', 'unknown')}[/bold]\n")

            case = await run_case(workflow, case_data, case_path.parent)
            display_case(case)

        if args.expire_sweep:
            expired = await workflow.expire_sweep()
            console.print(f"[bold]Expired:[/bold] {len(expired)} case(s)")
            for case_id in expired:
                console.print(f"  - {case_id}")

        if args.stale_sweep:
            stale = await workflow.stale_case_sweep()
            console.print(f"[bold]Stale:[/bold] {len(stale)} case(s)")
            for case_id in stale:
                console.print(f"  - {case_id}")

        if args.stats:
            display_statistics(workflow.get_statistics())

        if verbose:
            display_metrics(metrics, console)
        if args.output:
            save_metrics(metrics, Path(args.output))
            console.print(f"\nMetrics written to {Path(args.output) / 'workflow_metrics.json'}")

        return 0

    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled by user[/yellow]")
        return 130

    except VerificationError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        return 2

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            console.print_exception()
        return 1


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    return asyncio.run(main_async(args))


if __name__ == "__main__":
    sys.exit(main())
