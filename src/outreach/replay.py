"""
Replay recorded telemetry through the outreach pipeline.

Reads a JSONL or CSV export of storefront snapshots, runs each one through
the pipeline in file order and prints the signals and decisions. By
default no external service is contacted: reasoning uses the fallback
rules and calls are recorded instead of placed.

Run with:
    python -m src.outreach.replay telemetry.jsonl
    python -m src.outreach.replay telemetry.csv --output json
    python -m src.outreach.replay telemetry.jsonl --live    # use configured services
"""

import argparse
import itertools
import logging
import sys
from pathlib import Path
from typing import Any

import pandas as pd
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import get_outreach_config
from .errors import ValidationError
from .pipeline import ProcessResult, build_pipeline
from .telephony import TelephonyRequest, TelephonyResponse
from .utils import serialize_results

logger = logging.getLogger("reengage.outreach.replay")


class DryRunTelephonyClient:
    """Telephony client that records requests instead of placing calls."""

    def __init__(self):
        self.requests: list[TelephonyRequest] = []
        self._ids = itertools.count(1)

    def place_call(self, request: TelephonyRequest) -> TelephonyResponse:
        self.requests.append(request)
        return TelephonyResponse(success=True, dispatch_id=f"dry-run-{next(self._ids)}")


def load_telemetry(path: str | Path) -> list[dict[str, Any]]:
    """Load snapshots from a ``.jsonl``/``.json`` or ``.csv`` file.

    Returns:
        Payload dicts with missing cells as None.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in (".jsonl", ".ndjson"):
        df = pd.read_json(path, lines=True)
    elif suffix == ".json":
        df = pd.read_json(path)
    elif suffix == ".csv":
        df = pd.read_csv(path)
    else:
        raise ValueError(f"Unsupported telemetry file type: {path.suffix}")

    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def replay(payloads: list[dict[str, Any]], live: bool = False) -> tuple[list[ProcessResult], int]:
    """Run payloads through a fresh pipeline in order.

    Returns:
        (results, number of invalid payloads skipped)
    """
    config = get_outreach_config()
    if live:
        pipeline = build_pipeline(config)
    else:
        config.anthropic_api_key = ""
        config.database_url = ""
        if not config.default_call_number:
            config.default_call_number = "+10000000000"
        pipeline = build_pipeline(config, telephony=DryRunTelephonyClient())

    results: list[ProcessResult] = []
    invalid = 0
    try:
        for payload in payloads:
            try:
                results.append(pipeline.process(payload))
            except ValidationError as e:
                invalid += 1
                logger.warning(f"Skipping invalid snapshot: {e}")
    finally:
        pipeline.shutdown()
    return results, invalid


def results_frame(results: list[ProcessResult]) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "user_id": r.snapshot.user_id,
            "timestamp": r.snapshot.timestamp,
            "score": r.signals.engagement_score,
            "risk": r.signals.risk_level.value,
            "removals": r.signals.cart_removal_count,
            "should_call": r.decision.should_call,
            "source": r.decision.source.value,
            "reason": r.decision.reason_code,
            "dispatched": bool(r.dispatch and r.dispatch.success),
        }
        for r in results
    ])


def print_results(results: list[ProcessResult], invalid: int, console: Console) -> None:
    table = Table(title="Replay Decisions")
    for column, style in [
        ("User", "cyan"), ("Score", None), ("Risk", None), ("Removals", None),
        ("Call", "bold"), ("Source", None), ("Reason", "dim"), ("Dispatched", "green"),
    ]:
        table.add_column(column, style=style)

    for r in results:
        if not (r.signals.has_disengagement or r.decision.should_call):
            continue
        table.add_row(
            r.snapshot.user_id,
            str(r.signals.engagement_score),
            r.signals.risk_level.value,
            str(r.signals.cart_removal_count),
            "yes" if r.decision.should_call else "no",
            r.decision.source.value,
            r.decision.reason_code,
            "yes" if r.dispatch and r.dispatch.success else "-",
        )
    console.print(table)

    df = results_frame(results)
    calls = int(df["should_call"].sum()) if not df.empty else 0
    users = df["user_id"].nunique() if not df.empty else 0
    console.print(
        f"\n[bold]{len(results)}[/bold] snapshots, [bold]{users}[/bold] users, "
        f"[bold]{calls}[/bold] calls decided, [yellow]{invalid}[/yellow] invalid skipped"
    )


def main() -> int:
    """CLI entry point for telemetry replay."""
    parser = argparse.ArgumentParser(description="Replay recorded storefront telemetry")
    parser.add_argument("path", type=str, help="JSONL, JSON or CSV telemetry file")
    parser.add_argument(
        "--output", choices=["table", "json"], default="table", help="Output format"
    )
    parser.add_argument(
        "--live",
        action="store_true",
        help="Use the configured reasoning and telephony services",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    console = Console()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )

    try:
        payloads = load_telemetry(args.path)
    except (OSError, ValueError) as e:
        logger.error(f"Could not read {args.path}: {e}")
        return 1

    results, invalid = replay(payloads, live=args.live)

    if args.output == "json":
        print(serialize_results({
            "invalid": invalid,
            "results": [r.to_dict() for r in results],
        }))
    else:
        print_results(results, invalid, console)
    return 0


if __name__ == "__main__":
    sys.exit(main())
