"""Evaluation harness: run the parse pipeline over a labeled golden set.

Usage::

    python -m app.services.evaluation --provider mock

Each golden event is parsed through the orchestrator with the selected
provider and compared with its expected transaction: 1% amount tolerance,
case-insensitive substring merchant match in either direction, exact direction
and instrument. Results are collected in a pandas DataFrame.
"""

import argparse
import json
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from app.core.errors import PipelineError
from app.core.settings import Settings, get_settings
from app.core.utils import get_logger
from app.providers.base import ParseContext
from app.services.orchestrator import ParsingOrchestrator

logger = get_logger("spend-parser.eval")

EVAL_DIR = Path(__file__).resolve().parents[2] / "eval"
EVAL_USER_ID = "eval-user"
AMOUNT_TOLERANCE = 0.01


def load_golden_set(eval_dir: Path = EVAL_DIR) -> tuple[list[dict], list[dict]]:
    """Load ``golden_events.json`` and ``expected_transactions.json``."""
    with (eval_dir / "golden_events.json").open(encoding="utf-8") as fh:
        events = json.load(fh)
    with (eval_dir / "expected_transactions.json").open(encoding="utf-8") as fh:
        expected = json.load(fh)
    return events, expected


def compare_results(expected: dict, actual: dict) -> list[str]:
    """Return the list of mismatches between an expected and an actual parse (camelCase keys)."""
    errors: list[str] = []
    if bool(expected["isTransaction"]) != bool(actual.get("isTransaction")):
        errors.append(f"isTransaction: expected {expected['isTransaction']}, got {actual.get('isTransaction')}")
        return errors
    if not expected["isTransaction"]:
        return errors

    if expected.get("amount") is not None:
        tolerance = expected["amount"] * AMOUNT_TOLERANCE
        if abs((actual.get("amount") or 0) - expected["amount"]) > tolerance:
            errors.append(f"amount: expected {expected['amount']}, got {actual.get('amount')}")

    if expected.get("direction") and expected["direction"] != actual.get("direction"):
        errors.append(f"direction: expected {expected['direction']}, got {actual.get('direction')}")

    if expected.get("merchant"):
        wanted = expected["merchant"].lower()
        got = (actual.get("merchant") or "").lower()
        if not got or (wanted not in got and got not in wanted):
            errors.append(f"merchant: expected {expected['merchant']!r}, got {actual.get('merchant')!r}")

    if expected.get("instrument") and expected["instrument"] != actual.get("instrument"):
        errors.append(f"instrument: expected {expected['instrument']}, got {actual.get('instrument')}")
    return errors


@dataclass
class EvalReport:
    """Per-item results plus aggregate metrics."""

    provider: str
    results: pd.DataFrame

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return int(self.results["passed"].sum()) if self.total else 0

    @property
    def failed(self) -> int:
        return self.total - self.passed

    @property
    def total_tokens(self) -> int:
        return int(self.results["tokens"].sum()) if self.total else 0

    def detection_metrics(self) -> dict[str, int]:
        """Transaction detection confusion counts."""
        if not self.total:
            return {"true_positives": 0, "false_negatives": 0, "true_negatives": 0, "false_positives": 0}
        expected = self.results["expected_is_transaction"]
        actual = self.results["actual_is_transaction"].fillna(False).astype(bool)
        return {
            "true_positives": int((expected & actual).sum()),
            "false_negatives": int((expected & ~actual).sum()),
            "true_negatives": int((~expected & ~actual).sum()),
            "false_positives": int((~expected & actual).sum()),
        }

    def summary(self) -> str:
        pct = (lambda n: f"{(n / self.total * 100):.1f}%") if self.total else (lambda n: "n/a")
        lines = [
            f"Provider: {self.provider}",
            f"Total: {self.total}",
            f"Passed: {self.passed} ({pct(self.passed)})",
            f"Failed: {self.failed} ({pct(self.failed)})",
            f"Total tokens: {self.total_tokens}",
            "Transaction detection:",
        ]
        lines.extend(f"  {name.replace('_', ' ')}: {count}" for name, count in self.detection_metrics().items())
        return "\n".join(lines)


def run_evaluation(
    orchestrator: ParsingOrchestrator,
    events: list[dict],
    expected: list[dict],
    provider: str | None = None,
) -> EvalReport:
    """Parse every golden event with the selected provider and compare it with its expectation."""
    expected_by_id = {item["id"]: item for item in expected}
    rows = []
    for event in events:
        expected_tx = expected_by_id.get(event["id"])
        if expected_tx is None:
            logger.warning(f"No expected result for {event['id']}")
            continue
        context = ParseContext(
            app_source=event.get("app_source", "unknown"),
            posted_at=event.get("posted_at"),
        )
        row = {
            "id": event["id"],
            "expected_is_transaction": bool(expected_tx["isTransaction"]),
            "actual_is_transaction": None,
            "source": None,
            "tokens": 0,
        }
        try:
            outcome = orchestrator.parse_text(EVAL_USER_ID, event["text"], context, provider=provider)
        except PipelineError as exc:
            row.update(passed=False, errors=[f"Parse error: {exc.message}"])
            logger.error(f"{event['id']} - ERROR: {exc.message}")
            rows.append(row)
            continue

        actual = outcome.transaction.model_dump(by_alias=True, mode="json")
        errors = compare_results(expected_tx, actual)
        row.update(
            passed=not errors,
            errors=errors,
            actual_is_transaction=outcome.transaction.is_transaction,
            source=outcome.source.value,
            tokens=(outcome.usage.input_tokens + outcome.usage.output_tokens) if outcome.usage else 0,
        )
        if errors:
            logger.warning(f"{event['id']} - FAILED: {'; '.join(errors)}")
        else:
            logger.info(f"{event['id']} - PASSED (source: {outcome.source})")
        rows.append(row)

    columns = ["id", "passed", "errors", "expected_is_transaction", "actual_is_transaction", "source", "tokens"]
    results = pd.DataFrame(rows, columns=columns)
    results["expected_is_transaction"] = results["expected_is_transaction"].astype(bool)
    return EvalReport(provider=provider or orchestrator.providers.primary_kind.value, results=results)


def main(argv: list[str] | None = None) -> int:
    from app.services.container import build_services

    parser = argparse.ArgumentParser(description="Evaluate transaction parsing against the golden set.")
    parser.add_argument("--provider", default="mock", help="provider to evaluate (mock, groq, anthropic)")
    parser.add_argument("--eval-dir", type=Path, default=EVAL_DIR, help="directory holding the golden set")
    args = parser.parse_args(argv)

    settings: Settings = get_settings().model_copy(update={"database_url": "sqlite:///:memory:"})
    services = build_services(settings)
    events, expected = load_golden_set(args.eval_dir)
    report = run_evaluation(services.orchestrator, events, expected, provider=args.provider)
    print(report.summary())
    return 0 if report.failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
