from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ContractResult:
    """Outcome of one readiness check."""

    description: str
    passed: bool
    diagnostic: str | None = None

    @classmethod
    def ok(cls, description: str) -> "ContractResult":
        return cls(description, True)

    @classmethod
    def fail(cls, description: str, diagnostic: str) -> "ContractResult":
        return cls(description, False, diagnostic)


def failed(results: list[ContractResult]) -> list[ContractResult]:
    return [result for result in results if not result.passed]


def format_results(reference: str, results: list[ContractResult]) -> str:
    """
    Render results as a failure message.

    Every check is listed in order; failed checks carry their diagnostic.
    """
    failures = failed(results)
    lines = [
        f"Contract for {reference} failed: "
        f"{len(failures)} of {len(results)} check(s) did not pass"
    ]
    for index, result in enumerate(results, start=1):
        mark = "PASS" if result.passed else "FAIL"
        lines.append(f"  [{mark}] {index}. {result.description}")
    for result in failures:
        lines.append("")
        lines.append(f"--- {result.description} ---")
        lines.append(result.diagnostic or "(no diagnostic captured)")
    return "\n".join(lines)
