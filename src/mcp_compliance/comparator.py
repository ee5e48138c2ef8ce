"""Positional comparison of normalized message logs.

Comparison is strictly index-aligned: message ``i`` of the actual log is
checked against message ``i`` of the expected log and nothing is realigned.
A single inserted or dropped message therefore shifts every later index into
a mismatch. Exact positional equality is what a golden transcript asserts.
"""

from pathlib import Path
from typing import List, Sequence, Union

from .models import ComparisonResult, Difference, DifferenceKind, NormalizedMessage
from .validation import load_normalized


def logs_equal(expected: Sequence[NormalizedMessage], actual: Sequence[NormalizedMessage]) -> bool:
    """Fast equality check: same length and structurally equal at every index."""
    if len(expected) != len(actual):
        return False
    return all(exp.canonical() == act.canonical() for exp, act in zip(expected, actual))


def compare_logs(
    expected: Sequence[NormalizedMessage],
    actual: Sequence[NormalizedMessage],
) -> ComparisonResult:
    """Compare two normalized logs and report every positional divergence."""
    if logs_equal(expected, actual):
        return ComparisonResult(match=True)

    differences: List[Difference] = []
    for index in range(max(len(expected), len(actual))):
        if index >= len(expected):
            differences.append(Difference(
                index=index,
                reason=DifferenceKind.EXTRA_MESSAGE,
                actual=actual[index],
            ))
        elif index >= len(actual):
            differences.append(Difference(
                index=index,
                reason=DifferenceKind.MISSING_MESSAGE,
                expected=expected[index],
            ))
        elif expected[index].canonical() != actual[index].canonical():
            differences.append(Difference(
                index=index,
                reason=DifferenceKind.CONTENT_MISMATCH,
                expected=expected[index],
                actual=actual[index],
            ))

    return ComparisonResult(match=False, differences=differences)


def compare_captures(golden: Union[str, Path], actual: Union[str, Path]) -> ComparisonResult:
    """Parse, validate, normalize and compare two capture files."""
    return compare_logs(load_normalized(golden), load_normalized(actual))
