"""
Comparison of two MetricSamples.

Pure functions only: no I/O, no shared state. Ties require exact float
equality; no tolerance is applied.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional, Sequence, Tuple

from .metrics import MetricSample


class Winner(Enum):
    """Per-criterion or aggregate verdict."""
    A = "A"
    B = "B"
    TIE = "tie"

    def mirrored(self) -> "Winner":
        if self is Winner.A:
            return Winner.B
        if self is Winner.B:
            return Winner.A
        return Winner.TIE


@dataclass(frozen=True)
class Criterion:
    """A comparison axis with a fixed direction."""
    name: str
    field: str
    higher_is_better: bool


CRITERIA: Tuple[Criterion, ...] = (
    Criterion("accuracy", "accuracy", True),
    Criterion("speed", "throughput_fps", True),
    Criterion("memory", "memory_mb", False),
    Criterion("carbon", "carbon_g", False),
    Criterion("energy", "energy_wh", False),
    Criterion("latency", "latency_ms", False),
    Criterion("objects_detected", "objects_detected", True),
    Criterion("confidence", "confidence", True),
    Criterion("precision", "precision", True),
    Criterion("recall", "recall", True),
    Criterion("f1", "f1", True),
)

CRITERIA_BY_NAME: Dict[str, Criterion] = {c.name: c for c in CRITERIA}

SUSTAINABILITY_CRITERIA = frozenset({"carbon", "energy"})
COST_CRITERIA = frozenset({"memory", "speed"})


@dataclass(frozen=True)
class CriterionResult:
    """Outcome of one criterion."""
    criterion: str
    value_a: float
    value_b: float
    difference: float  # value_a - value_b
    winner: Winner

    @property
    def margin(self) -> float:
        return abs(self.difference)

    def mirrored(self) -> "CriterionResult":
        return CriterionResult(
            criterion=self.criterion,
            value_a=self.value_b,
            value_b=self.value_a,
            difference=-self.difference,
            winner=self.winner.mirrored(),
        )


@dataclass(frozen=True)
class ComparisonResult:
    """All criterion results plus the aggregate verdicts."""
    criteria: Tuple[CriterionResult, ...]
    overall: Winner
    sustainability: Winner
    cost: Winner
    wins_a: int
    wins_b: int

    def criterion(self, name: str) -> Optional[CriterionResult]:
        for result in self.criteria:
            if result.criterion == name:
                return result
        return None

    @property
    def criterion_names(self) -> Tuple[str, ...]:
        return tuple(r.criterion for r in self.criteria)

    def mirrored(self) -> "ComparisonResult":
        return ComparisonResult(
            criteria=tuple(r.mirrored() for r in self.criteria),
            overall=self.overall.mirrored(),
            sustainability=self.sustainability.mirrored(),
            cost=self.cost.mirrored(),
            wins_a=self.wins_b,
            wins_b=self.wins_a,
        )

    def as_dict(self) -> Dict[str, object]:
        return {
            "criteria": [
                {
                    "criterion": r.criterion,
                    "model_a": r.value_a,
                    "model_b": r.value_b,
                    "difference": r.difference,
                    "winner": r.winner.value,
                }
                for r in self.criteria
            ],
            "overall": self.overall.value,
            "sustainability": self.sustainability.value,
            "cost": self.cost.value,
            "wins": {"A": self.wins_a, "B": self.wins_b},
        }


def judge(value_a: float, value_b: float, higher_is_better: bool) -> Winner:
    """Winner of a single criterion."""
    if value_a == value_b:
        return Winner.TIE
    if (value_a > value_b) == higher_is_better:
        return Winner.A
    return Winner.B


def count_verdict(results: Iterable[CriterionResult]) -> Tuple[Winner, int, int]:
    """Side with strictly more wins; equal counts is a tie."""
    wins_a = wins_b = 0
    for result in results:
        if result.winner is Winner.A:
            wins_a += 1
        elif result.winner is Winner.B:
            wins_b += 1

    if wins_a > wins_b:
        return Winner.A, wins_a, wins_b
    if wins_b > wins_a:
        return Winner.B, wins_a, wins_b
    return Winner.TIE, wins_a, wins_b


def _resolve_criteria(names: Optional[Sequence[str]]) -> Tuple[Criterion, ...]:
    if names is None:
        return CRITERIA

    unknown = [n for n in names if n not in CRITERIA_BY_NAME]
    if unknown:
        raise ValueError(f"Unknown criteria: {', '.join(unknown)}")

    selected = set(names)
    return tuple(c for c in CRITERIA if c.name in selected)


def compare(
    a: MetricSample,
    b: MetricSample,
    criteria: Optional[Sequence[str]] = None,
) -> ComparisonResult:
    """
    Compare two samples.

    Args:
        a: Sample for model A
        b: Sample for model B
        criteria: Names of the criteria to track (default: all)

    Returns:
        ComparisonResult. Criteria whose metric was not collected on either
        side are left out of the results and of every win count.
    """
    results = []
    for criterion in _resolve_criteria(criteria):
        if not (a.is_collected(criterion.field) and b.is_collected(criterion.field)):
            continue

        value_a = getattr(a, criterion.field)
        value_b = getattr(b, criterion.field)
        results.append(CriterionResult(
            criterion=criterion.name,
            value_a=value_a,
            value_b=value_b,
            difference=value_a - value_b,
            winner=judge(value_a, value_b, criterion.higher_is_better),
        ))

    overall, wins_a, wins_b = count_verdict(results)
    sustainability, _, _ = count_verdict(
        r for r in results if r.criterion in SUSTAINABILITY_CRITERIA
    )
    cost, _, _ = count_verdict(r for r in results if r.criterion in COST_CRITERIA)

    return ComparisonResult(
        criteria=tuple(results),
        overall=overall,
        sustainability=sustainability,
        cost=cost,
        wins_a=wins_a,
        wins_b=wins_b,
    )
