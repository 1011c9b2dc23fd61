"""
aggregate.py — Diminishing Returns & Signal Summary
===================================================

Repeated firings of the same rule across a thread are dampened so a single
phrase pasted ten times cannot saturate the score. The k-th occurrence of a
rule id keeps ``weight × factor(k)``:

    k      : 1     2     3     4     5     6+
    factor : 1.00  0.85  0.70  0.55  0.45  0.35
"""

import math
from typing import Dict, List, Sequence

from scamscope.models import Hit, Signal

DIMINISHING_FACTORS = (1.0, 0.85, 0.70, 0.55, 0.45)
DIMINISHING_FLOOR = 0.35


def round2(x: float) -> float:
    """Round half up to 2 decimals."""
    return math.floor(x * 100 + 0.5) / 100


def diminishing_factor(k: int) -> float:
    if k <= 1:
        return DIMINISHING_FACTORS[0]
    if k <= len(DIMINISHING_FACTORS):
        return DIMINISHING_FACTORS[k - 1]
    return DIMINISHING_FLOOR


def apply_diminishing(hits: Sequence[Hit]) -> List[Hit]:
    """Dampen repeated rule ids in order of appearance."""
    seen: Dict[str, int] = {}
    out = []
    for h in hits:
        k = seen.get(h.rule_id, 0) + 1
        seen[h.rule_id] = k
        out.append(h.model_copy(update={"weight": round2(h.weight * diminishing_factor(k))}))
    return out


def build_signals(sorted_hits: Sequence[Hit], max_signals: int = 12) -> List[Signal]:
    """Aggregate hits per rule id.

    The label and stage come from the heaviest hit of each id. Up to six
    distinct matched tokens are kept as examples. Signals are ordered by
    summed weight, then by count.
    """
    by_id: Dict[str, dict] = {}

    for h in sorted_hits:
        rid = (h.rule_id or "").strip()
        if not rid:
            continue
        w = h.weight if math.isfinite(h.weight) else 0.0

        agg = by_id.get(rid)
        if agg is None:
            agg = {"label": h.label.strip(), "stage": h.stage, "weight_sum": 0.0,
                   "count": 0, "examples": [], "best": float("-inf")}
            by_id[rid] = agg

        agg["count"] += 1
        agg["weight_sum"] += w
        if w > agg["best"]:
            agg["best"] = w
            if h.label.strip():
                agg["label"] = h.label.strip()
            agg["stage"] = h.stage

        examples = agg["examples"]
        for m in h.matched:
            s = str(m).strip()
            if not s or s in examples:
                continue
            examples.append(s)
            if len(examples) >= 12:
                break

    signals = [
        Signal(
            id=rid,
            label=agg["label"],
            stage=agg["stage"],
            weight_sum=round2(agg["weight_sum"]),
            count=agg["count"],
            examples=agg["examples"][:6],
        )
        for rid, agg in by_id.items()
    ]
    signals.sort(key=lambda s: (-s.weight_sum, -s.count))
    return signals[:max_signals]
