"""
similarity.py — Scenario Similarity Booster
===========================================

Compares a thread's signal profile with a precomputed corpus of scam
scenarios.

    signals ──▶ vec_from_signals ──▶ sparse {rule id: weight}
                                          │
    index items (same key space) ─────────┴──▶ cosine ──▶ rank_similar

Vectors are sparse dicts; cosine is computed with numpy over the union of
both key sets. Weights are log1p-scaled and divided by the largest one so a
single heavy signal does not dominate.

Index file format (JSON):
    {"version": 2, "createdAt": "...", "source": "...", "lang": "ko",
     "items": [{"id": "KO-0008", "category": "...", "expectedRisk": "high",
                "label": "...", "sample": "...", "vec": {"otp": 1.0, ...}}]}
"""

import json
import logging
import math
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
from pydantic import ValidationError

from scamscope.models import Signal, SimIndexItem, SimilarMatch

logger = logging.getLogger(__name__)

SparseVec = Dict[str, float]


class SimIndexError(ValueError):
    """The similarity index file exists but cannot be used."""


def vec_from_signals(signals: Sequence[Signal], top_k: int = 12) -> SparseVec:
    """Sparse query vector from the ``top_k`` heaviest signals."""
    ranked = sorted(signals, key=lambda s: s.weight_sum, reverse=True)[:max(1, int(top_k))]

    max_w = max((s.weight_sum for s in ranked if math.isfinite(s.weight_sum)), default=0.0)
    if max_w <= 0:
        return {}

    denom = math.log1p(max_w)
    vec: SparseVec = {}
    for s in ranked:
        key = (s.id or "").strip()
        if not key or not math.isfinite(s.weight_sum) or s.weight_sum <= 0:
            continue
        vec[key] = math.log1p(s.weight_sum) / denom
    return vec


def _dense(a: Mapping[str, float], b: Mapping[str, float]):
    keys = sorted(set(a) | set(b))
    va = np.array([a.get(k, 0.0) for k in keys], dtype=np.float64)
    vb = np.array([b.get(k, 0.0) for k in keys], dtype=np.float64)
    va[~np.isfinite(va)] = 0.0
    vb[~np.isfinite(vb)] = 0.0
    return va, vb


def cosine(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    """Cosine similarity of two sparse vectors; 0.0 when either is empty."""
    if not a or not b:
        return 0.0
    va, vb = _dense(a, b)
    na, nb = np.linalg.norm(va), np.linalg.norm(vb)
    if na <= 0 or nb <= 0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def shared_top_keys(a: Mapping[str, float], b: Mapping[str, float], n: int = 3) -> List[str]:
    common = [(k, a[k] + b[k]) for k in a if k in b]
    common.sort(key=lambda kv: kv[1], reverse=True)
    return [k for k, _ in common[:n]]


def rank_similar(
    query_vec: Mapping[str, float],
    items: Sequence[SimIndexItem],
    top_k: int = 3,
    min_sim: float = 0.35,
) -> List[SimilarMatch]:
    """Rank index items by cosine similarity to ``query_vec``.

    Items below ``min_sim`` are dropped. Returns at most ``top_k`` matches,
    most similar first. An empty query or index, or ``top_k <= 0``, yields
    ``[]``.
    """
    if not query_vec or not items:
        return []

    matches: List[SimilarMatch] = []
    for item in items:
        sim = cosine(query_vec, item.vec)
        if sim < min_sim:
            continue
        matches.append(SimilarMatch(
            id=item.id,
            label=item.label.strip() or (f"{item.category} · {item.id}" if item.category else item.id),
            sample=item.sample.strip(),
            category=item.category,
            expected_risk=item.expected_risk,
            similarity=sim,
            shared_top_keys=shared_top_keys(query_vec, item.vec, 3),
        ))

    matches.sort(key=lambda m: m.similarity, reverse=True)
    return matches[:max(0, int(top_k))]


def parse_sim_index(payload: Union[dict, list]) -> List[SimIndexItem]:
    """Validate a decoded index document.

    Raises:
        SimIndexError: When the document is not an object with an
            ``items`` list, or an item is malformed.
    """
    if not isinstance(payload, dict):
        raise SimIndexError("similarity index must be a JSON object")
    raw_items = payload.get("items")
    if not isinstance(raw_items, list):
        raise SimIndexError("similarity index has no items[] list")
    try:
        return [SimIndexItem.model_validate(it) for it in raw_items]
    except ValidationError as e:
        raise SimIndexError(f"malformed similarity index item: {e.errors()[0].get('msg')}") from e


def load_sim_index(path: Optional[Union[str, Path]]) -> List[SimIndexItem]:
    """Load the similarity index from disk.

    A missing path or file logs a warning and returns an empty index.

    Raises:
        SimIndexError: If the file is not valid JSON or fails validation.
    """
    if not path:
        return []
    p = Path(path)
    if not p.is_file():
        logger.warning(f"Similarity index not found: {p}")
        return []

    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise SimIndexError(f"similarity index is not valid JSON: {e}") from e

    items = parse_sim_index(payload)
    logger.info(f"Similarity index loaded | {p.name} | items={len(items)} | version={payload.get('version')}")
    return items
