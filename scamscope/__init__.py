"""
scamscope — Conversational Scam-Risk Engine
===========================================

Scores Korean-first SMS / chat / call transcripts for social-engineering risk:
    - prefilter.py   : cheap gate deciding whether a thread needs deep analysis
    - engine.py      : full turn-by-turn analysis and final verdict
    - lexicon.py     : rule catalog, bank host and brand tables
    - config.py      : weights, thresholds and environment overrides
    - urls.py        : URL normalisation, extraction and heuristics
    - resolver.py    : optional async redirect-chain resolver
    - scorer.py      : per-turn rule and context-detector scoring
    - window.py      : context window selection (rolling / sticky / auto)
    - roles.py       : actor-role hints (demand / comply / neutral)
    - stages.py      : attack-stage classification
    - aggregate.py   : diminishing returns and signal aggregation
    - escalation.py  : multi-gate escalation circuit
    - similarity.py  : scenario similarity against a precomputed index
    - models.py      : pydantic records
"""

from scamscope.config import ConfigError, EngineConfig, build_config, default_config
from scamscope.engine import analyze_thread
from scamscope.models import (
    AnalyzeOptions,
    CallContext,
    ContextOptions,
    PrefilterContext,
    PrefilterOptions,
    PrefilterResult,
    RedirectError,
    RedirectResolution,
    SimIndexItem,
    SimilarMatch,
    ThreadAnalysis,
)
from scamscope.prefilter import prefilter
from scamscope.resolver import RequestsFetcher, resolve_redirect_chain
from scamscope.similarity import SimIndexError, load_sim_index, rank_similar, vec_from_signals

__all__ = [
    "AnalyzeOptions",
    "CallContext",
    "ConfigError",
    "ContextOptions",
    "EngineConfig",
    "PrefilterContext",
    "PrefilterOptions",
    "PrefilterResult",
    "RedirectError",
    "RedirectResolution",
    "RequestsFetcher",
    "SimIndexError",
    "SimIndexItem",
    "SimilarMatch",
    "ThreadAnalysis",
    "analyze_thread",
    "build_config",
    "default_config",
    "load_sim_index",
    "prefilter",
    "rank_similar",
    "resolve_redirect_chain",
    "vec_from_signals",
]
