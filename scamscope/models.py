"""Pydantic records produced and consumed by the analysis engine."""

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


Stage = Literal["info", "verify", "install", "payment"]
RiskLevel = Literal["low", "medium", "high"]
Role = Literal["S", "R", "U"]
ActorHint = Literal["demand", "comply", "neutral"]
PrefilterAction = Literal["none", "soft", "auto"]
ContextMode = Literal["auto", "rolling", "sticky"]


class Hit(BaseModel):
    """One rule firing on one turn."""

    rule_id: str
    label: str
    stage: Stage
    weight: float = Field(ge=0)
    matched: List[str] = Field(default_factory=list)
    sample: str = ""


class Signal(BaseModel):
    """Hits aggregated per rule id across the scored scope."""

    id: str
    label: str
    stage: Optional[Stage] = None
    weight_sum: float = 0.0
    count: int = 0
    examples: List[str] = Field(default_factory=list)


class TurnSummary(BaseModel):
    index: int
    text: str
    header: Optional[str] = None
    speaker_label: Optional[str] = None
    content: str = ""
    role: Role = "U"
    actor_hint: ActorHint = "neutral"
    urls: List[str] = Field(default_factory=list)
    score: float = 0.0
    stage: Stage = "info"
    stage_triggers: List[str] = Field(default_factory=list)
    top_rules: List[str] = Field(default_factory=list)
    in_scope: bool = True


class CallContext(BaseModel):
    """Flags reported by a phone-call front end."""

    model_config = ConfigDict(extra="ignore")

    otp_asked: bool = False
    remote_asked: bool = False
    urgent_pressured: bool = False
    first_contact: bool = False


class ContextOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mode: ContextMode = "auto"
    max_messages: int = 20
    max_sticky_messages: int = 160
    backtrack: int = 4
    max_days: int = 3


class ContextInfo(BaseModel):
    mode: ContextMode
    kept: int
    dropped: int
    reason: str


class EscalationTrace(BaseModel):
    """Which predicates and rows of the escalation circuit fired."""

    predicates: List[str] = Field(default_factory=list)
    gate_a: bool = False
    gate_b_count: int = 0
    clue_count: int = 0
    structural_rows: List[str] = Field(default_factory=list)
    direct_rows: List[str] = Field(default_factory=list)
    demotion: Optional[str] = None


class StageEvent(BaseModel):
    turn_index: int
    stage: Stage
    triggers: List[str] = Field(default_factory=list)
    text: str = ""


class Evidence(BaseModel):
    rule_id: str
    label: str
    stage: Stage
    weight: float
    severity: Literal["low", "medium", "high"]
    matched: List[str] = Field(default_factory=list)
    sample: str = ""


# ---------------------------------------------------------------------------
# URL resolution
# ---------------------------------------------------------------------------

class RedirectError(str, Enum):
    INVALID_URL = "invalid-url"
    UNSUPPORTED_PROTOCOL = "unsupported-protocol"
    BLOCKED_HOST = "blocked-host"
    LOOP_DETECTED = "loop-detected"
    FETCH_UNAVAILABLE = "fetch-unavailable"
    MAX_HOPS_REACHED = "max-hops-reached"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    FETCH_FAILED = "fetch-failed"


class RedirectResolution(BaseModel):
    start_url: str
    chain: List[str] = Field(default_factory=list)
    final_url: str
    hops: int = 0
    status_chain: List[int] = Field(default_factory=list)
    error: Optional[RedirectError] = None


# ---------------------------------------------------------------------------
# Prefilter
# ---------------------------------------------------------------------------

class LinkCandidate(BaseModel):
    """A link whose visible text may differ from where it points."""

    href: str
    text: Optional[str] = None


class ExplicitActions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    copy_url: int = 0
    open_url: int = 0
    install_click: int = 0


class PrefilterContext(BaseModel):
    model_config = ConfigDict(extra="ignore")

    is_saved_contact: Optional[bool] = None
    explicit_actions: ExplicitActions = Field(default_factory=ExplicitActions)
    link_candidates: List[LinkCandidate] = Field(default_factory=list)
    resolved: Optional[RedirectResolution] = None


class PrefilterOptions(BaseModel):
    """Per-call prefilter overrides. Unset fields fall back to the config."""

    model_config = ConfigDict(extra="ignore")

    recent_lines: Optional[int] = None
    threshold_soft: Optional[int] = None
    threshold_auto: Optional[int] = None
    allow_hosts: List[str] = Field(default_factory=list)
    bank_hosts: Optional[List[str]] = None
    extra_fi_hosts: Optional[List[str]] = None
    context: Optional[PrefilterContext] = None
    debug: bool = False


class PrefilterSignal(BaseModel):
    id: str
    label: str
    points: float
    matches: Optional[List[str]] = None
    evidence: Optional[str] = None


class PrefilterWindow(BaseModel):
    blocks_considered: int = 0
    chars_considered: int = 0


class PrefilterResult(BaseModel):
    score: int = 0
    action: PrefilterAction = "none"
    gate_pass: bool = False
    threshold_soft: int
    threshold_auto: int
    signals: List[PrefilterSignal] = Field(default_factory=list)
    combos: List[PrefilterSignal] = Field(default_factory=list)
    trig_ids: List[str] = Field(default_factory=list)
    window: PrefilterWindow = Field(default_factory=PrefilterWindow)
    debug_lines: Optional[List[str]] = None


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------

class SimIndexItem(BaseModel):
    """One scenario of the precomputed similarity index."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    category: Optional[str] = None
    expected_risk: Optional[str] = Field(default=None, alias="expectedRisk")
    label: str = ""
    sample: str = ""
    vec: Dict[str, float] = Field(default_factory=dict)


class SimilarMatch(BaseModel):
    id: str
    label: str = ""
    sample: str = ""
    category: Optional[str] = None
    expected_risk: Optional[str] = None
    similarity: float
    shared_top_keys: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Thread verdict
# ---------------------------------------------------------------------------

class AnalyzeOptions(BaseModel):
    """Per-call overrides for ``analyze_thread``."""

    model_config = ConfigDict(extra="ignore")

    weights: Optional[Dict[str, float]] = None
    threshold_medium: Optional[float] = None
    threshold_high: Optional[float] = None
    context: ContextOptions = Field(default_factory=ContextOptions)
    prefilter_enabled: bool = True
    prefilter: Optional[PrefilterOptions] = None
    sim_top_k: int = 10
    sim_gate: Optional[float] = None

class ThreadAnalysis(BaseModel):
    score_total: float = 0.0
    risk_level: RiskLevel = "low"
    hard_high: bool = False
    stage_peak: Stage = "info"
    stage_triggers: List[str] = Field(default_factory=list)
    hits: List[Hit] = Field(default_factory=list)
    signals: List[Signal] = Field(default_factory=list)
    turns: List[TurnSummary] = Field(default_factory=list)
    context: ContextInfo
    escalation: EscalationTrace = Field(default_factory=EscalationTrace)

    signals_top: List[Signal] = Field(default_factory=list)
    stage_timeline: List[StageEvent] = Field(default_factory=list)
    evidence_top3: List[Evidence] = Field(default_factory=list)
    urls: List[str] = Field(default_factory=list)
    prefilter: Optional[PrefilterResult] = None
    similar: List[SimilarMatch] = Field(default_factory=list)
    sim_boost: float = 0.0
    receiver_tag: Optional[str] = None
    ui_score_total: float = 0.0
    ui_risk_level: RiskLevel = "low"
    triggered: bool = False
