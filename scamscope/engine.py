"""
engine.py — Thread Analysis Orchestrator
========================================

Runs the full pipeline over one thread:

    raw ─▶ prefilter (sender text only)
      └─▶ split turns ─▶ context window ─▶ per-turn scoring (roles, stages)
             ─▶ chain detectors + call flags ─▶ diminishing returns
             ─▶ escalation ─▶ signals / evidence / timeline
             ─▶ receiver-response gate (UI score only)
             ─▶ similarity soft boost (score only)

``risk_level`` comes from the escalation circuit alone. The receiver gate
and the similarity boost never raise it; they only move ``ui_score_total``
/ ``ui_risk_level`` and ``score_total`` respectively.
"""

import logging
import re
from typing import List, Optional, Sequence, Tuple

from scamscope.aggregate import apply_diminishing, build_signals
from scamscope.config import EngineConfig, build_config, default_config
from scamscope.escalation import escalate
from scamscope.lexicon import STAGE_RANK
from scamscope.models import (
    AnalyzeOptions,
    CallContext,
    ContextInfo,
    Evidence,
    Hit,
    PrefilterResult,
    Signal,
    SimIndexItem,
    StageEvent,
    ThreadAnalysis,
    TurnSummary,
)
from scamscope.prefilter import prefilter, sender_only_text
from scamscope.roles import classify_actor_hint, include_in_threat, role_from_label
from scamscope.scorer import score_message
from scamscope.similarity import rank_similar, vec_from_signals
from scamscope.stages import StageResult, max_stage, stage_from_hits
from scamscope.threads import has_explicit_role, normalize_text, parse_header_and_content, split_thread
from scamscope.urls import extract_urls
from scamscope.window import select_context_window

logger = logging.getLogger(__name__)

_FLAGS = re.IGNORECASE

PREVIEW_CHARS = 220
CHAIN_SAMPLE_CHARS = 180
CHAIN_LOOKAHEAD = 2
TIMELINE_MAX = 8
SIGNALS_TOP_MAX = 8

# Hits that show the sender asked for something concrete.
ACTION_ANCHORS = frozenset([
    "link", "shortener", "otp", "call_otp", "ctx_otp_relay", "ctx_otp_finance",
    "transfer", "safe_account", "ctx_payment_request", "ctx_transfer_phrase",
    "giftcard", "ctx_giftcard", "go_bank_atm", "ctx_visit_place",
    "remote", "call_remote", "install_app", "apk", "url_download_ext",
    "ctx_install_mention", "threat",
])

# (minimum similarity, score boost)
SIM_BOOST_STEPS: Tuple[Tuple[float, float], ...] = ((0.96, 10), (0.93, 8), (0.90, 6), (0.87, 4))

RECEIVER_SOFT_BOOST = {
    "r:will:pay":     16,
    "r:will:install": 12,
    "r:will:otp":     10,
    "r:will:visit":    8,
    "r:ask":           1,
}


# ============================================================================
# Chain detectors (unlabeled threads)
# ============================================================================

_DENIAL = re.compile(
    r'신청\s*안\s*했|신청\s*한\s*적\s*없|한\s*적\s*없|누른\s*적\s*없|기억\s*없|모르겠|아닌데요|제가\s*아닌데'
    r'|저\s*아닌데|왜\s*오죠', _FLAGS)
_DENIAL_OTP = re.compile(
    _DENIAL.pattern + r'|분실\s*신고\s*안|분실\s*접수\s*안|내가\s*아닌|제가\s*아닌', _FLAGS)
_OTP_DEMAND_WORD = re.compile(
    r'인증번호|(?<![a-z])otp(?![a-z])|오티피|확인\s*코드|보안\s*코드|6\s*자리|(?<![a-z])ars(?![a-z])|2\s*단계\s*인증', _FLAGS)
_OTP_DEMAND_VERB = re.compile(r'보내|알려|전달|말해|읽어|불러|캡처|말씀', _FLAGS)


def _preview(content: str) -> str:
    return content[:PREVIEW_CHARS] + "…" if len(content) > PREVIEW_CHARS else content


def _chain_hit(rule_id: str, label: str, stage: str, weight: float, a: TurnSummary, b: TurnSummary) -> Hit:
    return Hit(
        rule_id=rule_id,
        label=label,
        stage=stage,
        weight=weight,
        matched=[f"BLK {a.index} → BLK {b.index}"],
        sample=f"{_preview(a.content)} / {_preview(b.content)}"[:CHAIN_SAMPLE_CHARS],
    )


def _speakers_differ(a: TurnSummary, b: TurnSummary) -> bool:
    return bool(a.speaker_label and b.speaker_label and a.speaker_label != b.speaker_label)


def chain_hits(turns: Sequence[TurnSummary]) -> List[Hit]:
    """Demand→comply and link/OTP→denial sequences within two turns."""
    out: List[Hit] = []
    n = len(turns)

    def following(i: int):
        return turns[i + 1:min(i + CHAIN_LOOKAHEAD, n - 1) + 1]

    for i, a in enumerate(turns):
        if a.actor_hint != "demand":
            continue
        for b in following(i):
            if b.actor_hint == "comply":
                stage = max_stage(a.stage, b.stage)
                out.append(_chain_hit(
                    "ctx_comply_after_demand", "맥락: 요구 직후 동의/수락(연쇄 위험)",
                    "verify" if stage == "info" else stage,
                    12 if _speakers_differ(a, b) else 8, a, b,
                ))
                break

    for i, a in enumerate(turns):
        if not a.urls:
            continue
        for b in following(i):
            if _DENIAL.search(b.content):
                out.append(_chain_hit(
                    "ctx_denial_after_link", "맥락: 링크 제시 직후 본인 부인/미신청", "verify",
                    14 if _speakers_differ(a, b) else 10, a, b,
                ))
                break

    for i, a in enumerate(turns):
        if not (_OTP_DEMAND_WORD.search(a.content) and _OTP_DEMAND_VERB.search(a.content)):
            continue
        for b in following(i):
            if _DENIAL_OTP.search(b.content):
                out.append(_chain_hit(
                    "ctx_denial_after_otp", "맥락: 인증번호 요구 직후 본인 부인/미신청", "verify", 14, a, b,
                ))
                break

    return out


def call_hits(call: CallContext, config: EngineConfig) -> List[Hit]:
    """Hits for the checkboxes of a phone-call front end."""
    w = config.weights
    rows = [
        (call.otp_asked,        "call_otp",           "통화: 인증번호/OTP 요구",     "verify",  w["callOtp"],    "(call) otp asked",        "통화 맥락 체크박스"),
        (call.remote_asked,     "call_remote",        "통화: 원격/앱 설치 유도",     "install", w["callRemote"], "(call) remote asked",     "통화 맥락 체크박스"),
        (call.urgent_pressured, "call_urgent",        "통화: 긴급/압박",             "info",    w["callUrgent"], "(call) urgent pressured", "통화 맥락 체크박스"),
        (call.first_contact,    "call_first_contact", "통화: 처음 연락(미등록 발신)", "info",    10,              "(call) first contact",    "번호 기반 자동 판정"),
    ]
    return [
        Hit(rule_id=rid, label=label, stage=stage, weight=weight, matched=[tag], sample=sample)
        for on, rid, label, stage, weight, tag, sample in rows if on
    ]


# ============================================================================
# Receiver-response gate
# ============================================================================

_R_LINE = re.compile(r'^\s*R\s*:\s*(.*)$', re.IGNORECASE | re.MULTILINE)

_R = {name: re.compile(p, _FLAGS) for name, p in [
    ("will",          r'할게|할께|하겠|하려|할\s*거|할\s*겁|해\s*둘게'),
    ("will_go",       r'갈게|갈께|가겠|가\s*볼게|가\s*보겠|갈\s*거|갈\s*겁'),
    ("place",         r'은행|(?<![a-z])atm(?![a-z])|현금\s*인출기|편의점|매장|지점|지사|센터|창구|카운터|현장|대리점'),
    ("gift_pin",      r'상품권|기프트\s*카드|기프티콘|쿠폰|핀\s*번호|pin\s*code|pincode'),
    ("did_pay",       r'송금했|이체했|입금했|결제했|지불했|충전했'),
    ("handed",        r'보냈|전달|말했|알려|줬|보내드렸|전송했'),
    ("did_install",   r'설치했|다운받|다운로드했|깔았|원격(?:으로)?\s*해줬|팀뷰어|teamviewer|anydesk|애니데스크|퀵서포트|quicksupport'),
    ("otp_word",      r'인증번호|(?<![a-z])otp(?![a-z])|오티피|보안\s*코드|확인\s*코드|(?<![a-z])ars(?![a-z])'),
    ("otp_handed",    r'보냈|전달|말했|알려|불러|읽어|입력했'),
    ("resist",        r'안\s*할게|거절|차단했|신고했|무시했|끊었|삭제했|거래\s*중단|취소했'),
    ("pay_verb",      r'송금|이체|입금|결제|지불|충전'),
    ("money_ctx",     r'돈|원|계좌|입금|송금|이체|결제|지불|충전|카드|상품권|기프트|기프티콘|쿠폰|핀\s*번호|(?<![a-z])pin(?![a-z])'),
    ("send_will",     r'보내겠|보낼|보내\s*드릴|보내줄|전달(?:하겠|할)|전송(?:하겠|할)'),
    ("install_tok",   r'설치|다운\s*받|다운로드|깔|원격|팀뷰어|teamviewer|anydesk|애니데스크|퀵서포트|quicksupport'),
    ("install_will",  r'받을게|깔게|설치할게|다운받을게|다운로드할게|해볼게|해보겠'),
    ("install_verb",  r'설치|다운\s*받|다운로드|깔'),
    ("remote_will",   r'원격(?:으로)?\s*(?:해|해드|해줄)|연결(?:할|해줄)|접속(?:할|해볼)'),
    ("remote_named",  r'팀뷰어|teamviewer|anydesk|애니데스크|퀵서포트|quicksupport'),
    ("otp_will",      r'보낼게|보내겠|전달(?:할게|하겠)|말해(?:줄게|드릴게)|알려(?:줄게|드릴게)|불러(?:줄게|드릴게)'
                      r'|읽어(?:줄게|드릴게)|입력(?:할게|하겠)'),
    ("visit_verb",    r'방문|이동'),
    ("ask",           r'맞나|사기|스캠|피싱|도와(?:줘|주세요)|확인(?:해줘|해주세요)|이거\s*뭐야|진짜야'),
    ("already",       r'눌렀|열었|접속했|들어갔|연결했|입력했|보냈'),
]}


def receiver_text(thread_text: str) -> str:
    """The ``R:`` lines of a thread joined with spaces."""
    raw = (thread_text or "").replace("\r\n", "\n")
    return " ".join(m.group(1).strip() for m in _R_LINE.finditer(raw) if m.group(1).strip()).strip()


def receiver_response_tag(thread_text: str) -> Tuple[Optional[str], float]:
    """Classify what the receiver did or intends to do.

    Returns ``(tag, incident_floor)``. Completed actions come first and carry
    a floor for the UI score (pay 80, install 70, OTP 65); intentions and
    questions carry none. ``(None, 0)`` when there are no ``R:`` lines or
    nothing matched.
    """
    r = receiver_text(thread_text)
    if not r:
        return None, 0.0

    def has(name: str) -> bool:
        return bool(_R[name].search(r))

    if has("did_pay") or (has("gift_pin") and has("handed")):
        return "r:done:pay", 80.0
    if has("did_install"):
        return "r:done:install", 70.0
    if has("otp_word") and has("otp_handed"):
        return "r:done:otp", 65.0
    if has("resist"):
        return "r:resist", 0.0

    will_pay = (
        (has("pay_verb") and has("will"))
        or (has("send_will") and has("money_ctx"))
        or (has("send_will") and has("gift_pin"))
    )
    if will_pay:
        return "r:will:pay", 0.0

    will_install = (
        has("install_tok")
        and (has("will") or has("install_will"))
        and (has("install_verb") or has("remote_will") or has("remote_named"))
    )
    if will_install:
        return "r:will:install", 0.0
    if has("otp_word") and has("otp_will"):
        return "r:will:otp", 0.0
    if has("place") and (has("will_go") or (has("will") and has("visit_verb"))):
        return "r:will:visit", 0.0
    if has("ask"):
        return "r:ask", 0.0
    if has("already"):
        return "r:already", 0.0
    return None, 0.0


# ============================================================================
# Summaries
# ============================================================================

def severity(weight: float) -> str:
    if weight >= 25:
        return "high"
    if weight >= 15:
        return "medium"
    return "low"


def evidence_top3(sorted_hits: Sequence[Hit]) -> List[Evidence]:
    return [
        Evidence(
            rule_id=h.rule_id,
            label=h.label,
            stage=h.stage,
            weight=h.weight,
            severity=severity(h.weight),
            matched=list(h.matched),
            sample=h.sample,
        )
        for h in list(sorted_hits)[:3]
    ]


def stage_timeline(turns: Sequence[TurnSummary]) -> List[StageEvent]:
    """First turn, then every turn that raises the stage."""
    if not turns:
        return []

    def event(t: TurnSummary) -> StageEvent:
        return StageEvent(turn_index=t.index, stage=t.stage, triggers=list(t.stage_triggers), text=_preview(t.content))

    events = [event(turns[0])]
    current = turns[0].stage
    for t in turns[1:]:
        if STAGE_RANK[t.stage] > STAGE_RANK[current]:
            events.append(event(t))
            current = t.stage
    return events[:TIMELINE_MAX]


def peak_stage(ladder: StageResult, turns: Sequence[TurnSummary]) -> Tuple[str, List[str]]:
    """Thread peak: the joined-text ladder stage, raised to the highest
    in-scope turn stage when a turn went further."""
    stage, triggers = ladder.stage, list(ladder.triggers)
    for t in turns:
        if t.in_scope and STAGE_RANK[t.stage] > STAGE_RANK[stage]:
            stage, triggers = t.stage, list(t.stage_triggers)
    return stage, triggers


def has_action_anchor(hits: Sequence[Hit]) -> bool:
    return any(h.rule_id in ACTION_ANCHORS for h in hits)


def sim_boost_for(similarity: float) -> float:
    for floor, boost in SIM_BOOST_STEPS:
        if similarity >= floor:
            return boost
    return 0.0


def _empty_analysis(info: ContextInfo, pf: Optional[PrefilterResult]) -> ThreadAnalysis:
    return ThreadAnalysis(context=info, prefilter=pf)


# ============================================================================
# Public API
# ============================================================================

def analyze_thread(
    thread_text: str,
    call: Optional[CallContext] = None,
    options: Optional[AnalyzeOptions] = None,
    config: Optional[EngineConfig] = None,
    sim_items: Optional[Sequence[SimIndexItem]] = None,
) -> ThreadAnalysis:
    """Analyze one thread end to end.

    Args:
        thread_text: Raw thread (SMS, chat export or call transcript).
        call: Call-context flags from a phone front end.
        options: Per-call overrides. Weight or threshold overrides build a
            fresh config for this call.
        config: Base configuration; the cached default when omitted.
        sim_items: Similarity index. When given, the closest scenarios are
            reported and may softly boost ``score_total``.

    Returns:
        ThreadAnalysis. An empty or whitespace-only thread yields a neutral
        low-risk result with no signals.

    Raises:
        ConfigError: If ``options`` carries unknown or invalid weight keys.
    """
    opts = options or AnalyzeOptions()
    call = call or CallContext()
    cfg = config or default_config()
    if opts.weights or opts.threshold_medium is not None or opts.threshold_high is not None:
        cfg = build_config(
            weight_overrides=opts.weights,
            medium=opts.threshold_medium if opts.threshold_medium is not None else cfg.thresholds.medium,
            high=opts.threshold_high if opts.threshold_high is not None else cfg.thresholds.high,
            prefilter=cfg.prefilter,
            sim_gate=cfg.sim_gate,
        )
    thresholds = cfg.thresholds

    raw_text = (thread_text or "").replace("\r\n", "\n")
    sender_text = sender_only_text(raw_text)
    sender_urls = extract_urls(sender_text)

    pf = prefilter(sender_text, opts.prefilter, cfg) if opts.prefilter_enabled else None

    messages = split_thread(normalize_text(raw_text))
    window = select_context_window(messages, call, opts.context)
    if not window.selected:
        return _empty_analysis(window.info, pf)

    explicit_role = has_explicit_role("\n".join(text for _, text in window.selected))

    # ---- per-turn scoring ----
    hits: List[Hit] = []
    turns: List[TurnSummary] = []
    seen_otp_cue = False

    for original_index, block in window.selected:
        parsed = parse_header_and_content(block)
        content = parsed.content or block or ""
        actor_hint = classify_actor_hint(content)
        role = role_from_label(parsed.speaker_label)
        in_scope = include_in_threat(role, actor_hint, explicit_role)

        urls = extract_urls(content)
        turn_hits: List[Hit] = []
        turn_score = 0.0
        if in_scope:
            scored = score_message(content, cfg, actor_hint=actor_hint, seen_otp_cue=seen_otp_cue)
            seen_otp_cue = seen_otp_cue or scored.otp_cue
            turn_hits, turn_score = scored.hits, scored.score

        staged = stage_from_hits(content, turn_hits)
        turns.append(TurnSummary(
            index=original_index + 1,
            text=block,
            header=parsed.header,
            speaker_label=parsed.speaker_label,
            content=content,
            role=role,
            actor_hint=actor_hint,
            urls=urls,
            score=turn_score,
            stage=staged.stage,
            stage_triggers=staged.triggers,
            top_rules=[h.rule_id for h in staged.normalized[:3]],
            in_scope=in_scope,
        ))
        if in_scope:
            hits.extend(staged.normalized)

    if not explicit_role:
        hits.extend(chain_hits(turns))
    hits.extend(call_hits(call, cfg))

    # ---- thread totals ----
    sorted_hits = sorted(apply_diminishing(hits), key=lambda h: h.weight, reverse=True)
    score_total = min(100.0, sum(h.weight for h in sorted_hits))

    raw_selected = "\n".join(text for _, text in window.selected)
    threat_text = "\n".join(t.content or t.text for t in turns if t.in_scope and (t.content or t.text))
    peak, peak_triggers = peak_stage(stage_from_hits(threat_text or raw_selected, sorted_hits), turns)

    verdict = escalate(sorted_hits, raw_selected, score_total, call=call, thresholds=thresholds)
    signals = build_signals(sorted_hits, 12)

    signals_top: List[Signal] = sorted(signals, key=lambda s: s.weight_sum, reverse=True)[:SIGNALS_TOP_MAX]
    if sender_urls:
        url_hint = Signal(
            id="ctx_url_present_sender",
            label="S: URL/도메인 포함",
            stage="verify",
            weight_sum=0,
            count=1,
            examples=sender_urls[:3],
        )
        signals_top = ([url_hint] + signals_top)[:SIGNALS_TOP_MAX]

    # ---- receiver gate (UI only) ----
    anchor = has_action_anchor(sorted_hits)
    tag, floor = receiver_response_tag(raw_text)
    pf_triggered = pf is not None and pf.action != "none"

    can_show = (
        floor > 0
        or (tag is not None and tag != "r:already")
        or pf_triggered
        or bool(sender_urls)
        or score_total >= thresholds.medium
        or anchor
    )
    can_bump = floor > 0 or score_total >= thresholds.medium or anchor
    soft_boost = RECEIVER_SOFT_BOOST.get(tag, 0) if (can_bump and tag) else 0

    ui_score = max(0.0, min(100.0, max(score_total + soft_boost, floor)))
    ui_risk = "high" if floor >= thresholds.high else verdict.risk_level

    # ---- similarity soft boost (score only) ----
    similar = []
    applied_boost = 0.0
    if sim_items:
        similar = rank_similar(vec_from_signals(signals), sim_items, top_k=opts.sim_top_k, min_sim=0.0)
    if similar:
        top = similar[0]
        gate = cfg.sim_gate if opts.sim_gate is None else opts.sim_gate
        gate_pass = top.similarity >= gate
        boost = sim_boost_for(top.similarity)
        applied_boost = boost if (boost > 0 and gate_pass and anchor) else 0.0
        if applied_boost > 0:
            score_total = min(100.0, score_total + applied_boost)

        examples = [
            f"sim={top.similarity:.3f}",
            f"gate={gate:.3f}",
            f"gatePass={'yes' if gate_pass else 'no'}",
            f"match={top.id or 'n/a'}",
            f"cat={top.category or 'n/a'}",
            f"boost={'+%g' % applied_boost if applied_boost > 0 else '0'}",
            f"anchor={'yes' if anchor else 'no'}",
        ] + [f"shared:{k}" for k in top.shared_top_keys[:3]]
        sim_hint = Signal(
            id="sim_hint",
            label="SIM hint (soft boost)" if applied_boost > 0 else "SIM hint (no boost)",
            stage="verify",
            weight_sum=applied_boost,
            count=1,
            examples=examples,
        )
        signals_top = ([sim_hint] + signals_top)[:SIGNALS_TOP_MAX]

    triggered = (pf_triggered or bool(sender_urls)) if pf is not None else (bool(sorted_hits) or bool(sender_urls))

    logger.debug(
        f"Thread analyzed | turns={len(turns)} | score={score_total:.1f} | risk={verdict.risk_level} "
        f"| stage={peak} | hard_high={verdict.hard_high} | ctx={window.info.reason}"
    )

    return ThreadAnalysis(
        score_total=score_total,
        risk_level=verdict.risk_level,
        hard_high=verdict.hard_high,
        stage_peak=peak,
        stage_triggers=peak_triggers,
        hits=sorted_hits,
        signals=signals,
        turns=turns,
        context=window.info,
        escalation=verdict.trace,
        signals_top=signals_top,
        stage_timeline=stage_timeline(turns),
        evidence_top3=evidence_top3(sorted_hits),
        urls=sender_urls,
        prefilter=pf,
        similar=similar,
        sim_boost=applied_boost,
        receiver_tag=tag if (can_show and tag) else None,
        ui_score_total=ui_score,
        ui_risk_level=ui_risk,
        triggered=triggered,
    )
