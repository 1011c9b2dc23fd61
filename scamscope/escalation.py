"""
escalation.py — Risk Escalation Circuit
=======================================

Turns the aggregated hits of a thread into a risk level.

``high`` is reachable only through ``hard_high``:

    hard_high = any(DIRECT_ROWS)
             or (gate A  and  gate B ≥ 1  and  core action  and  any(STRUCTURAL_ROWS))

    gate A  : a demand-shaped request for a core action (OTP, install,
              payment, transfer, cash pickup, visit, PII, job hook), not a
              benign IT-support notice
    gate B  : count of corroborating clues (authority, threat, urgency,
              alert, first contact, contact move, OTP+finance, secrecy,
              anti-verification, money instruction, OTP share request)

Otherwise ``medium`` when the score reaches the medium threshold, else
``low``. Demotions then apply in order: advice-only → low, alert/setting
acknowledgement → medium, remote/install without any other lever → medium.

All predicates and rows are named so the returned ``EscalationTrace``
shows exactly what fired.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from scamscope.config import Thresholds
from scamscope.models import CallContext, EscalationTrace, Hit
from scamscope.urls import hosts_from_text
from scamscope.window import is_advice_only_thread, is_self_ack_text

_FLAGS = re.IGNORECASE


@dataclass
class Facts:
    """Inputs every predicate reads."""
    ids: FrozenSet[str]
    raw: str
    hosts: List[str] = field(default_factory=list)
    call: CallContext = field(default_factory=CallContext)


Predicate = Callable[[Facts, Dict[str, bool]], bool]


def _ids(*rule_ids: str) -> Predicate:
    wanted = frozenset(rule_ids)
    return lambda f, p: not f.ids.isdisjoint(wanted)


def _text(pattern: str) -> Predicate:
    rx = re.compile(pattern, _FLAGS)
    return lambda f, p: bool(rx.search(f.raw))


def _either(*names: str) -> Predicate:
    return lambda f, p: any(p[n] for n in names)


_INTERNAL_LABEL = re.compile(r'(?:^|\.)(?:intranet|internal|corp|portal|servicenow|jira|confluence)(?:\.|$)', _FLAGS)

# ============================================================================
# Predicates, evaluated in order; later entries may read earlier ones
# ============================================================================

PREDICATES: List[Tuple[str, Predicate]] = [
    ("remote",            _ids("remote", "call_remote")),
    ("otp",               _ids("otp", "call_otp", "ctx_otp_relay")),
    ("first_contact",     _ids("call_first_contact")),
    ("apk",               _ids("apk", "url_download_ext", "install_app")),
    ("link",              _ids("link", "shortener", "link_mention", "ctx_profile_link_mention")),
    ("threat",            _ids("threat")),
    ("authority",         _ids("authority")),
    ("txn_alert",         _ids("txn_alert")),
    ("urgent",            _ids("urgent", "call_urgent")),
    ("job_scam",          _ids("ctx_job_scam")),
    ("invest",            _ids("ctx_investment_link")),
    ("install_mention",   _ids("ctx_install_mention")),
    ("install_any",       _ids("ctx_install_mention", "install_app", "apk", "remote", "url_download_ext")),
    ("family",            _ids("ctx_family_scam")),
    ("demand",            _ids("ctx_demand", "ctx_comply_after_demand", "ctx_otp_relay")),
    ("otp_finance",       _ids("ctx_otp_finance", "ctx_otp_proxy", "ctx_denial_after_otp")),
    ("pii",               _ids("pii_request", "personalinfo")),
    ("go_bank_atm",       _ids("go_bank_atm")),
    ("transfer",          lambda f, p: p["go_bank_atm"] or not f.ids.isdisjoint(
                              {"transfer", "safe_account", "ctx_transfer_phrase"})),
    ("pay_request",       lambda f, p: p["transfer"] or not f.ids.isdisjoint(
                              {"ctx_payment_request", "ctx_pay_with_link"})),
    ("contact_move",      _ids("ctx_contact_move")),
    ("visit_place",       _ids("ctx_visit_place")),
    ("transfer_demand",   _ids("ctx_transfer_demand")),
    ("cash_pickup",       _ids("ctx_cash_pickup")),
    ("job_hook",          _ids("job_lure", "ctx_job_hook")),
    ("secrecy",           _ids("ctx_secrecy")),
    ("call_action",       lambda f, p: f.call.otp_asked or f.call.remote_asked),
    ("url_present",       lambda f, p: bool(f.hosts)),
    ("link_any",          _either("link", "url_present")),
    ("malicious_url",     _ids("url_malicious", "ctx_url_malicious", "messenger_phishing")),

    ("it_support_cue",    _text(r'회사\s*it|it\s*지원|공식\s*원격|helpdesk|헬프데스크|사내\s*공지|공지')),
    ("internal_host",     lambda f, p: any(_INTERNAL_LABEL.search(h) for h in f.hosts)),
    ("core_action",       _either("otp", "otp_finance", "install_any", "pay_request", "transfer",
                                  "transfer_demand", "cash_pickup", "visit_place", "pii", "job_hook",
                                  "call_action")),
    ("benign_support",    lambda f, p: p["it_support_cue"] and p["internal_host"] and not p["core_action"]),

    ("anti_verify",       _text(r'(?:대표번호|고객센터|공식\s*번호).{0,20}(?:확인|전화).{0,20}(?:하지\s*마|말라)'
                                r'|끊지\s*마|끊으면\s*안\s*돼|다른\s*(?:채널|경로).{0,20}(?:쓰지\s*마|금지)'
                                r'|이\s*(?:링크|앱).{0,20}(?:로만|에서만|만).{0,10}(?:진행|처리)')),
    ("otp_request",       _text(r'(?:인증번호|(?<![a-z])otp(?![a-z])).{0,24}'
                                r'(?:알려|말해|보내|전달|불러|읽어|인증번호\s*줘|코드\s*줘)')),
    ("code_request",      _text(r'(?:승인번호|보안\s*(?:코드|번호)|접속코드|확인코드|인증코드|approval\s*code'
                                r'|verification\s*code|6\s*자리\s*(?:코드|번호)).{0,40}'
                                r'(?:알려|말해|보내|전달|공유|캡처|캡쳐|찍어|스크린샷)')),
    ("otp_entry",         _text(r'(?:인증번호|(?<![a-z])otp(?![a-z])).{0,30}(?:입력|인증|확인|진행|완료)')),
    ("demand_like",       _either("demand", "otp_request", "code_request")),
    ("money_instruction", lambda f, p: p["go_bank_atm"] or not f.ids.isdisjoint(
                              {"safe_account", "ctx_transfer_phrase"})),
    ("doc_business",      _text(r'세금계산서|청구서|invoice|인보이스|거래처|견적서|발주서|정산|대금')),
    ("pressure_words",    _text(r'지금|즉시|바로|긴급|마감|서둘')),
    ("account_notice",    _text(r'비밀번호\s*재설정|계정\s*(?:보호|잠김)|로그인\s*시도|다른\s*기기.{0,12}로그인'
                                r'|2\s*단계\s*인증|2fa|보안\s*경고')),
    ("job_words",         _text(r'고액|고수익|일당|당일\s*지급|건당|재택|부업|급구')),
    ("demand_form",       _either("demand_like", "transfer_demand", "cash_pickup", "transfer", "pay_request",
                                  "install_any", "pii", "call_action")),
]

CLUE_PREDICATES: Tuple[str, ...] = (
    "authority", "threat", "urgent", "txn_alert", "demand_like", "first_contact",
    "contact_move", "otp_finance", "remote", "secrecy", "anti_verify", "money_instruction",
)

GATE_B_PREDICATES: Tuple[str, ...] = (
    "authority", "threat", "urgent", "txn_alert", "first_contact", "contact_move",
    "otp_finance", "secrecy", "anti_verify", "money_instruction", "otp_request",
)

GATE_A_ACTIONS: Tuple[str, ...] = (
    "otp", "otp_finance", "install_any", "pay_request", "transfer_demand", "transfer",
    "cash_pickup", "visit_place", "pii", "job_hook",
)

# ============================================================================
# Structural rows: need gate A, gate B and a core action as well
# (name, fn(predicates, clue count))
# ============================================================================

Row = Callable[[Dict[str, bool], int], bool]

STRUCTURAL_ROWS: List[Tuple[str, Row]] = [
    ("remote_otp",      lambda p, n: p["remote"] and p["otp"]),
    ("install",         lambda p, n: p["link_any"] and p["install_any"] and n >= 1),
    ("apk",             lambda p, n: p["link_any"] and p["apk"]),
    ("otp_authority",   lambda p, n: p["otp"] and p["otp_request"]
                        and (p["threat"] or p["authority"] or p["txn_alert"] or p["otp_finance"])),
    ("otp_link_demand", lambda p, n: p["otp"] and p["link_any"] and p["otp_request"]),
    ("otp_direct",      lambda p, n: p["otp"] and p["otp_request"]),
    ("family",          lambda p, n: p["family"] and (p["pay_request"] or p["urgent"] or p["transfer_demand"])),
    ("job_pii",         lambda p, n: p["link_any"] and p["job_scam"] and p["pii"]),
    ("pay",             lambda p, n: p["pay_request"] and n >= 1),
    ("invest",          lambda p, n: p["invest"] and (p["link_any"] or p["contact_move"])
                        and (p["install_mention"] or p["apk"] or p["pay_request"] or p["transfer_demand"]
                             or p["urgent"] or p["threat"] or p["authority"])),
    ("visit",           lambda p, n: p["visit_place"] and (p["job_hook"] or p["job_scam"] or p["invest"])
                        and (p["contact_move"] or p["link_any"])
                        and (p["cash_pickup"] or p["transfer_demand"] or p["pay_request"] or p["transfer"])),
    ("transfer_demand", lambda p, n: (p["transfer_demand"] or p["transfer"]) and n >= 1),
    ("cash_pickup",     lambda p, n: p["cash_pickup"] and (p["authority"] or p["threat"] or p["urgent"]
                                                           or p["demand"] or p["link_any"] or p["contact_move"])),
    ("job",             lambda p, n: (p["job_hook"] or p["job_scam"]) and (p["contact_move"] or p["link_any"])
                        and (p["visit_place"] or p["pay_request"] or p["transfer_demand"] or p["transfer"]
                             or p["cash_pickup"])),
    ("job_scam",        lambda p, n: p["job_scam"]),
]

# Direct rows: confirmed patterns that reach hard_high on their own
DIRECT_ROWS: List[Tuple[str, Callable[[Dict[str, bool]], bool]]] = [
    ("malicious_url_action", lambda p: p["malicious_url"] and (
        p["install_any"] or p["remote"] or p["pay_request"] or p["transfer_demand"] or p["transfer"]
        or p["cash_pickup"] or p["otp_finance"] or p["otp_request"] or p["code_request"])),
    ("link_code_request",    lambda p: p["link_any"] and p["code_request"]),
    ("link_otp_entry_pressure", lambda p: p["link_any"] and p["otp_entry"] and (
        p["urgent"] or p["pressure_words"] or p["threat"]
        or (p["authority"] and (p["urgent"] or p["threat"]))
        or (p["txn_alert"] and (p["urgent"] or p["threat"]))
        or (p["demand"] and not p["account_notice"]))),
    ("bizdoc_link_install",  lambda p: p["doc_business"] and p["link_any"] and p["install_any"]),
    ("job_hook_reach",       lambda p: (p["job_hook"] or p["job_scam"] or p["job_words"])
                             and (p["link_any"] or p["contact_move"] or p["pii"])),
]

# ============================================================================
# Demotion probes
# ============================================================================

_ALERT_SETTING = re.compile(
    r'알림\s*설정|설정\s*변경|설정이\s*변경|설정\s*확인|자동\s*이체\s*등록'
    r'|다른\s*기기\s*로그인\s*시도\s*감지|로그인\s*시도\s*감지|접속\s*시도\s*감지', _FLAGS)
_ACK_OR_BENIGN = re.compile(
    r'확인\s*만|문제\s*없|정상|제가\s*아닌데|제가\s*한\s*적\s*없|한\s*적\s*없|접수\s*안\s*했|모르겠|아닌데요', _FLAGS)
_EXPLICIT_PAY_WORD = re.compile(
    r'납부|송금|이체|입금|지불|충전|선납|보험료|안내\s*계좌|보호\s*계좌|안전\s*계좌|지정\s*계좌|상품권|문상'
    r'|핀\s*번호|(?<![a-z])pin(?![a-z])|기프트\s*카드|gift\s*card|(?<![a-z])(?:usdt|btc|eth|trc20|erc20)(?![a-z])'
    r'|wallet|지갑\s*주소|바이낸스|업비트|빗썸', _FLAGS)
_BIZ_DOC_LURE = re.compile(
    r'세금계산서|거래처|회계팀|인보이스|invoice|견적서|발주서|계약서|정산|반려|수정본|문서\s*(?:뷰어|viewer)|열람', _FLAGS)


@dataclass
class Escalation:
    risk_level: str
    hard_high: bool
    trace: EscalationTrace


def evaluate_predicates(facts: Facts) -> Dict[str, bool]:
    p: Dict[str, bool] = {}
    for name, fn in PREDICATES:
        p[name] = bool(fn(facts, p))
    return p


def to_risk_level(score_total: float, hard_high: bool, thresholds: Thresholds) -> str:
    if hard_high:
        return "high"
    if score_total >= thresholds.medium:
        return "medium"
    return "low"


def _demotion(level: str, p: Dict[str, bool], raw: str) -> Tuple[str, Optional[str]]:
    if is_advice_only_thread(raw):
        return "low", "advice_only"
    if level != "high" or p["benign_support"]:
        return level, None

    explicit_pay = bool(_EXPLICIT_PAY_WORD.search(raw))
    otp_entry_only = p["otp_entry"] and not p["otp_request"] and not p["code_request"] and not p["otp_finance"]
    ack_or_benign = is_self_ack_text(raw) or bool(_ACK_OR_BENIGN.search(raw))

    alert_setting_only = (
        p["link"]
        and (bool(_ALERT_SETTING.search(raw)) or p["txn_alert"])
        and ack_or_benign
        and not explicit_pay
        and (not p["otp"] or otp_entry_only)
        and not any(p[k] for k in ("threat", "urgent", "remote", "apk", "install_mention",
                                   "job_scam", "invest", "family"))
    )
    if alert_setting_only:
        return "medium", "alert_setting_only"

    remote_only = (
        p["install_any"]
        and not _BIZ_DOC_LURE.search(raw)
        and not explicit_pay
        and not any(p[k] for k in ("otp", "threat", "authority", "urgent", "job_scam", "invest", "family"))
    )
    if remote_only:
        return "medium", "remote_only"

    return level, None


def escalate(
    hits: Iterable[Hit],
    raw_thread: str,
    score_total: float,
    call: Optional[CallContext] = None,
    thresholds: Optional[Thresholds] = None,
) -> Escalation:
    """Run the escalation circuit over a thread's hits.

    Args:
        hits: All hits of the scored scope, zero-weight hits included.
        raw_thread: The selected turns joined with newlines.
        score_total: Dampened, capped thread score.
        call: Call-context flags.
        thresholds: Risk thresholds; defaults when omitted.

    Returns:
        Escalation with the final risk level, the hard_high flag and a trace.
    """
    thresholds = thresholds or Thresholds()
    facts = Facts(
        ids=frozenset(h.rule_id for h in hits),
        raw=raw_thread or "",
        hosts=hosts_from_text(raw_thread or ""),
        call=call or CallContext(),
    )
    p = evaluate_predicates(facts)
    benign = p["benign_support"]

    clue_count = sum(1 for k in CLUE_PREDICATES if p[k])
    gate_b = sum(1 for k in GATE_B_PREDICATES if p[k])
    gate_a = not benign and p["demand_form"] and any(p[k] for k in GATE_A_ACTIONS)

    structural = [] if benign else [name for name, row in STRUCTURAL_ROWS if row(p, clue_count)]
    direct = [] if benign else [name for name, row in DIRECT_ROWS if row(p)]

    hard_high = bool(direct) or (gate_a and gate_b >= 1 and p["core_action"] and bool(structural))

    level = to_risk_level(score_total, hard_high, thresholds)
    level, demotion = _demotion(level, p, facts.raw)

    trace = EscalationTrace(
        predicates=[name for name, _ in PREDICATES if p[name]],
        gate_a=gate_a,
        gate_b_count=gate_b,
        clue_count=clue_count,
        structural_rows=structural,
        direct_rows=direct,
        demotion=demotion,
    )
    return Escalation(risk_level=level, hard_high=hard_high, trace=trace)
