"""End-to-end thread analysis."""

import pytest

from scamscope import (
    AnalyzeOptions,
    CallContext,
    ConfigError,
    SimIndexItem,
    analyze_thread,
    build_config,
    default_config,
    vec_from_signals,
)
from scamscope.engine import call_hits, chain_hits, receiver_response_tag, sim_boost_for
from scamscope.lexicon import STAGE_RANK

GREETING = "S: 안녕하세요, 문의사항 있으면 말씀해주세요."
KB_OTP = "S: KB국민은행 보안팀입니다. OTP 6자리 인증번호 알려주셔야 차단됩니다."
SAFE_ACCOUNT = "S: 금융감독원입니다. 고객님 계좌가 범죄에 연루되어 안전계좌로 지금 즉시 이체하셔야 합니다."
REMOTE_OTP = "S: 고객님 명의가 도용되었습니다. 팀뷰어 설치하시고 인증번호 알려주세요."
GIFTCARD = "S: 급하게 문화상품권 10만원권 5장 구매해서 핀번호 보내주세요"
PROSECUTOR = (
    "S: 서울중앙지검 검찰 수사관입니다. 고객님 명의 계좌가 범죄에 연루되어 압류 예정입니다. "
    "지금 바로 출석하지 않으면 구속됩니다."
)


def rule_ids(analysis):
    return {h.rule_id for h in analysis.hits}


# ============================================================================
# Scam scenarios
# ============================================================================

def test_bank_impersonation_otp_is_high():
    a = analyze_thread(KB_OTP)

    assert a.risk_level == "high"
    assert a.hard_high
    assert a.stage_peak == "verify"
    assert {"otp", "authority"} <= rule_ids(a)
    assert a.score_total == 100
    assert a.evidence_top3[0].rule_id == "otp"
    assert a.evidence_top3[0].severity == "high"


def test_safe_account_transfer_is_payment_high():
    a = analyze_thread(SAFE_ACCOUNT)
    assert a.stage_peak == "payment"
    assert a.risk_level == "high"


def test_remote_install_with_otp_is_install_high():
    a = analyze_thread(REMOTE_OTP)
    assert a.stage_peak == "install"
    assert a.risk_level == "high"


def test_giftcard_pin_request():
    a = analyze_thread(GIFTCARD)
    assert a.stage_peak == "payment"
    assert a.risk_level in ("medium", "high")


def test_prosecutor_threat_without_action_is_medium():
    a = analyze_thread(PROSECUTOR)
    assert a.risk_level == "medium"
    assert not a.hard_high


@pytest.mark.parametrize("thread", [KB_OTP, SAFE_ACCOUNT, REMOTE_OTP, GIFTCARD, PROSECUTOR, GREETING])
def test_high_always_comes_from_hard_high(thread):
    a = analyze_thread(thread)
    if a.risk_level == "high":
        assert a.hard_high


def test_analysis_is_deterministic():
    assert analyze_thread(REMOTE_OTP).model_dump() == analyze_thread(REMOTE_OTP).model_dump()


# ============================================================================
# Benign threads
# ============================================================================

def test_greeting_is_quiet():
    a = analyze_thread(GREETING)

    assert a.score_total == 0
    assert a.risk_level == "low"
    assert a.stage_peak == "info"
    assert a.prefilter.gate_pass is False
    assert a.triggered is False
    assert a.receiver_tag is None


@pytest.mark.parametrize("thread", [
    "S: 택배가 오늘 도착 예정입니다. 부재 시 경비실에 맡겨드릴게요.",
    "S: 내일 회의 3시로 변경됐어요. 자료는 메일로 보낼게요.",
    "R: 고객센터 공식 번호로 문의하는 게 제일 안전하대요",
])
def test_everyday_messages_are_low(thread):
    assert analyze_thread(thread).risk_level == "low"


def test_official_bank_notice_is_not_high():
    a = analyze_thread("S: [KB국민은행] 정기 점검 안내입니다. 자세한 내용은 https://www.kbstar.com 참고 바랍니다.")

    assert a.risk_level != "high"
    assert a.urls == ["https://www.kbstar.com"]
    assert a.signals_top[0].id == "ctx_url_present_sender"


def test_empty_thread():
    a = analyze_thread("  \n ")

    assert (a.risk_level, a.score_total, a.turns) == ("low", 0.0, [])
    assert a.context.kept == 0


# ============================================================================
# Turns, chains and call flags
# ============================================================================

def test_receiver_turns_are_out_of_scope_with_labels():
    a = analyze_thread("S: 인증번호 6자리 보내주세요\nR: 네 알겠습니다")

    assert [t.role for t in a.turns] == ["S", "R"]
    assert a.turns[1].in_scope is False
    assert not any(h.rule_id.startswith("ctx_comply") for h in a.hits)


def test_unlabeled_link_then_denial():
    a = analyze_thread("링크 확인해주세요 https://kb-secure.xyz/login\n\n저 신청 안 했는데요")
    assert "ctx_denial_after_link" in rule_ids(a)


def test_unlabeled_demand_then_compliance():
    a = analyze_thread("인증번호 6자리 보내주세요\n\n네 알겠습니다")
    chained = next(h for h in a.hits if h.rule_id == "ctx_comply_after_demand")

    assert chained.weight == 8
    assert chained.stage == "verify"
    assert chained.matched == ["BLK 1 → BLK 2"]


def test_chain_hits_need_adjacent_turns():
    assert chain_hits([]) == []


def test_call_flags_add_hits():
    hits = {h.rule_id: h.weight for h in call_hits(CallContext(otp_asked=True, first_contact=True), default_config())}
    assert hits == {"call_otp": 30, "call_first_contact": 10}

    a = analyze_thread("S: 안녕하세요", call=CallContext(otp_asked=True, first_contact=True))
    assert {"call_otp", "call_first_contact"} <= rule_ids(a)


def test_stage_timeline_starts_with_first_turn():
    a = analyze_thread("S: 안녕하세요\nS: 인증번호 알려주세요")
    assert a.stage_timeline[0].turn_index == 1
    assert a.stage_timeline[-1].stage == "verify"


def test_install_then_cash_handover_peaks_at_payment():
    a = analyze_thread("S: 팀뷰어 설치하세요\n\nS: 현금 수거 직원에게 현금 전달하세요")

    assert [t.stage for t in a.turns] == ["install", "payment"]
    assert a.stage_peak == "payment"
    assert a.stage_triggers


@pytest.mark.parametrize("thread", [
    "S: 팀뷰어 설치하세요\n\nS: 현금 수거 직원에게 현금 전달하세요",
    "S: 원격 앱 설치하시고\n\nS: 문화상품권 구매해서 핀번호 보내주세요",
    "S: 인증번호 알려주세요\n\nS: 안전계좌로 이체하세요\n\nS: 팀뷰어 설치하세요",
    KB_OTP,
    REMOTE_OTP,
])
def test_peak_is_never_below_an_in_scope_turn(thread):
    a = analyze_thread(thread)
    in_scope = [STAGE_RANK[t.stage] for t in a.turns if t.in_scope]

    assert STAGE_RANK[a.stage_peak] >= max(in_scope)


# ============================================================================
# Receiver gate
# ============================================================================

@pytest.mark.parametrize("thread, tag, floor", [
    ("R: 네 방금 송금했어요", "r:done:pay", 80.0),
    ("R: 팀뷰어 설치했어요", "r:done:install", 70.0),
    ("R: 인증번호 알려드렸어요", "r:done:otp", 65.0),
    ("R: 차단했어요", "r:resist", 0.0),
    ("R: 내일 은행 가서 이체할게요", "r:will:pay", 0.0),
    ("R: 이거 사기 맞나요?", "r:ask", 0.0),
    ("S: 안녕하세요", None, 0.0),
])
def test_receiver_response_tag(thread, tag, floor):
    assert receiver_response_tag(thread) == (tag, floor)


def test_completed_payment_raises_ui_score_only():
    a = analyze_thread("S: 문화상품권 핀번호 보내주세요\nR: 방금 송금했어요")

    assert a.receiver_tag == "r:done:pay"
    assert a.ui_score_total >= 80
    assert a.ui_risk_level == "high"


# ============================================================================
# Similarity boost
# ============================================================================

def test_sim_boost_steps():
    assert [sim_boost_for(s) for s in (0.99, 0.95, 0.91, 0.88, 0.5)] == [10, 8, 6, 4, 0]


def test_near_identical_scenario_boosts_score():
    base = analyze_thread(KB_OTP)
    item = SimIndexItem(id="KO-0001", category="기관사칭", vec=vec_from_signals(base.signals))

    a = analyze_thread(KB_OTP, sim_items=[item])

    assert a.sim_boost == 10
    assert a.similar[0].id == "KO-0001"
    assert a.signals_top[0].id == "sim_hint"
    assert a.risk_level == base.risk_level


def test_unrelated_scenario_is_reported_without_boost():
    item = SimIndexItem(id="KO-0099", vec={"ctx_giftcard": 1.0})
    a = analyze_thread(KB_OTP, sim_items=[item])

    assert a.sim_boost == 0
    assert a.signals_top[0].label == "SIM hint (no boost)"


def test_no_signals_no_similarity():
    a = analyze_thread(GREETING, sim_items=[SimIndexItem(id="KO-1", vec={"otp": 1.0})])
    assert a.similar == []
    assert a.sim_boost == 0


# ============================================================================
# Options
# ============================================================================

def test_unknown_weight_key_is_rejected():
    with pytest.raises(ConfigError):
        analyze_thread(KB_OTP, options=AnalyzeOptions(weights={"nope": 1}))


def test_inverted_thresholds_are_repaired():
    assert build_config(medium=80, high=50).thresholds.high == 81


def test_prefilter_can_be_disabled():
    a = analyze_thread(KB_OTP, options=AnalyzeOptions(prefilter_enabled=False))
    assert a.prefilter is None
    assert a.triggered is True
