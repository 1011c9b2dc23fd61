"""Escalation circuit: hard_high rows, gates and demotions."""

import pytest

from scamscope.config import Thresholds
from scamscope.escalation import escalate, to_risk_level
from scamscope.models import CallContext, Hit


def hits(*rule_ids):
    return [Hit(rule_id=r, label=r, stage="info", weight=10) for r in rule_ids]


def test_otp_request_under_authority_is_high():
    result = escalate(hits("otp", "authority"), "검찰입니다. 인증번호 알려주세요", score_total=80)

    assert result.risk_level == "high"
    assert result.hard_high
    assert result.trace.gate_a
    assert result.trace.gate_b_count >= 1
    assert "otp_authority" in result.trace.structural_rows
    assert "otp_direct" in result.trace.structural_rows


def test_pressure_without_action_caps_at_medium():
    result = escalate(hits("authority", "threat"), "경찰입니다. 압류 예정", score_total=90)

    assert result.risk_level == "medium"
    assert result.hard_high is False
    assert result.trace.structural_rows == []
    assert result.trace.direct_rows == []


def test_low_score_without_rows_is_low():
    result = escalate(hits("urgent"), "오늘 안에 연락 주세요", score_total=20)
    assert result.risk_level == "low"


def test_link_with_code_request_is_a_direct_row():
    result = escalate(hits("link"), "https://check.example 들어가서 승인번호 알려주세요", score_total=12)

    assert result.risk_level == "high"
    assert result.trace.direct_rows == ["link_code_request"]


def test_remote_install_without_other_levers_is_demoted():
    raw = "원격 지원 프로그램 설치 링크 https://help.example/dl 눌러서 설치해주세요. 가족에게도 비밀로 하세요"
    result = escalate(hits("remote", "link", "ctx_secrecy"), raw, score_total=70)

    assert result.hard_high
    assert "install" in result.trace.structural_rows
    assert result.risk_level == "medium"
    assert result.trace.demotion == "remote_only"


def test_advice_only_thread_is_always_low():
    result = escalate([], "공식 고객센터로 문의하는 게 제일 안전하대요", score_total=50)

    assert result.risk_level == "low"
    assert result.trace.demotion == "advice_only"


def test_intranet_notice_is_benign_support():
    result = escalate(hits("link"), "사내 공지: https://intranet.corp.example/notice 확인", score_total=10)

    assert "benign_support" in result.trace.predicates
    assert result.trace.gate_a is False
    assert result.risk_level == "low"


def test_call_flags_count_as_core_action():
    result = escalate([], "", score_total=0, call=CallContext(remote_asked=True))
    assert "call_action" in result.trace.predicates
    assert "core_action" in result.trace.predicates


def test_to_risk_level():
    th = Thresholds(medium=40, high=70)

    assert to_risk_level(99, False, th) == "medium"
    assert to_risk_level(39.9, False, th) == "low"
    assert to_risk_level(0, True, th) == "high"


@pytest.mark.parametrize("row, rule_ids, raw", [
    ("family", ("ctx_family_scam", "urgent"), "엄마 나 폰 고장났어"),
    ("job_pii", ("link", "ctx_job_scam", "pii_request"), ""),
    ("invest", ("ctx_investment_link", "ctx_contact_move", "urgent"), ""),
    ("visit", ("ctx_visit_place", "ctx_job_hook", "ctx_contact_move", "ctx_cash_pickup"), ""),
    ("cash_pickup", ("ctx_cash_pickup", "authority"), ""),
    ("job", ("job_lure", "link", "ctx_payment_request"), ""),
    ("transfer_demand", ("ctx_transfer_demand", "authority"), ""),
    ("apk", ("link", "apk"), ""),
])
def test_structural_row_fires(row, rule_ids, raw):
    result = escalate(hits(*rule_ids), raw, score_total=60)
    assert row in result.trace.structural_rows


@pytest.mark.parametrize("row, rule_ids, raw", [
    ("malicious_url_action", ("url_malicious", "remote"), ""),
    ("link_otp_entry_pressure", ("link",), "링크 접속 후 인증번호 입력해주세요 지금"),
    ("bizdoc_link_install", ("link", "ctx_install_mention"), "세금계산서 확인용 뷰어 설치"),
    ("job_hook_reach", ("ctx_contact_move",), "고수익 부업 안내"),
])
def test_direct_row_reaches_hard_high(row, rule_ids, raw):
    result = escalate(hits(*rule_ids), raw, score_total=10)

    assert row in result.trace.direct_rows
    assert result.hard_high


def test_structural_rows_alone_do_not_make_high_without_gates():
    result = escalate(hits("ctx_family_scam", "urgent"), "엄마 나 폰 고장났어", score_total=10)

    assert "family" in result.trace.structural_rows
    assert result.trace.gate_a is False
    assert result.hard_high is False


def test_acknowledged_login_alert_is_demoted_to_medium():
    raw = "로그인 시도 감지 알림 https://x.example 승인번호 알려주세요 제가 한 적 없어요"
    result = escalate(hits("link"), raw, score_total=30)

    assert result.hard_high
    assert result.trace.direct_rows == ["link_code_request"]
    assert result.risk_level == "medium"
    assert result.trace.demotion == "alert_setting_only"


def test_login_alert_with_payment_words_stays_high():
    raw = "로그인 시도 감지 알림 https://x.example 승인번호 알려주세요 제가 한 적 없어요 안전계좌로 이체"
    result = escalate(hits("link"), raw, score_total=30)

    assert result.risk_level == "high"
    assert result.trace.demotion is None
