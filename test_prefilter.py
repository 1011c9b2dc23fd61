"""Prefilter gate: scoring, actions and gate decisions."""

import logging

from scamscope.models import (
    ExplicitActions,
    LinkCandidate,
    PrefilterContext,
    PrefilterOptions,
    RedirectResolution,
)
from scamscope.prefilter import prefilter, recent_lines, sender_only_text


def ids(result):
    return {s.id for s in result.signals}


# ============================================================================
# Scenarios
# ============================================================================

def test_prosecutor_summons_passes_gate():
    result = prefilter("S: 검찰입니다. 사건 관련 출석 바랍니다. 지금 2번출구로 와주세요")

    assert result.gate_pass is True
    assert {"pf_authority", "pf_visit_place", "pf_urgency"} <= ids(result)
    assert result.score == 48
    assert result.action == "soft"


def test_greeting_stays_closed():
    result = prefilter("S: 안녕하세요, 문의사항 있으면 말씀해주세요.")

    assert result.gate_pass is False
    assert result.score == 0
    assert result.action == "none"
    assert result.signals == []
    assert result.combos == []


def test_open_url_with_link_forces_auto():
    opts = PrefilterOptions(context=PrefilterContext(explicit_actions=ExplicitActions(open_url=1)))
    result = prefilter("S: 사진 올렸어 https://photos.example.net/album", opts)

    assert result.action == "auto"
    assert result.score >= result.threshold_auto
    assert "pf_trigger_open_url" in ids(result)
    assert "pf_combo_open_url" in {c.id for c in result.combos}


def test_open_url_without_link_does_not_force_auto():
    opts = PrefilterOptions(context=PrefilterContext(explicit_actions=ExplicitActions(open_url=2)))
    result = prefilter("S: 안녕하세요", opts)

    assert result.action == "none"
    assert "pf_trigger_open_url" in ids(result)


def test_shortener_with_otp_collects_combos():
    result = prefilter("S: 인증번호 입력하세요 https://bit.ly/abc123")
    combos = {c.id for c in result.combos}

    assert {"pf_url_present", "pf_url_shortener", "pf_otp", "pf_otp_demand"} <= ids(result)
    assert {"pf_combo_url_otp", "pf_combo_short_otp"} <= combos
    assert result.action == "auto"


def test_bank_typosquat_under_bank_claim():
    result = prefilter("S: KB국민은행 고객센터입니다. 로그인 인증 필요 https://kbstarr.com/login")
    assert {"pf_url_bank_typosquat", "pf_url_bank_brand", "pf_url_bank_claim_nonofficial"} <= ids(result)


def test_official_bank_host_is_not_flagged():
    result = prefilter("S: KB국민은행 로그인 안내 https://online.kbstar.com/login")
    found = ids(result)

    assert "pf_url_present" in found
    assert "pf_url_bank_typosquat" not in found
    assert "pf_url_bank_brand" not in found
    assert "pf_url_bank_claim_nonofficial" not in found


def test_display_text_pointing_elsewhere():
    result = prefilter("S: [www.kbstar.com](https://kb-login.example/verify) 에서 확인해주세요")
    mismatch = next(s for s in result.signals if s.id == "pf_url_display_mismatch")

    assert mismatch.points == 34
    assert any("(bank-text)" in m for m in mismatch.matches)


def test_client_supplied_link_candidates():
    ctx = PrefilterContext(link_candidates=[LinkCandidate(href="https://evil.example/x", text="naver.com")])
    result = prefilter("S: 링크 보냈어요", PrefilterOptions(context=ctx))
    assert "pf_url_display_mismatch" in ids(result)


def test_resolved_chain_hints():
    resolved = RedirectResolution(
        start_url="https://bit.ly/x",
        chain=["https://bit.ly/x", "https://a.test/", "https://b.test/", "https://a.b.c.d.evil.example/"],
        final_url="https://a.b.c.d.evil.example/",
        hops=3,
    )
    opts = PrefilterOptions(context=PrefilterContext(resolved=resolved, is_saved_contact=False))
    result = prefilter("S: https://bit.ly/x", opts)
    found = ids(result)

    assert {"pf_ctx_final_host_susp", "pf_ctx_many_redirects", "pf_unknown_contact"} <= found
    assert "pf_ctx_resolve_error" not in found
    assert "pf_combo_unknown_url" in {c.id for c in result.combos}


# ============================================================================
# Scope & options
# ============================================================================

def test_receiver_lines_are_ignored():
    result = prefilter("S: 안녕하세요\nR: 송금했어요 https://x.example/pay")

    assert result.gate_pass is False
    assert "pf_transfer" not in ids(result)


def test_sender_only_text_falls_back_to_whole_text():
    assert sender_only_text("S: a\nR: b\nS: c") == "a\nc"
    assert sender_only_text("no labels here") == "no labels here"


def test_recent_lines_window():
    text = "\n".join(f"line {i}" for i in range(30))
    assert recent_lines(text, 16) == [f"line {i}" for i in range(14, 30)]


def test_window_metadata_and_recent_line_override():
    thread = "\n".join(["S: 송금하세요"] + [f"S: 잡담 {i}" for i in range(5)])
    result = prefilter(thread, PrefilterOptions(recent_lines=3))

    assert result.window.blocks_considered == 3
    assert "pf_transfer" not in ids(result)


def test_threshold_overrides():
    thread = "S: 검찰입니다. 사건 관련 출석 바랍니다. 지금 2번출구로 와주세요"
    result = prefilter(thread, PrefilterOptions(threshold_soft=10, threshold_auto=40))

    assert result.threshold_auto == 40
    assert result.action == "auto"


def test_score_is_clamped():
    thread = (
        "S: 검찰입니다. 계좌 동결 예정. 지금 즉시 안전계좌로 이체하세요. 팀뷰어 설치 후 인증번호 알려주세요.\n"
        "S: 문화상품권 핀번호 보내고 현금 수거 기사님 방문합니다 https://bit.ly/x http://1.2.3.4/a.apk"
    )
    result = prefilter(thread)
    assert result.score == 100
    assert result.action == "auto"


def test_debug_lines_and_logging(caplog):
    caplog.set_level(logging.INFO, logger="scamscope.prefilter")
    result = prefilter("S: 인증번호 입력하세요 https://bit.ly/abc123", PrefilterOptions(debug=True))

    assert result.debug_lines
    assert result.debug_lines[0].startswith(result.signals[0].id)
    assert "Prefilter result" in caplog.text


def test_trig_ids_list_signals_then_combos():
    result = prefilter("S: 인증번호 입력하세요 https://bit.ly/abc123")
    assert result.trig_ids == [s.id for s in result.signals] + [c.id for c in result.combos]
