"""Real scam threads must still be detected; small talk must not be."""

import pytest

from scamscope import analyze_thread

SCAM_THREADS = [
    ("bank-otp", [
        "S: 안녕하세요",
        "S: KB국민은행 보안팀입니다. OTP 6자리 인증번호 알려주셔야 차단됩니다.",
    ]),
    ("safe-account", [
        "S: 금융감독원입니다. 고객님 계좌가 범죄에 연루되어 안전계좌로 지금 즉시 이체하셔야 합니다.",
    ]),
    ("remote-takeover", [
        "S: 고객님 명의가 도용되었습니다. 팀뷰어 설치하시고 인증번호 알려주세요.",
    ]),
    ("giftcard", [
        "S: 급하게 문화상품권 10만원권 5장 구매해서 핀번호 보내주세요",
    ]),
    ("prosecutor", [
        "S: 서울중앙지검 검찰 수사관입니다. 고객님 명의 계좌가 범죄에 연루되어 압류 예정입니다. "
        "지금 바로 출석하지 않으면 구속됩니다.",
    ]),
]

INNOCENT_THREADS = [
    ("greetings", ["S: 안녕하세요", "S: 잘 지내시죠?", "S: 필요한 거 있으면 말씀해주세요."]),
    ("weekend", ["S: 좋은 아침이에요!", "S: 주말 잘 보내셨어요?", "S: 내일 커피 한잔해요"]),
    ("thanks", ["S: 도와주셔서 감사합니다.", "S: 회의 잘 끝났어요.", "S: 좋은 하루 보내세요!"]),
]


@pytest.mark.parametrize("name, lines", SCAM_THREADS, ids=[n for n, _ in SCAM_THREADS])
def test_scam_thread_is_detected(name, lines):
    a = analyze_thread("\n".join(lines))

    assert a.risk_level in ("medium", "high"), f"{name}: score={a.score_total} stage={a.stage_peak}"
    assert a.prefilter.gate_pass
    assert a.hits


@pytest.mark.parametrize("name, lines", INNOCENT_THREADS, ids=[n for n, _ in INNOCENT_THREADS])
def test_innocent_thread_is_not_detected(name, lines):
    a = analyze_thread("\n".join(lines))

    assert a.risk_level == "low", f"{name}: hits={[h.rule_id for h in a.hits]}"
    assert not a.hard_high
