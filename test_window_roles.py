"""Thread splitting, context windows and actor roles."""

from scamscope.models import CallContext, ContextOptions
from scamscope.roles import classify_actor_hint, include_in_threat, role_from_label
from scamscope.threads import (
    has_explicit_role,
    normalize_text,
    parse_header_and_content,
    parse_timestamp,
    split_thread,
)
from scamscope.window import has_strong_action_demand, is_advice_only_thread, select_context_window


def chatter(n):
    return [f"잡담 {i}" for i in range(n)]


# ============================================================================
# Threads
# ============================================================================

def test_split_on_speaker_prefixes_and_blank_lines():
    assert split_thread("S: 첫 번째\n이어지는 줄\nR: 답장\n\n새 블록") == [
        "S: 첫 번째\n이어지는 줄",
        "R: 답장",
        "새 블록",
    ]


def test_split_on_chat_headers():
    thread = "[오후 3:21] 홍길동: 안녕하세요\n[오후 3:22] 김철수: 네 안녕하세요"
    assert len(split_thread(thread)) == 2


def test_split_keeps_continuation_lines_under_their_header():
    thread = "[오전 10:21] 홍길동: 안녕하세요\n오랜만이에요\nsender: 링크 보내드릴게요\n수신: 네"
    blocks = split_thread(thread)

    assert blocks == [
        "[오전 10:21] 홍길동: 안녕하세요\n오랜만이에요",
        "sender: 링크 보내드릴게요",
        "수신: 네",
    ]
    assert all(isinstance(b, str) for b in blocks)


def test_split_empty_thread():
    assert split_thread("   \n\n ") == []


def test_parse_speaker_prefix():
    turn = parse_header_and_content("S: 인증번호 알려주세요")
    assert turn.speaker_label == "S"
    assert turn.header is None
    assert turn.content == "인증번호 알려주세요"


def test_parse_kakao_header():
    turn = parse_header_and_content("[오후 3:21] 홍길동: 안녕하세요")
    assert turn.speaker_label == "홍길동"
    assert turn.header == "[오후 3:21] 홍길동: 안녕하세요"
    assert turn.content == "안녕하세요"


def test_parse_plain_block():
    turn = parse_header_and_content("그냥 문장입니다")
    assert (turn.header, turn.speaker_label, turn.content) == (None, None, "그냥 문장입니다")


def test_parse_timestamp_formats():
    assert parse_timestamp("2026-02-03 09:12 홍길동: 안녕").hour == 9
    assert parse_timestamp("2026.02.03 오후 3:21 홍길동: 안녕").hour == 15
    assert parse_timestamp("2026.02.03 오전 12:05 홍길동: 안녕").hour == 0
    assert parse_timestamp("2026-13-40 09:12 x") is None
    assert parse_timestamp("안녕하세요") is None


def test_explicit_role_detection():
    assert has_explicit_role("S: 안녕\nR: 네")
    assert has_explicit_role("발신: 안내드립니다")
    assert not has_explicit_role("안녕하세요\n반갑습니다")


def test_normalize_text():
    assert normalize_text("a\r\n\tb   c\n\n\n\nd") == "a\n b c\n\nd"


# ============================================================================
# Context window
# ============================================================================

def test_rolling_keeps_the_tail():
    sel = select_context_window(chatter(30), options=ContextOptions(mode="rolling", max_messages=10))

    assert [i for i, _ in sel.selected] == list(range(20, 30))
    assert (sel.info.kept, sel.info.dropped, sel.info.reason) == (10, 20, "rolling:10")


def test_rolling_bounds_are_clamped():
    sel = select_context_window(chatter(30), options=ContextOptions(mode="rolling", max_messages=1))
    assert sel.info.kept == 5


def test_sticky_caps_at_tail():
    sel = select_context_window(chatter(300), options=ContextOptions(mode="sticky", max_sticky_messages=50))
    assert sel.info.kept == 50
    assert sel.selected[0][0] == 250


def test_auto_anchors_on_first_strong_demand():
    messages = chatter(30)
    messages[7] = "인증번호 6자리 보내주세요"
    sel = select_context_window(messages)

    assert sel.info.reason == "auto:strong@8"
    assert sel.selected[0][0] == 3
    assert sel.info.kept == 27


def test_auto_without_demand_is_weak_rolling():
    sel = select_context_window(chatter(30))
    assert sel.info.reason == "auto:weak(maxMessages=20)"
    assert sel.info.kept == 20


def test_auto_call_flags_force_strong_path():
    sel = select_context_window(chatter(30), call=CallContext(remote_asked=True))
    assert sel.info.reason == "auto:strong(call)"
    assert sel.info.kept == 30


def test_auto_limits_by_days():
    messages = [
        "2026-01-01 10:00 김: 오래된 대화",
        "2026-01-02 10:00 김: 또 오래된 대화",
        "2026-01-10 10:00 김: 최근 대화",
        "2026-01-11 10:00 김: 가장 최근",
    ]
    sel = select_context_window(messages)

    assert [i for i, _ in sel.selected] == [2, 3]
    assert sel.info.reason == "auto:weak(maxMessages=20,maxDays=3)"


def test_non_empty_thread_never_yields_empty_selection():
    for mode in ("auto", "rolling", "sticky"):
        sel = select_context_window(["하나"], options=ContextOptions(mode=mode))
        assert sel.selected == [(0, "하나")]


def test_strong_action_demand_cues():
    assert has_strong_action_demand("인증번호 알려주세요")
    assert has_strong_action_demand("50,000원 입금 부탁드려요")
    assert has_strong_action_demand("팀뷰어 앱 설치하세요")
    assert has_strong_action_demand("안전계좌로 이체하세요")
    assert not has_strong_action_demand("내일 점심 어때요?")


def test_advice_only_thread():
    assert is_advice_only_thread("고객센터 공식 번호로 문의하는 게 제일 안전하대요")
    assert not is_advice_only_thread("고객센터 공식 번호로 문의하는 게 안전하지만 지금 링크로 확인하세요")


# ============================================================================
# Roles
# ============================================================================

def test_otp_relay_is_a_demand():
    assert classify_actor_hint("인증번호 6자리 보내주세요") == "demand"


def test_short_acknowledgement_is_compliance():
    assert classify_actor_hint("네 알겠습니다") == "comply"


def test_two_demand_cues():
    assert classify_actor_hint("지금 바로 송금해 주세요 그리고 팀뷰어 켜세요") == "demand"


def test_neutral_text():
    assert classify_actor_hint("내일 회의는 3시입니다") == "neutral"
    assert classify_actor_hint("") == "neutral"


def test_role_labels():
    assert role_from_label("S") == "S"
    assert role_from_label("sender") == "S"
    assert role_from_label("수신") == "R"
    assert role_from_label("홍길동") == "U"
    assert role_from_label(None) == "U"


def test_threat_scope():
    # explicit roles: sender turns, plus unlabeled demands
    assert include_in_threat("S", "neutral", True)
    assert not include_in_threat("R", "demand", True)
    assert include_in_threat("U", "demand", True)
    assert not include_in_threat("U", "neutral", True)
    # no roles: everything but compliance
    assert include_in_threat("U", "neutral", False)
    assert not include_in_threat("U", "comply", False)
