"""
window.py — Context Window Selector
===================================

Chooses which turns of a long thread are scored.

Modes:
    - rolling : the last ``max_messages`` turns (5..80, default 20)
    - sticky  : the last ``max_sticky_messages`` turns (40..300, default 160)
    - auto    : sticky from the first strong action demand (minus a
                backtrack of 0..12 turns), otherwise rolling, further limited
                to ``max_days`` (1..14) before the newest timestamp when at
                least two turns carry one

A non-empty thread always yields a non-empty selection.
"""

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Sequence, Tuple

from scamscope.models import CallContext, ContextInfo, ContextOptions
from scamscope.stages import has_amount_krw
from scamscope.threads import parse_header_and_content, parse_timestamp

_FLAGS = re.IGNORECASE

_SELF_ACK = re.compile(
    r'제가\s*한\s*건데|제가\s*한\s*거|제가\s*했|내가\s*했|내가\s*한|제가\s*바꿨|내가\s*바꿨|제가\s*변경|내가\s*변경'
    r'|제가\s*설정\s*바꿨|제가\s*설정했|응\s*내가|맞아\s*내가|내가\s*결제했', _FLAGS)

_ADVICE = re.compile(
    r'좋대|추천|권장|제일\s*안전|가장\s*안전|공식\s*고객센터|고객센터\s*번호|문의하는\s*게|문의가\s*안전|안전하게', _FLAGS)
_ADVICE_BREAKER = re.compile(
    r'압류|출석|수사|검찰|경찰|기소|체포|고지|미납|체납|과태료|벌금|환급금|대출|선납|보험료', _FLAGS)
_ADVICE_ACTION = re.compile(
    r'링크|https?://|(?<![a-z])otp(?![a-z])|인증번호|송금|이체|입금|납부|설치|원격|팀뷰어|anydesk|quicksupport', _FLAGS)

_OTP_WORD = re.compile(
    r'인증번호|(?<![a-z])otp(?![a-z])|오티피|승인\s*번호|보안\s*코드|확인\s*코드|(?<![a-z])ars(?![a-z])'
    r'|2\s*단계\s*인증|2fa|6\s*자리', _FLAGS)
_RELAY_VERB = re.compile(r'보내|알려|전달|말해|읽어|불러|캡처|말씀', _FLAGS)
_PAY_IMPERATIVE_VERB = re.compile(
    r'보내\s*줘|부쳐\s*줘|입금\s*해|송금\s*해|이체\s*해|납부\s*해|지불\s*해|충전\s*해', _FLAGS)
_PAY_NOUN = re.compile(r'납부|송금|이체|입금|지불|충전|선납|보험료|수수료', _FLAGS)
_PAY_ASK = re.compile(r'해주세요|하세요|하셔야|부탁|요청|바랍니다|주시|진행|처리|완료|필수|반드시', _FLAGS)
_INSTALL_VERB = re.compile(r'설치|다운로드|받아|깔아|실행|연결|접속|등록|인증', _FLAGS)
_INSTALL_OBJECT = re.compile(
    r'앱|어플|프로그램|원격|팀뷰어|teamviewer|anydesk|애니데스크|퀵서포트|quicksupport|뷰어|viewer|플러그인|plugin'
    r'|(?<![a-z])(?:apk|exe|msi|dmg|pkg)(?![a-z])', _FLAGS)
_PROTECTED_ACCOUNT = re.compile(r'안내\s*계좌|보호\s*계좌|안전\s*계좌|지정\s*계좌', _FLAGS)
_MOVE_FUNDS = re.compile(r'이체|송금|입금|옮기|이전', _FLAGS)

ROLLING_RANGE = (5, 80)
STICKY_RANGE = (40, 300)
BACKTRACK_RANGE = (0, 12)
DAYS_RANGE = (1, 14)


def is_self_ack_text(text: str) -> bool:
    """The receiver says they made the change themselves."""
    return bool(_SELF_ACK.search(text or ""))


def is_advice_only_thread(raw: str) -> bool:
    """Safety advice with no coercion vocabulary and no actionable request."""
    t = raw or ""
    has_advice = bool(_ADVICE.search(t)) and not _ADVICE_BREAKER.search(t)
    return has_advice and not _ADVICE_ACTION.search(t)


def has_strong_action_demand(text: str) -> bool:
    """OTP relay, payment imperative or KRW amount, install imperative, or a
    protected-account transfer."""
    s = text or ""
    otp_relay = bool(_OTP_WORD.search(s) and _RELAY_VERB.search(s))
    pay_demand = (
        bool(_PAY_IMPERATIVE_VERB.search(s))
        or bool(_PAY_NOUN.search(s) and _PAY_ASK.search(s))
        or has_amount_krw(s)
    )
    install_demand = bool(_INSTALL_VERB.search(s) and _INSTALL_OBJECT.search(s))
    safe_account = bool(_PROTECTED_ACCOUNT.search(s) and _MOVE_FUNDS.search(s))
    return otp_relay or pay_demand or install_demand or safe_account


@dataclass
class WindowSelection:
    """Selected turns as ``(original_index, text)`` pairs plus metadata."""
    selected: List[Tuple[int, str]]
    info: ContextInfo


def _clamp(n: int, bounds: Tuple[int, int]) -> int:
    lo, hi = bounds
    return max(lo, min(hi, int(n)))


def _tail(items: list, cap: int) -> list:
    return items if len(items) <= cap else items[len(items) - cap:]


def select_context_window(
    messages: Sequence[str],
    call: Optional[CallContext] = None,
    options: Optional[ContextOptions] = None,
) -> WindowSelection:
    """Pick the turns to score.

    Args:
        messages: Thread blocks in order.
        call: Call-context flags; ``otp_asked`` / ``remote_asked`` force the
            strong path of ``auto`` mode.
        options: Mode and bounds. Out-of-range bounds are clamped.

    Returns:
        WindowSelection with the kept turns and the reason string.
    """
    opts = options or ContextOptions()
    call = call or CallContext()

    mode = opts.mode
    max_messages = _clamp(opts.max_messages, ROLLING_RANGE)
    max_sticky = _clamp(opts.max_sticky_messages, STICKY_RANGE)
    backtrack = _clamp(opts.backtrack, BACKTRACK_RANGE)
    max_days = _clamp(opts.max_days, DAYS_RANGE)

    everything = [(i, m or "") for i, m in enumerate(messages)]
    total = len(everything)

    def done(kept: List[Tuple[int, str]], reason: str) -> WindowSelection:
        return WindowSelection(
            selected=kept,
            info=ContextInfo(mode=mode, kept=len(kept), dropped=total - len(kept), reason=reason),
        )

    if mode == "sticky":
        return done(_tail(everything, max_sticky), "sticky")
    if mode == "rolling":
        return done(_tail(everything, max_messages), f"rolling:{max_messages}")

    strong_by_call = call.otp_asked or call.remote_asked
    first_strong = -1
    for i, text in everything:
        content = parse_header_and_content(text).content or text
        if has_strong_action_demand(content):
            first_strong = i
            break

    if strong_by_call or first_strong >= 0:
        anchor = first_strong if first_strong >= 0 else total - max_sticky
        start = max(0, anchor - backtrack)
        kept = everything[start:start + max_sticky]
        reason = f"auto:strong@{first_strong + 1}" if first_strong >= 0 else "auto:strong(call)"
        return done(kept, reason)

    kept = _tail(everything, max_messages)

    stamps = []
    for i, text in kept:
        ts = parse_timestamp(text.split("\n", 1)[0])
        if ts is not None:
            stamps.append((i, ts))

    if len(stamps) >= 2:
        cutoff = max(ts for _, ts in stamps) - timedelta(days=max_days)
        recent = [i for i, ts in stamps if ts >= cutoff]
        min_idx = min(recent)
        kept = [item for item in kept if item[0] >= min_idx] or kept
        return done(kept, f"auto:weak(maxMessages={max_messages},maxDays={max_days})")

    return done(kept, f"auto:weak(maxMessages={max_messages})")
