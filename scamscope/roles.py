"""
roles.py — Actor Role Classifier
================================

Decides who is speaking in a turn and whether that turn counts toward the
threat score.

    role        : S (sender / suspected scammer), R (receiver), U (unknown),
                  taken from the speaker label
    actor_hint  : demand / comply / neutral, inferred from the wording

Inclusion:
    - Thread has explicit S/R labels → only S turns, plus unlabeled turns
      that read as a demand
    - No labels anywhere → every turn except the ones that read as compliance
"""

import re
from typing import List, Optional, Pattern

_FLAGS = re.IGNORECASE

_OTP_WORDS = (r'인증번호|(?<![a-z])otp(?![a-z])|오티피|승인\s*번호|보안\s*코드|확인\s*코드'
              r'|(?<![a-z])ars(?![a-z])|2\s*단계\s*인증|6\s*자리')
_RELAY_VERBS = r'보내|알려|전달|말해|읽어|불러|캡처|말씀'

_OTP_RELAY = re.compile(rf'(?:{_OTP_WORDS}).*(?:{_RELAY_VERBS})|(?:{_RELAY_VERBS}).*(?:{_OTP_WORDS})', _FLAGS)

DEMAND_PATTERNS: List[Pattern] = [re.compile(p, _FLAGS) for p in [
    r'입금해|송금해|이체해|결제해|납부해|지불해|충전해',
    r'설치해|다운받아|다운로드해|원격|팀뷰어|anydesk|quicksupport',
    r'(?:링크|url).*(?:클릭|눌러)|클릭.*(?:해|하세요)',
    r'지금\s*(?:바로|즉시)|긴급|오늘\s*안에|기한\s*내',
]]

COMPLY_PATTERNS: List[Pattern] = [re.compile(p, _FLAGS) for p in [
    r'^\s*(?:네|예)(?![가-힣])',
    r'알겠|확인했',
    r'보냈|전송했',
    r'입금했|송금했|이체했|결제했|납부했|충전했',
    r'설치했|다운받았|다운로드했|클릭했|눌렀',
    r'인증번호|(?<![a-z])otp(?![a-z])|오티피|승인\s*번호|보안\s*코드|비밀번호|계좌번호|카드번호|주민번호',
]]

_SHORT_YES = re.compile(r'^\s*(?:네|예|알겠|알겠습니다)(?![a-z0-9])', _FLAGS)
SHORT_ACK_MAX_CHARS = 32

_SENDER_LABEL = re.compile(r'^(?:s|sender|발신|가해자)(?![a-z0-9_])', _FLAGS)
_RECEIVER_LABEL = re.compile(r'^(?:r|receiver|수신|사용자)(?![a-z0-9_])', _FLAGS)


def is_otp_relay_demand(content: str) -> bool:
    return bool(_OTP_RELAY.search(content or ""))


def classify_actor_hint(content: str) -> str:
    """Classify a turn as ``demand``, ``comply`` or ``neutral``.

    An OTP relay request is always a demand. Otherwise the demand and comply
    pattern families are counted: a short acknowledgement with any comply
    cue is compliance, two or more demand cues outweighing comply cues is a
    demand, two or more comply cues at least matching demand cues is
    compliance.
    """
    t = (content or "").strip()
    if not t:
        return "neutral"

    if is_otp_relay_demand(t):
        return "demand"

    d = sum(1 for r in DEMAND_PATTERNS if r.search(t))
    c = sum(1 for r in COMPLY_PATTERNS if r.search(t))

    short_yes = bool(_SHORT_YES.search(t)) and len(t) <= SHORT_ACK_MAX_CHARS
    if short_yes and c >= 1:
        return "comply"
    if d >= 2 and d > c:
        return "demand"
    if c >= 2 and c >= d:
        return "comply"
    return "neutral"


def role_from_label(speaker_label: Optional[str]) -> str:
    """Map a speaker label to S, R or U."""
    s = (speaker_label or "").strip()
    if _SENDER_LABEL.search(s):
        return "S"
    if _RECEIVER_LABEL.search(s):
        return "R"
    return "U"


def include_in_threat(role: str, actor_hint: str, has_explicit_role: bool) -> bool:
    """Whether a turn's hits count toward the thread score."""
    if has_explicit_role:
        return role == "S" or (role == "U" and actor_hint == "demand")
    return actor_hint != "comply"
