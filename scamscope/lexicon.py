"""
lexicon.py — Rule & Pattern Catalog
===================================

Static vocabulary of the engine: keyword rules, regex pattern rules and the
host/brand tables used by the URL heuristics.

Every rule is an immutable ``Rule`` whose patterns are compiled once when the
catalog is built. Korean phrasing is primary, English tokens (OTP, APK,
AnyDesk, ...) are matched case-insensitively.

Stages:
    - info     : context only (authority, threat, urgency, alerts)
    - verify   : credential / OTP / link verification
    - install  : app, APK or remote-control installation
    - payment  : transfer, safe-account, cash delivery
"""

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Mapping, Pattern, Tuple


STAGES: Tuple[str, ...] = ("info", "verify", "install", "payment")
STAGE_RANK: Dict[str, int] = {s: i for i, s in enumerate(STAGES)}

_FLAGS = re.IGNORECASE


@dataclass(frozen=True)
class Rule:
    """A named detection rule with a base weight and compiled patterns."""
    id: str
    label: str
    stage: str
    weight: float
    patterns: Tuple[Pattern, ...]


@dataclass(frozen=True)
class RuleCatalog:
    """All rules scored by the message scorer, keyword rules first."""
    keyword_rules: Tuple[Rule, ...]
    pattern_rules: Tuple[Rule, ...]

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self.keyword_rules + self.pattern_rules

    def get(self, rule_id: str):
        for r in self.rules:
            if r.id == rule_id:
                return r
        return None


# ============================================================================
# Keyword rules: (id, label, stage, weight key, patterns)
# ============================================================================

_KEYWORD_SPECS: List[Tuple[str, str, str, str, List[str]]] = [
    ("otp", "인증번호/OTP 언급", "verify", "otp", [
        r'인증\s*번호|(?<![a-z])otp(?![a-z])|오티피|보안\s*코드|확인\s*코드|승인\s*번호|[4-8]\s*자리',
    ]),
    ("authority", "기관/수사기관 사칭", "info", "authority", [
        r'검찰(?:청)?|수사관|경찰(?:청|서)?|금감원|금융감독원|금융보안원|국세청|지방법원|법원|보안팀|보안\s*센터|사이버\s*수사',
    ]),
    ("threat", "위협/불이익 고지", "info", "threat", [
        r'가?압류|체포|구속|영장|기소|고소|처벌|벌금|과태료|차단|정지|동결|불이익|법적\s*(?:조치|책임)',
    ]),
    ("urgent", "긴급/시간 압박", "info", "urgency", [
        r'지금\s*바로|즉시|긴급|오늘\s*(?:안에|중으로|까지)|기한\s*내|서둘러|당장|마감\s*임박|지금',
    ]),
    ("transfer", "송금/이체 요구", "payment", "money", [
        r'송금|이체|입금',
    ]),
    ("safe_account", "안전계좌 유도", "payment", "safeAccount", [
        r'안전\s*계좌|보호\s*계좌|국가\s*안전\s*계좌|지정\s*계좌',
    ]),
    ("remote", "원격제어 앱 유도", "install", "installRemote", [
        r'원격\s*(?:지원|제어|접속|조종)|팀\s*뷰어|teamviewer|anydesk|애니\s*데스크|퀵\s*서포트|quick\s*support|화면\s*공유',
    ]),
    ("install_app", "앱 설치 유도", "install", "installApp", [
        r'앱\s*(?:을\s*)?(?:설치|깔)|어플\s*(?:을\s*)?(?:설치|깔)|보안\s*앱|백신\s*앱|설치\s*(?:해|하세요|하시|부탁)',
    ]),
    ("personalinfo", "개인정보 요구", "verify", "personalInfo", [
        r'주민\s*(?:등록)?\s*번호|계좌\s*번호|카드\s*번호|비밀\s*번호|신분증|여권\s*번호|보안\s*카드|공인\s*인증서',
    ]),
    ("account_verify", "계정/본인 확인 유도", "verify", "accountVerify", [
        r'본인\s*(?:확인|인증)|계정\s*(?:확인|인증|복구|잠금|잠김)|로그인\s*(?:시도|확인|차단)|명의\s*도용|이상\s*거래|비정상\s*(?:거래|접속)',
    ]),
    ("go_bank_atm", "은행/ATM 방문 지시", "payment", "goBankAtm", [
        r'(?:은행|atm|현금\s*인출기|자동화\s*기기).{0,12}(?:가서|가세요|가셔서|방문|이동)',
    ]),
    ("txn_alert", "결제/거래 알림", "info", "txnAlert", [
        r'결제\s*(?:승인|완료|알림|내역)|승인\s*내역|해외\s*결제|출금\s*(?:알림|완료)|거래\s*알림',
    ]),
    ("social", "메신저 채널 언급", "info", "social", [
        r'카카오톡|카톡|메신저|텔레그램|(?<![a-z])dm(?![a-z])',
    ]),
    ("messenger_phishing", "메신저 링크 접속 유도", "verify", "messengerPhishing", [
        r'(?:카톡|카카오톡|메신저|프로필|오픈\s*채팅).{0,20}(?:링크|url|주소).{0,20}(?:눌러|클릭|접속|들어가)',
    ]),
    ("government_benefit", "정부지원금/환급 미끼", "verify", "governmentBenefit", [
        r'지원금|보조금|환급금|장려금|재난\s*지원|민생\s*지원|정부\s*24|gov24',
    ]),
    ("ctx_secrecy", "비밀 유지 요구", "info", "secrecy", [
        r'비밀로|아무(?:에게|한테)도|누구(?:에게|한테)도|(?:가족|주변)(?:에게|한테)?도?\s*(?:말하지|알리지)|비밀\s*유지|보안\s*유지',
    ]),
    ("giftcard", "상품권/기프트카드 요구", "payment", "giftcard", [
        r'상품권|기프트\s*카드|gift\s*card|핀\s*번호',
    ]),
    ("link_mention", "링크 접속 지시", "verify", "linkMention", [
        r'(?:링크|url|주소).{0,12}(?:눌러|클릭|접속|들어가)',
    ]),
    ("job_lure", "고수익 알바 미끼", "info", "jobLure", [
        r'고수익\s*알바|고액\s*알바|재택\s*부업|당일\s*지급|일당\s*\d|건당\s*\d|단순\s*(?:작업|업무)',
    ]),
    ("invest_lure", "투자 수익 미끼", "info", "investLure", [
        r'리딩\s*방|수익\s*보장|원금\s*보장|고수익\s*투자|코인\s*투자|급등\s*종목',
    ]),
]


# ============================================================================
# Pattern rules: structural regexes scored the same way as keywords
# ============================================================================

_PATTERN_SPECS: List[Tuple[str, str, str, str, List[str]]] = [
    ("link", "URL 포함", "verify", "link", [
        r'https?://(?!drive\.google\.com\b)(?!docs\.google\.com\b)(?!github\.com\b)(?![^/\s)]*intranet\b)[^\s)]+',
    ]),
    ("shortener", "단축 URL", "verify", "shortener", [
        r'bit\.ly|(?<![a-z.])t\.co(?![a-z])|tinyurl|me2\.do|han\.gl',
    ]),
    ("apk", "APK/설치파일 유도", "install", "installRemote", [
        r'\.apk(?![a-z])|(?<![a-z])apk(?![a-z])|프로파일\s*설치|뷰어\s*설치|다운로드|다운\s*받',
    ]),
    ("ctx_pay_with_link", "결제/승인/알림 + 확인 링크", "verify", "threat", [
        r'(?:결제|이체|송금|승인|카드).{0,24}(?:알림|설정|확인|차단|해제|보안|보호).{0,40}https?://',
        r'(?:알림\s*설정|설정\s*확인|확인\s*링크|차단\s*처리).{0,40}https?://',
    ]),
    ("ctx_transfer_phrase", "금액/송금/입금 직접 요구", "payment", "money", [
        r'\d[\d,]+\s*(?:만\s*)?원.{0,20}(?:보내|부쳐|송금|이체|입금|납부)',
        r'(?:보내|부쳐|송금|이체|입금|납부).{0,20}\d[\d,]+\s*(?:만\s*)?원',
        r'(?:입금|충전).{0,20}(?:만\s*하면|하면\s*시작|후\s*시작|하면\s*됩니다|하면\s*돼)',
    ]),
]


def _compile(specs, weights: Mapping[str, float]) -> Tuple[Rule, ...]:
    return tuple(
        Rule(
            id=rule_id,
            label=label,
            stage=stage,
            weight=float(weights[weight_key]),
            patterns=tuple(re.compile(p, _FLAGS) for p in patterns),
        )
        for rule_id, label, stage, weight_key, patterns in specs
    )


def build_catalog(weights: Mapping[str, float]) -> RuleCatalog:
    """Compile keyword and pattern rules against a weight table."""
    return RuleCatalog(
        keyword_rules=_compile(_KEYWORD_SPECS, weights),
        pattern_rules=_compile(_PATTERN_SPECS, weights),
    )


# ============================================================================
# Host / brand tables
# ============================================================================

SUSPICIOUS_TLDS: FrozenSet[str] = frozenset([
    "xyz", "top", "shop", "click", "icu", "info", "work", "live", "loan",
    "support", "monster", "buzz", "cyou", "cfd", "sbs",
])

DOWNLOAD_EXTS: Tuple[str, ...] = (
    ".apk", ".exe", ".msi", ".dmg", ".pkg", ".scr", ".bat", ".cmd",
    ".ps1", ".zip", ".rar", ".7z",
)

# Brand token in the text -> domains the brand legitimately links to
BRAND_DOMAIN_ALLOW: Tuple[Tuple[Pattern, Tuple[str, ...]], ...] = tuple(
    (re.compile(p, _FLAGS), domains) for p, domains in [
        (r'국민은행|kb\s*국민|kbstar',  ("kbstar.com", "kbfg.com", "kbcard.com")),
        (r'신한',                        ("shinhan.com", "shinhanbank.com")),
        (r'우리은행|woori',              ("wooribank.com",)),
        (r'하나은행|(?<![a-z])hana(?![a-z])', ("hanafn.com", "hanabank.com")),
        (r'농협',                        ("nonghyup.com", "nhbank.com")),
        (r'기업은행|(?<![a-z])ibk(?![a-z])',   ("ibk.co.kr",)),
        (r'카카오\s*뱅크',               ("kakaobank.com",)),
        (r'토스',                        ("toss.im", "tossbank.com")),
        (r'케이\s*뱅크|k\s*뱅크',        ("kbanknow.com",)),
    ]
)

KR_BANK_HOST_SUFFIXES: Tuple[str, ...] = (
    "kbstar.com", "wooribank.com", "shinhan.com", "kebhana.com",
    "hanabank.com", "ibk.co.kr", "nonghyup.com", "sc.co.kr",
    "standardchartered.co.kr", "citibank.co.kr",
    "busanbank.co.kr", "knbank.co.kr", "imbank.co.kr", "dgb.co.kr",
    "jbbank.co.kr", "kjbank.com", "jejubank.co.kr",
    "kakaobank.com", "tossbank.com", "kbanknow.com",
)

# Not banks, but frequently impersonated as financial institutions
KR_FI_EXTRA_HOST_SUFFIXES: Tuple[str, ...] = (
    "epost.go.kr",
    "cu.co.kr",
    "kfcc.co.kr",
)

SHORTENER_HOSTS: FrozenSet[str] = frozenset([
    "t.co", "bit.ly", "tinyurl.com", "goo.gl", "rebrand.ly", "cutt.ly",
    "is.gd", "vo.la", "me2.do", "han.gl",
])

BANK_BRAND_TOKENS: Tuple[str, ...] = (
    "kbstar", "wooribank", "shinhan", "kebhana", "hanabank", "ibk",
    "nonghyup", "nh", "sc", "citibank", "busanbank", "knbank", "imbank",
    "dgb", "jbbank", "kjbank", "jejubank", "kakaobank", "tossbank",
    "kbanknow",
)

REDIRECT_PARAM_KEYS: Tuple[str, ...] = (
    "url", "u", "r", "redirect", "redirect_url", "redirecturl", "return",
    "returnurl", "continue", "next", "target",
)

INTERNAL_HOST_RE = re.compile(r'intranet|internal|corp|portal|servicenow|jira|confluence', _FLAGS)
