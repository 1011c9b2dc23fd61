"""
prefilter.py — Prefilter Gate
=============================

Cheap first pass over the sender side of a thread. Decides whether the full
engine should run (``gate_pass``) and how loudly a client should react
(``action``).

Signal families:
    - URL signals       : presence, shortener, http, IP host, punycode,
                          redirect params, download links, bank look-alikes
    - Display mismatch  : markdown / client link text pointing elsewhere
    - Bare link         : message that is little more than a link
    - Text signals      : keyword families (transfer, OTP, authority, ...)
    - Context signals   : unsaved contact, explicit user actions, resolver
    - Combos            : bonuses for dangerous pairs of the above

Score = Σ best-per-id points + Σ combo points, clamped to [0, 100].

    score >= auto  → "auto"
    score >= soft  → "soft"
    otherwise      → "none"

An explicit "open URL" action with any URL present forces "auto".
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Set, Tuple, Union

from scamscope.config import EngineConfig, default_config
from scamscope.lexicon import KR_BANK_HOST_SUFFIXES, KR_FI_EXTRA_HOST_SUFFIXES, SHORTENER_HOSTS
from scamscope.models import (
    LinkCandidate,
    PrefilterContext,
    PrefilterOptions,
    PrefilterResult,
    PrefilterSignal,
    PrefilterWindow,
    RedirectError,
)
from scamscope.urls import (
    count_dots,
    domain_tokens,
    extract_markdown_links,
    extract_urls_loose,
    has_download_ext,
    has_redirect_param,
    host_has_brand_token,
    host_matches,
    is_ip_host,
    is_official_by_suffix,
    is_punycode_host,
    looks_bank_claim_context,
    norm_host,
    normalize_to_url_string,
    path_and_query,
    redirect_param_chain,
    registrable_domain,
    safe_parse_url,
    typosquat_match,
    url_host,
)

logger = logging.getLogger(__name__)

_FLAGS = re.IGNORECASE

MAX_LINK_CANDIDATES = 12
EVIDENCE_WINDOW = 24
DEBUG_LINES_MAX = 24
GATE_SCORE_CAP = 18

_SENDER_LINE = re.compile(r'^\s*S\s*:\s*(.*)$', re.IGNORECASE | re.MULTILINE)
_STAMP_PREFIX = (
    r'(?:\d{4}[-./]\d{2}[-./]\d{2}[ T]\d{2}:\d{2}(?::\d{2})?'
    r'|\d{4}[.\-/]\d{1,2}[.\-/]\d{1,2}\s+(?:오전|오후)?\s*\d{1,2}:\d{2})'
)
_LEADING_STAMP = re.compile(r'^\s*' + _STAMP_PREFIX + r'\s*')
_LEADING_ROLE = re.compile(r'^\s*(?:S|R)\s*:\s*', re.IGNORECASE)
_LEADING_STAMP_ML = re.compile(r'^\s*' + _STAMP_PREFIX + r'\s*', re.MULTILINE)
_LEADING_ROLE_ML = re.compile(r'^\s*(?:S|R)\s*:\s*', re.IGNORECASE | re.MULTILINE)

_ZERO_WIDTH = re.compile('[\u200b-\u200f\ufeff]')
_ZERO_WIDTH_ENCODED = re.compile(r'%E2%80%8B|%E2%80%8C|%E2%80%8D|%EF%BB%BF', re.IGNORECASE)
_AT_AUTHORITY = re.compile(r'https?://[^\s/]*(?:@|%40)', re.IGNORECASE)
_NON_ASCII = re.compile(r'[^\x00-\x7f]')


# ============================================================================
# Text signal table: (id, label, points, pattern)
# ============================================================================

TEXT_SIGNALS: List[Tuple[str, str, int, Pattern]] = [
    (sid, label, pts, re.compile(p, _FLAGS)) for sid, label, pts, p in [
        # ---- strong ----
        ("pf_safe_account",    "안전/보호계좌 키워드",           32, r'안전\s*계좌|보호\s*계좌|보호조치\s*계좌|자산\s*이동'),
        ("pf_transfer",        "송금/결제 유도",                 28, r'송금|이체|입금|결제|납부|보증보험료|수수료\s*입금'),
        ("pf_giftcard",        "상품권/기프트카드/핀번호 요구",  38,
         r'상품권|문화\s*상품권|문상|해피\s*머니|구글\s*기프트|google\s*gift|기프트\s*카드|gift\s*card'
         r'|핀\s*번호|(?<![a-z])pin\s*(?:번호|code)|바코드'),
        ("pf_crypto",          "코인/지갑주소 송금 유도",        34,
         r'(?<![a-z])(?:usdt|btc|eth|crypto|wallet|trc20|erc20|binance|upbit|bithumb)(?![a-z])'
         r'|코인|가상\s*자산|암호\s*화폐|지갑\s*주소|바이낸스|업비트|빗썸'),
        ("pf_account_rental",  "통장/계좌 대여·수령대행 유도",   36,
         r'통장\s*대여|계좌\s*대여|통장\s*임대|계좌\s*임대|대포\s*통장|명의\s*대여|수령\s*대행|자금\s*세탁|범죄\s*자금'),
        ("pf_qr_pay",          "QR/간편결제 결제 유도",          22,
         r'(?<![a-z])qr\s*코드|큐알\s*코드|간편\s*결제|토스|카카오\s*페이|kakao\s*pay|네이버\s*페이|naver\s*pay'),
        ("pf_remote",          "원격/화면공유 유도",             26, r'원격|원격지원|팀뷰어|teamviewer|anydesk|quicksupport|화면\s*공유|접속코드'),
        ("pf_otp",             "인증번호/OTP 언급",              18,
         r'인증번호|(?<![a-z])otp(?![a-z])|오티피|2단계\s*인증|보안코드|확인번호|6\s*자리'),
        ("pf_cash_pickup",     "현금 수거/퀵 전달 유도",         40,
         r'현금\s*(?:수거|전달|봉투|뭉치)|퀵|퀵서비스|대면\s*(?:전달|수거)|기사님\s*(?:수거|방문)'
         r'|직접\s*(?:전달|수거)|택시\s*(?:수거|전달)|봉투를\s*준비'),

        # ---- medium ----
        ("pf_authority",       "기관/금융사 사칭 톤",            20,
         r'(?:검찰|검찰청|수사관|경찰|경찰청|사이버\s*수사|금감원|금융감독원|금융보안원|국세청|법원|카드사|은행|고객센터)'
         r'\s*(?:입니다|안내|연락|통지)'),
        ("pf_threat",          "위협/불이익 압박",               20,
         r'지급\s*정지|출금\s*정지|거래\s*정지|계좌\s*동결|통장\s*동결|동결\s*조치|압류|가압류|추심|고소|고발|처벌'
         r'|접속\s*차단|차단\s*예정|계정\s*정지|이용\s*제한|불이익|법적\s*조치|수사\s*대상|영장'),
        ("pf_account_freeze",  "계좌/거래 정지·압류 위협",       20,
         r'(?:계좌|통장|거래|출금|카드).{0,20}(?:동결|정지|중지|차단|잠금|잠김|제한|압류|가압류)'),
        ("pf_account_verify",  "계정/계좌 확인·보안점검 유도",   18,
         r'이상\s*거래|비정상\s*거래|부정\s*사용|부정\s*결제|명의\s*도용|계좌\s*도용|계정\s*도용|해킹|탈취|침해'
         r'|로그인\s*(?:시도|차단|제한|이상)|비밀번호\s*(?:변경|초기화|재설정)'
         r'|계정\s*(?:확인|조회|인증|검증|점검|복구|정지|잠김|잠금|차단|해제)'
         r'|아이디\s*(?:확인|복구|찾기)|(?<![a-z])id\s*(?:확인|복구)'
         r'|본인\s*(?:확인|인증)|인증\s*절차|승인\s*내역|결제\s*내역|해외\s*결제'),
        ("pf_urgency",         "긴급/시간압박",                  10, r'지금|즉시|바로|긴급|오늘\s*안에|기한\s*내|통화\s*끊지\s*마'),
        ("pf_pii",             "개인정보/신분증 요청",           16,
         r'(?:여권|신분증|주민번호|계좌(?:번호)?|카드번호|비밀번호|주소|연락처|이름|인증번호|(?<![a-z])otp(?![a-z])|오티피)'
         r'\s*(?:보내|알려|입력|등록|기재|작성|제출|전송|확인)'),
        ("pf_link_verbs",      "링크 클릭/접속 유도",            12,
         r'(?:링크|(?<![a-z])url|주소)(?:\s*(?:로|에서|를|에|으로))?.{0,16}'
         r'(?:접속|클릭|눌러|확인|들어가|진행|신청|조회|인증)'),
        ("pf_messenger_profile", "메신저/프로필 확인 맥락",       8,
         r'카톡|카카오톡|카카오\s*톡|카카오|(?<![a-z])kakao|톡방|채팅방|오픈\s*채팅|프로필|상태\s*메시지'
         r'|사진|영상|문서|첨부|메신저|메시지|(?<![a-z])dm(?![a-z])|쪽지'),
        ("pf_contact_move",    "오픈채팅/텔레그램 등 이동 유도", 18,
         r'오픈\s*채팅|open\s*chat|openchat|텔레그램|telegram|카카오\s*오픈|오픈\s*카톡|라인'
         r'|(?<![a-z])line(?![a-z])|디스코드|discord|1:1|개인\s*톡'),
        ("pf_visit_place",     "특정 장소 방문/이동 유도",       18,
         r'방문|내방|출석|출두|집결|모여|오세요|오셔|오시면|이동해\s*주세요|현장|교육장|면접장|사무실|지점'
         r'|공항|터미널|\d*\s*번\s*출구|출구|오시는\s*길|로비|주차장|\d+\s*층|\d+\s*호(?![가-힣])'),
        ("pf_job_hook",        "고수익/알바/부업 훅",            10,
         r'고수익|고액|단기|알바|아르바이트|재택|부업|당일\s*지급|초보\s*가능|모집|구인|급구'),
        ("pf_otp_demand",      "인증번호 전달/입력 요구",        22,
         r'(?:인증번호|(?<![a-z])otp(?![a-z])|오티피).*(?:보내|알려|불러|읽어|전달|캡처|스크린샷|입력)'),
    ]
]

_BENEFIT_HOOK = re.compile(
    r'지원금|보조금|환급|환불|재난\s*지원금|민생\s*지원금|소상공인\s*지원|근로\s*장려금|자녀\s*장려금|청년\s*지원'
    r'|대상자\s*(?:조회|확인)|신청\s*(?:가능|대상)|미수령|추가\s*지급|정부\s*24|gov\s*24', _FLAGS)
_BENEFIT_LINK = re.compile(r'링크|(?<![a-z])url|주소|https?://|www\.|hxxp|\[\.\]', _FLAGS)
_BENEFIT_PII = re.compile(
    r'계좌|카드|비밀번호|주민번호|신분증|본인\s*인증|로그인|인증번호|(?<![a-z])otp(?![a-z])|오티피|입력|등록', _FLAGS)

# Whole-thread hints that open the gate even when the recent-line window
# clipped the cue.
_GATE_HINTS: List[Pattern] = [re.compile(p, _FLAGS) for p in [
    r'(?:계\s*정|아이\s*디|(?<![a-z])id(?![a-z])|로그\s*인|비밀\s*번호).{0,48}'
    r'(?:도\s*용|해\s*킹|탈\s*취|잠\s*김|잠\s*금|정\s*지|차\s*단|복\s*구|확\s*인|인\s*증|점\s*검)',
    r'이상\s*거래|비정상\s*거래|부정\s*사용|부정\s*결제|명의\s*도용|계\s*좌\s*도용|계\s*정\s*도용|해외\s*결제|승인\s*내역|결제\s*내역',
    r'지원금|보조금|환급|환불|장려금|바우처|쿠폰|재난\s*지원|민생\s*지원|소상공인\s*지원|청년\s*지원'
    r'|대상자\s*(?:조회|확인)|정부\s*24|gov\s*24',
    r'(?:카\s*톡|카카오\s*톡|카카오|kakao|오픈\s*채팅|텔레그램|telegram|프로필|채팅방|톡방|(?<![a-z])dm(?![a-z])|쪽지)'
    r'.{0,64}(?:링크|(?<![a-z])url|주소|접속|클릭|확인|초대)',
    r'(?:링크|(?<![a-z])url|주소)(?:\s*(?:로|에서|를|에|으로))?.{0,24}(?:클릭|접속|눌러|확인|들어가|진행|신청|조회|인증)',
]]

_GATE_HINT_IDS = frozenset([
    "pf_account_verify", "pf_account_freeze", "pf_benefit_hook", "pf_benefit_link_mention",
    "pf_benefit_pii", "pf_link_verbs",
])


# ============================================================================
# Helpers
# ============================================================================

def sender_only_text(thread_text: str) -> str:
    """Content of the ``S:`` lines, or the whole text when there are none."""
    raw = (thread_text or "").replace("\r\n", "\n")
    lines = [m.group(1).strip() for m in _SENDER_LINE.finditer(raw) if m.group(1).strip()]
    return "\n".join(lines) if lines else raw


def recent_lines(text: str, limit: int) -> List[str]:
    lines = [ln.strip() for ln in (text or "").replace("\r\n", "\n").strip().split("\n")]
    lines = [ln for ln in lines if ln]
    return lines[-limit:] if len(lines) > limit else lines


def _strip_line_prefix(s: str) -> str:
    s = (s or "").replace("\r\n", "\n").strip()
    s = _LEADING_STAMP.sub("", s, count=1)
    s = _LEADING_ROLE.sub("", s, count=1)
    return s.strip()


def points(
    sid: str,
    label: str,
    pts: float,
    evidence: Union[None, str, Sequence[str]] = None,
) -> PrefilterSignal:
    """Build a signal; matches lose their timestamp and ``S:``/``R:`` prefix."""
    if evidence is None:
        raw: List[str] = []
    elif isinstance(evidence, str):
        raw = [evidence]
    else:
        raw = [str(m) for m in evidence if m]

    matches = [m for m in (_strip_line_prefix(x) for x in raw) if m]
    return PrefilterSignal(
        id=sid,
        label=label,
        points=pts,
        matches=matches or None,
        evidence=" | ".join(matches).strip() or None,
    )


def _evidence(text: str, m: re.Match, window: int = EVIDENCE_WINDOW) -> str:
    start = max(0, m.start() - window)
    end = min(len(text), m.end() + window)
    snippet = re.sub(r'\s+', " ", text[start:end]).strip()
    return ("…" if start > 0 else "") + snippet + ("…" if end < len(text) else "")


def _dedupe(items: Iterable[str]) -> List[str]:
    out: List[str] = []
    for x in items:
        if x and x not in out:
            out.append(x)
    return out


# ============================================================================
# Signal scorers
# ============================================================================

def score_context_signals(ctx: Optional[PrefilterContext]) -> List[PrefilterSignal]:
    out: List[PrefilterSignal] = []
    if ctx is None:
        return out

    if ctx.is_saved_contact is False:
        out.append(points("pf_unknown_contact", "저장되지 않은 번호/대화상대", 14))

    acts = ctx.explicit_actions
    copy_n = max(0, int(acts.copy_url))
    open_n = max(0, int(acts.open_url))
    inst_n = max(0, int(acts.install_click))

    if copy_n > 0:
        out.append(points("pf_act_copy_url", "행동: URL 복사 시도", 16, [f"x{copy_n}"]))
    # open_url only marks the trigger; its risk comes from the URL itself
    if open_n > 0:
        out.append(points("pf_act_open_url", "행동: URL 열기 시도", 0, [f"x{open_n}"]))
    if inst_n > 0:
        out.append(points("pf_act_install_click", "행동: 설치/다운로드 클릭", 24, [f"x{inst_n}"]))

    rr = ctx.resolved
    if rr is not None and rr.final_url:
        parts = safe_parse_url(normalize_to_url_string(rr.final_url))
        if parts:
            fh = norm_host(parts.hostname or "")
            if fh and (is_punycode_host(fh) or count_dots(fh) >= 4):
                out.append(points("pf_ctx_final_host_susp", "컨텍스트: 최종 목적지 호스트 의심", 12, [fh]))
            if rr.error is not None and rr.error != RedirectError.MAX_HOPS_REACHED:
                out.append(points("pf_ctx_resolve_error", "컨텍스트: 리다이렉트 추적 실패", 8, [rr.error.value]))
            if rr.hops >= 3:
                out.append(points("pf_ctx_many_redirects", "컨텍스트: 리다이렉트 단계 과다", 10, [f"hops={rr.hops}"]))

    return out


def _token_matches_host(host: str, token: str) -> bool:
    h, t = norm_host(host), norm_host(token)
    if not h or not t:
        return False
    if h == t or h.endswith("." + t) or t.endswith("." + h):
        return True
    hr, tr = registrable_domain(h), registrable_domain(t)
    return bool(hr and tr and hr == tr)


def score_display_mismatch(
    candidates: Sequence[LinkCandidate],
    official_suffixes: Sequence[str],
) -> List[PrefilterSignal]:
    """Link text naming one domain while the href points at another."""
    matches: List[str] = []

    for lc in list(candidates)[:10]:
        parts = safe_parse_url(normalize_to_url_string(lc.href or ""))
        if not parts:
            continue
        host = norm_host(parts.hostname or "")
        text = (lc.text or "").strip()
        if not text:
            continue

        tokens = domain_tokens(text)[:4]
        if not tokens:
            continue

        if not any(_token_matches_host(host, tok) for tok in tokens):
            matches.append(f"{tokens[0]} → {host}")

        text_bankish = any(is_official_by_suffix(tok, official_suffixes) for tok in tokens)
        if text_bankish and not is_official_by_suffix(host, official_suffixes):
            matches.append(f"(bank-text) {tokens[0]} → {host}")

    if not matches:
        return []
    return [points("pf_url_display_mismatch", "표시 링크 ≠ 실제 링크 의심", 34, matches)]


def score_url_signals(
    all_text: str,
    urls: Sequence[str],
    allow_hosts: Sequence[str],
    official_suffixes: Sequence[str],
    max_hops: int = 5,
) -> List[PrefilterSignal]:
    """Per-URL classification folded into one signal per family."""
    found: Dict[str, List[str]] = {}
    hosts: Set[str] = set()
    bank_claim = looks_bank_claim_context(all_text)

    def flag(family: str, match: str) -> None:
        found.setdefault(family, []).append(match)

    for raw in urls:
        raw_str = str(raw or "")
        norm = normalize_to_url_string(raw_str)
        parts = safe_parse_url(norm)
        if not parts:
            continue

        host = norm_host(parts.hostname or "")
        path = path_and_query(parts)
        if host:
            hosts.add(host)

        allowed = any(host_matches(host, a) for a in allow_hosts)
        official = is_official_by_suffix(host, official_suffixes)

        if parts.scheme.lower() == "http":
            flag("generic", norm)
            flag("http", norm)
        if host in SHORTENER_HOSTS:
            flag("generic", host)
            flag("shortener", host)
        if is_ip_host(host):
            flag("generic", host)
            flag("ip", host)
        if is_punycode_host(host):
            flag("generic", host)
            flag("puny", host)
        if count_dots(host) >= 4:
            flag("generic", host)
            flag("deep", host)

        if parts.username or parts.password or _AT_AUTHORITY.search(norm):
            flag("at", norm)
        if _ZERO_WIDTH.search(raw_str) or _ZERO_WIDTH_ENCODED.search(norm):
            flag("zero_width", norm)
        netloc_host = parts.netloc.rsplit("@", 1)[-1].split(":", 1)[0]
        if netloc_host and _NON_ASCII.search(netloc_host):
            flag("non_ascii", netloc_host.lower())
        if "//" in path or "%2f%2f" in path or "%5c%5c" in path:
            flag("double_slash", norm)

        if has_redirect_param(parts):
            chain = redirect_param_chain(norm, max_hops)
            flag("redirect", norm)
            last_host = url_host(chain[-1]) if len(chain) >= 2 else ""
            if last_host:
                flag("generic", f"{norm} -> {last_host} (hops={len(chain) - 1})")
            else:
                flag("generic", norm)

            if not official and not allowed:
                for hop in chain[1:]:
                    dest = url_host(hop)
                    if dest and is_official_by_suffix(dest, official_suffixes):
                        flag("redirect_official", f"{host} -> {dest}")
                        break

        if has_download_ext(path):
            flag("generic", norm)
            flag("download", norm)

        brand = host_has_brand_token(host)
        if brand and not official and (len(brand) > 3 or bank_claim):
            flag("bank_brand", f"{brand}@{host}")
            flag("bank", f"{brand}@{host}")

        if not allowed:
            squat = typosquat_match(host, official_suffixes, bank_claim)
            if squat:
                flag("bank_typosquat", squat.describe())
                flag("bank", squat.describe())

        if bank_claim and not official and not allowed:
            flag("bank_claim", host)
            flag("bank", host)

    out: List[PrefilterSignal] = []
    url_count = len(urls)
    unique_hosts = len(hosts)
    generic = found.get("generic", [])
    bank = found.get("bank", [])

    if url_count > 0:
        out.append(points("pf_url_present", "URL 포함", 8, list(urls)))
    if url_count >= 3:
        pts = 18 if url_count >= 8 else 14 if url_count >= 5 else 10
        out.append(points("pf_url_many", "링크 다수", pts, [f"count={url_count}"]))
    if unique_hosts >= 3:
        out.append(points("pf_url_many_hosts", "서로 다른 도메인 다수", 18 if unique_hosts >= 6 else 12,
                          [f"hosts={unique_hosts}"]))

    families = [
        ("shortener",         "pf_url_shortener",              "단축 URL",                          22, generic),
        ("http",              "pf_url_http",                   "HTTP(비TLS) URL",                   20, generic),
        ("ip",                "pf_url_ip_host",                "IP 호스트 URL",                     24, generic),
        ("puny",              "pf_url_punycode",               "훼이크 도메인(푸니코드) 가능",      18, generic),
        ("deep",              "pf_url_deep_sub",               "과도한 서브도메인",                 12, generic),
        ("redirect",          "pf_url_redirect_param",         "리다이렉트 파라미터 포함",          16, generic),
        ("download",          "pf_url_download",               "설치/압축 파일 링크",               35, generic),
        ("at",                "pf_url_at_sign",                "URL에 '@'로 실제 주소 숨김",        22, None),
        ("redirect_official", "pf_url_redirect_to_official",   "리다이렉트가 공식 도메인으로 유도", 24, None),
        ("zero_width",        "pf_url_zero_width",             "URL에 숨김 문자(제로폭) 가능",      18, None),
        ("non_ascii",         "pf_url_non_ascii",              "URL 호스트에 비ASCII 문자 포함",    14, None),
        ("double_slash",      "pf_url_double_slash",           "URL 경로 우회(//, 인코딩) 가능",    10, None),
        ("bank_brand",        "pf_url_bank_brand",             "은행명/브랜드 토큰 포함(비공식)",   24, bank),
        ("bank_typosquat",    "pf_url_bank_typosquat",         "은행 도메인 유사(1~2글자 차이)",    30, bank),
        ("bank_claim",        "pf_url_bank_claim_nonofficial", "은행 사칭 맥락 + 비공식 링크",      18, bank),
    ]
    for family, sid, label, pts, shared in families:
        own = found.get(family)
        if own:
            out.append(points(sid, label, pts, _dedupe(shared if shared is not None else own)))

    if url_count >= 3 and unique_hosts >= 3:
        out.append(points("pf_url_many_mix", "링크 다수 + 도메인 다수", 10))

    return out


def score_bare_link(all_text: str, urls: Sequence[str]) -> List[PrefilterSignal]:
    """A message that carries almost nothing but a link."""
    t = (all_text or "").strip()
    if not urls or not t:
        return []

    stripped = t
    for u in list(urls)[:6]:
        if not u:
            continue
        stripped = stripped.replace(u, " ")
        u_norm = normalize_to_url_string(u)
        if u_norm and u_norm != u:
            stripped = stripped.replace(u_norm, " ")

    meaningful = re.sub(r'[^0-9a-zA-Z가-힣]', "", stripped)
    lines = len([ln for ln in t.split("\n") if ln])
    if len(meaningful) <= 4 and lines <= 2:
        return [points("pf_url_bare_link", "링크만 던짐(스팸/피싱 흔함)", 22, [urls[0]])]
    return []


def score_text_signals(all_text: str) -> List[PrefilterSignal]:
    t = all_text or ""
    out: List[PrefilterSignal] = []

    for sid, label, pts, pattern in TEXT_SIGNALS:
        m = pattern.search(t)
        if m:
            out.append(points(sid, label, pts, _evidence(t, m)))

    m = _BENEFIT_HOOK.search(t)
    if m:
        ev = _evidence(t, m)
        out.append(points("pf_benefit_hook", "지원금/환급/대상자 조회 미끼", 12, ev))
        if _BENEFIT_LINK.search(t):
            out.append(points("pf_benefit_link_mention", "지원금/환급 + 링크/URL 언급", 18, ev))
        if _BENEFIT_PII.search(t):
            out.append(points("pf_benefit_pii", "지원금/환급 + 민감정보/계좌 입력 유도", 20, ev))

    return out


def score_combos(
    urls: Sequence[str],
    sig_ids: Set[str],
    ctx: Optional[PrefilterContext],
) -> List[PrefilterSignal]:
    has_url = bool(urls)
    has_otp = "pf_otp" in sig_ids or "pf_otp_demand" in sig_ids
    has_dl = "pf_url_download" in sig_ids
    has_xfer = "pf_transfer" in sig_ids
    pressure = "pf_urgency" in sig_ids or "pf_threat" in sig_ids

    rows = [
        (has_url and has_otp,                              "pf_combo_url_otp",          "조합: 링크 + 인증번호",      18),
        ("pf_remote" in sig_ids and has_otp,               "pf_combo_remote_otp",       "조합: 원격 + 인증번호",      22),
        ("pf_safe_account" in sig_ids and has_xfer,        "pf_combo_safe_xfer",        "조합: 안전계좌 + 이체",      26),
        (has_xfer and pressure,                            "pf_combo_xfer_pressure",    "조합: 이체 + 압박",          18),
        (has_dl and pressure,                              "pf_combo_install_pressure", "조합: 설치링크 + 압박",      18),
        ("pf_url_shortener" in sig_ids and has_otp,        "pf_combo_short_otp",        "조합: 단축URL + OTP",        20),
        ("pf_url_display_mismatch" in sig_ids and (has_otp or has_dl or has_xfer),
                                                           "pf_combo_mismatch_strong",  "조합: 표시≠실링크 + 강행동", 18),
        ("pf_unknown_contact" in sig_ids and has_url,      "pf_combo_unknown_url",      "조합: 미저장 번호 + 링크",   12),
    ]
    out = [points(sid, label, pts) for ok, sid, label, pts in rows if ok]

    acts = ctx.explicit_actions if ctx is not None else None
    if acts is not None:
        if acts.copy_url + acts.install_click > 0 and (has_url or has_dl or has_otp):
            out.append(points("pf_combo_explicit_act", "조합: 명시적 행동 + 위험 신호", 14))
        if acts.open_url > 0 and has_url:
            out.append(points("pf_combo_open_url", "트리거: 클릭 발생 + 링크 존재", 0))

    return out


def debug_lines(signals: Sequence[PrefilterSignal]) -> List[str]:
    """One human-readable line per signal: ``id · label pts=N · "snippet"``."""
    lines = []
    for s in list(signals)[:DEBUG_LINES_MAX]:
        snippet = s.evidence or (s.matches[0] if s.matches else "")
        snippet = re.sub(r'\s+', " ", snippet).strip()
        if len(snippet) > 90:
            snippet = snippet[:90] + "…"
        head = s.id + (f" · {s.label}" if s.label else "")
        if s.points:
            head += f" pts={s.points:g}"
        lines.append(f'{head} · "{snippet}"' if snippet else head)
    return lines


def _gate_lite(raw: str) -> str:
    s = (raw or "").replace("\r\n", "\n")
    s = _LEADING_STAMP_ML.sub("", s)
    s = _LEADING_ROLE_ML.sub("", s)
    return re.sub(r'\s+', " ", s).strip()


# ============================================================================
# Public API
# ============================================================================

def prefilter(
    thread_text: str,
    options: Optional[PrefilterOptions] = None,
    config: Optional[EngineConfig] = None,
) -> PrefilterResult:
    """Score the sender side of a thread and decide whether to gate it through.

    Args:
        thread_text: Raw thread. Only ``S:`` lines are read when present.
        options: Per-call overrides (window, thresholds, host lists, context).
        config: Engine configuration; the cached default when omitted.

    Returns:
        PrefilterResult with the score, action, gate decision and the signals
        and combos that contributed.
    """
    cfg = config or default_config()
    opts = options or PrefilterOptions()

    recent_max = max(1, opts.recent_lines if opts.recent_lines is not None else cfg.prefilter.recent_lines)
    soft = opts.threshold_soft if opts.threshold_soft is not None else cfg.prefilter.soft
    auto = opts.threshold_auto if opts.threshold_auto is not None else cfg.prefilter.auto

    bank_hosts = list(opts.bank_hosts) if opts.bank_hosts is not None else list(KR_BANK_HOST_SUFFIXES)
    extra_fi = list(opts.extra_fi_hosts) if opts.extra_fi_hosts is not None else list(KR_FI_EXTRA_HOST_SUFFIXES)
    official = _dedupe(h.strip().lower() for h in bank_hosts + extra_fi)

    sender_text = sender_only_text(thread_text)
    blocks = recent_lines(sender_text, recent_max)
    window_text = "\n".join(blocks)

    urls = extract_urls_loose(window_text)
    ctx = opts.context
    candidates = (extract_markdown_links(window_text) + (list(ctx.link_candidates) if ctx else []))[:MAX_LINK_CANDIDATES]

    all_signals = (
        score_url_signals(window_text, urls, opts.allow_hosts, official, cfg.prefilter.max_redirect_hops)
        + score_text_signals(window_text)
        + score_context_signals(ctx)
        + score_display_mismatch(candidates, official)
        + score_bare_link(window_text, urls)
    )

    best: Dict[str, PrefilterSignal] = {}
    for s in all_signals:
        prev = best.get(s.id)
        if prev is None or s.points > prev.points:
            best[s.id] = s

    ranked = sorted(best.values(), key=lambda x: x.points, reverse=True)
    if opts.debug:
        logger.info(f"Prefilter signals | {[(s.id, s.points) for s in ranked]}")

    combos = sorted(score_combos(urls, set(best), ctx), key=lambda x: x.points, reverse=True)

    raw_score = sum(s.points for s in ranked) + sum(c.points for c in combos)
    score = int(min(100, max(0, round(raw_score))))
    action = "auto" if score >= auto else "soft" if score >= soft else "none"

    open_n = max(0, int(ctx.explicit_actions.open_url)) if ctx is not None else 0
    if open_n > 0:
        best["pf_trigger_open_url"] = points("pf_trigger_open_url", "트리거: URL 열기 시도", 0, [f"openUrl=x{open_n}"])
    # a click on a present link is treated as irreversible
    if open_n > 0 and urls:
        score = max(score, auto)
        action = "auto"

    final = sorted(best.values(), key=lambda x: x.points, reverse=True)
    final_ids = {s.id for s in final}

    lite = _gate_lite(sender_text)
    gate_pass = (
        bool(urls)
        or any(s.points > 0 for s in final)
        or any(c.points > 0 for c in combos)
        or score >= min(GATE_SCORE_CAP, soft)
        or bool(final_ids & _GATE_HINT_IDS)
        or any(h.search(lite) for h in _GATE_HINTS)
    )

    result = PrefilterResult(
        score=score,
        action=action,
        gate_pass=gate_pass,
        threshold_soft=soft,
        threshold_auto=auto,
        signals=final,
        combos=combos,
        trig_ids=[s.id for s in final] + [c.id for c in combos],
        window=PrefilterWindow(blocks_considered=len(blocks), chars_considered=len(window_text)),
        debug_lines=debug_lines(final),
    )
    if opts.debug:
        logger.info(f"Prefilter result | score={score} | action={action} | gate={gate_pass} | trig={result.trig_ids}")
    return result
