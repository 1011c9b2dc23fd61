"""
urls.py — URL Threat Heuristics
===============================

String-only URL analysis shared by the message scorer and the prefilter.

Covers:
    - Defanged URL recovery (hxxp, [.], (.), [:], &colon;)
    - Strict and loose URL extraction, markdown ``[text](href)`` links
    - Host classification: IP host, punycode, deep subdomain, suspicious TLD,
      download extension, '@' authority hiding, zero-width / non-ASCII chars
    - Bank typosquat detection (Levenshtein against official roots/labels)
    - Redirect query-parameter chasing without any network access

The live network resolver lives in ``resolver.py``.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import SplitResult, parse_qs, unquote, urlsplit

from scamscope.lexicon import (
    BANK_BRAND_TOKENS,
    BRAND_DOMAIN_ALLOW,
    DOWNLOAD_EXTS,
    REDIRECT_PARAM_KEYS,
    SUSPICIOUS_TLDS,
)
from scamscope.models import Hit, LinkCandidate


MAX_STRICT_URLS = 20
MAX_LOOSE_URLS = 12
MAX_MARKDOWN_LINKS = 10
MAX_SCORED_URLS = 10

# ASCII word boundaries: Hangul particles may follow a host directly
_URL_FLAGS = re.IGNORECASE | re.ASCII

_IPV4_HOST = re.compile(r'^\d{1,3}(?:\.\d{1,3}){3}$')
_SECOND_LEVEL_KR = re.compile(r'(?:^|\.)(?:co|or|go|ac|ne)\.kr$')

_STRICT_SCHEME = re.compile(r'\bhttps?://[^\s<>"\')\]]+', _URL_FLAGS)
_STRICT_WWW = re.compile(r'\bwww\.[^\s<>"\')\]]+', _URL_FLAGS)
_STRICT_BARE = re.compile(r'\b[a-zA-Z0-9][a-zA-Z0-9-]{0,61}(?:\.[a-zA-Z0-9-]{1,63})+\b(?:/[^\s<>"\')\]]*)?', re.ASCII)
_ALPHA_TLD = re.compile(r'^[^/]*\.[a-zA-Z][a-zA-Z0-9-]*(?:/|$)')

_LOOSE_PATTERNS = [
    re.compile(r'https?://[^\s)]+', _URL_FLAGS),
    re.compile(r'\bwww\.[^\s)]+', _URL_FLAGS),
    re.compile(r'\bhxxps?://[^\s)]+', _URL_FLAGS),
    re.compile(r'\b(?:https?|hxxps?)\s*(?:\[:\]|:)\s*//[^\s)]+', _URL_FLAGS),
    re.compile(r'\b[a-z0-9-]+(?:\[\.\]|\(\.\)|\{\.\})[a-z0-9-]+(?:\[\.\]|\(\.\)|\{\.\})?[a-z0-9.-]*[^\s)]+', _URL_FLAGS),
    re.compile(r'\b(?:[a-z0-9-]+\.)+[a-z]{2,24}(?:/[^\s)]*)?\b', _URL_FLAGS),
]

_MARKDOWN_LINK = re.compile(r'\[([^\]]{1,120})\]\((https?://[^\s)]+)\)')
_DOMAIN_TOKEN = re.compile(r'\b(?:[a-z0-9-]+\.)+[a-z]{2,}\b', re.ASCII)

_BANK_WORD = re.compile(r'은행|뱅크|bank|고객센터|인터넷\s*뱅킹|모바일\s*뱅킹|보안\s*카드|금융', re.IGNORECASE)
_BANK_ACTION = re.compile(r'로그인|인증|otp|오티피|보안|계좌|카드|이체|송금|결제', re.IGNORECASE)


@dataclass
class TyposquatMatch:
    candidate: str      # root or first label compared
    official: str       # official root or brand token it resembles
    distance: int

    def describe(self) -> str:
        return f"{self.candidate} ~ {self.official} (d={self.distance})"


# ============================================================================
# Normalisation & parsing
# ============================================================================

def norm_host(host: str) -> str:
    return (host or "").strip().lower().rstrip(".")


def normalize_label(s: str) -> str:
    return re.sub(r'[^a-z0-9-]', "", (s or "").lower().strip())


def host_base_label(host_or_root: str) -> str:
    parts = [p for p in (host_or_root or "").lower().strip().split(".") if p]
    return normalize_label(parts[0]) if parts else ""


def strip_url_tail(raw: str) -> str:
    """Drop trailing punctuation that text usually glues onto a URL."""
    s = (raw or "").strip()
    while s and s[-1] in ")],.?!'\"`}>":
        s = s[:-1]
    return s


def _scheme_fix(m: re.Match) -> str:
    return m.group(1).lower().replace("hxxp", "http") + "://"


def normalize_to_url_string(raw: str) -> str:
    """Undo common defanging and add a scheme to ``www.``/bare domains."""
    s = strip_url_tail(raw)
    if not s:
        return ""

    s = re.sub(r'\b(hxxps?)://', _scheme_fix, s, flags=_URL_FLAGS)
    s = re.sub(r'\b(https?|hxxps?)\s*\[:\]\s*//', _scheme_fix, s, flags=_URL_FLAGS)
    s = re.sub(r'\b(https?|hxxps?)\s*:\s*//', _scheme_fix, s, flags=_URL_FLAGS)
    s = re.sub(r'\[\.\]|\(\.\)|\{\.\}', ".", s)
    s = re.sub(r'&colon;', ":", s, flags=re.IGNORECASE)
    s = s.replace("&#58;", ":").strip()

    if not s:
        return ""
    if re.match(r'^https?://', s, re.IGNORECASE):
        return s
    if re.match(r'^www\.', s, re.IGNORECASE):
        return "https://" + s
    if re.search(r'\.[a-z]{2,}(?:[/?#]|$)', s, re.IGNORECASE):
        return "https://" + s
    return s


def safe_parse_url(url: str) -> Optional[SplitResult]:
    """Parse an absolute URL, or return None when it has no usable host."""
    try:
        parts = urlsplit(url or "")
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    return parts


def url_host(url: str) -> str:
    parts = safe_parse_url(url)
    return norm_host(parts.hostname or "") if parts else ""


def path_and_query(parts: SplitResult) -> str:
    query = ("?" + parts.query) if parts.query else ""
    return ((parts.path or "/") + query).lower()


# ============================================================================
# Extraction
# ============================================================================

def _cleanup_strict(raw: str) -> str:
    s = (raw or "").strip()
    s = re.sub(r'[)\]}>"\'`]+$', "", s)
    s = re.sub(r'[.,!?;:]+$', "", s)
    s = re.sub(r'…+$', "", s)
    s = re.sub(r'^[("\'\[\s]+', "", s)
    return s.strip()


def extract_urls(text: str) -> List[str]:
    """Strict extraction used by the message scorer (scheme, www, bare domain)."""
    t = (text or "").replace("\r\n", "\n")
    # bare matches need an alphabetic TLD so dates and decimals are skipped
    bare = [m for m in _STRICT_BARE.findall(t) if _ALPHA_TLD.search(m)]
    found = _STRICT_SCHEME.findall(t) + _STRICT_WWW.findall(t) + bare

    out: List[str] = []
    for raw in found:
        s = _cleanup_strict(raw)
        if not s:
            continue
        if not re.match(r'^https?://', s, re.IGNORECASE):
            s = "https://" + s
        if s not in out:
            out.append(s)
    return out[:MAX_STRICT_URLS]


def extract_urls_loose(text: str) -> List[str]:
    """Loose extraction used by the prefilter, including defanged forms."""
    t = text or ""
    found: List[str] = []
    for pattern in _LOOSE_PATTERNS:
        found.extend(m.group(0) for m in pattern.finditer(t))

    out: List[str] = []
    for raw in found:
        s = strip_url_tail(normalize_to_url_string(raw))
        if s and s not in out:
            out.append(s)
    return out[:MAX_LOOSE_URLS]


def extract_markdown_links(text: str) -> List[LinkCandidate]:
    out: List[LinkCandidate] = []
    for m in _MARKDOWN_LINK.finditer(text or ""):
        out.append(LinkCandidate(text=m.group(1).strip(), href=strip_url_tail(m.group(2))))
        if len(out) >= MAX_MARKDOWN_LINKS:
            break
    return out


def hosts_from_text(text: str) -> List[str]:
    hosts: List[str] = []
    for u in extract_urls(text):
        h = url_host(u)
        if h and h not in hosts:
            hosts.append(h)
    return hosts[:MAX_STRICT_URLS]


def domain_tokens(text: str) -> List[str]:
    """Domain-looking tokens visible in a piece of text (max 6)."""
    out: List[str] = []
    for m in _DOMAIN_TOKEN.finditer((text or "").lower()):
        if m.group(0) not in out:
            out.append(m.group(0))
    return out[:6]


# ============================================================================
# Host predicates
# ============================================================================

def registrable_domain(host: str) -> str:
    """Approximate eTLD+1, treating co/or/go/ac/ne.kr as public suffixes."""
    h = norm_host(host)
    parts = [p for p in h.split(".") if p]
    if len(parts) <= 2:
        return h
    if _SECOND_LEVEL_KR.search(h):
        return ".".join(parts[-3:])
    return ".".join(parts[-2:])


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance with a single DP row."""
    s, t = a or "", b or ""
    if not s:
        return len(t)
    if not t:
        return len(s)

    row = list(range(len(t) + 1))
    for i in range(1, len(s) + 1):
        prev = row[0]
        row[0] = i
        for j in range(1, len(t) + 1):
            tmp = row[j]
            cost = 0 if s[i - 1] == t[j - 1] else 1
            row[j] = min(row[j] + 1, row[j - 1] + 1, prev + cost)
            prev = tmp
    return row[len(t)]


def host_matches(host: str, allowed: str) -> bool:
    h, d = norm_host(host), norm_host(allowed)
    return bool(d) and (h == d or h.endswith("." + d))


def is_official_by_suffix(host: str, suffixes: Iterable[str]) -> bool:
    return any(host_matches(host, s) for s in suffixes)


def is_ip_host(host: str) -> bool:
    return bool(_IPV4_HOST.match(host or ""))


def is_punycode_host(host: str) -> bool:
    return "xn--" in (host or "").lower()


def count_dots(host: str) -> int:
    return len([p for p in (host or "").split(".") if p]) - 1


def has_download_ext(path: str) -> bool:
    return any(
        path.endswith(ext) or (ext + "?") in path or (ext + "&") in path
        for ext in DOWNLOAD_EXTS
    )


def host_has_brand_token(host: str) -> Optional[str]:
    """Return the bank brand token embedded in the host, if any.

    Tokens of three characters or fewer (nh, sc, ibk) only count as an exact
    label or hyphen-part match.
    """
    h = norm_host(host)
    if not h:
        return None
    labels = [x for x in h.split(".") if x]
    parts = {p for label in labels for p in label.split("-") if p}

    for token in BANK_BRAND_TOKENS:
        tk = token.strip().lower()
        if not tk:
            continue
        if len(tk) <= 3:
            if tk in parts:
                return tk
            continue
        if tk in parts or any(tk in label for label in labels):
            return tk
    return None


def looks_bank_claim_context(text: str) -> bool:
    """Bank/customer-centre wording together with a login/auth/account word."""
    s = (text or "").lower()
    return bool(_BANK_WORD.search(s) and _BANK_ACTION.search(s))


def typosquat_match(
    host: str,
    official_suffixes: Sequence[str],
    bank_claim: bool,
) -> Optional[TyposquatMatch]:
    """Find an official bank domain the host imitates.

    The candidate's registrable root and first label are compared with every
    official root and label, and with the long bank brand tokens. A match needs
    1 <= distance <= 2 and a length difference of at most 2. Without bank-claim
    context nothing is flagged, and official hosts (or their subdomains) never
    are.
    """
    if not bank_claim or is_official_by_suffix(host, official_suffixes):
        return None

    root = registrable_domain(host)
    r_label = host_base_label(root)

    official_roots: List[str] = []
    for suffix in official_suffixes:
        r = registrable_domain(suffix)
        if r and r not in official_roots:
            official_roots.append(r)

    best: Optional[TyposquatMatch] = None
    best_len_diff = 99
    for off in official_roots:
        d, cand, target = edit_distance(root, off), root, off
        o_label = host_base_label(off)
        if r_label and o_label:
            d_label = edit_distance(r_label, o_label)
            if d_label < d:
                d, cand, target = d_label, r_label, o_label
        if best is None or d < best.distance:
            best = TyposquatMatch(candidate=cand, official=target, distance=d)
            best_len_diff = abs(len(cand) - len(target))
        if best.distance == 0:
            break

    if best and 1 <= best.distance <= 2 and best_len_diff <= 2:
        return best

    label = host_base_label(host)
    if label:
        for token in BANK_BRAND_TOKENS:
            tk = normalize_label(token)
            if len(tk) <= 3:
                continue
            d = edit_distance(label, tk)
            if 1 <= d <= 2 and abs(len(label) - len(tk)) <= 2:
                return TyposquatMatch(candidate=label, official=tk, distance=d)
    return None


# ============================================================================
# Redirect parameters
# ============================================================================

def _query_value(parts: SplitResult, key: str) -> Optional[str]:
    values = parse_qs(parts.query, keep_blank_values=False).get(key)
    return values[0] if values else None


def has_redirect_param(parts: SplitResult) -> bool:
    for key in REDIRECT_PARAM_KEYS:
        v = _query_value(parts, key)
        if v and (re.search(r'https?://', v, re.IGNORECASE) or re.match(r'^www\.', v, re.IGNORECASE)):
            return True
    return False


def redirect_param_chain(first_url: str, max_hops: int = 5) -> List[str]:
    """Follow URLs nested in redirect query parameters, without fetching.

    Stops when no redirect parameter is present, a URL repeats, or
    ``max_hops`` URLs have been collected. The first element is the start URL.
    """
    out: List[str] = []
    current = normalize_to_url_string(first_url)
    for _ in range(max(0, max_hops)):
        norm = normalize_to_url_string(current)
        if not norm or norm in out:
            break
        out.append(norm)

        parts = safe_parse_url(norm)
        if not parts:
            break

        nxt = ""
        for key in REDIRECT_PARAM_KEYS:
            v = _query_value(parts, key)
            if not v:
                continue
            candidate = normalize_to_url_string(unquote(v.strip()))
            if re.match(r'^(?:https?://|www\.)', candidate, re.IGNORECASE):
                nxt = candidate
                break
        if not nxt:
            break
        current = nxt
    return out


# ============================================================================
# Message-level URL hits
# ============================================================================

def score_urls(message_text: str, urls: Sequence[str], weights: Mapping[str, float]) -> List[Hit]:
    """URL heuristics for one message. Each rule's weight is multiplied by
    min(2, distinct matches)."""
    msg = message_text or ""
    msg_lower = msg.lower()
    sample = msg[:140] + "..." if len(msg) > 140 else msg

    agg: Dict[str, dict] = {}

    def add(rule_id: str, label: str, stage: str, weight_key: str, match: str) -> None:
        m = (match or "").strip()
        if not m:
            return
        entry = agg.get(rule_id)
        if entry is None:
            agg[rule_id] = {"label": label, "stage": stage, "base": weights[weight_key], "matched": [m]}
        elif len(entry["matched"]) < 6:
            entry["matched"].append(m)

    for raw in list(urls)[:MAX_SCORED_URLS]:
        raw = (raw or "").strip()
        parts = safe_parse_url(raw)
        if not parts:
            continue

        scheme = parts.scheme.lower()
        host = norm_host(parts.hostname or "")
        path = path_and_query(parts)

        if scheme == "http":
            add("url_http", "URL: HTTP(비TLS)", "verify", "urlHttp", raw)
        if "@" in raw:
            add("url_at_sign", "URL: '@' 포함(위장 가능)", "verify", "urlAtSign", raw)
        if is_ip_host(host):
            add("url_ip_host", "URL: IP 호스트", "verify", "urlIpHost", host)
        if is_punycode_host(host):
            add("url_punycode", "URL: Punycode(xn--)", "verify", "urlPunycode", host)

        host_parts = [p for p in host.split(".") if p]
        if len(host_parts) >= 5:
            add("url_deep_subdomain", "URL: 서브도메인 과다", "verify", "urlDeepSubdomain", host)
        if host_parts and host_parts[-1] in SUSPICIOUS_TLDS:
            add("url_suspicious_tld", "URL: 의심 TLD", "verify", "urlSuspiciousTld", host)

        if has_download_ext(path):
            add("url_download_ext", "URL: 설치/압축 파일 확장자", "install", "urlDownloadExt", raw)

        for brand_re, domains in BRAND_DOMAIN_ALLOW:
            m = brand_re.search(msg_lower)
            if not m:
                continue
            if not any(host_matches(host, d) for d in domains):
                add("url_brand_mismatch", "은행/결제 사칭 도메인 불일치", "verify", "urlBrandMismatch",
                    f"{m.group(0)} → {host}")

    hits: List[Hit] = []
    for rule_id, entry in agg.items():
        uniq: List[str] = []
        for x in entry["matched"]:
            x = str(x).strip()
            if x and x not in uniq:
                uniq.append(x)
        uniq = uniq[:6]
        mult = min(2, len(uniq) or 1)
        hits.append(Hit(
            rule_id=rule_id,
            label=entry["label"],
            stage=entry["stage"],
            weight=entry["base"] * mult,
            matched=uniq,
            sample=sample,
        ))
    return hits
