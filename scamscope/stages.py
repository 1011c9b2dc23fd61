"""
stages.py — Attack Stage Classifier
===================================

Maps a set of hits plus the text they came from onto one of four attack
stages, walking a ladder from most to least severe:

    install  →  payment  →  verify  →  info

Before the ladder runs, every hit's stage is re-derived from context
(``normalize_hit_stage``): a link on an intranet notice or a delivery/order
notice drops to info, a transfer word inside a payment alert drops to
verify, and so on. A few rule ids are mirrored under their alias so that
either naming satisfies the ladder sets.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Sequence

from scamscope.lexicon import STAGE_RANK
from scamscope.models import Hit

_FLAGS = re.IGNORECASE


def max_stage(a: str, b: str) -> str:
    return a if STAGE_RANK[a] >= STAGE_RANK[b] else b


# ============================================================================
# Text probes
# ============================================================================

_PAY_DIRECTIVE = re.compile(
    r'해\s*주|해줘|해주시|부탁|요청|바라|진행|처리\s*해|입금\s*하|송금\s*하|이체\s*하|결제\s*하|납부\s*하|지불\s*하|충전\s*하'
    r'|보내\s*(?:줘|주|주세요|바랍니다|바라|주시)', _FLAGS)
_PAY_WORD = re.compile(r'입금|송금|이체|결제|납부|지불|충전', _FLAGS)
_ALERT_WORD = re.compile(
    r'알림|안내|내역|확인|승인|거절|취소|환불|시도|차단|보류|접수|완료|처리\s*결과|거래|가맹점|잔액|문자|sms'
    r'|정기\s*결제|자동\s*이체|자동\s*납부|해외\s*결제|이상\s*거래|부정\s*사용|승인\s*대기|대기\s*중', _FLAGS)

_AMOUNT_KRW = re.compile(r'(?:\d{1,3}(?:,\d{3})+|\d+)\s*(?:원|만원)')

_STRONG_PAY_CUE = re.compile(
    r'납부|지불|결제\s*진행|결제\s*해\s*주|납부\s*하세요|송금\s*하세요|이체\s*하세요|입금\s*하세요|충전\s*하세요'
    r'|수수료\s*입금|선납|보증보험료|보험료', _FLAGS)
_ARREARS_CUE = re.compile(r'미납|체납|과태료|벌금|고지|가산금|압류|추심|연체', _FLAGS)
_BILL_CUE = re.compile(r'납부|미납|체납|과태료|벌금|고지|압류|선납|보험료', _FLAGS)

_INTRANET_LIKE = re.compile(
    r'사내|내부|회사|intranet|인트라넷|공지\s*페이지|회사\s*it|it\s*팀|helpdesk|헬프데스크|정보보안', _FLAGS)
_INTRANET_BREAKER = re.compile(
    r'(?<![a-z])otp(?![a-z])|인증\s*번호|보안\s*코드|확인\s*코드|(?<![a-z])ars(?![a-z])|2\s*단계\s*인증|2fa'
    r'|송금|이체|입금|납부|결제|안내\s*계좌|보호\s*계좌|안전\s*계좌|원격|anydesk|quicksupport|teamviewer'
    r'|(?<![a-z])apk(?![a-z])|설치|다운로드|뷰어|viewer|bit\.ly|(?<![a-z.])t\.co(?![a-z])', _FLAGS)
_URL_IN_TEXT = re.compile(r'https?://[^\s)]+', _FLAGS)

_DELIVERY_CONTEXT = re.compile(
    r'택배|배송|운송장|송장|물류|집화|집하|출고|입고|도착|지연|보관\s*중|배송중|배달중|통관|세관|반품|교환'
    r'|수취|수령|부재중|문\s*앞', _FLAGS)
_ORDER_CONTEXT = re.compile(r'주문번호|거래\s*내역|상품\s*확인|정상\s*상품', _FLAGS)
_STRONG_ACTION_CONTEXT = re.compile(
    r'인증|본인|로그인|계정|비밀번호|(?<![a-z])otp(?![a-z])|오티피|(?<![a-z])ars(?![a-z])|2\s*단계\s*인증'
    r'|확인\s*번호|보안\s*코드|확인\s*코드|결제|납부|송금|이체|입금|선납|보험료|설치|다운로드|원격|팀뷰어'
    r'|anydesk|quicksupport|차단|해제|분실|압류|과태료|벌금|미납|체납', _FLAGS)
_PROMO_CONTEXT = re.compile(r'쿠폰|기프티콘|설문|프로모션|이벤트|경품|당첨|무료', _FLAGS)

_INSTALL_CUE = re.compile(
    r'설치|다운로드|앱|어플|프로그램|원격|팀뷰어|anydesk|quicksupport|(?<![a-z])(?:apk|exe|msi|dmg|pkg)(?![a-z])'
    r'|뷰어|viewer|플러그인|plugin', _FLAGS)
_TRANSFER_REQUEST = [re.compile(p, _FLAGS) for p in [
    r'보내\s*줘|부쳐\s*줘|입금\s*해|송금\s*해|이체\s*해|납부\s*해|지불\s*해|충전\s*해',
    r'(?:보내|부쳐|송금|이체|입금|납부|지불|충전).{0,14}(?:해\s*줘|해\s*주|해주세요|부탁|요청|진행|하셔야|바랍니다|주시)',
    r'(?:링크|페이지).{0,14}(?:에서|로).{0,12}(?:납부|결제|지불|송금|이체|입금)',
    r'(?:납부|결제|지불|송금|이체|입금).{0,12}(?:하세요|바랍니다|필요|진행)',
]]
_ESCROW_LIKE = re.compile(r'안전\s*결제|안전\s*거래|에스크로|escrow|거래', _FLAGS)
_PAY_WORD_STRICT = re.compile(r'납부|송금|이체|입금|지불|충전|선납|보험료', _FLAGS)
_INSTALL_BEFORE_PAY = [re.compile(p, _FLAGS) for p in [
    r'설치.{0,10}(?:후|해야|필요).{0,24}(?:결제|납부|송금|이체|입금|진행)',
    r'(?:결제|납부|송금|이체|입금).{0,18}(?:하려면|위해).{0,18}설치',
]]

_PAY_NOUN = re.compile(
    r'납부|송금|이체|입금|결제|지불|충전|선납|보험료|수수료|보증금|예치금|가입비|등록비|예약금|계약금'
    r'|핀\s*번호|상품권|기프트|코인|지갑|(?<![a-z])qr(?![a-z])', _FLAGS)
_PAY_IMPERATIVE = re.compile(
    r'해\s*줘|해\s*주|해주세요|하세요|하셔야|바랍니다|요청|부탁|필수|반드시|진행|처리|완료'
    r'|지금\s*(?:바로|즉시)|긴급|오늘\s*안에|기한\s*내', _FLAGS)
_PRESSURE_TEXT = re.compile(r'긴급|즉시|바로|오늘\s*안에|기한\s*내|반드시|필수', _FLAGS)
_VERIFY_CUE = re.compile(r'인증|로그인|확인|접속|클릭|눌러|링크|url|주소|입력|작성|제출|전송|보내|캡처|사진', _FLAGS)


def is_payment_alert_only(text: str) -> bool:
    """True for a payment notification that carries no request to pay."""
    s = text or ""
    if not _PAY_WORD.search(s):
        return False
    if _PAY_DIRECTIVE.search(s):
        return False
    return bool(_ALERT_WORD.search(s))


def has_amount_krw(text: str) -> bool:
    return bool(_AMOUNT_KRW.search(text or ""))


def has_strong_pay_cue(text: str) -> bool:
    """Billing or arrears vocabulary. An amount on its own does not count."""
    t = text or ""
    return bool(_STRONG_PAY_CUE.search(t) or _ARREARS_CUE.search(t))


def is_transfer_request(text: str) -> bool:
    return any(p.search(text or "") for p in _TRANSFER_REQUEST)


def is_install_before_pay(text: str) -> bool:
    return any(p.search(text or "") for p in _INSTALL_BEFORE_PAY)


def _intranet_safe(text: str, need_url: bool) -> bool:
    if not _INTRANET_LIKE.search(text):
        return False
    if need_url and not _URL_IN_TEXT.search(text):
        return False
    return not _INTRANET_BREAKER.search(text)


# ============================================================================
# Per-hit stage normalisation
# ============================================================================

def normalize_hit_stage(content: str, hit: Hit) -> str:
    """Re-derive a hit's stage from the text around it."""
    t = content or ""
    rid = hit.rule_id
    scope = "\n".join([t, hit.sample or "", "\n".join(hit.matched)]).strip()

    if rid == "shortener":
        return "verify"

    if rid == "link":
        if _intranet_safe(t, need_url=True):
            return "info"
        strong = bool(_STRONG_ACTION_CONTEXT.search(scope))
        promo = bool(_PROMO_CONTEXT.search(scope))
        order_or_delivery = bool(_ORDER_CONTEXT.search(scope) or _DELIVERY_CONTEXT.search(scope))
        if order_or_delivery and not strong and not promo:
            return "info"
        return "verify" if strong or promo else "info"

    if rid in ("otp", "ctx_otp_proxy", "ctx_otp_finance", "ctx_otp_relay"):
        return "verify"

    if rid in ("personalinfo", "pii_request", "account_verify"):
        return "info" if _intranet_safe(t, need_url=False) else "verify"

    if rid in ("txn_alert", "social", "authority", "threat", "urgent"):
        return "info"
    if rid in ("remote", "install_app", "apk"):
        return "install"
    if rid in ("safe_account", "ctx_transfer_phrase"):
        return "payment"

    if rid == "ctx_pay_with_link":
        if is_payment_alert_only(t):
            return "verify"
        if _BILL_CUE.search(t) or has_strong_pay_cue(t):
            return "payment"
        return "verify"

    if rid.startswith("url_"):
        return "install" if rid == "url_download_ext" else "verify"

    if hit.stage == "payment":
        alert_only = is_payment_alert_only(t)
        strong_transfer = has_strong_pay_cue(t)
        escrow = bool(_ESCROW_LIKE.search(t))

        if rid == "transfer":
            if alert_only:
                return "verify"
            if not is_transfer_request(t) and not strong_transfer:
                return "verify"
            return "payment"

        if rid == "ctx_payment_request":
            if alert_only:
                return "verify"
            if escrow and not strong_transfer and not _PAY_WORD_STRICT.search(t) and not has_amount_krw(t):
                return "verify"
            if not is_transfer_request(t) and not strong_transfer and not _BILL_CUE.search(t):
                return "verify"
            return "payment"

        install_cue = bool(_INSTALL_CUE.search(t))
        if escrow and install_cue and (is_install_before_pay(t) or not strong_transfer):
            return "install"

    return hit.stage


# Rule ids that also satisfy the ladder under another name
STAGE_ALIASES = (
    ("link", "link_mention"),
    ("link_mention", "link"),
    ("government_benefit", "ctx_government_benefit"),
    ("ctx_government_benefit", "government_benefit"),
    ("personalinfo", "pii_request"),
)


def expand_stage_aliases(hits: Sequence[Hit]) -> List[Hit]:
    ids = {h.rule_id for h in hits}
    out = list(hits)
    for src, alias in STAGE_ALIASES:
        if src not in ids or alias in ids:
            continue
        first = next(h for h in hits if h.rule_id == src)
        out.append(first.model_copy(update={"rule_id": alias}))
        ids.add(alias)
    return out


# ============================================================================
# Stage ladder
# ============================================================================

INSTALL_HARD = frozenset(["apk", "remote", "call_remote", "url_download_ext"])
INSTALL_SOFT = frozenset(["install_app", "ctx_install_mention"])

PAYMENT_ALWAYS = frozenset(["ctx_cash_pickup", "ctx_giftcard", "ctx_crypto_wallet",
                            "ctx_account_rental", "ctx_qr_pay"])
PAYMENT_COND = frozenset(["safe_account", "go_bank_atm", "ctx_transfer_demand", "ctx_payment_request"])
PAYMENT_SOFT = frozenset(["transfer", "ctx_transfer_phrase", "ctx_pay_with_link"])

VERIFY_STRONG = frozenset([
    "otp", "ctx_otp_finance", "ctx_otp_relay", "ctx_otp_proxy", "account_verify",
    "link", "link_mention", "shortener", "personalinfo", "pii_request",
])
VERIFY_WEAK = frozenset([
    "messenger_phishing", "ctx_contact_move", "ctx_profile_link_mention",
    "government_benefit", "ctx_government_benefit", "ctx_visit_place",
    "ctx_refund_lure", "ctx_loan_hook", "ctx_benefit_link", "ctx_benefit_link_mention",
])

PRESSURE_RULES = frozenset(["urgent", "threat", "authority", "ctx_demand", "ctx_secrecy"])


@dataclass
class StageResult:
    stage: str
    triggers: List[str] = field(default_factory=list)
    normalized: List[Hit] = field(default_factory=list)


def _keeps_match(text: str, hit: Hit) -> bool:
    if hit.rule_id.startswith(("ctx_", "url_")):
        return True
    if not hit.matched:
        return True
    return any(m and m in text for m in hit.matched)


def stage_from_hits(content: str, hits: Iterable[Hit]) -> StageResult:
    """Classify the attack stage of ``content`` given the hits scored on it.

    Returns the stage, up to two trigger labels and the stage-normalised hit
    list (alias-expanded, hits whose matched text is absent from ``content``
    dropped).
    """
    text = content or ""
    staged = [h.model_copy(update={"stage": normalize_hit_stage(text, h)}) for h in hits]
    normalized = [h for h in expand_stage_aliases(staged) if _keeps_match(text, h)]

    def pick(pred: Callable[[Hit], bool]) -> List[str]:
        chosen = sorted((h for h in normalized if pred(h)), key=lambda h: h.weight, reverse=True)
        return [h.label for h in chosen[:2]]

    def in_stage(stage: str, ids: frozenset) -> Callable[[Hit], bool]:
        return lambda h: h.stage == stage and h.rule_id in ids

    escrow = bool(_ESCROW_LIKE.search(text))
    strong_pay = has_strong_pay_cue(text)
    pay_demand = strong_pay or has_amount_krw(text) or bool(_PAY_NOUN.search(text) and _PAY_IMPERATIVE.search(text))
    pressure = any(h.rule_id in PRESSURE_RULES for h in normalized) or bool(_PRESSURE_TEXT.search(text))

    # install
    any_install = INSTALL_HARD | INSTALL_SOFT
    if any(in_stage("install", INSTALL_HARD)(h) for h in normalized):
        return StageResult("install", pick(in_stage("install", INSTALL_HARD)), normalized)
    if any(in_stage("install", INSTALL_SOFT)(h) for h in normalized):
        if (escrow and not strong_pay) or is_install_before_pay(text):
            return StageResult("install", pick(in_stage("install", any_install)), normalized)

    # payment
    if any(in_stage("payment", PAYMENT_ALWAYS)(h) for h in normalized):
        return StageResult("payment", pick(in_stage("payment", PAYMENT_ALWAYS)), normalized)
    if any(in_stage("payment", PAYMENT_COND)(h) for h in normalized):
        stage = "payment" if pay_demand or pressure else "verify"
        return StageResult(stage, pick(in_stage("payment", PAYMENT_COND)), normalized)
    if any(in_stage("payment", PAYMENT_SOFT)(h) for h in normalized):
        stage = "payment" if pay_demand or (pressure and strong_pay) else "verify"
        return StageResult(stage, pick(in_stage("payment", PAYMENT_SOFT)), normalized)

    # verify
    if any(in_stage("verify", VERIFY_STRONG)(h) for h in normalized):
        return StageResult("verify", pick(in_stage("verify", VERIFY_STRONG)), normalized)
    if _VERIFY_CUE.search(text) and any(in_stage("verify", VERIFY_WEAK)(h) for h in normalized):
        return StageResult("verify", pick(in_stage("verify", VERIFY_WEAK)), normalized)

    return StageResult("info", pick(lambda h: h.stage == "info"), normalized)
