"""
scorer.py — Message Scorer
==========================

Scores a single turn. Three hit sources are combined:

    1. Keyword / pattern rules from the catalog
       weight = base × min(3, distinct matches), matches capped at 6
    2. URL heuristics (``urls.score_urls``)
       weight = base × min(2, distinct matches)
    3. Context detectors: fixed-weight hits for multi-cue phrasings
       (OTP relay, safe-account transfer, fee demand, cash pickup, ...)

Turn score = min(100, Σ hit weights).

The OTP relay detector also fires when an OTP cue appeared in an earlier
turn of the same thread; the caller threads that flag through.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from scamscope.config import EngineConfig, default_config
from scamscope.lexicon import Rule
from scamscope.models import Hit
from scamscope.roles import classify_actor_hint
from scamscope.stages import has_amount_krw, is_payment_alert_only
from scamscope.urls import extract_urls, score_urls

_FLAGS = re.IGNORECASE

MAX_MATCHES = 6
SAMPLE_CHARS = 140


def _rx(pattern: str) -> re.Pattern:
    return re.compile(pattern, _FLAGS)


def make_sample(text: str) -> str:
    return text[:SAMPLE_CHARS] + "..." if len(text) > SAMPLE_CHARS else text


def score_rules(text: str, rules: Sequence[Rule]) -> List[Hit]:
    """Apply keyword and pattern rules to ``text``."""
    t = text or ""
    hits: List[Hit] = []
    for rule in rules:
        found: List[str] = []
        for pattern in rule.patterns:
            for m in pattern.finditer(t):
                s = m.group(0).strip()
                if s and s not in found:
                    found.append(s)
        if not found:
            continue
        uniq = found[:MAX_MATCHES]
        hits.append(Hit(
            rule_id=rule.id,
            label=rule.label,
            stage=rule.stage,
            weight=rule.weight * min(3, len(uniq)),
            matched=uniq,
            sample=make_sample(t),
        ))
    return hits


# ============================================================================
# Context detector vocabulary
# ============================================================================

_OTP_CUE = _rx(r'인증번호|(?<![a-z])otp(?![a-z])|오티피|승인\s*번호|보안\s*코드|확인\s*코드|(?<![a-z])ars(?![a-z])'
               r'|2\s*단계\s*인증|6\s*자리')
_RELAY_VERB = _rx(r'보내|알려|전달|말해|읽어|불러|캡처|말씀')
_CODE_NOUN = _rx(r'번호|코드|인증|6\s*자리')

_APP_INSTALL = _rx(r'(?:보안\s*앱|인증\s*앱|전용\s*앱|앱|어플|프로그램|문서\s*뷰어|뷰어|viewer|플러그인|plugin)'
                   r'.{0,22}(?:설치|다운로드|받아|깔아|권고\s*드립니다)')
_NAMED_REMOTE = _rx(r'팀뷰어|teamviewer|anydesk|애니데스크|퀵서포트|quicksupport')
_GENERIC_REMOTE = _rx(r'원격\s*(?:지원|제어|접속|앱)|화면\s*공유')
_INSTALL_VERB = _rx(r'설치|다운로드|받아|깔아|실행|연결|접속|등록')
_INSTALL_BUTTON = _rx(r'설치.{0,10}(?:버튼|button|눌러|누르|클릭)')

_PROXY_ENTRY = _rx(r'대신.{0,10}(?:입력|처리|인증)')

_PII_NOUN = _rx(r'이름|성함|연락처|전화번호|휴대폰|생년월일|주민등록번호|주민번호|주소|우편번호|계좌번호|카드번호'
                r'|비밀번호|패스워드|암호|신분증|여권')
_PII_VERB = _rx(r'알려|말해|남겨|적어|입력|작성|보내|제출|올려|전송|사진|캡처')

_FINANCE_CONTEXT = _rx(r'카드|은행|금융|보안센터|차단센터|분실|해제|승인|결제|해외\s*결제|자동이체|계좌|로그인')

_TRANSFER_CUE = _rx(r'입금|송금|이체|납부|지불|충전|선납|보험료')
_ESCROW_LIKE = _rx(r'안전\s*결제|안전\s*거래|에스크로|escrow|거래')

_ALERT_SETTING = _rx(r'결제\s*알림|알림\s*설정|계좌\s*알림|설정\s*변경|설정이\s*변경|설정\s*확인|자동\s*이체\s*등록'
                     r'|다른\s*기기\s*로그인\s*시도\s*감지|로그인\s*시도\s*감지|접속\s*시도\s*감지')
_LINK_TO_PAY = [
    _rx(r'(?:링크|페이지|사이트).{0,18}(?:에서|로).{0,12}(?:납부|결제|지불|송금|이체|입금)'),
    _rx(r'(?:납부|결제|지불|송금|이체|입금).{0,18}(?:링크|페이지|사이트)'),
]
_REQUEST_TAIL = _rx(r'해\s*줘|해\s*주|해주세요|하세요|하셔야|진행|처리|완료|부탁|요청|바랍니다')

_SAFE_ACCOUNT_PHRASES = [
    _rx(r'(?:안내\s*계좌|보호\s*계좌|안전\s*계좌|지정\s*계좌).{0,24}(?:이체|송금|입금|옮기|이전)'),
    _rx(r'(?:피해자\s*로\s*분류|자산\s*분리|자산\s*이동|보호\s*조치).{0,24}(?:계좌|이체|송금|입금|옮기|이전)'),
    _rx(r'(?:자금세탁|범죄자금|수사\s*협조|검찰|경찰|보호센터|수사관|수사팀).{0,40}(?:계좌|이체|송금|입금|옮기|이전|보호)'),
]

_PAYMENT_VERBS = [
    _rx(r'보내\s*줘|부쳐\s*줘|입금\s*해|송금\s*해|이체\s*해|납부\s*해|지불\s*해|충전\s*해'),
    _rx(r'(?:입금|송금|이체|납부|지불|충전|선납|보험료).{0,14}(?:해\s*줘|해\s*주|해주세요|부탁|요청|하셔야|바랍니다|주시)'),
    _rx(r'(?:납부|지불|결제).{0,14}(?:하세요|바랍니다|필요|진행|처리|해주세요)'),
    _rx(r'(?:링크|페이지).{0,14}(?:에서|로).{0,12}(?:납부|결제|지불)'),
]
_PAY_TO_INSTALL = _rx(r'결제.{0,10}(?:하려면|위해|하려고)')

_FAMILY = _rx(r'엄마|아빠|어머니|아버지|누나|언니|형|오빠|딸|아들|친구|지인')
_DEVICE_EXCUSE = [
    _rx(r'(?:폰|휴대폰|핸드폰|전화).*(?:고장|분실|바꿨|바꿔|새\s*번호|이\s*번호|번호야)'),
    _rx(r'번호야|새\s*번호|이\s*번호로'),
]
_MONEY_VERB = _rx(r'보내\s*줘|이체|송금|입금')
_MONEY_AMOUNT = _rx(r'(?:\d{1,3}(?:,\d{3})+|\d+)\s*(?:원|만원)')

_JOB_HOOK = _rx(r'고액\s*알바|알바|재택|해외|현지|동남아|출국|파견|단기\s*고수익|고수익\s*업무|프로젝트\s*인력|인력\s*모집'
                r'|채용|숙식\s*제공|항공권\s*지원')
_JOB_HOOK_WIDE = _rx(r'고수익|고액\s*알바|단기\s*알바|당일\s*지급|재택\s*알바|초보\s*가능|간단한\s*업무|리뷰\s*알바|댓글\s*알바')

_CONTACT_CHANNEL = _rx(r'오픈\s*채팅|open\s*chat|openchat|텔레그램|telegram|카카오\s*오픈|오픈\s*카톡|라인'
                       r'|(?<![a-z])(?:line|dm)(?![a-z])|디스코드|discord|쪽지|1:1|개인\s*톡')
_CONTACT_MOVE_VERB = _rx(r'이동|입장|초대|링크|추가|문의|연락|대화|채팅|안내')

_PLACE = _rx(r'방문|내방|출석|출두|집결|모여|오세요|오셔|오시면|오라|와라|와\s*주세요|이동해\s*주세요|지금\s*이동'
             r'|현장|교육장|면접장|사무실|지점|센터|공항|터미널|역\s*\d*\s*번?\s*출구|출구|주소|오시는\s*길|지도'
             r'|로비|주차장|\d+\s*층|\d+\s*호')
_PLACE_VERB = _rx(r'오|방문|출석|출두|집결|이동|모여')

_PERSONAL_ASK_STRONG = _rx(r'(?:여권|신분증|주민등록증|주민번호|계좌|연락처|전화번호).{0,22}'
                           r'(?:사진|등록|보내|제출|올려|필요|요청)')
_PERSONAL_MENTION = _rx(r'여권|신분증|주민등록증|주민번호|계좌|연락처|전화번호')
_PERSONAL_ASK_WEAK = _rx(r'필요|요청|등록|제출|선\s*등록|먼저\s*보내')

_FEE = _rx(r'보증금|예치금|가입비|등록비|교육비|수수료|선입금|입회비|예약금|계약금|보안\s*예치')
_FEE_VERB = _rx(r'송금|이체|입금|결제|납부|먼저|필요|부탁|내')

_TRANSFER_DEMAND = [
    _rx(r'(?:이체|송금|입금|결제|납부).{0,20}(?:해\s*주세요|바랍니다|하라|해라|하시|지금|바로)'),
    _rx(r'(?:해\s*주세요|바랍니다|하라|해라|지금|바로).{0,20}(?:이체|송금|입금|결제|납부)'),
]

_CASH = _rx(r'현금\s*봉투|현금\s*수거|현금\s*전달|퀵|대면\s*전달|직접\s*전달|수거|회수')
_CASH_VERB = _rx(r'전달|수거|회수|가져오|가져와|보내|받')

_GIFTCARD = _rx(r'상품권|문화\s*상품권|문상|해피\s*머니|구글\s*기프트|google\s*gift|기프트\s*카드|gift\s*card|틴\s*캐시'
                r'|tincash|핀\s*번호|(?<![a-z])pin\s*(?:번호|code)|바코드')
_GIFTCARD_VERB = _rx(r'보내|전달|구매|충전|등록|입력|코드|핀|(?<![a-z])pin(?![a-z])|번호')

_CRYPTO = _rx(r'가상\s*자산|암호\s*화폐|crypto|코인|지갑|wallet|(?<![a-z])(?:usdt|btc|eth|trc20|erc20)(?![a-z])'
              r'|바이낸스|binance|업비트|upbit|빗썸|bithumb')
_CRYPTO_VERB = _rx(r'송금|전송|보내|입금|충전|이체|전달')

_ACCOUNT_RENTAL = _rx(r'대포\s*통장|자금\s*세탁|범죄\s*자금|수령\s*대행')
_ACCOUNT_LEND = _rx(r'(?:통장|계좌).{0,18}(?:대여|임대|빌려|양도|사용)')
_ACCOUNT_LEND_HOOK = _rx(r'수수료|알바|대행|모집|구인')

_QR_PAY = _rx(r'(?<![a-z])qr\s*코드|큐알\s*코드|간편\s*결제|페이(?!지)|토스|카카오\s*페이|kakao\s*pay|네이버\s*페이|naver\s*pay')
_QR_PAY_VERB = _rx(r'찍|스캔|scan|결제|송금|이체|입금|진행|처리')

_REFUND = _rx(r'환불|환급|취소|해지|구독|정기\s*결제|자동\s*결제|결제\s*취소')
_REFUND_VERB = _rx(r'상담|고객센터|문의|링크|url|주소|접속|클릭|안내')

_LOAN = _rx(r'대출|대환|저금리|한도|승인|연체|상환')
_LOAN_VERB = _rx(r'가능|진행|신청|조회|상담|조건|수수료|보증금|선입금|예치금')

_INVEST = _rx(r'투자|리딩방|수익|자동\s*투자|코인|주식|단타|(?<![a-z])vip(?![a-z])|체험|정보방|오픈채팅')

_BENEFIT = _rx(r'지원금|환급|보조금|대상자|대상\s*조회|조회|신청|지급|정부\s*지원|복지')
_BENEFIT_MENTION_VERB = _rx(r'링크|url|주소|신청|조회|확인|접속|클릭|눌러|입력|등록')

_PROFILE = _rx(r'카톡|카카오톡|프로필|사진|영상|문서')
_LINK_WORD = _rx(r'링크|url|주소')
_OPEN_VERB = _rx(r'확인|클릭|접속|눌러|열어|들어가')

_BIZ_DOC = _rx(r'거래처|세금계산서|계산서|견적서|발주서|계약서|회계|정산|invoice|tax\s*invoice|(?<![a-z])bill(?![a-z])|청구서')
_VIEWER = _rx(r'뷰어|viewer|플러그인|plugin')
_DOWNLOAD_VERB = _rx(r'설치|다운로드|받아|깔아')


def _any(patterns: Sequence[re.Pattern], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def has_otp_cue(text: str) -> bool:
    return bool(_OTP_CUE.search(text or ""))


def context_hits(content: str, urls: Sequence[str], actor_hint: str, seen_otp_cue: bool = False) -> List[Hit]:
    """Fixed-weight hits for phrasings that need several cues at once."""
    c = content or ""
    sample = make_sample(c)
    has_urls = len(urls) > 0
    out: List[Hit] = []

    def add(rule_id: str, label: str, stage: str, weight: float, tag: str) -> None:
        out.append(Hit(rule_id=rule_id, label=label, stage=stage, weight=weight, matched=[tag], sample=sample))

    if actor_hint == "demand":
        add("ctx_demand", "맥락: 요구/지시 표현", "verify", 3, "demand")

    otp_cue = has_otp_cue(c)
    otp_relay = (otp_cue or seen_otp_cue) and bool(_RELAY_VERB.search(c)) and bool(_CODE_NOUN.search(c))
    if otp_relay:
        add("ctx_otp_relay", "맥락: 인증번호/코드 전달 요구", "verify", 20, "otp-relay")

    install_mention = (
        bool(_APP_INSTALL.search(c))
        or bool(_NAMED_REMOTE.search(c))
        or bool(_GENERIC_REMOTE.search(c) and _INSTALL_VERB.search(c))
        or bool(_INSTALL_BUTTON.search(c))
    )
    if install_mention:
        add("ctx_install_mention", "맥락: 앱/원격/뷰어 설치 언급", "install", 18, "install")

    if _PROXY_ENTRY.search(c) and otp_cue:
        add("ctx_otp_proxy", "맥락: 인증번호 대신 입력/처리", "verify", 30, "otp-proxy")

    if _PII_NOUN.search(c) and _PII_VERB.search(c):
        add("pii_request", "개인정보 요청", "verify", 18, "pii-request")

    if otp_relay and _FINANCE_CONTEXT.search(c):
        add("ctx_otp_finance", "맥락: 금융/카드 문맥에서 인증번호 요구", "verify", 28, "otp+finance")

    strong_transfer = bool(_TRANSFER_CUE.search(c)) or has_amount_krw(c)
    escrow = bool(_ESCROW_LIKE.search(c))

    pay_with_link = (
        has_urls
        and not _ALERT_SETTING.search(c)
        and _any(_LINK_TO_PAY, c)
        and (bool(_REQUEST_TAIL.search(c)) or strong_transfer)
    )
    if pay_with_link:
        add("ctx_pay_with_link", "맥락: 링크에서 납부/결제 유도", "payment", 22, "pay+link")

    if _any(_SAFE_ACCOUNT_PHRASES, c):
        add("ctx_transfer_phrase", "맥락: 안내계좌/보호조치/자산이전 유도", "payment", 28, "transfer-phrase")
        add("transfer", "맥락: 안내 계좌로 이체/송금 유도", "payment", 18, "transfer")

    pay_blocked_by_install = install_mention and not strong_transfer and (escrow or bool(_PAY_TO_INSTALL.search(c)))
    if _any(_PAYMENT_VERBS, c) and not is_payment_alert_only(c) and not pay_blocked_by_install:
        add("ctx_payment_request", "맥락: 입금/송금/충전/납부 요청", "payment", 20, "pay")

    if _FAMILY.search(c) and _any(_DEVICE_EXCUSE, c) and _MONEY_VERB.search(c) and _MONEY_AMOUNT.search(c):
        add("ctx_family_scam", "맥락: 가족/지인 사칭 + 새 번호 + 송금 요구", "payment", 30, "family+pay")

    if _JOB_HOOK_WIDE.search(c):
        add("ctx_job_hook", "맥락: 고수익/단기 구인 미끼", "verify", 22, "job-hook")
    if _CONTACT_CHANNEL.search(c) and _CONTACT_MOVE_VERB.search(c):
        add("ctx_contact_move", "맥락: 오픈채팅/텔레그램 이동 유도", "verify", 22, "contact-move")
    if _PLACE.search(c) and _PLACE_VERB.search(c):
        add("ctx_visit_place", "맥락: 특정 장소 방문/이동 유도", "verify", 14, "visit")

    if _FEE.search(c) and _FEE_VERB.search(c):
        add("ctx_payment_request", "맥락: 보증금/수수료/선입금 요구", "payment", 28, "fee")
    if _any(_TRANSFER_DEMAND, c):
        add("ctx_transfer_demand", "맥락: 이체/송금 지시", "payment", 26, "transfer-demand")
    if _CASH.search(c) and _CASH_VERB.search(c):
        add("ctx_cash_pickup", "맥락: 현금 수거/퀵 전달 유도", "payment", 32, "cash-pickup")
    if _GIFTCARD.search(c) and _GIFTCARD_VERB.search(c):
        add("ctx_giftcard", "맥락: 상품권/기프트카드/핀번호 요구", "payment", 34, "giftcard")
    if _CRYPTO.search(c) and _CRYPTO_VERB.search(c):
        add("ctx_crypto_wallet", "맥락: 코인/지갑주소 송금 요구", "payment", 34, "crypto-wallet")
    if _ACCOUNT_RENTAL.search(c) or (_ACCOUNT_LEND.search(c) and _ACCOUNT_LEND_HOOK.search(c)):
        add("ctx_account_rental", "맥락: 통장/계좌 대여·수령대행 유도", "payment", 32, "account-rental")
    if _QR_PAY.search(c) and _QR_PAY_VERB.search(c):
        add("ctx_qr_pay", "맥락: QR/간편결제 스캔·결제 유도", "payment", 28, "qr-pay")
    if _REFUND.search(c) and _REFUND_VERB.search(c):
        add("ctx_refund_lure", "맥락: 환불/취소/해지 미끼", "verify", 14, "refund-lure")
    if _LOAN.search(c) and _LOAN_VERB.search(c):
        add("ctx_loan_hook", "맥락: 대출/대환/한도 미끼", "verify", 12, "loan-hook")

    personal_ask = bool(_PERSONAL_ASK_STRONG.search(c)) or bool(
        _PERSONAL_MENTION.search(c) and _PERSONAL_ASK_WEAK.search(c))
    if _JOB_HOOK.search(c) and personal_ask:
        add("ctx_job_scam", "맥락: 고액/해외 구인 + 신분/계좌 요구", "verify", 30, "job+id")

    if _INVEST.search(c) and has_urls:
        add("ctx_investment_link", "맥락: 투자/리딩방 + 링크", "verify", 12, "invest+link")

    benefit = bool(_BENEFIT.search(c))
    if benefit and has_urls:
        add("ctx_benefit_link", "맥락: 지원/환급/대상자 조회 + 링크", "verify", 18, "benefit+link")
    if benefit and not has_urls and _BENEFIT_MENTION_VERB.search(c):
        add("ctx_benefit_link_mention", "맥락: 지원/환급/대상자 조회 + 링크 언급", "verify", 8, "benefit+link-mention")

    if not has_urls and _PROFILE.search(c) and _LINK_WORD.search(c) and _OPEN_VERB.search(c):
        add("ctx_profile_link_mention", "맥락: 메신저/프로필 확인 + 링크 언급", "verify", 10, "profile+link-mention")

    biz_doc_link = has_urls and bool(_BIZ_DOC.search(c))
    if biz_doc_link:
        add("ctx_biz_doc_link", "맥락: 업무/회계 문서 + 링크", "verify", 14, "bizdoc+link")
        if _VIEWER.search(c) and _DOWNLOAD_VERB.search(c):
            add("ctx_biz_doc_install", "맥락: 업무 문서 열람용 뷰어 설치 유도", "install", 12, "bizdoc+install")

    return out


@dataclass
class MessageScore:
    """Scored turn: hits sorted by weight, capped score, extracted URLs."""
    hits: List[Hit] = field(default_factory=list)
    score: float = 0.0
    urls: List[str] = field(default_factory=list)
    actor_hint: str = "neutral"
    otp_cue: bool = False


def score_message(
    content: str,
    config: Optional[EngineConfig] = None,
    actor_hint: Optional[str] = None,
    seen_otp_cue: bool = False,
) -> MessageScore:
    """Score one turn's content.

    Args:
        content: Turn text without its header.
        config: Engine configuration; the cached default when omitted.
        actor_hint: Precomputed actor hint; classified here when omitted.
        seen_otp_cue: Whether an OTP cue appeared earlier in the thread.

    Returns:
        MessageScore. ``otp_cue`` reports whether this turn itself carries an
        OTP cue so the caller can carry it forward.
    """
    cfg = config or default_config()
    text = content or ""
    hint = actor_hint or classify_actor_hint(text)
    urls = extract_urls(text)

    hits = score_rules(text, cfg.catalog.rules)
    hits += score_urls(text, urls, cfg.weights)
    hits += context_hits(text, urls, hint, seen_otp_cue)
    hits.sort(key=lambda h: h.weight, reverse=True)

    return MessageScore(
        hits=hits,
        score=min(100.0, sum(h.weight for h in hits)),
        urls=urls,
        actor_hint=hint,
        otp_cue=has_otp_cue(text),
    )
