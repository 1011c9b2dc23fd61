"""
threads.py — Thread Splitting & Turn Headers
============================================

Turns a pasted conversation into message blocks and pulls apart the
presentational header of each block.

Recognised formats:
    - Speaker prefixes      : ``S: ...``, ``R: ...``, ``sender:``, ``receiver:``, ``발신:``, ``수신:``
    - KakaoTalk exports     : ``[오전 10:21] 홍길동: ...``
    - Dated chat exports    : ``2026-02-03 09:12 홍길동: ...``, ``2026.02.03 오후 3:21 홍길동: ...``
    - Time-only headers     : ``오후 3:21 홍길동: ...``, ``10:21 홍길동: ...``

A blank line always ends a block. Speaker-prefix and header lines start a new
block. At most 200 blocks are returned.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple


MAX_BLOCKS = 200

_SPEAKER_SHORT = re.compile(r'^(S|R)\s*:\s*(.*)$', re.IGNORECASE | re.DOTALL)
_SPEAKER_LONG = re.compile(r'^(sender|receiver|발신|수신)\s*:\s*(.*)$', re.IGNORECASE | re.DOTALL)

_HEADER_PROBES = [
    re.compile(r'^\[\s*(?:오전|오후)?\s*\d{1,2}:\d{2}\s*\]'),
    re.compile(r'^\d{4}[.\-/]\d{1,2}[.\-/]\d{1,2}\s+(?:오전|오후)?\s*\d{1,2}:\d{2}'),
    re.compile(r'^\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}'),
    re.compile(r'^(?:오전|오후)?\s*\d{1,2}:\d{2}\s+.{1,40}:\s*'),
    re.compile(r'^\d{1,2}:\d{2}\s+.{1,40}:\s*'),
]

# (pattern, group holding the speaker name, group holding the content)
_HEADER_PARSERS: List[Tuple[re.Pattern, int, int]] = [
    (re.compile(r'^\[\s*(오전|오후)?\s*\d{1,2}:\d{2}\s*\]\s*(.{1,40}?):\s*(.*)$'), 2, 3),
    (re.compile(r'^\d{4}[.\-/]\d{1,2}[.\-/]\d{1,2}\s+(오전|오후)?\s*\d{1,2}:\d{2}\s+(.{1,40}?):\s*(.*)$'), 2, 3),
    (re.compile(r'^\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}(?::\d{2})?\s+(.{1,40}?):\s*(.*)$'), 1, 2),
    (re.compile(r'^(오전|오후)?\s*\d{1,2}:\d{2}\s+(.{1,40}?):\s*(.*)$'), 2, 3),
    (re.compile(r'^\d{1,2}:\d{2}\s+(.{1,40}?):\s*(.*)$'), 1, 2),
]

_ISO_STAMP = re.compile(r'^(\d{4})-(\d{2})-(\d{2})[ T](\d{2}):(\d{2})(?::(\d{2}))?')
_KR_STAMP = re.compile(r'^(\d{4})[.\-/](\d{1,2})[.\-/](\d{1,2})\s+(오전|오후)?\s*(\d{1,2}):(\d{2})')

_EXPLICIT_ROLE_LINE = re.compile(
    r'^\s*(?:\[?\s*[SR]\s*\]?|sender|receiver|발신|수신|가해자|사용자)\s*[:：]',
    re.IGNORECASE | re.MULTILINE,
)


@dataclass
class ParsedTurn:
    header: Optional[str]
    speaker_label: Optional[str]
    content: str


def normalize_text(s: str) -> str:
    """Normalise line endings and whitespace runs."""
    s = (s or "").replace("\r\n", "\n").replace("\t", " ")
    s = re.sub(r'[ \u00a0]+', " ", s)
    s = re.sub(r'\n{3,}', "\n\n", s)
    return s.strip()


def is_header_line(line: str) -> bool:
    s = line.strip()
    if not s:
        return False
    return any(p.search(s) for p in _HEADER_PROBES)


def _has_speaker_prefix(line: str) -> bool:
    s = line.lstrip()
    return bool(_SPEAKER_SHORT.match(s) or _SPEAKER_LONG.match(s))


def split_thread(thread: str) -> List[str]:
    """Split raw thread text into message blocks.

    A blank line ends a block; a speaker prefix or a chat header line starts
    a new one.
    """
    text = (thread or "").replace("\r\n", "\n")
    if not text.strip():
        return []

    blocks: List[str] = []
    cur_lines: List[str] = []

    def flush() -> None:
        joined = "\n".join(cur_lines).strip()
        if joined:
            blocks.append(joined)
        cur_lines.clear()

    for raw_line in text.split("\n"):
        if not raw_line.strip():
            flush()
            continue

        line = raw_line.rstrip()
        stripped = line.strip()
        if (_has_speaker_prefix(stripped) or is_header_line(stripped)) and cur_lines:
            flush()
        cur_lines.append(line)

    flush()
    return blocks[:MAX_BLOCKS]


def parse_header_and_content(block_text: str) -> ParsedTurn:
    """Separate a block's header (timestamp / speaker) from its content.

    ``S:``/``R:`` style prefixes produce ``speaker_label`` "S" or "R" and no
    header. Chat-export headers produce the header line and the display name.
    Anything else is returned as content unchanged.
    """
    raw = (block_text or "").replace("\r\n", "\n").strip()
    if not raw:
        return ParsedTurn(header=None, speaker_label=None, content="")

    lines = raw.split("\n")
    first = lines[0].strip()
    rest = lines[1:]

    def body(after: str) -> str:
        after = after.strip()
        joined = "\n".join(x for x in [after] + rest if x).strip()
        return joined or after

    for pattern in (_SPEAKER_SHORT, _SPEAKER_LONG):
        m = pattern.match(first)
        if m:
            head = m.group(1).lower()
            who = "R" if head in ("r", "receiver", "수신") else "S"
            return ParsedTurn(header=None, speaker_label=who, content=body(m.group(2) or ""))

    for pattern, who_group, content_group in _HEADER_PARSERS:
        m = pattern.match(first)
        if m:
            speaker = (m.group(who_group) or "").strip()
            return ParsedTurn(
                header=first,
                speaker_label=speaker or None,
                content=body(m.group(content_group) or ""),
            )

    return ParsedTurn(header=None, speaker_label=None, content=raw)


def has_explicit_role(thread_text: str) -> bool:
    """True when any line of the thread carries an S/R style speaker label."""
    return bool(_EXPLICIT_ROLE_LINE.search(thread_text or ""))


def parse_timestamp(raw_line: str) -> Optional[datetime]:
    """Parse a leading timestamp from a header line.

    Accepts ``2026-02-03 09:12[:ss]`` and ``2026.02.03 오후 3:21``.
    Returns None when no timestamp is present or it is not a valid date.
    """
    x = (raw_line or "").strip()
    if not x:
        return None

    m = _ISO_STAMP.match(x)
    if m:
        yy, mm, dd, hh, mi = (int(g) for g in m.groups()[:5])
        ss = int(m.group(6) or 0)
        try:
            return datetime(yy, mm, dd, hh, mi, ss)
        except ValueError:
            return None

    m = _KR_STAMP.match(x)
    if m:
        yy, mm, dd = int(m.group(1)), int(m.group(2)), int(m.group(3))
        ampm = m.group(4) or ""
        hh, mi = int(m.group(5)), int(m.group(6))
        if ampm == "오후" and hh < 12:
            hh += 12
        if ampm == "오전" and hh == 12:
            hh = 0
        try:
            return datetime(yy, mm, dd, hh, mi)
        except ValueError:
            return None

    return None
