"""
Text helpers for chat bodies and room names
"""
import html
import re

SCRIPT_BLOCK_PATTERN = re.compile(r'<script\b[^>]*>.*?</script\s*>', re.IGNORECASE | re.DOTALL)
TAG_PATTERN = re.compile(r'</?[A-Za-z][^>]*>')
CONTROL_CHAR_PATTERN = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')
WHITESPACE_PATTERN = re.compile(r'\s+')

# Ranges that occupy two columns when sizing room names
_WIDE_RANGES = (
    (0x4E00, 0x9FFF),    # CJK unified ideographs
    (0x3400, 0x4DBF),    # CJK extension A
    (0xF900, 0xFAFF),    # CJK compatibility ideographs
    (0x1F300, 0x1F9FF),  # pictographs and emoticons
    (0x2600, 0x26FF),    # misc symbols
    (0x2700, 0x27BF),    # dingbats
)
_REGIONAL_INDICATORS = (0x1F1E6, 0x1F1FF)


def sanitize_text(text: str) -> str:
    """
    Strip markup and control characters and collapse whitespace runs.

    Script blocks are removed with their content, other tags are dropped
    and the remaining entities are unescaped so a body is stored as plain text.
    """
    text = SCRIPT_BLOCK_PATTERN.sub('', text)
    text = TAG_PATTERN.sub('', text)
    text = html.unescape(text)
    # Entities may decode into markup again
    text = TAG_PATTERN.sub('', text)
    text = CONTROL_CHAR_PATTERN.sub('', text)
    text = WHITESPACE_PATTERN.sub(' ', text)
    return text.strip()


def normalize_for_comparison(text: str) -> str:
    return text.strip().lower()


def display_width(text: str) -> int:
    """
    Column width of `text`: CJK ideographs and emoji count as 2, everything
    else as 1. A regional indicator pair (flag) counts once as 2.
    """
    width = 0
    i = 0
    while i < len(text):
        code_point = ord(text[i])
        if _REGIONAL_INDICATORS[0] <= code_point <= _REGIONAL_INDICATORS[1]:
            width += 2
            nxt = ord(text[i + 1]) if i + 1 < len(text) else 0
            i += 2 if _REGIONAL_INDICATORS[0] <= nxt <= _REGIONAL_INDICATORS[1] else 1
            continue
        if any(low <= code_point <= high for low, high in _WIDE_RANGES):
            width += 2
        else:
            width += 1
        i += 1
    return width
