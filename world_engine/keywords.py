"""Keyword matching primitive used by the lorebook.

Match chain, all case-insensitive:
  1. keyword written as /pattern/flags -> user regex
  2. whole-word mode -> keyword bounded by non-word chars or string edges
  3. otherwise -> plain substring
  4. nothing matched, fuzzy on, keyword not CJK -> Levenshtein against each word
     of the text (<= 1 edit for keywords up to 5 chars, <= 2 for longer)

Fuzzy matching only runs after the exact checks fail, so turning it on can
never lose a match.
"""

import logging
import re

logger = logging.getLogger(__name__)

_CJK_RE = re.compile(r"[\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff\uac00-\ud7af]")
_USER_REGEX_RE = re.compile(r"^/(.+)/([a-z]*)$")
_WORD_RE = re.compile(r"\w+")

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings, single-row DP."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) > len(b):
        a, b = b, a

    row = list(range(len(a) + 1))
    for j in range(1, len(b) + 1):
        prev = row[0]
        row[0] = j
        for i in range(1, len(a) + 1):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            temp = row[i]
            row[i] = min(row[i] + 1, row[i - 1] + 1, prev + cost)
            prev = temp
    return row[len(a)]


def fuzzy_match(needle: str, target: str) -> bool:
    threshold = 1 if len(needle) <= 5 else 2
    return levenshtein(needle, target) <= threshold


def _user_regex(keyword: str) -> re.Pattern | None:
    m = _USER_REGEX_RE.match(keyword)
    if not m:
        return None
    flags = re.IGNORECASE
    for ch in m.group(2):
        flags |= _REGEX_FLAGS.get(ch, 0)
    try:
        return re.compile(m.group(1), flags)
    except re.error:
        logger.debug("Invalid keyword regex %r, falling back to text match", keyword)
        return None


def keyword_matches(text: str, keyword: str, whole_word: bool = False, fuzzy: bool = False) -> bool:
    """Return True if keyword occurs in text under the given mode."""
    if not keyword or not keyword.strip() or not text:
        return False

    pattern = _user_regex(keyword)
    if pattern is not None and pattern.search(text):
        return True

    lower_text = text.lower()
    lower_keyword = keyword.strip().lower()

    if whole_word:
        bounded = rf"(?<!\w){re.escape(lower_keyword)}(?!\w)"
        if re.search(bounded, lower_text):
            return True
    elif lower_keyword in lower_text:
        return True

    if fuzzy and not _CJK_RE.search(keyword):
        for word in _WORD_RE.findall(lower_text):
            if fuzzy_match(lower_keyword, word):
                return True

    return False


def count_matches(
    text: str, keywords: list[str], whole_word: bool = False, fuzzy: bool = False
) -> int:
    """Number of distinct keywords from the list that match the text."""
    return sum(1 for kw in keywords if keyword_matches(text, kw, whole_word, fuzzy))
