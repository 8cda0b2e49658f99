"""Easy key parsing.

An easy key names an item by creator, year and an optional short title.
Two surface forms are accepted and denote the same key:

- colon form: ``doe:2005first``, ``roe_doe:2015double``, ``roe-doe:2015hyphens``
- CamelCase form: ``DoeFirst2005``, ``Doe2005first``, ``HüningWortbildung2012``

Parsing is pure: the store is never consulted.
"""

import re
import unicodedata
from typing import List, Optional, Tuple

from .exceptions import EasyKeyParseError
from .models import KeyPrefix, StructuredKey


_DIGITS_RE = re.compile(r"\d+")
_COLON_TAIL_RE = re.compile(r"(\d*)(.*)$", re.DOTALL)


def _is_word(text: str) -> bool:
    """True when ``text`` is non-empty and made of letters or combining marks."""
    return bool(text) and all(unicodedata.category(ch)[0] in ("L", "M") for ch in text)


def _is_creator(token: str) -> bool:
    return all(_is_word(part) for part in token.split("-"))


def _clean(raw: str) -> str:
    text = unicodedata.normalize("NFC", (raw or "").strip())
    if text.startswith("@"):
        text = text[1:]
    return text


def _split_creators(head: str, raw: str) -> Tuple[str, ...]:
    """Split the colon-form creator part on underscores."""
    tokens = head.split("_")
    if not all(_is_creator(token) for token in tokens):
        raise EasyKeyParseError(raw)
    return tuple(token.lower() for token in tokens)


def _camel_words(head: str, raw: str) -> List[str]:
    """Split ``RoeDoe-SmithTitle`` style text into capitalised words.

    A hyphen keeps the following capital inside the current word.
    """
    words: List[str] = []
    current = ""
    for ch in head:
        if ch.isupper() and current and not current.endswith("-"):
            words.append(current)
            current = ch
        else:
            current += ch
    if current:
        words.append(current)
    if not words or not all(_is_creator(word) for word in words):
        raise EasyKeyParseError(raw)
    return words


def _parse_colon(text: str, raw: str) -> Tuple[Tuple[str, ...], str, Optional[str]]:
    head, _, tail = text.partition(":")
    creators = _split_creators(head, raw)
    digits, rest = _COLON_TAIL_RE.match(tail).groups()
    if len(digits) != 4:
        raise EasyKeyParseError(raw)
    if rest and not _is_word(rest):
        raise EasyKeyParseError(raw)
    return creators, digits, rest.lower() or None


def _parse_camel(text: str, raw: str) -> Tuple[Tuple[str, ...], str, Optional[str]]:
    match = _DIGITS_RE.search(text)
    if not match or len(match.group()) != 4:
        raise EasyKeyParseError(raw)
    head, tail = text[:match.start()], text[match.end():]
    words = _camel_words(head, raw)
    if len(words) > 2:
        raise EasyKeyParseError(raw)
    title = words[1] if len(words) == 2 else None
    if tail:
        if title or not _is_word(tail):
            raise EasyKeyParseError(raw)
        title = tail
    return (words[0].lower(),), match.group(), title.lower() if title else None


def parse_easykey(raw: str) -> StructuredKey:
    """Parse an easy key in either surface form.

    Args:
        raw: Key as supplied by the client (a leading ``@`` is allowed)

    Returns:
        The structured key

    Raises:
        EasyKeyParseError: If the text has no creator or no 4-digit year,
            or contains characters outside the grammar
    """
    text = _clean(raw)
    if not text:
        raise EasyKeyParseError(raw)
    if ":" in text:
        creators, year, title = _parse_colon(text, raw)
    else:
        creators, year, title = _parse_camel(text, raw)
    return StructuredKey(creators=creators, year=year, title=title)


def parse_easykey_prefix(raw: str) -> KeyPrefix:
    """Parse a partially typed easy key for completion.

    Accepts everything ``parse_easykey`` accepts plus truncated forms such
    as ``doe:``, ``doe:20``, ``doe:2006art`` and ``Doe``. A title is only
    allowed after a complete year.
    """
    text = _clean(raw)
    if not text:
        raise EasyKeyParseError(raw)

    if ":" in text:
        head, _, tail = text.partition(":")
        creators = _split_creators(head, raw)
        digits, rest = _COLON_TAIL_RE.match(tail).groups()
        if len(digits) > 4 or (rest and (len(digits) != 4 or not _is_word(rest))):
            raise EasyKeyParseError(raw)
        return KeyPrefix(creators=creators, year=digits, title=rest.lower())

    match = _DIGITS_RE.search(text)
    head = text[:match.start()] if match else text
    words = _camel_words(head, raw)
    if len(words) > 2:
        raise EasyKeyParseError(raw)
    title = words[1] if len(words) == 2 else ""
    digits = ""
    if match:
        digits = match.group()
        tail = text[match.end():]
        if len(digits) > 4:
            raise EasyKeyParseError(raw)
        if tail:
            if title or len(digits) != 4 or not _is_word(tail):
                raise EasyKeyParseError(raw)
            title = tail
    return KeyPrefix(creators=(words[0].lower(),), year=digits, title=title.lower())
