"""Flat tokenizer for the subset of ODF XML read by the ODS parser.

The tokenizer does not build a tree: it yields open, close, self-closing and
text tokens in document order. Namespace prefixes are stripped from element
and attribute names, so ``table:table-cell`` becomes ``table-cell``.
"""

from __future__ import annotations

import enum
import html
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from functools import cached_property

_ATTR_PATTERN = re.compile(r"""([\w.\-]+:)?([\w.\-]+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_NAME_PATTERN = re.compile(r"[^\s/>]+")


class TokenKind(enum.Enum):
    OPEN = "open"
    CLOSE = "close"
    SELF_CLOSE = "selfclose"
    TEXT = "text"


def local_name(qualified: str) -> str:
    _, _, local = qualified.rpartition(":")
    return local


def decode_entities(text: str) -> str:
    if "&" not in text:
        return text
    return html.unescape(text)


@dataclass
class Token:
    kind: TokenKind
    local: str = ""
    raw: str = field(default="", repr=False)
    text: str = ""

    @cached_property
    def attrs(self) -> dict[str, str]:
        """Attribute values keyed by local name; the first occurrence wins."""

        found: dict[str, str] = {}
        if self.kind in (TokenKind.OPEN, TokenKind.SELF_CLOSE):
            for m in _ATTR_PATTERN.finditer(self.raw):
                name = m.group(2)
                if name not in found:
                    value = m.group(3) if m.group(3) is not None else m.group(4)
                    found[name] = decode_entities(value)
        return found

    def get(self, name: str, default: str | None = None) -> str | None:
        return self.attrs.get(name, default)

    def get_int(self, name: str, default: int = 1) -> int:
        value = self.attrs.get(name)
        if value is None:
            return default
        try:
            parsed = int(value)
        except ValueError:
            return default
        return parsed if parsed > 0 else default

    @property
    def opens(self) -> bool:
        return self.kind in (TokenKind.OPEN, TokenKind.SELF_CLOSE)


def _skip_markup(xml: str, pos: int) -> int:
    """Index just past a ``<?..?>``, ``<!--..-->`` or ``<!..>`` section starting at ``pos``."""

    if xml.startswith("<?", pos):
        end = xml.find("?>", pos + 2)
        return len(xml) if end < 0 else end + 2
    if xml.startswith("<!--", pos):
        end = xml.find("-->", pos + 4)
        return len(xml) if end < 0 else end + 3
    if xml.startswith("<![CDATA[", pos):
        end = xml.find("]]>", pos + 9)
        return len(xml) if end < 0 else end + 3
    end = xml.find(">", pos + 2)
    return len(xml) if end < 0 else end + 1


def tokenize(xml: str) -> Iterator[Token]:
    pos = 0
    length = len(xml)
    while pos < length:
        lt = xml.find("<", pos)
        if lt < 0:
            lt = length
        if lt > pos:
            yield Token(TokenKind.TEXT, text=decode_entities(xml[pos:lt]))
        if lt >= length:
            break

        if xml.startswith("<![CDATA[", lt):
            end = xml.find("]]>", lt + 9)
            stop = length if end < 0 else end
            yield Token(TokenKind.TEXT, text=xml[lt + 9 : stop])
            pos = _skip_markup(xml, lt)
            continue
        if xml.startswith("<?", lt) or xml.startswith("<!", lt):
            pos = _skip_markup(xml, lt)
            continue

        gt = xml.find(">", lt + 1)
        if gt < 0:
            break
        body = xml[lt + 1 : gt]
        pos = gt + 1
        if body.startswith("/"):
            yield Token(TokenKind.CLOSE, local=local_name(body[1:].strip()))
            continue

        self_closing = body.endswith("/")
        if self_closing:
            body = body[:-1]
        m = _NAME_PATTERN.match(body)
        if not m:
            continue
        kind = TokenKind.SELF_CLOSE if self_closing else TokenKind.OPEN
        yield Token(kind, local=local_name(m.group(0)), raw=body[m.end() :])
