"""
Template Tokens

Parses parameter strings into a small token AST:

    Literal      plain text
    NotepadRef   {{notepad:key}}
    InputRef     {{input:name}}
    ContextRef   {{tabId}} / {{apiKey}}

A string is parsed once into a tuple of segments; the resolver and the
static plan validator both work from that tuple.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple, Union


TAB_TOKEN = "{{tabId}}"
CREDENTIAL_TOKEN = "{{apiKey}}"

_TOKEN_PATTERN = re.compile(
    r"\{\{(?:(?P<kind>notepad|input):(?P<key>\w+)|(?P<context>tabId|apiKey))\}\}"
)


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class NotepadRef:
    key: str

    @property
    def raw(self) -> str:
        return f"{{{{notepad:{self.key}}}}}"


@dataclass(frozen=True)
class InputRef:
    name: str

    @property
    def raw(self) -> str:
        return f"{{{{input:{self.name}}}}}"


@dataclass(frozen=True)
class ContextRef:
    name: str  # "tabId" or "apiKey"

    @property
    def raw(self) -> str:
        return f"{{{{{self.name}}}}}"


Segment = Union[Literal, NotepadRef, InputRef, ContextRef]
Reference = Union[NotepadRef, InputRef, ContextRef]


@lru_cache(maxsize=1024)
def parse_template(text: str) -> Tuple[Segment, ...]:
    """
    Split a string into literal text and token references.

    >>> parse_template("items: {{notepad:raw}}")
    (Literal(text='items: '), NotepadRef(key='raw'))
    """
    segments = []
    position = 0

    for match in _TOKEN_PATTERN.finditer(text):
        if match.start() > position:
            segments.append(Literal(text[position:match.start()]))

        if match.group("context"):
            segments.append(ContextRef(match.group("context")))
        elif match.group("kind") == "notepad":
            segments.append(NotepadRef(match.group("key")))
        else:
            segments.append(InputRef(match.group("key")))

        position = match.end()

    if position < len(text):
        segments.append(Literal(text[position:]))

    return tuple(segments)


def has_tokens(text: str) -> bool:
    return any(not isinstance(seg, Literal) for seg in parse_template(text))


def exact_reference(segments: Tuple[Segment, ...]):
    """Return the reference if the string is exactly one token, else None"""
    if len(segments) == 1 and not isinstance(segments[0], Literal):
        return segments[0]
    return None
