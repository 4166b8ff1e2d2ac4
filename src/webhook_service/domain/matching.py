"""Event pattern matching.

A subscription pattern is one of three variants:

* ``Wildcard`` -- the literal ``*``, matches every event;
* ``Exact`` -- equal to the event type (``company.propertyChange``);
* ``PrefixOfObjectType`` -- case-insensitive prefix of the event's object type,
  so ``company`` matches object types ``company``/``COMPANY``/``companies``.

Every non-wildcard pattern is checked both as ``Exact`` and as
``PrefixOfObjectType``. A dotted pattern therefore effectively matches only by
exact event type, because object types carry no dots.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from webhook_service.domain.events import ChangeEvent

WILDCARD = "*"


class EventMatcher(Protocol):
    def __call__(self, event: ChangeEvent) -> bool: ...


@dataclass(frozen=True)
class Wildcard:
    def __call__(self, event: ChangeEvent) -> bool:
        return True


@dataclass(frozen=True)
class Exact:
    event_type: str

    def __call__(self, event: ChangeEvent) -> bool:
        return event.event_type == self.event_type


@dataclass(frozen=True)
class PrefixOfObjectType:
    prefix: str

    def __call__(self, event: ChangeEvent) -> bool:
        return event.object_type.lower().startswith(self.prefix.lower())


def compile_pattern(pattern: str) -> tuple[EventMatcher, ...]:
    if pattern == WILDCARD:
        return (Wildcard(),)
    return (Exact(pattern), PrefixOfObjectType(pattern))


def compile_patterns(patterns: Iterable[str]) -> tuple[EventMatcher, ...]:
    matchers: list[EventMatcher] = []
    for pattern in patterns:
        matchers.extend(compile_pattern(pattern))
    return tuple(matchers)


def matches_any(patterns: Sequence[str], event: ChangeEvent) -> bool:
    return any(matcher(event) for matcher in compile_patterns(patterns))
