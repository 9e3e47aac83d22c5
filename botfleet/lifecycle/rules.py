"""Ordered first-match-wins rule cascades."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Iterable, TypeVar

F = TypeVar('F')
R = TypeVar('R')


@dataclass(frozen=True)
class Rule(Generic[F, R]):
    name: str
    applies: Callable[[F], bool]
    derive: Callable[[F], R]


def first_match(rules: Iterable[Rule[F, R]], facts: F, default: Callable[[F], R]) -> tuple[str, R]:
    """Return the name and outcome of the first rule whose predicate holds."""

    for rule in rules:
        if rule.applies(facts):
            return rule.name, rule.derive(facts)
    return 'default', default(facts)


__all__ = ['Rule', 'first_match']
