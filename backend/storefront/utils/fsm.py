from __future__ import annotations
"""Finite state machine helper for status lifecycles.

Usage:
    from storefront.utils.fsm import TransitionValidator
    FSM = TransitionValidator({
        'pending': {'confirmed', 'cancelled'},
        'confirmed': set(),
    }, terminal={'confirmed'})
    FSM.can_transition('pending', 'confirmed')      # True
    FSM.assert_can_transition(current, target)      # raises InvalidTransition

A same-state write is an idempotent no-op and allowed, except from states without any
outbound edge. Terminal states reject every write in assert_can_transition, even along
edges the graph still lists for them.
"""
from typing import Dict, Iterable, Mapping, Optional, Set, FrozenSet

from storefront.errors import InvalidTransition, TerminalStateViolation


class TransitionValidator:
    def __init__(self, graph: Mapping[str, Iterable[str]], terminal: Iterable[str] = (), field_name: str = 'status'):
        self.graph: Dict[str, FrozenSet[str]] = {state: frozenset(targets) for state, targets in graph.items()}
        for targets in list(self.graph.values()):
            for t in targets:
                self.graph.setdefault(t, frozenset())
        self.terminal: FrozenSet[str] = frozenset(terminal)
        unknown = self.terminal - set(self.graph)
        if unknown:
            raise ValueError(f'terminal states not in graph: {sorted(unknown)}')
        self.field_name = field_name

    @property
    def states(self) -> Set[str]:
        return set(self.graph)

    def targets(self, current: str) -> FrozenSet[str]:
        return self.graph.get(current, frozenset())

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal

    def is_dead_end(self, state: str) -> bool:
        return state in self.graph and not self.graph[state]

    def can_transition(self, current: Optional[str], target: Optional[str]) -> bool:
        if not current or not target or current not in self.graph:
            return False
        if current == target:
            return not self.is_dead_end(current)
        return target in self.graph[current]

    def assert_can_transition(self, current: str, target: str) -> bool:
        if self.is_terminal(current):
            raise TerminalStateViolation(current, attempted=target)
        if not self.can_transition(current, target):
            raise InvalidTransition(current, target, self.field_name)
        return True

    def extended(self, extra: Mapping[str, Iterable[str]]) -> 'TransitionValidator':
        """New validator with ``extra`` edges added to this graph; terminal set unchanged."""
        merged: Dict[str, Set[str]] = {s: set(t) for s, t in self.graph.items()}
        for state, targets in extra.items():
            merged.setdefault(state, set()).update(targets)
        return TransitionValidator(merged, terminal=self.terminal, field_name=self.field_name)


__all__ = ['TransitionValidator']
