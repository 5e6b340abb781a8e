"""Solver-independent boolean formulas over fixed-width packet variables."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple


@dataclass(frozen=True)
class Variable:
    """A named, unsigned bit-vector variable standing for one packet field."""

    name: str
    width: int

    @property
    def max_value(self) -> int:
        return (1 << self.width) - 1


class Formula:
    """Base class of the closed set of formula variants below."""


@dataclass(frozen=True)
class Constant(Formula):
    value: bool


TRUE = Constant(True)
FALSE = Constant(False)


@dataclass(frozen=True)
class InRange(Formula):
    """Unsigned ``low <= variable <= high``; empty when ``low > high``."""

    variable: Variable
    low: int
    high: int


@dataclass(frozen=True)
class Equals(Formula):
    variable: Variable
    value: int


@dataclass(frozen=True)
class And(Formula):
    parts: Tuple[Formula, ...]


@dataclass(frozen=True)
class Or(Formula):
    parts: Tuple[Formula, ...]


@dataclass(frozen=True)
class Not(Formula):
    operand: Formula


def conjunction(parts: Iterable[Formula]) -> Formula:
    parts = tuple(parts)
    return And(parts) if parts else TRUE


def disjunction(parts: Iterable[Formula]) -> Formula:
    parts = tuple(parts)
    return Or(parts) if parts else FALSE


def negation(operand: Formula) -> Formula:
    return Not(operand)


def iff(left: Formula, right: Formula) -> Formula:
    return Or((And((left, right)), And((Not(left), Not(right)))))


def check_width(variable: Variable, width: int) -> None:
    if variable.width != width:
        raise ValueError(
            f"Variable {variable.name} is {variable.width} bits wide, expected {width}",
        )


def check_value(variable: Variable, value: int) -> None:
    if not 0 <= value <= variable.max_value:
        raise ValueError(f"Value {value} does not fit in {variable.width}-bit variable {variable.name}")
