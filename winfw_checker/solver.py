"""Translation utilities that map firewall formulas into Z3 queries."""
from __future__ import annotations

import logging
from ipaddress import IPv4Address
from typing import Dict, Optional

import z3

from .formula import And, Constant, Equals, Formula, InRange, Not, Or, Variable
from .model import (
    DESTINATION_PORT_VARIABLE,
    PROTOCOL_VARIABLE,
    SOURCE_ADDRESS_VARIABLE,
    SOURCE_PORT_VARIABLE,
    Packet,
)

logger = logging.getLogger(__name__)


class SolverUnknownError(RuntimeError):
    """Z3 answered neither sat nor unsat for a query."""

    def __init__(self, reason: str):
        super().__init__(f"Solver returned unknown: {reason}")
        self.reason = reason


class Z3Translator:
    """Compiles formulas into expressions of one Z3 context."""

    def __init__(self, ctx: z3.Context):
        self.ctx = ctx
        self._variables: Dict[Variable, z3.BitVecRef] = {}

    def variable(self, variable: Variable) -> z3.BitVecRef:
        if variable not in self._variables:
            self._variables[variable] = z3.BitVec(variable.name, variable.width, ctx=self.ctx)
        return self._variables[variable]

    def translate(self, formula: Formula) -> z3.BoolRef:
        if isinstance(formula, Constant):
            return z3.BoolVal(formula.value, ctx=self.ctx)
        if isinstance(formula, InRange):
            value = self.variable(formula.variable)
            low = z3.BitVecVal(formula.low, formula.variable.width, ctx=self.ctx)
            high = z3.BitVecVal(formula.high, formula.variable.width, ctx=self.ctx)
            return z3.And(z3.UGE(value, low), z3.ULE(value, high))
        if isinstance(formula, Equals):
            value = self.variable(formula.variable)
            return value == z3.BitVecVal(formula.value, formula.variable.width, ctx=self.ctx)
        if isinstance(formula, And):
            if not formula.parts:
                return z3.BoolVal(True, ctx=self.ctx)
            return z3.And([self.translate(part) for part in formula.parts])
        if isinstance(formula, Or):
            if not formula.parts:
                return z3.BoolVal(False, ctx=self.ctx)
            return z3.Or([self.translate(part) for part in formula.parts])
        if isinstance(formula, Not):
            return z3.Not(self.translate(formula.operand))
        raise TypeError(f"Unsupported formula variant: {type(formula).__name__}")


class ModelView:
    """A satisfying assignment returned by :class:`Z3Session`."""

    def __init__(self, model: z3.ModelRef, translator: Z3Translator):
        self._model = model
        self._translator = translator

    def value(self, name: str) -> Optional[int]:
        """Bound value of the named constant, or None if the model leaves it free."""
        for decl in self._model.decls():
            if decl.arity() == 0 and decl.name() == name:
                return self._model[decl].as_long()
        return None

    def packet(self) -> Packet:
        # Must run before holds(): model completion adds interpretations
        # for the constants left free.
        address = self.value(SOURCE_ADDRESS_VARIABLE)
        return Packet(
            source_address=IPv4Address(address) if address is not None else None,
            source_port=self.value(SOURCE_PORT_VARIABLE),
            destination_port=self.value(DESTINATION_PORT_VARIABLE),
            protocol=self.value(PROTOCOL_VARIABLE),
        )

    def holds(self, formula: Formula) -> bool:
        expr = self._translator.translate(formula)
        return z3.is_true(self._model.eval(expr, model_completion=True))


class Z3Session:
    """Owns a Z3 context; each :meth:`check` runs on a fresh solver."""

    def __init__(self, timeout_ms: Optional[int] = None):
        self.ctx = z3.Context()
        self.timeout_ms = timeout_ms
        self.queries = 0

    def check(self, formula: Formula) -> Optional[ModelView]:
        translator = Z3Translator(self.ctx)
        solver = z3.Solver(ctx=self.ctx)
        if self.timeout_ms:
            solver.set("timeout", self.timeout_ms)
        solver.add(translator.translate(formula))
        self.queries += 1
        result = solver.check()
        logger.debug("Query %d returned %s", self.queries, result)
        if result == z3.unsat:
            return None
        if result == z3.sat:
            return ModelView(solver.model(), translator)
        raise SolverUnknownError(solver.reason_unknown())
