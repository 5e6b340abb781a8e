"""High-level orchestration across parser, model, and solver layers."""
from __future__ import annotations

import logging
import time
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional

from .formula import conjunction, disjunction, iff, negation
from .model import Firewall, FirewallRule, Inconsistency, Packet, PacketQueryResult, PacketVariables
from .parser import read_firewall
from .solver import SolverUnknownError, Z3Session

logger = logging.getLogger(__name__)


class CheckState(Enum):
    SEARCHING = "searching"
    DONE = "done"


class EquivalenceCheck:
    """Counterexample-guided enumeration of packets two firewalls disagree on.

    Each call to :meth:`next` asks the solver for a packet on which the
    firewalls disagree and which matches none of the witnesses found so far.
    A witness field the solver left unbound is a wildcard, so excluding the
    witness excludes its whole class of packets. The search is over once the
    query is unsatisfiable; ``exhausted`` then records that every
    disagreement class has been reported.

    ``limit`` caps the number of inconsistencies, ``timeout`` is a wall-clock
    limit in seconds checked before every solver call, and
    ``solver_timeout_ms`` bounds each individual query inside Z3.
    """

    def __init__(
        self,
        first: Firewall,
        second: Firewall,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
        solver_timeout_ms: Optional[int] = None,
    ):
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be non-negative, got {limit}")
        self.firewalls = (first, second)
        self.limit = limit
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self.state = CheckState.SEARCHING
        self.exhausted = False
        self.witnesses: List[Packet] = []
        self._session = Z3Session(timeout_ms=solver_timeout_ms)

    def __iter__(self) -> Iterator[Inconsistency]:
        while True:
            inconsistency = self.next()
            if inconsistency is None:
                return
            yield inconsistency

    def next(self) -> Optional[Inconsistency]:
        if self.state is CheckState.DONE:
            return None
        if self.limit is not None and len(self.witnesses) >= self.limit:
            logger.info("Stopping after %d inconsistencies (limit reached)", len(self.witnesses))
            return self._finish()
        if self.deadline is not None and time.monotonic() >= self.deadline:
            logger.warning("Stopping after %d inconsistencies (timeout reached)", len(self.witnesses))
            return self._finish()

        first, second = self.firewalls
        packet_vars = PacketVariables.fresh()
        disagreement = negation(iff(first.admits(packet_vars), second.admits(packet_vars)))
        excluded = disjunction(witness.matches_pattern(packet_vars) for witness in self.witnesses)
        try:
            view = self._session.check(conjunction([disagreement, negation(excluded)]))
        except SolverUnknownError:
            self.state = CheckState.DONE
            raise
        if view is None:
            logger.debug("No further disagreement after %d witnesses", len(self.witnesses))
            self.exhausted = True
            return self._finish()

        packet = view.packet()
        allowed = (view.holds(first.admits(packet_vars)), view.holds(second.admits(packet_vars)))
        if allowed[0] == allowed[1]:
            self.state = CheckState.DONE
            raise RuntimeError(f"Solver model does not separate the firewalls for packet {packet}")
        inconsistency = Inconsistency(
            packet=packet,
            firewalls=(first, second),
            allowed=allowed,
            rule_matches=(
                first.matching_rules(packet_vars, view.holds),
                second.matching_rules(packet_vars, view.holds),
            ),
        )
        self.witnesses.append(packet)
        logger.debug("Inconsistency %d: %s", len(self.witnesses), packet)
        return inconsistency

    def _finish(self) -> None:
        self.state = CheckState.DONE
        return None


def check_equivalence(
    first: Firewall,
    second: Firewall,
    limit: Optional[int] = None,
    timeout: Optional[float] = None,
    solver_timeout_ms: Optional[int] = None,
) -> Iterator[Inconsistency]:
    """Lazily yield the inconsistencies between two firewalls.

    Yields nothing when the firewalls are equivalent.
    """
    return iter(
        EquivalenceCheck(
            first,
            second,
            limit=limit,
            timeout=timeout,
            solver_timeout_ms=solver_timeout_ms,
        )
    )


def query_packet(firewall: Firewall, packet: Packet) -> PacketQueryResult:
    """Decide one packet; absent fields take whatever value the solver picks."""
    session = Z3Session()
    packet_vars = PacketVariables.fresh()
    view = session.check(packet.matches_pattern(packet_vars))
    if view is None:
        raise RuntimeError(f"Packet pattern is unsatisfiable: {packet}")
    return PacketQueryResult(
        allowed=view.holds(firewall.admits(packet_vars)),
        matches=firewall.matching_rules(packet_vars, view.holds),
    )


def admits(firewall: Firewall, packet: Packet) -> bool:
    return query_packet(firewall, packet).allowed


def matching_rules(firewall: Firewall, packet: Packet) -> List[FirewallRule]:
    return query_packet(firewall, packet).matches


class FirewallChecker:
    """Bundle rule parsing, packet evaluation, and solver-backed queries."""

    def __init__(self, firewall: Firewall):
        self.firewall = firewall

    @classmethod
    def from_file(
        cls,
        path: Path,
        block_by_default: bool = True,
        separator: str = "\t",
    ) -> "FirewallChecker":
        return cls(read_firewall(path, block_by_default=block_by_default, separator=separator))

    def query(self, packet: Packet) -> PacketQueryResult:
        return query_packet(self.firewall, packet)

    def admits(self, packet: Packet) -> bool:
        return admits(self.firewall, packet)

    def matching_rules(self, packet: Packet) -> List[FirewallRule]:
        return matching_rules(self.firewall, packet)

    def equivalence_check(
        self,
        other: "FirewallChecker",
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
        solver_timeout_ms: Optional[int] = None,
    ) -> EquivalenceCheck:
        return EquivalenceCheck(
            self.firewall,
            other.firewall,
            limit=limit,
            timeout=timeout,
            solver_timeout_ms=solver_timeout_ms,
        )
