"""Annotation readiness: which definitions can be annotated next for an aspect.

A definition is *ready* for an aspect when it lacks the aspect and every
definition it directly calls already carries it. Work proceeds leaves first;
call cycles among unannotated definitions block that order and are reported
by :meth:`ReadinessEngine.find_cycles`.

Each public method reads a fresh snapshot from the store, so results always
reflect the current metadata.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, List, Optional, Set

import networkx as nx

from .config import ASPECT_KEY_PATTERN, DEFAULT_READY_LIMIT
from .models import AspectCoverage, Definition, PrerequisiteEntry, ReadySummary
from .storage import GraphStore

logger = logging.getLogger(__name__)

_ASPECT_RE = re.compile(ASPECT_KEY_PATTERN)


def validate_aspect(aspect: str) -> str:
    """Return ``aspect`` unchanged, or raise ``ValueError`` if it is not a valid key."""
    if not isinstance(aspect, str) or not _ASPECT_RE.fullmatch(aspect):
        raise ValueError(
            f"Invalid aspect key {aspect!r}: expected lowercase letters, digits, '_' or '-', "
            "starting with a letter"
        )
    return aspect


class _Snapshot:
    """Definitions, call graph and coverage for one aspect, read once."""

    def __init__(self, store: GraphStore, aspect: str):
        self.definitions: Dict[int, Definition] = {d.id: d for d in store.get_definitions()}
        self.graph = store.call_graph()
        self.covered = store.covered_ids(aspect)

    def dependencies(self, definition_id: int) -> List[int]:
        """Distinct known callees other than the definition itself, by file then line."""
        deps = set()
        for callee in self.graph.get(definition_id, []):
            if callee == definition_id:
                continue
            if callee not in self.definitions:
                logger.debug("Call %s -> %s targets an unknown definition; ignored", definition_id, callee)
                continue
            deps.add(callee)
        return sorted(deps, key=lambda i: (self.definitions[i].file_path, self.definitions[i].line, i))

    def unmet(self, definition_id: int) -> List[int]:
        return [d for d in self.dependencies(definition_id) if d not in self.covered]


class ReadinessEngine:
    def __init__(self, store: GraphStore):
        self.store = store

    # ------------------------------------------------------------------
    # Ready set
    # ------------------------------------------------------------------

    def get_ready_definitions(
        self,
        aspect: str,
        kind: Optional[str] = None,
        file_pattern: Optional[str] = None,
    ) -> List[Definition]:
        """Uncovered definitions whose direct dependencies are all covered.

        Ordered by dependency count, then file path, then line.
        """
        validate_aspect(aspect)
        snapshot = _Snapshot(self.store, aspect)
        return self._ready(snapshot, self.store.get_definitions(kind=kind, file_pattern=file_pattern))

    def get_ready_summary(
        self,
        aspect: str,
        kind: Optional[str] = None,
        file_pattern: Optional[str] = None,
        limit: int = DEFAULT_READY_LIMIT,
    ) -> ReadySummary:
        validate_aspect(aspect)
        snapshot = _Snapshot(self.store, aspect)
        eligible = self.store.get_definitions(kind=kind, file_pattern=file_pattern)

        ready = self._ready(snapshot, eligible)
        uncovered = sum(1 for d in eligible if d.id not in snapshot.covered)
        return ReadySummary(
            definitions=ready[:limit],
            total_ready=len(ready),
            remaining=uncovered - len(ready),
        )

    @staticmethod
    def _ready(snapshot: _Snapshot, eligible: List[Definition]) -> List[Definition]:
        ready = []
        for definition in eligible:
            if definition.id in snapshot.covered:
                continue
            deps = snapshot.dependencies(definition.id)
            if all(dep in snapshot.covered for dep in deps):
                ready.append((len(deps), definition))

        ready.sort(key=lambda item: (item[0], item[1].file_path, item[1].line))
        return [definition for _, definition in ready]

    def get_unmet_dependencies(self, definition_id: int, aspect: str) -> List[Definition]:
        validate_aspect(aspect)
        snapshot = _Snapshot(self.store, aspect)
        return [snapshot.definitions[i] for i in snapshot.unmet(definition_id)]

    # ------------------------------------------------------------------
    # Prerequisite chain
    # ------------------------------------------------------------------

    def get_prerequisite_chain(
        self,
        target_id: int,
        aspect: str,
        lookup: Optional[Callable[[int], Optional[Definition]]] = None,
    ) -> List[PrerequisiteEntry]:
        """Unmet dependencies reachable from ``target_id``, leaves first.

        Depth-first and dependency-first: a node is emitted after all of its
        unmet dependencies that were not already on the current path. A cycle
        is therefore broken at whichever back edge the walk meets first. The
        target is only emitted, last, when it is its own dependency through a
        cycle.
        """
        validate_aspect(aspect)
        snapshot = _Snapshot(self.store, aspect)
        lookup = lookup or snapshot.definitions.get

        if target_id not in snapshot.definitions:
            logger.debug("Prerequisite chain requested for unknown definition %s", target_id)
            return []

        visited: Set[int] = {target_id}
        chain: List[PrerequisiteEntry] = []
        target_on_cycle = False
        stack = [(target_id, iter(snapshot.unmet(target_id)))]

        while stack:
            node, pending = stack[-1]
            child = None
            for dep in pending:
                if dep == target_id:
                    target_on_cycle = True
                if dep not in visited:
                    child = dep
                    break
            if child is not None:
                visited.add(child)
                stack.append((child, iter(snapshot.unmet(child))))
                continue

            stack.pop()
            if node == target_id and not target_on_cycle:
                continue
            definition = lookup(node)
            if definition is None:
                logger.debug("No definition for prerequisite %s; skipped", node)
                continue
            chain.append(PrerequisiteEntry(definition, len(snapshot.unmet(node))))

        return chain

    # ------------------------------------------------------------------
    # Cycles / coverage
    # ------------------------------------------------------------------

    def find_cycles(self, aspect: str) -> List[Set[int]]:
        """Strongly connected components (size >= 2) among definitions lacking ``aspect``."""
        validate_aspect(aspect)
        snapshot = _Snapshot(self.store, aspect)

        graph = nx.DiGraph()
        uncovered = [i for i in snapshot.definitions if i not in snapshot.covered]
        graph.add_nodes_from(uncovered)
        for node in uncovered:
            for dep in snapshot.unmet(node):
                graph.add_edge(node, dep)

        cycles = [set(c) for c in nx.strongly_connected_components(graph) if len(c) >= 2]
        cycles.sort(key=min)
        return cycles

    def get_aspect_coverage(
        self,
        kind: Optional[str] = None,
        file_pattern: Optional[str] = None,
    ) -> List[AspectCoverage]:
        eligible = {d.id for d in self.store.get_definitions(kind=kind, file_pattern=file_pattern)}
        total = len(eligible)

        coverage = []
        for key in self.store.list_metadata_keys():
            covered = len(eligible & self.store.covered_ids(key))
            coverage.append(
                AspectCoverage(
                    aspect=key,
                    covered=covered,
                    total=total,
                    percentage=(covered / total * 100) if total else 0.0,
                )
            )
        return coverage
