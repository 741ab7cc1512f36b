"""Tier-0 atomic flows: short chains of module interactions grouped by business entity.

Atomic flows are built from the interaction graph alone, with no call-graph
walk and no LLM. Traced flows reference them as subflows.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence, Set

from .models import Flow, Interaction, Module

logger = logging.getLogger(__name__)

GENERIC = "_generic"
MAX_SEGMENT = 3

# First match wins
ENTITY_PATTERNS = [
    (re.compile(r"\.(users?|accounts?|auth)[-.]?", re.IGNORECASE), "User"),
    (re.compile(r"\.(customers?|clients?)[-.]?", re.IGNORECASE), "Customer"),
    (re.compile(r"\.(products?|items?|inventory)[-.]?", re.IGNORECASE), "Product"),
    (re.compile(r"\.(orders?|purchases?)[-.]?", re.IGNORECASE), "Order"),
    (re.compile(r"\.(sales?)[-.]?", re.IGNORECASE), "Sales"),
    (re.compile(r"\.(vehicles?)[-.]?", re.IGNORECASE), "Vehicle"),
    (re.compile(r"\.(payments?|billing)[-.]?", re.IGNORECASE), "Payment"),
    (re.compile(r"\.(notifications?|alerts?)[-.]?", re.IGNORECASE), "Notification"),
    (re.compile(r"\.(reports?|analytics?)[-.]?", re.IGNORECASE), "Report"),
    (re.compile(r"\.(settings?|config)[-.]?", re.IGNORECASE), "Settings"),
]

_SEMANTIC_PREFIX_RE = re.compile(r"^(the |this )", re.IGNORECASE)
_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def entity_for_path(full_path: str) -> str:
    for pattern, entity in ENTITY_PATTERNS:
        if pattern.search(full_path):
            return entity
    return GENERIC


def _short_name(module: Optional[Module]) -> str:
    if module is None:
        return "?"
    return module.full_path.split(".")[-1] or module.name


class AtomicFlowBuilder:
    """Build tier-0 flows of at most three chained interactions."""

    def build_atomic_flows(self, interactions: Sequence[Interaction], modules: Sequence[Module]) -> List[Flow]:
        relevant = [i for i in interactions if i.pattern != "test-internal"]
        if not relevant:
            return []

        module_by_id = {m.id: m for m in modules}
        entity_by_module = {m.id: entity_for_path(m.full_path) for m in modules}

        flows: List[Flow] = []
        used_slugs: Set[str] = set()
        for group in self._group_by_entity_pair(relevant, entity_by_module).values():
            for chain in self._find_chains(group):
                for start in range(0, len(chain), MAX_SEGMENT):
                    segment = chain[start:start + MAX_SEGMENT]
                    flows.append(self._build_flow(segment, module_by_id, entity_by_module, used_slugs))

        logger.info("Built %d atomic flows from %d interactions", len(flows), len(relevant))
        return flows

    def _group_by_entity_pair(
        self,
        interactions: Sequence[Interaction],
        entity_by_module: Dict[int, str],
    ) -> Dict[str, List[Interaction]]:
        groups: Dict[str, List[Interaction]] = {}
        for interaction in interactions:
            from_entity = entity_by_module.get(interaction.from_module_id, GENERIC)
            to_entity = entity_by_module.get(interaction.to_module_id, GENERIC)

            if from_entity == GENERIC and to_entity == GENERIC:
                low, high = sorted((interaction.from_module_id, interaction.to_module_id))
                key = f"{GENERIC}:{low}-{high}"
            elif GENERIC in (from_entity, to_entity):
                entity = to_entity if from_entity == GENERIC else from_entity
                key = f"{entity}:{GENERIC}"
            else:
                key = ":".join(sorted((from_entity, to_entity)))

            groups.setdefault(key, []).append(interaction)
        return groups

    def _find_chains(self, interactions: Sequence[Interaction]) -> List[List[Interaction]]:
        """Follow interactions head to tail; each interaction lands in exactly one chain."""
        by_source: Dict[int, List[Interaction]] = {}
        for interaction in interactions:
            by_source.setdefault(interaction.from_module_id, []).append(interaction)

        targets = {i.to_module_id for i in interactions}
        starts = [i for i in interactions if i.from_module_id not in targets] or [interactions[0]]

        used: Set[int] = set()
        chains: List[List[Interaction]] = []
        for start in starts:
            if start.id in used:
                continue
            chain = [start]
            used.add(start.id)
            current = start.to_module_id
            while True:
                nxt = next((i for i in by_source.get(current, []) if i.id not in used), None)
                if nxt is None:
                    break
                chain.append(nxt)
                used.add(nxt.id)
                current = nxt.to_module_id
            chains.append(chain)

        for interaction in interactions:
            if interaction.id not in used:
                chains.append([interaction])
                used.add(interaction.id)
        return chains

    def _build_flow(
        self,
        segment: List[Interaction],
        module_by_id: Dict[int, Module],
        entity_by_module: Dict[int, str],
        used_slugs: Set[str],
    ) -> Flow:
        name = self._name(segment, module_by_id, entity_by_module)
        slug = _NON_SLUG_RE.sub("-", name.lower()).strip("-")
        if slug in used_slugs:
            counter = 2
            while f"{slug}-{counter}" in used_slugs:
                counter += 1
            slug = f"{slug}-{counter}"
        used_slugs.add(slug)

        first = segment[0]
        from_module = module_by_id.get(first.from_module_id)
        from_entity = entity_by_module.get(first.from_module_id, GENERIC)

        return Flow(
            name=name,
            slug=slug,
            entry_path=from_module.full_path if from_module else "",
            stakeholder="system",
            description=self._description(segment, module_by_id),
            entry_point_module_id=first.from_module_id,
            entry_point_id=None,
            interaction_ids=[i.id for i in segment],
            target_entity=from_entity.lower() if from_entity != GENERIC else None,
            tier=0,
        )

    def _name(
        self,
        segment: List[Interaction],
        module_by_id: Dict[int, Module],
        entity_by_module: Dict[int, str],
    ) -> str:
        semantic = segment[0].semantic
        if semantic and len(semantic) > 5:
            clean = _SEMANTIC_PREFIX_RE.sub("", semantic)
            clean = re.sub(r"[.!]$", "", clean)
            return clean.lower()[:60]

        first, last = segment[0], segment[-1]
        from_name = _short_name(module_by_id.get(first.from_module_id))
        to_name = _short_name(module_by_id.get(last.to_module_id))

        from_entity = entity_by_module.get(first.from_module_id, GENERIC)
        to_entity = entity_by_module.get(last.to_module_id, GENERIC)
        entity = from_entity if from_entity != GENERIC else to_entity
        if entity != GENERIC:
            return f"{entity.lower()} {from_name} calls {to_name}"
        return f"{from_name} calls {to_name}"

    def _description(self, segment: List[Interaction], module_by_id: Dict[int, Module]) -> str:
        parts = []
        for interaction in segment:
            source = interaction.from_module_path or _path_of(module_by_id.get(interaction.from_module_id))
            target = interaction.to_module_path or _path_of(module_by_id.get(interaction.to_module_id))
            part = f"{source.split('.')[-1]} -> {target.split('.')[-1]}"
            if interaction.semantic:
                part += f" ({interaction.semantic})"
            parts.append(part)
        return ", ".join(parts)


def _path_of(module: Optional[Module]) -> str:
    return module.full_path if module else "?"
