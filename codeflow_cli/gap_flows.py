"""Tier-0 gap flows for interactions that no traced flow reaches.

Uncovered interactions are grouped by source module; each group becomes one
internal flow owned by the ``system`` stakeholder. Gap flows carry no
definition steps.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .models import Flow, Interaction

logger = logging.getLogger(__name__)

MAX_NAMED_TARGETS = 3

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _short(path: str) -> str:
    return path.split(".")[-1] or "module"


class GapFlowBuilder:
    def build_gap_flows(
        self,
        covered_ids: Iterable[int],
        interactions: Sequence[Interaction],
        reserved_slugs: Optional[Iterable[str]] = None,
    ) -> List[Flow]:
        """One flow per source module for the interactions outside ``covered_ids``.

        Test-internal interactions are ignored. ``reserved_slugs`` are slugs
        already taken by other flows; gap slugs are numbered around them.
        """
        covered = set(covered_ids)
        uncovered = [
            i for i in interactions
            if i.id not in covered and i.pattern != "test-internal"
        ]
        if not uncovered:
            return []

        by_source: Dict[int, List[Interaction]] = {}
        for interaction in uncovered:
            by_source.setdefault(interaction.from_module_id, []).append(interaction)

        used_slugs: Set[str] = set(reserved_slugs or ())
        flows = []
        for group in by_source.values():
            from_path = group[0].from_module_path or str(group[0].from_module_id)
            from_short = _short(from_path)

            targets: List[str] = []
            for interaction in group:
                target = _short(interaction.to_module_path or str(interaction.to_module_id))
                if target not in targets:
                    targets.append(target)
            summary = ", ".join(targets[:MAX_NAMED_TARGETS])
            if len(targets) > MAX_NAMED_TARGETS:
                summary += f" (+{len(targets) - MAX_NAMED_TARGETS} more)"

            name = f"{from_short} calls {summary}"
            flows.append(
                Flow(
                    name=name,
                    slug=_unique_slug(name, used_slugs),
                    entry_path=f"Internal: {from_path}",
                    stakeholder="system",
                    description=f"Internal interactions from {from_short} to {summary}",
                    interaction_ids=[i.id for i in group],
                    tier=0,
                )
            )

        logger.info("Built %d gap flows for %d uncovered interactions", len(flows), len(uncovered))
        return flows


def _unique_slug(name: str, used: Set[str]) -> str:
    slug = _NON_SLUG_RE.sub("-", name.lower()).strip("-")
    if slug in used:
        counter = 2
        while f"{slug}-{counter}" in used:
            counter += 1
        slug = f"{slug}-{counter}"
    used.add(slug)
    return slug
