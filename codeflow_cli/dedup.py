"""Drop flows whose interaction sets largely repeat another flow's."""

from __future__ import annotations

import logging
from typing import List, Sequence

from .models import Flow

logger = logging.getLogger(__name__)

DEFAULT_OVERLAP_THRESHOLD = 0.7


def deduplicate_by_interaction_overlap(
    flows: Sequence[Flow],
    threshold: float = DEFAULT_OVERLAP_THRESHOLD,
) -> List[Flow]:
    """Remove the weaker of any two flows whose overlap ratio exceeds ``threshold``.

    The overlap ratio is ``|A & B| / min(|A|, |B|)`` over interaction ids.
    Flows without interactions are never compared. Order is preserved.
    """
    dropped = set()
    for i, a in enumerate(flows):
        if i in dropped or not a.interaction_ids:
            continue
        set_a = set(a.interaction_ids)
        for j in range(i + 1, len(flows)):
            b = flows[j]
            if j in dropped or not b.interaction_ids:
                continue
            set_b = set(b.interaction_ids)
            ratio = len(set_a & set_b) / min(len(set_a), len(set_b))
            if ratio > threshold:
                dropped.add(pick_flow_to_drop(a, b, i, j))

    if dropped:
        logger.debug("Overlap dedup removed %d of %d flows", len(dropped), len(flows))
    return [flow for idx, flow in enumerate(flows) if idx not in dropped]


def pick_flow_to_drop(a: Flow, b: Flow, index_a: int, index_b: int) -> int:
    """Index of the flow to drop: keep higher tier, then more steps, then more interactions, then the earlier one."""
    if a.tier != b.tier:
        return index_b if a.tier > b.tier else index_a
    if len(a.definition_steps) != len(b.definition_steps):
        return index_b if len(a.definition_steps) > len(b.definition_steps) else index_a
    if len(a.interaction_ids) != len(b.interaction_ids):
        return index_b if len(a.interaction_ids) > len(b.interaction_ids) else index_a
    return index_b
