"""Tests for interaction-overlap deduplication."""

from codeflow_cli.dedup import deduplicate_by_interaction_overlap, pick_flow_to_drop
from codeflow_cli.models import Flow, TracedDefinitionStep


def _flow(slug, interaction_ids, tier=1, steps=0):
    return Flow(
        name=slug,
        slug=slug,
        entry_path="",
        stakeholder="user",
        description="",
        interaction_ids=list(interaction_ids),
        definition_steps=[TracedDefinitionStep(i, i + 1, 1, 2) for i in range(steps)],
        tier=tier,
    )


class TestDeduplicateByInteractionOverlap:
    """Tests for deduplicate_by_interaction_overlap."""

    def test_disjoint_flows_kept(self):
        flows = [_flow("a", [1, 2]), _flow("b", [3, 4])]

        assert deduplicate_by_interaction_overlap(flows) == flows

    def test_overlap_measured_against_smaller_set(self):
        # 3 of the 4 ids in "small" also appear in "big": 0.75 > 0.7
        big = _flow("big", [1, 2, 3, 5, 6, 7, 8, 9])
        small = _flow("small", [1, 2, 3, 4])

        assert [f.slug for f in deduplicate_by_interaction_overlap([big, small])] == ["big"]

    def test_ratio_at_threshold_is_kept(self):
        flows = [_flow("a", [1, 2, 3, 4]), _flow("b", [1, 2, 5, 6])]

        assert len(deduplicate_by_interaction_overlap(flows, threshold=0.5)) == 2

    def test_flows_without_interactions_untouched(self):
        flows = [_flow("empty", []), _flow("also-empty", []), _flow("a", [1])]

        assert deduplicate_by_interaction_overlap(flows) == flows

    def test_dropped_flow_is_not_compared_again(self):
        flows = [_flow("a", [1, 2]), _flow("b", [1, 2]), _flow("c", [1, 2])]

        assert [f.slug for f in deduplicate_by_interaction_overlap(flows)] == ["a"]


class TestPickFlowToDrop:
    """Tests for pick_flow_to_drop."""

    def test_higher_tier_kept(self):
        assert pick_flow_to_drop(_flow("a", [1], tier=0), _flow("b", [1], tier=1), 0, 1) == 0

    def test_more_definition_steps_kept(self):
        assert pick_flow_to_drop(_flow("a", [1], steps=3), _flow("b", [1], steps=1), 0, 1) == 1

    def test_more_interactions_kept(self):
        assert pick_flow_to_drop(_flow("a", [1]), _flow("b", [1, 2]), 0, 1) == 0

    def test_tie_drops_later(self):
        assert pick_flow_to_drop(_flow("a", [1]), _flow("b", [1]), 0, 1) == 1
