"""Tests for gap flows over uncovered interactions."""

import pytest

from codeflow_cli.gap_flows import GapFlowBuilder
from codeflow_cli.models import Interaction


def _interaction(interaction_id, from_path, to_path, from_id, to_id, **kwargs):
    return Interaction(
        interaction_id, from_id, to_id,
        from_module_path=from_path, to_module_path=to_path, **kwargs,
    )


@pytest.fixture
def builder():
    return GapFlowBuilder()


class TestBuildGapFlows:
    """Tests for GapFlowBuilder.build_gap_flows."""

    def test_everything_covered(self, builder):
        interactions = [_interaction(1, "app.a", "app.b", 1, 2)]

        assert builder.build_gap_flows({1}, interactions) == []

    def test_grouped_by_source_module(self, builder):
        interactions = [
            _interaction(1, "app.jobs.sync", "app.db", 1, 2),
            _interaction(2, "app.web.page", "app.api", 3, 4),
            _interaction(3, "app.jobs.sync", "app.mailer", 1, 5),
        ]

        flows = builder.build_gap_flows(set(), interactions)

        assert [f.interaction_ids for f in flows] == [[1, 3], [2]]
        first = flows[0]
        assert first.name == "sync calls db, mailer"
        assert first.slug == "sync-calls-db-mailer"
        assert first.entry_path == "Internal: app.jobs.sync"
        assert first.description == "Internal interactions from sync to db, mailer"
        assert first.stakeholder == "system"
        assert first.tier == 0
        assert first.entry_point_module_id is None
        assert first.definition_steps == []

    def test_long_target_list_summarized(self, builder):
        interactions = [
            _interaction(i, "app.hub", f"app.t{i}", 1, 10 + i) for i in range(1, 6)
        ]

        (flow,) = builder.build_gap_flows(set(), interactions)

        assert flow.name == "hub calls t1, t2, t3 (+2 more)"

    def test_repeated_targets_named_once(self, builder):
        interactions = [
            _interaction(1, "app.hub", "app.db", 1, 2),
            _interaction(2, "app.hub", "lib.db", 1, 3),
        ]

        (flow,) = builder.build_gap_flows(set(), interactions)

        assert flow.name == "hub calls db"
        assert flow.interaction_ids == [1, 2]

    def test_test_internal_ignored(self, builder):
        interactions = [_interaction(1, "tests.helpers", "app.a", 1, 2, pattern="test-internal")]

        assert builder.build_gap_flows(set(), interactions) == []

    def test_slugs_avoid_reserved(self, builder):
        interactions = [
            _interaction(1, "app.x.store", "app.db", 1, 2),
            _interaction(2, "lib.store", "lib.db", 3, 4),
        ]

        flows = builder.build_gap_flows(set(), interactions, reserved_slugs=["store-calls-db"])

        assert [f.slug for f in flows] == ["store-calls-db-2", "store-calls-db-3"]
