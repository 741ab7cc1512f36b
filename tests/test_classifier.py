"""Tests for member classifiers and their heuristics."""

from unittest.mock import MagicMock

import pytest

from codeflow_cli.classifier import (
    ClassifierError,
    HeuristicMemberClassifier,
    LLMMemberClassifier,
    build_classification_prompt,
    infer_action_type,
    is_likely_entry_member,
    is_likely_entry_module,
    parse_member_classifications,
)
from codeflow_cli.models import Interaction, ModuleCandidate, ModuleMember


@pytest.fixture
def candidates():
    return [
        ModuleCandidate(
            id=42,
            full_path="app.screens.items",
            name="items",
            description="Item screens",
            members=[ModuleMember(1, "ItemList", "function"), ModuleMember(2, "formatPrice", "function")],
        ),
        ModuleCandidate(
            id=7,
            full_path="app.utils.money",
            name="money",
            members=[ModuleMember(3, "round2", "function")],
        ),
    ]


class TestParseMemberClassifications:
    """Tests for CSV response parsing."""

    def test_fenced_seven_column_rows(self, candidates):
        response = (
            "Here you go:\n"
            "```csv\n"
            "module_id,member_name,is_entry_point,action_type,target_entity,stakeholder,reason\n"
            '42,ItemList,true,view,item,user,"Main component, lists items"\n'
            '42,ItemList,true,create,item,user,"Calls useCreateItem"\n'
            "42,formatPrice,false,,,,Formatting helper\n"
            "```\n"
        )

        rows = parse_member_classifications(response, candidates)

        assert [(r.member_name, r.action_type) for r in rows] == [
            ("ItemList", "view"), ("ItemList", "create"), ("formatPrice", None),
        ]
        assert rows[0].is_entry_point is True
        assert rows[0].target_entity == "item"
        assert rows[0].stakeholder == "user"
        assert rows[0].reason == "Main component, lists items"
        assert rows[0].via == "llm"
        assert rows[2].is_entry_point is False
        assert rows[2].target_entity is None

    def test_legacy_six_column_rows(self, candidates):
        response = "```csv\n42,ItemList,TRUE,VIEW,item,List screen\n```"

        (row,) = parse_member_classifications(response, candidates)

        assert row.is_entry_point is True
        assert row.action_type == "view"
        assert row.stakeholder is None
        assert row.reason == "List screen"

    def test_bare_fence_and_unfenced(self, candidates):
        fenced = "```\n7,round2,false,,,system,Rounding\n```"
        plain = "7,round2,false,,,system,Rounding"

        assert parse_member_classifications(fenced, candidates)[0].stakeholder == "system"
        assert parse_member_classifications(plain, candidates)[0].member_name == "round2"

    def test_invalid_rows_dropped(self, candidates):
        response = "\n".join([
            "999,Ghost,true,view,x,user,Unknown module",
            "abc,ItemList,true,view,x,user,Bad id",
            "42,ItemList,true",
            "",
            "42,ItemList,true,explode,item,robot,Odd values",
        ])

        (row,) = parse_member_classifications(response, candidates)

        assert row.action_type is None
        assert row.stakeholder is None

    def test_empty_response(self, candidates):
        assert parse_member_classifications("", candidates) == []


class TestLLMMemberClassifier:
    """Tests for LLMMemberClassifier."""

    def test_classify_parses_completion(self, candidates):
        llm = MagicMock()
        llm.complete.return_value = "```csv\n42,ItemList,true,view,item,user,List\n```"

        rows = LLMMemberClassifier(llm).classify(candidates, [])

        assert len(rows) == 1
        prompt = llm.complete.call_args[0][0]
        assert "## Module 42: app.screens.items" in prompt
        assert "  - formatPrice (function)" in prompt

    def test_no_completion_raises(self, candidates):
        llm = MagicMock()
        llm.complete.return_value = None

        with pytest.raises(ClassifierError):
            LLMMemberClassifier(llm).classify(candidates)

    def test_default_llm_is_local_llm(self, candidates, mock_local_llm):
        mock_local_llm.response = "42,ItemList,true,view,item,user,List"

        rows = LLMMemberClassifier().classify(candidates)

        assert rows[0].member_name == "ItemList"

    def test_prompt_lists_relevant_interactions(self, candidates):
        interactions = [
            Interaction(1, 42, 7, from_module_path="app.screens.items", to_module_path="app.utils.money",
                        semantic="formats prices"),
            Interaction(2, 100, 101, from_module_path="other.a", to_module_path="other.b"),
        ]

        prompt = build_classification_prompt(candidates, interactions)

        assert 'app.screens.items -> app.utils.money: "formats prices"' in prompt
        assert "other.a" not in prompt

    def test_prompt_without_interactions(self, candidates):
        assert "(No interaction data available)" in build_classification_prompt(candidates, [])


class TestHeuristics:
    """Tests for the name and path heuristics."""

    @pytest.mark.parametrize("name,expected", [
        ("createUser", "create"),
        ("addItem", "create"),
        ("editProfile", "update"),
        ("saveDraft", "update"),
        ("removeTag", "delete"),
        ("OrderList", "view"),
        ("getTotals", "view"),
        ("logout", "process"),
        ("syncNow", "process"),
        ("render", None),
    ])
    def test_infer_action_type(self, name, expected):
        assert infer_action_type(name) == expected

    def test_action_keywords_checked_in_order(self):
        # "addToList" matches both create and view; create wins
        assert infer_action_type("addToList") == "create"

    @pytest.mark.parametrize("name,path,expected", [
        ("handleClick", "app.widgets", True),
        ("LoginScreen", "app.widgets", True),
        ("UserForm", "app.widgets", True),
        ("compute", "app.pages.home", True),
        ("compute", "server.routes", True),
        ("compute", "app.widgets", False),
    ])
    def test_is_likely_entry_member(self, name, path, expected):
        assert is_likely_entry_member(name, path) is expected

    @pytest.mark.parametrize("path,members,expected", [
        ("server.api.orders", ["list"], True),
        ("tools.cli", ["main"], True),
        ("app.utils.dates", ["handleDate"], False),
        ("app.core.engine", ["run"], False),
        ("app.widgets", ["routeTo"], True),
        ("app.widgets", ["render"], False),
    ])
    def test_is_likely_entry_module(self, path, members, expected):
        candidate = ModuleCandidate(
            id=1, full_path=path, name=path.split(".")[-1],
            members=[ModuleMember(i, n, "function") for i, n in enumerate(members)],
        )
        assert is_likely_entry_module(candidate) is expected

    def test_heuristic_classifier_covers_every_member(self, candidates):
        rows = HeuristicMemberClassifier().classify(candidates)

        assert [(r.module_id, r.member_name) for r in rows] == [(42, "ItemList"), (42, "formatPrice"), (7, "round2")]
        assert all(r.via == "heuristic" for r in rows)
        assert [r.is_entry_point for r in rows] == [True, True, False]
