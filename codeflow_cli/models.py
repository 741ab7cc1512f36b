"""Core data models shared by the store, readiness engine and flow pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional

ActionType = Literal["view", "create", "update", "delete", "process"]
Stakeholder = Literal["user", "admin", "system", "developer", "external"]
Confidence = Literal["high", "medium", "low"]
ClassifiedVia = Literal["llm", "heuristic"]

ACTION_TYPES = ("view", "create", "update", "delete", "process")
STAKEHOLDERS = ("user", "admin", "system", "developer", "external")

# Kinds that carry runnable code; modules holding only other kinds are type-only
CALLABLE_KINDS = frozenset({"function", "class", "const", "variable", "method"})

# Interaction origins that the flow tracer may bridge across
BRIDGEABLE_SOURCES = frozenset({"llm-inferred", "contract-matched"})


@dataclass(frozen=True)
class Definition:
    id: int
    name: str
    kind: str
    file_path: str
    line: int = 0
    end_line: int = 0
    is_exported: bool = False
    is_test: bool = False


@dataclass(frozen=True)
class ModuleMember:
    definition_id: int
    name: str
    kind: str


@dataclass
class Module:
    id: int
    name: str
    full_path: str
    parent_id: Optional[int] = None
    depth: int = 0
    description: Optional[str] = None
    is_test: bool = False
    members: List[ModuleMember] = field(default_factory=list)


@dataclass(frozen=True)
class CallEdge:
    from_definition_id: int
    to_definition_id: int


@dataclass
class Interaction:
    id: int
    from_module_id: int
    to_module_id: int
    source: str = "ast"
    weight: int = 1
    direction: str = "uni"
    pattern: Optional[str] = None
    semantic: Optional[str] = None
    from_module_path: str = ""
    to_module_path: str = ""


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------


@dataclass
class PrerequisiteEntry:
    definition: Definition
    unmet_dep_count: int


@dataclass
class ReadySummary:
    definitions: List[Definition]
    total_ready: int
    remaining: int


@dataclass
class AspectCoverage:
    aspect: str
    covered: int
    total: int
    percentage: float


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


@dataclass
class ModuleCandidate:
    id: int
    full_path: str
    name: str
    depth: int = 0
    description: Optional[str] = None
    members: List[ModuleMember] = field(default_factory=list)

    @property
    def member_count(self) -> int:
        return len(self.members)


@dataclass
class MemberClassification:
    """Verdict for one module member, tagged with where it came from."""

    module_id: int
    member_name: str
    is_entry_point: bool
    action_type: Optional[ActionType] = None
    target_entity: Optional[str] = None
    stakeholder: Optional[Stakeholder] = None
    reason: str = ""
    via: ClassifiedVia = "llm"


@dataclass
class EntryPointModuleClassification:
    module_id: int
    is_entry_point: bool
    confidence: Confidence
    reason: str
    via: ClassifiedVia = "llm"
    members: List[MemberClassification] = field(default_factory=list)


@dataclass
class EntryPointMember:
    id: int
    name: str
    kind: str
    action_type: Optional[ActionType] = None
    target_entity: Optional[str] = None
    stakeholder: Optional[Stakeholder] = None


@dataclass
class EntryPointModuleInfo:
    module_id: int
    module_path: str
    module_name: str
    member_definitions: List[EntryPointMember] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TracedDefinitionStep:
    from_definition_id: int
    to_definition_id: int
    from_module_id: Optional[int]
    to_module_id: Optional[int]


@dataclass(frozen=True)
class InferredFlowStep:
    from_module_id: int
    to_module_id: int
    source: str = "llm-inferred"


@dataclass
class Flow:
    name: str
    slug: str
    entry_path: str
    stakeholder: Stakeholder
    description: str
    entry_point_module_id: Optional[int] = None
    entry_point_id: Optional[int] = None
    interaction_ids: List[int] = field(default_factory=list)
    definition_steps: List[TracedDefinitionStep] = field(default_factory=list)
    inferred_steps: List[InferredFlowStep] = field(default_factory=list)
    action_type: Optional[ActionType] = None
    target_entity: Optional[str] = None
    tier: int = 1
    subflow_slugs: List[str] = field(default_factory=list)
