"""Trace execution flows from entry-point members through the call graph.

The tracer walks the definition-level call graph depth first and records
every call that crosses a module boundary. When the walk reaches a leaf it
may *bridge*: follow an inferred module-to-module interaction (one the static
call graph cannot see, e.g. an HTTP call matched to its handler) to a
representative definition in the target module. Bridged definitions are
recorded but never expanded, so a bridge adds exactly one hop.

Traced steps are mapped back to module interactions, and those interactions
to the atomic (tier 0) flows that cover them, which become the flow's
subflows.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from .config import DEFAULT_MAX_DEPTH
from .models import (
    BRIDGEABLE_SOURCES,
    EntryPointMember,
    EntryPointModuleInfo,
    Flow,
    InferredFlowStep,
    Interaction,
    Module,
    Stakeholder,
    TracedDefinitionStep,
)

logger = logging.getLogger(__name__)

_ACTION_VERBS = {
    "view": "View",
    "create": "Create",
    "update": "Update",
    "delete": "Delete",
    "process": "Process",
}

_CAMEL_BOUNDARY_RE = re.compile(r"([a-z])([A-Z])")


@dataclass(frozen=True)
class ModuleRef:
    module_id: int
    module_path: str


@dataclass
class FlowTracingContext:
    call_graph: Dict[int, List[int]]
    def_to_module: Dict[int, ModuleRef]
    module_to_def_ids: Dict[int, List[int]]
    interaction_by_module_pair: Dict[Tuple[int, int], int]
    inferred_from_module: Dict[int, List[Interaction]]


@dataclass
class TraceResult:
    definition_steps: List[TracedDefinitionStep] = field(default_factory=list)
    inferred_steps: List[InferredFlowStep] = field(default_factory=list)


def build_flow_tracing_context(
    call_graph: Dict[int, List[int]],
    modules: Sequence[Module],
    interactions: Sequence[Interaction],
) -> FlowTracingContext:
    def_to_module: Dict[int, ModuleRef] = {}
    module_to_def_ids: Dict[int, List[int]] = {}
    for module in modules:
        ref = ModuleRef(module.id, module.full_path)
        ids = module_to_def_ids.setdefault(module.id, [])
        for member in module.members:
            def_to_module[member.definition_id] = ref
            ids.append(member.definition_id)

    interaction_by_module_pair: Dict[Tuple[int, int], int] = {}
    inferred_from_module: Dict[int, List[Interaction]] = {}
    for interaction in interactions:
        interaction_by_module_pair[(interaction.from_module_id, interaction.to_module_id)] = interaction.id
        if interaction.source in BRIDGEABLE_SOURCES:
            inferred_from_module.setdefault(interaction.from_module_id, []).append(interaction)

    return FlowTracingContext(
        call_graph=call_graph,
        def_to_module=def_to_module,
        module_to_def_ids=module_to_def_ids,
        interaction_by_module_pair=interaction_by_module_pair,
        inferred_from_module=inferred_from_module,
    )


@dataclass
class _Frame:
    definition_id: int
    depth: int
    moves: Iterator[Tuple[int, bool]]


class _TraceState:
    """Mutable state owned by one trace."""

    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        self.visited: Set[int] = set()
        self.visited_bridge_modules: Set[int] = set()
        self.stack: List[_Frame] = []
        self.result = TraceResult()


class FlowTracer:
    def __init__(self, context: FlowTracingContext, max_depth: int = DEFAULT_MAX_DEPTH):
        self.context = context
        self.max_depth = max_depth

    # ------------------------------------------------------------------
    # Tracing
    # ------------------------------------------------------------------

    def trace_definition_flow(self, start_id: int, max_depth: Optional[int] = None) -> TraceResult:
        state = _TraceState(self.max_depth if max_depth is None else max_depth)
        self._enter(state, start_id, 0, bridged=False)

        while state.stack:
            frame = state.stack[-1]
            move = next(frame.moves, None)
            if move is None:
                state.stack.pop()
                continue
            callee, bridged = move
            self._enter(state, callee, frame.depth + 1, bridged)

        return state.result

    def _enter(self, state: _TraceState, definition_id: int, depth: int, bridged: bool) -> None:
        if depth >= state.max_depth or definition_id in state.visited:
            return
        state.visited.add(definition_id)
        if bridged:
            return
        state.stack.append(_Frame(definition_id, depth, self._moves(state, definition_id)))

    def _moves(self, state: _TraceState, definition_id: int) -> Iterator[Tuple[int, bool]]:
        """Yield ``(callee, bridged)`` pairs, recording steps as each is taken."""
        ctx = self.context
        from_module = ctx.def_to_module.get(definition_id)
        callees = ctx.call_graph.get(definition_id, [])

        if callees:
            for callee in callees:
                to_module = ctx.def_to_module.get(callee)
                if from_module and to_module and from_module.module_id != to_module.module_id:
                    state.result.definition_steps.append(
                        TracedDefinitionStep(definition_id, callee, from_module.module_id, to_module.module_id)
                    )
                yield callee, False
            return

        if from_module is None:
            logger.debug("Leaf %s has no module; cannot bridge", definition_id)
            return
        if from_module.module_id in state.visited_bridge_modules:
            return
        state.visited_bridge_modules.add(from_module.module_id)

        for interaction in ctx.inferred_from_module.get(from_module.module_id, []):
            members = ctx.module_to_def_ids.get(interaction.to_module_id, [])
            if not members:
                logger.debug("Bridge target module %s has no members; skipped", interaction.to_module_id)
                continue
            target = next((m for m in members if m not in state.visited), members[0])
            state.result.definition_steps.append(
                TracedDefinitionStep(definition_id, target, from_module.module_id, interaction.to_module_id)
            )
            state.result.inferred_steps.append(
                InferredFlowStep(from_module.module_id, interaction.to_module_id, interaction.source)
            )
            yield target, True

    def derive_interaction_ids(self, steps: Sequence[TracedDefinitionStep]) -> List[int]:
        seen: Set[int] = set()
        ids: List[int] = []
        for step in steps:
            if step.from_module_id is None or step.to_module_id is None:
                continue
            interaction_id = self.context.interaction_by_module_pair.get((step.from_module_id, step.to_module_id))
            if interaction_id is None or interaction_id in seen:
                continue
            seen.add(interaction_id)
            ids.append(interaction_id)
        return ids

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def trace_flows_from_entry_points(
        self,
        entry_point_modules: Sequence[EntryPointModuleInfo],
        atomic_flows: Sequence[Flow] = (),
    ) -> List[Flow]:
        slug_by_interaction: Dict[int, str] = {}
        for atomic in atomic_flows:
            for interaction_id in atomic.interaction_ids:
                slug_by_interaction.setdefault(interaction_id, atomic.slug)

        flows = []
        for module in entry_point_modules:
            for member in module.member_definitions:
                trace = self.trace_definition_flow(member.id)
                interaction_ids = self.derive_interaction_ids(trace.definition_steps)
                if not trace.definition_steps and not interaction_ids:
                    continue

                subflow_slugs: List[str] = []
                for interaction_id in interaction_ids:
                    slug = slug_by_interaction.get(interaction_id)
                    if slug and slug not in subflow_slugs:
                        subflow_slugs.append(slug)

                name = flow_name(member)
                flows.append(
                    Flow(
                        name=name,
                        slug=flow_slug(name),
                        entry_point_module_id=module.module_id,
                        entry_point_id=member.id,
                        entry_path=f"{module.module_path}.{member.name}",
                        stakeholder=infer_stakeholder(module.module_path),
                        description=f"Flow starting from {member.name} in {module.module_path}",
                        interaction_ids=interaction_ids,
                        definition_steps=trace.definition_steps,
                        inferred_steps=trace.inferred_steps,
                        action_type=member.action_type,
                        target_entity=member.target_entity,
                        tier=1,
                        subflow_slugs=subflow_slugs,
                    )
                )

        logger.info("Traced %d flows from %d entry-point modules", len(flows), len(entry_point_modules))
        return flows


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


def flow_name(member: EntryPointMember) -> str:
    """``CreateOrderFlow`` from action + entity, else a cleaned-up member name."""
    verb = _ACTION_VERBS.get(member.action_type or "", "")
    if verb and member.target_entity:
        entity = member.target_entity[:1].upper() + member.target_entity[1:]
        return f"{verb}{entity}Flow"

    name = member.name
    name = re.sub(r"^handle", "", name)
    name = re.sub(r"Handler$", "", name)
    name = re.sub(r"Controller$", "", name)
    name = re.sub(r"^on", "", name)
    name = f"{verb}{name}"
    if not name.endswith("Flow"):
        name += "Flow"
    return name


def flow_slug(name: str) -> str:
    return _CAMEL_BOUNDARY_RE.sub(r"\1-\2", name).lower()


def infer_stakeholder(module_path: str) -> Stakeholder:
    path = module_path.lower()
    if "admin" in path:
        return "admin"
    if "api" in path or "route" in path:
        return "external"
    if "cron" in path or "job" in path or "worker" in path:
        return "system"
    if "cli" in path or "command" in path:
        return "developer"
    return "user"
