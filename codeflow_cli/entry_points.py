"""Entry-point detection: which modules start user-facing flows, and through which members."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .classifier import (
    MemberClassifier,
    heuristic_member_classification,
    is_likely_entry_module,
)
from .models import (
    CALLABLE_KINDS,
    EntryPointMember,
    EntryPointModuleClassification,
    EntryPointModuleInfo,
    Interaction,
    MemberClassification,
    Module,
    ModuleCandidate,
)
from .storage import GraphStore

logger = logging.getLogger(__name__)

GAP_REASON = "Not in LLM response, using heuristic"
FALLBACK_REASON = "Heuristic fallback"


def build_candidates(modules: Sequence[Module]) -> List[ModuleCandidate]:
    """Modules that could hold entry points.

    Skips empty modules, test modules, and modules whose members are all
    type-only (interfaces, types, enums).
    """
    candidates = []
    for module in modules:
        if not module.members or module.is_test:
            continue
        if not any(m.kind in CALLABLE_KINDS for m in module.members):
            continue
        candidates.append(
            ModuleCandidate(
                id=module.id,
                full_path=module.full_path,
                name=module.name,
                depth=module.depth,
                description=module.description,
                members=list(module.members),
            )
        )
    return candidates


def classify(
    candidates: Sequence[ModuleCandidate],
    classifier: MemberClassifier,
    context: Optional[Sequence[Interaction]] = None,
) -> List[EntryPointModuleClassification]:
    """Classify candidate modules; never raises.

    Members missing from the classifier's answer are filled in by the name
    heuristic. If the classifier fails outright every module falls back to the
    path heuristic with ``low`` confidence.
    """
    if not candidates:
        return []

    try:
        verdicts = classifier.classify(candidates, context)
    except Exception as exc:
        logger.warning("Member classification failed: %s; falling back to heuristic detection", exc)
        return [_heuristic_module(candidate) for candidate in candidates]

    by_module = _group_by_member_order(candidates, verdicts)

    classifications = []
    for candidate in candidates:
        members = by_module[candidate.id]
        entry = next((m for m in members if m.is_entry_point), None)
        reason = entry.reason if entry else (members[0].reason if members else FALLBACK_REASON)
        classifications.append(
            EntryPointModuleClassification(
                module_id=candidate.id,
                is_entry_point=entry is not None,
                confidence="medium",
                reason=reason,
                via="llm",
                members=members,
            )
        )

    logger.info(
        "Classified %d/%d modules as entry points",
        sum(1 for c in classifications if c.is_entry_point), len(candidates),
    )
    return classifications


def _group_by_member_order(
    candidates: Sequence[ModuleCandidate],
    verdicts: Sequence[MemberClassification],
) -> Dict[int, List[MemberClassification]]:
    """Verdicts per module in stored member order, gaps filled by heuristic.

    Several verdicts for one member keep their response order. Verdicts naming
    a member the module does not have go after the known members.
    """
    by_key: Dict[Tuple[int, str], List[MemberClassification]] = {}
    for verdict in verdicts:
        by_key.setdefault((verdict.module_id, verdict.member_name), []).append(verdict)

    grouped: Dict[int, List[MemberClassification]] = {}
    for candidate in candidates:
        members: List[MemberClassification] = []
        known_names = set()
        for member in candidate.members:
            if member.name in known_names:
                continue
            known_names.add(member.name)
            found = by_key.get((candidate.id, member.name))
            if found:
                members.extend(found)
            else:
                members.append(heuristic_member_classification(candidate, member.name, GAP_REASON))
        for (module_id, name), extra in by_key.items():
            if module_id == candidate.id and name not in known_names:
                members.extend(extra)
        grouped[candidate.id] = members
    return grouped


def _heuristic_module(candidate: ModuleCandidate) -> EntryPointModuleClassification:
    return EntryPointModuleClassification(
        module_id=candidate.id,
        is_entry_point=is_likely_entry_module(candidate),
        confidence="low",
        reason=FALLBACK_REASON,
        via="heuristic",
        members=[
            heuristic_member_classification(candidate, member.name, FALLBACK_REASON)
            for member in candidate.members
        ],
    )


def build_entry_point_modules(
    classifications: Sequence[EntryPointModuleClassification],
    candidates: Sequence[ModuleCandidate],
) -> List[EntryPointModuleInfo]:
    by_id = {c.id: c for c in candidates}
    modules = []

    for classification in classifications:
        if not classification.is_entry_point:
            continue
        candidate = by_id.get(classification.module_id)
        if candidate is None:
            logger.debug("Classification for unknown module %s; skipped", classification.module_id)
            continue

        entry_verdicts = [m for m in classification.members if m.is_entry_point]
        member_defs: List[EntryPointMember] = []

        for verdict in entry_verdicts:
            member = next((m for m in candidate.members if m.name == verdict.member_name), None)
            if member is None:
                continue
            member_defs.append(
                EntryPointMember(
                    id=member.definition_id,
                    name=member.name,
                    kind=member.kind,
                    action_type=verdict.action_type,
                    target_entity=verdict.target_entity,
                    stakeholder=verdict.stakeholder,
                )
            )

        classified_names = {v.member_name for v in entry_verdicts}
        for member in candidate.members:
            if member.name not in classified_names:
                member_defs.append(EntryPointMember(id=member.definition_id, name=member.name, kind=member.kind))

        if not member_defs:
            continue
        modules.append(
            EntryPointModuleInfo(
                module_id=candidate.id,
                module_path=candidate.full_path,
                module_name=candidate.name,
                member_definitions=member_defs,
            )
        )

    return modules


def detect_entry_point_modules(
    store: GraphStore,
    classifier: MemberClassifier,
) -> List[EntryPointModuleInfo]:
    """Candidates from the store, classified with its interactions as context."""
    candidates = build_candidates(store.get_all_modules_with_members())
    if not candidates:
        return []

    classifications = classify(candidates, classifier, context=store.list_module_pairs())
    return build_entry_point_modules(classifications, candidates)
