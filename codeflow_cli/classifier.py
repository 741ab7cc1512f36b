"""Member classifiers deciding which module members start user-facing flows.

Two implementations share the :class:`MemberClassifier` interface:

- :class:`LLMMemberClassifier` prompts the configured :class:`LocalLLM` with
  the candidate modules and parses a CSV answer.
- :class:`HeuristicMemberClassifier` applies name and path rules only, for
  offline use (``cf flows generate --no-llm``).

The name/path heuristics are module-level functions so the entry-point
aggregator can reuse them to fill gaps in a partial LLM answer.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from typing import List, Optional, Sequence

from .llm import LocalLLM
from .models import (
    ACTION_TYPES,
    STAKEHOLDERS,
    ActionType,
    Interaction,
    MemberClassification,
    ModuleCandidate,
)

logger = logging.getLogger(__name__)

CSV_HEADER = "module_id,member_name,is_entry_point,action_type,target_entity,stakeholder,reason"

_FENCE_RE = re.compile(r"```csv\n(.*?)\n```", re.DOTALL)
_BARE_FENCE_RE = re.compile(r"```\n(.*?)\n```", re.DOTALL)

# Checked in order; first match wins
_ACTION_KEYWORDS = (
    ("create", ("create", "add", "new", "insert")),
    ("update", ("update", "edit", "modify", "save")),
    ("delete", ("delete", "remove")),
    ("view", ("list", "view", "get", "show")),
    ("process", ("login", "logout", "auth", "process", "sync")),
)

_ENTRY_PATH_HINTS = (
    "page", "screen", "view", "route", "api", "endpoint",
    "handler", "controller", "command", "cli",
)
_INTERNAL_PATH_HINTS = (
    "util", "helper", "common", "lib", "shared", "core",
    "service", "repository", "model",
)


class ClassifierError(Exception):
    """Raised when a classifier cannot produce any verdicts at all."""


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------


def infer_action_type(member_name: str) -> Optional[ActionType]:
    name = member_name.lower()
    for action, keywords in _ACTION_KEYWORDS:
        if any(k in name for k in keywords):
            return action  # type: ignore[return-value]
    return None


def is_likely_entry_member(member_name: str, module_path: str) -> bool:
    name = member_name.lower()
    path = module_path.lower()

    if "handle" in name or "screen" in name or "page" in name:
        return True
    if name.endswith(("list", "view", "form")):
        return True
    return "screen" in path or "page" in path or "route" in path


def is_likely_entry_module(candidate: ModuleCandidate) -> bool:
    path = candidate.full_path.lower()

    if any(hint in path for hint in _ENTRY_PATH_HINTS):
        return True
    if any(hint in path for hint in _INTERNAL_PATH_HINTS):
        return False

    for member in candidate.members:
        name = member.name.lower()
        if "handle" in name or "route" in name or "page" in name:
            return True
    return False


def heuristic_member_classification(
    candidate: ModuleCandidate, member_name: str, reason: str,
) -> MemberClassification:
    return MemberClassification(
        module_id=candidate.id,
        member_name=member_name,
        is_entry_point=is_likely_entry_member(member_name, candidate.full_path),
        action_type=infer_action_type(member_name),
        target_entity=None,
        stakeholder=None,
        reason=reason,
        via="heuristic",
    )


# ---------------------------------------------------------------------------
# Classifiers
# ---------------------------------------------------------------------------


class MemberClassifier:
    """Base class for member classifiers.

    ``classify`` returns raw per-member verdicts. Missing members are allowed
    (the caller fills them in); a total failure raises :class:`ClassifierError`.
    """

    def classify(
        self,
        candidates: Sequence[ModuleCandidate],
        context: Optional[Sequence[Interaction]] = None,
    ) -> List[MemberClassification]:
        raise NotImplementedError


class HeuristicMemberClassifier(MemberClassifier):
    """Classify every member from its name and module path."""

    def classify(
        self,
        candidates: Sequence[ModuleCandidate],
        context: Optional[Sequence[Interaction]] = None,
    ) -> List[MemberClassification]:
        return [
            heuristic_member_classification(candidate, member.name, "Name and path heuristic")
            for candidate in candidates
            for member in candidate.members
        ]


class LLMMemberClassifier(MemberClassifier):
    """Ask an LLM which members are user-initiated actions."""

    def __init__(self, llm: Optional[LocalLLM] = None):
        self.llm = llm or LocalLLM()

    def classify(
        self,
        candidates: Sequence[ModuleCandidate],
        context: Optional[Sequence[Interaction]] = None,
    ) -> List[MemberClassification]:
        prompt = build_classification_prompt(candidates, context or [])
        logger.debug("Classifying %d modules via %s", len(candidates), self.llm.provider_name)

        response = self.llm.complete(prompt)
        if response is None:
            raise ClassifierError(f"LLM provider '{self.llm.provider_name}' returned no response")

        return parse_member_classifications(response, candidates)


# ---------------------------------------------------------------------------
# Prompt / response
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = f"""You are analyzing a codebase to identify user-facing flows and their actions.

## Task
For each entry point module (screens, pages, routes, controllers, CLI commands),
identify ALL user-facing actions. A single member may have several actions.

## Action types
- view: displays data (lists, detail views, dashboards)
- create: adds new records
- update: modifies existing records
- delete: removes records
- process: non-CRUD work such as login, logout, sync, export

## Stakeholders
- user: end-user facing UI
- admin: admin panels, back-office tools
- system: background jobs, cron tasks, workers, event handlers
- developer: CLI commands, dev tools, scripts
- external: API endpoints consumed by external clients

## Output format
```csv
{CSV_HEADER}
42,ItemList,true,view,item,user,"Main component displaying item list"
42,ItemList,true,create,item,user,"Calls useCreateItem for new items"
```

Only mark is_entry_point=true for user-initiated members (UI events, API endpoints).
Internal services and utilities are is_entry_point=false.
Test helpers, fixtures and mocks are NEVER entry points.
Modules holding only interfaces, types and enums are NOT entry points."""


def build_classification_prompt(
    candidates: Sequence[ModuleCandidate],
    interactions: Sequence[Interaction],
) -> str:
    module_blocks = []
    for candidate in candidates:
        lines = [f"## Module {candidate.id}: {candidate.full_path}"]
        if candidate.description:
            lines.append(f"Description: {candidate.description}")
        lines.append(f"Name: {candidate.name}")
        lines.append("Members:")
        lines.extend(f"  - {m.name} ({m.kind})" for m in candidate.members)
        module_blocks.append("\n".join(lines))

    candidate_ids = {c.id for c in candidates}
    interaction_lines = []
    for interaction in interactions:
        if interaction.from_module_id not in candidate_ids and interaction.to_module_id not in candidate_ids:
            continue
        line = f"{interaction.from_module_path} -> {interaction.to_module_path}"
        if interaction.semantic:
            line += f': "{interaction.semantic}"'
        interaction_lines.append(line)

    return (
        f"{_SYSTEM_PROMPT}\n\n"
        f"## Modules ({len(candidates)})\n"
        + "\n\n".join(module_blocks)
        + "\n\n## Module Interactions (which modules call which)\n"
        + ("\n".join(interaction_lines) or "(No interaction data available)")
        + "\n\nIdentify all user-facing actions for each entry point module."
    )


def _extract_csv(response: str) -> str:
    match = _FENCE_RE.search(response) or _BARE_FENCE_RE.search(response)
    return match.group(1) if match else response


def parse_member_classifications(
    response: str,
    candidates: Sequence[ModuleCandidate],
) -> List[MemberClassification]:
    """Parse CSV rows from an LLM answer.

    Accepts the seven-column form and the older six-column form without a
    stakeholder. Rows for unknown modules or with too few columns are dropped;
    unknown action types and stakeholders become ``None``.
    """
    known_ids = {c.id for c in candidates}
    results: List[MemberClassification] = []

    for fields in csv.reader(io.StringIO(_extract_csv(response))):
        if not fields or not "".join(fields).strip():
            continue
        if fields[0].strip() == "module_id":
            continue
        if len(fields) < 6:
            logger.debug("Skipping short classification row: %s", fields)
            continue
        try:
            module_id = int(fields[0].strip())
        except ValueError:
            logger.debug("Skipping row with non-numeric module id: %s", fields[0])
            continue
        if module_id not in known_ids:
            continue

        action_raw = fields[3].strip().lower()
        if len(fields) >= 7:
            stakeholder_raw: Optional[str] = fields[5].strip().lower()
            reason = fields[6].strip()
        else:
            stakeholder_raw = None
            reason = fields[5].strip()

        results.append(
            MemberClassification(
                module_id=module_id,
                member_name=fields[1].strip(),
                is_entry_point=fields[2].strip().lower() == "true",
                action_type=action_raw if action_raw in ACTION_TYPES else None,  # type: ignore[arg-type]
                target_entity=fields[4].strip() or None,
                stakeholder=stakeholder_raw if stakeholder_raw in STAKEHOLDERS else None,  # type: ignore[arg-type]
                reason=reason.replace('"', ""),
                via="llm",
            )
        )

    return results
