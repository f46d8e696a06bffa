"""Normalization of ``terraform show -json`` plan output."""
import json
from typing import Any, Dict, List, Optional, Union

from machina.domain.core.exceptions import ExecutionFailedError
from machina.domain.deployment.value_objects import PlanSummary, ResourceAction, ResourceChange

_ACTIONS = {
    ("create",): ResourceAction.CREATE,
    ("update",): ResourceAction.UPDATE,
    ("delete",): ResourceAction.DELETE,
    ("read",): ResourceAction.READ,
    ("delete", "create"): ResourceAction.REPLACE,
    ("create", "delete"): ResourceAction.REPLACE,
}


def normalize_actions(actions: List[str]) -> Optional[ResourceAction]:
    """Map a Terraform action list to a single action. ``no-op`` maps to None."""
    if not actions or actions == ["no-op"]:
        return None
    action = _ACTIONS.get(tuple(actions))
    if action is None:
        raise ExecutionFailedError(f"Unrecognized Terraform plan actions: {actions}")
    return action


def parse_plan(plan: Union[str, Dict[str, Any]]) -> PlanSummary:
    """
    Build a :class:`PlanSummary` from machine-readable plan JSON.

    Args:
        plan: Parsed JSON document or its text

    Raises:
        ExecutionFailedError: If the document cannot be interpreted
    """
    if isinstance(plan, str):
        try:
            plan = json.loads(plan)
        except json.JSONDecodeError as e:
            raise ExecutionFailedError(f"Terraform plan output is not valid JSON: {e}")

    changes = []
    for entry in plan.get("resource_changes") or []:
        action = normalize_actions(entry.get("change", {}).get("actions", []))
        if action is None:
            continue
        changes.append(ResourceChange(
            address=entry.get("address", ""),
            action=action,
            resource_type=entry.get("type", ""),
            resource_name=entry.get("name", ""),
        ))
    return PlanSummary.from_changes(changes)
