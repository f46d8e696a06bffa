"""Terraform execution wrapper."""

from .executor import TerraformExecutor, PlanResult, classify_line, DEFAULT_MODULES_DIR
from .plan_parser import parse_plan, normalize_actions

__all__ = [
    "TerraformExecutor",
    "PlanResult",
    "classify_line",
    "DEFAULT_MODULES_DIR",
    "parse_plan",
    "normalize_actions",
]
