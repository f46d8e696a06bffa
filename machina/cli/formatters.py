"""
CLI output formatting.

JSON is the default; YAML is offered for humans reading nested records.
"""

import json
from typing import Any

import yaml


def format_output(data: Any, format_type: str = "json") -> str:
    """Format data according to the specified format type."""
    if format_type == "yaml":
        return yaml.safe_dump(json.loads(json.dumps(data, default=str)),
                              default_flow_style=False, sort_keys=False)
    return json.dumps(data, indent=2, default=str)
