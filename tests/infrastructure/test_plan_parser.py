import json

import pytest

from machina.domain.core.exceptions import ExecutionFailedError
from machina.domain.deployment.value_objects import ResourceAction
from machina.infrastructure.terraform.plan_parser import normalize_actions, parse_plan


def _change(address, actions):
    resource_type, name = address.split(".", 1)
    return {"address": address, "type": resource_type, "name": name, "change": {"actions": actions}}


def test_counts_each_action_kind():
    # Arrange
    plan = {"resource_changes": [
        _change("digitalocean_droplet.machine", ["create"]),
        _change("digitalocean_firewall.machine", ["update"]),
        _change("digitalocean_volume.data", ["delete"]),
        _change("digitalocean_tag.env", ["no-op"]),
    ]}

    # Act
    summary = parse_plan(plan)

    # Assert
    assert (summary.resources_to_add, summary.resources_to_change, summary.resources_to_destroy) == (1, 1, 1)
    assert [c.address for c in summary.resource_changes] == [
        "digitalocean_droplet.machine", "digitalocean_firewall.machine", "digitalocean_volume.data"
    ]


@pytest.mark.parametrize("actions", [["delete", "create"], ["create", "delete"]])
def test_replace_counts_as_add_and_destroy(actions):
    summary = parse_plan({"resource_changes": [_change("aws_instance.machine", actions)]})

    assert summary.resources_to_add == 1
    assert summary.resources_to_destroy == 1
    assert summary.resource_changes[0].action == ResourceAction.REPLACE


def test_accepts_json_text():
    text = json.dumps({"resource_changes": [_change("aws_instance.machine", ["create"])]})

    assert parse_plan(text).resources_to_add == 1


def test_empty_plan():
    summary = parse_plan({"format_version": "1.2"})

    assert summary.is_empty
    assert summary.resource_changes == []


def test_invalid_json_raises():
    with pytest.raises(ExecutionFailedError):
        parse_plan("{not json")


def test_unknown_action_raises():
    with pytest.raises(ExecutionFailedError):
        normalize_actions(["explode"])
