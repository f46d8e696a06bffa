from machina.config.utils.env_expansion import expand_config_env_vars, expand_env_vars


def test_braced_and_bare_references(monkeypatch):
    monkeypatch.setenv("MACHINA_DATA", "/var/lib/machina")

    assert expand_env_vars("${MACHINA_DATA}/machina.db") == "/var/lib/machina/machina.db"
    assert expand_env_vars("$MACHINA_DATA/ws") == "/var/lib/machina/ws"


def test_default_used_when_unset(monkeypatch):
    monkeypatch.delenv("MACHINA_TF_BIN", raising=False)

    assert expand_env_vars("${MACHINA_TF_BIN:/usr/bin/terraform}") == "/usr/bin/terraform"


def test_unset_reference_without_default_is_left_alone(monkeypatch):
    monkeypatch.delenv("MACHINA_UNSET", raising=False)

    assert expand_env_vars("${MACHINA_UNSET}") == "${MACHINA_UNSET}"


def test_nested_structures(monkeypatch):
    monkeypatch.setenv("REGION", "nyc3")

    result = expand_config_env_vars({"a": ["$REGION", {"b": "${REGION}-x"}], "port": 8000})

    assert result == {"a": ["nyc3", {"b": "nyc3-x"}], "port": 8000}


def test_empty_config():
    assert expand_config_env_vars({}) == {}
