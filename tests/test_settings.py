import pytest

from nl_csvchat.config.settings import load_settings

YAML = """
app:
  log_level: DEBUG
ingestion:
  delimiter: ";"
  skip_bad_lines: true
agent:
  max_query_attempts: 4
  correction_context: all
"""


@pytest.fixture
def cfg_dir(tmp_path, monkeypatch):
    (tmp_path / "unit.yaml").write_text(YAML, encoding="utf-8")
    monkeypatch.setenv("APP_ENV", "unit")
    for key in ("LOG_LEVEL", "MAX_QUERY_ATTEMPTS", "CHART_MAPPER", "TABLE_NAME", "CORRECTION_CONTEXT"):
        monkeypatch.delenv(key, raising=False)
    return tmp_path


def test_values_come_from_yaml_with_defaults(cfg_dir):
    s = load_settings(str(cfg_dir))
    assert s.env == "unit"
    assert s.log_level == "DEBUG"
    assert s.delimiter == ";"
    assert s.skip_bad_lines is True
    assert s.max_query_attempts == 4
    assert s.correction_context == "all"
    assert s.table_name == "my_table"
    assert s.chart_mapper == "llm"


def test_environment_overrides_yaml(cfg_dir, monkeypatch):
    monkeypatch.setenv("MAX_QUERY_ATTEMPTS", "2")
    monkeypatch.setenv("CHART_MAPPER", "Heuristic")
    monkeypatch.setenv("TABLE_NAME", "sales")
    s = load_settings(str(cfg_dir))
    assert s.max_query_attempts == 2
    assert s.chart_mapper == "heuristic"
    assert s.table_name == "sales"


def test_invalid_choice_is_rejected(cfg_dir, monkeypatch):
    monkeypatch.setenv("CORRECTION_CONTEXT", "last")
    with pytest.raises(ValueError):
        load_settings(str(cfg_dir))


def test_invalid_budget_is_rejected(cfg_dir, monkeypatch):
    monkeypatch.setenv("MAX_QUERY_ATTEMPTS", "0")
    with pytest.raises(ValueError):
        load_settings(str(cfg_dir))


def test_missing_config_file(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "nope")
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path))
