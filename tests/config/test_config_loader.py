"""
Configuration loading: packaged defaults, YAML overrides, environment
overrides, schema validation and the cached active configuration.
"""

import pytest
import yaml

from transfer_config import get_active_config, load_config, reset_active_config
from transfer_config.loader import apply_env_overrides, compute_checksum


@pytest.fixture
def write_yaml(tmp_path):
    def _write(data) -> str:
        path = tmp_path / "transfer.yaml"
        path.write_text(yaml.safe_dump(data))
        return str(path)

    return _write


class TestDefaults:
    def test_packaged_defaults(self):
        config = load_config(environ={})
        assert config.reference_numbers.request_prefix == "SR"
        assert config.reference_numbers.issue_prefix == "SI"
        assert config.reference_numbers.width == 6
        assert config.workflow.default_priority == "medium"
        assert config.workflow.default_currency_id is None
        assert config.workflow.conflict_retry_attempts == 3
        assert config.log_level == "INFO"

    def test_default_roles(self):
        roles = load_config(environ={}).role_permissions
        assert set(roles) == {"requester", "approver", "storekeeper", "admin"}
        assert roles["admin"] == ("*",)
        assert "store_request.issue" in roles["storekeeper"]

    def test_checksum_is_stable(self):
        assert load_config(environ={}).checksum == load_config(environ={}).checksum
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})


class TestOverrides:
    def test_yaml_section_merges_with_defaults(self, write_yaml):
        config = load_config(write_yaml({"reference_numbers": {"width": 8}}), environ={})
        assert config.reference_numbers.width == 8
        assert config.reference_numbers.request_prefix == "SR"

    def test_yaml_roles_replace_defaults(self, write_yaml):
        config = load_config(
            write_yaml({"roles": {"auditor": ["store_request.read"]}}), environ={},
        )
        assert config.role_permissions == {"auditor": ("store_request.read",)}

    def test_environment_wins(self, write_yaml):
        config = load_config(
            write_yaml({"workflow": {"default_priority": "low"}}),
            environ={
                "TRANSFER_DEFAULT_PRIORITY": "urgent",
                "TRANSFER_DEFAULT_CURRENCY": "IQD",
                "TRANSFER_CONFLICT_RETRY_ATTEMPTS": "5",
                "TRANSFER_LOG_LEVEL": "debug",
            },
        )
        assert config.workflow.default_priority == "urgent"
        assert config.workflow.default_currency_id == "IQD"
        assert config.workflow.conflict_retry_attempts == 5
        assert config.log_level == "DEBUG"

    def test_empty_environment_values_ignored(self):
        data = apply_env_overrides({"workflow": {"default_priority": "low"}},
                                   {"TRANSFER_DEFAULT_PRIORITY": ""})
        assert data["workflow"]["default_priority"] == "low"

    def test_unparseable_environment_value(self):
        with pytest.raises(ValueError, match="TRANSFER_REFERENCE_WIDTH"):
            load_config(environ={"TRANSFER_REFERENCE_WIDTH": "wide"})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml", environ={})


class TestValidation:
    @pytest.mark.parametrize(
        "data,match",
        [
            ({"workflow": {"default_priority": "asap"}}, "default_priority"),
            ({"workflow": {"conflict_retry_attempts": 0}}, "conflict_retry_attempts"),
            ({"reference_numbers": {"issue_prefix": "SR"}}, "prefixes must differ"),
            ({"reference_numbers": {"width": 0}}, "width"),
            ({"roles": {"clerk": ["store_request.launch"]}}, "unknown permission"),
            ({"log_level": "LOUD"}, "log_level"),
            ({"database": {"pool_size": 0}}, "pool_size"),
        ],
    )
    def test_invalid_values_rejected(self, write_yaml, data, match):
        with pytest.raises(ValueError, match=match):
            load_config(write_yaml(data), environ={})


class TestActiveConfig:
    def test_cached_until_reset(self, monkeypatch, write_yaml, captured_logs):
        monkeypatch.setenv("TRANSFER_CONFIG_FILE", write_yaml({"reference_numbers": {"width": 4}}))
        reset_active_config()
        try:
            first = get_active_config()
            assert first.reference_numbers.width == 4
            assert get_active_config() is first
            traces = [r for r in captured_logs() if r["message"] == "TRANSFER_CONFIG_TRACE"]
            assert len(traces) == 1
            assert traces[0]["checksum"] == first.checksum
        finally:
            reset_active_config()
