from hwmgr.config import PluginConfig


def test_defaults_without_environment(tmp_path):
    config = PluginConfig.from_env({}, namespace_path=str(tmp_path / "missing"))
    assert config == PluginConfig()


def test_namespace_prefers_pod_env_then_service_account_file(tmp_path):
    ns_file = tmp_path / "namespace"
    ns_file.write_text("from-file\n")

    assert PluginConfig.from_env({"MY_POD_NAMESPACE": "from-env"}, str(ns_file)).namespace == "from-env"
    assert PluginConfig.from_env({}, str(ns_file)).namespace == "from-file"


def test_overrides_are_parsed(tmp_path):
    env = {
        "MY_POD_NAMESPACE": "oran",
        "HWMGR_NODELIST_NAME": "inventory",
        "HWMGR_SHORT_REQUEUE_S": "5",
        "HWMGR_MEDIUM_REQUEUE_S": "30.5",
        "HWMGR_ALLOCATION_DELAY_S": "15",
        "HWMGR_CONFLICT_RETRIES": "3",
        "HWMGR_WORKERS": "4",
        "LOG_LEVEL": "debug",
    }
    config = PluginConfig.from_env(env, str(tmp_path / "missing"))
    assert config.nodelist_name == "inventory"
    assert config.short_requeue_s == 5.0
    assert config.medium_requeue_s == 30.5
    assert config.allocation_delay_s == 15.0
    assert config.conflict_retries == 3
    assert config.workers == 4
    assert config.log_level == "DEBUG"


def test_invalid_values_fall_back_to_defaults(tmp_path, caplog):
    env = {
        "HWMGR_SHORT_REQUEUE_S": "soon",
        "HWMGR_ALLOCATION_DELAY_S": "-1",
        "HWMGR_WORKERS": "0",
        "HWMGR_CONFLICT_RETRIES": "many",
    }
    config = PluginConfig.from_env(env, str(tmp_path / "missing"))
    defaults = PluginConfig()
    assert config.short_requeue_s == defaults.short_requeue_s
    assert config.allocation_delay_s == defaults.allocation_delay_s
    assert config.workers == defaults.workers
    assert config.conflict_retries == defaults.conflict_retries
    assert "HWMGR_SHORT_REQUEUE_S" in caplog.text
