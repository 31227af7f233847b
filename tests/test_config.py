"""
Tests for Config loading: YAML file, defaults, environment overrides.
"""
import textwrap

from taskmate.config import Config


class TestConfigLoad:

    def test_defaults_when_file_missing(self, tmp_path):
        cfg = Config.load(str(tmp_path / "missing.yaml"), environ={})
        assert cfg.session_backend == "memory"
        assert cfg.retention_hours == 48
        assert cfg.cookie_name == "taskmate-session"
        assert "~" not in cfg.db_path

    def test_yaml_values_and_unknown_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(textwrap.dedent("""\
            db_path: /tmp/tm/test.db
            port: 8080
            retention_hours: 12
            no_such_option: true
        """))
        cfg = Config.load(str(path), environ={})
        assert cfg.db_path == "/tmp/tm/test.db"
        assert cfg.port == 8080
        assert cfg.retention_hours == 12
        assert not hasattr(cfg, "no_such_option")

    def test_invalid_yaml_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("port: [unclosed\n")
        cfg = Config.load(str(path), environ={})
        assert cfg.port == 3000

    def test_non_mapping_yaml_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        assert Config.load(str(path), environ={}).port == 3000

    def test_env_overrides_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("session_backend: memory\n")
        cfg = Config.load(str(path), environ={
            "TASKMATE_SESSION_BACKEND": "redis",
            "TASKMATE_CRON_SECRET": "s3cret",
            "TASKMATE_COOKIE_SECURE": "true",
            "TASKMATE_LOG_LEVEL": "  ",
        })
        assert cfg.session_backend == "redis"
        assert cfg.cron_secret == "s3cret"
        assert cfg.cookie_secure is True
        assert cfg.log_level == "INFO"

    def test_config_path_from_env(self, tmp_path):
        path = tmp_path / "elsewhere.yaml"
        path.write_text("port: 9999\n")
        assert Config.load(environ={"TASKMATE_CONFIG": str(path)}).port == 9999

    def test_memory_db_path_untouched(self):
        cfg = Config(db_path=":memory:")
        cfg.resolve_paths()
        assert cfg.db_path == ":memory:"
