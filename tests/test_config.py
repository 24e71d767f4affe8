"""Tests for workflow configuration management."""

import os
import pytest
from unittest.mock import patch


class TestConfig:
    def test_default_values(self):
        with patch.dict(os.environ, {}, clear=True):
            import importlib
            import config as config_module
            importlib.reload(config_module)

            cfg = config_module.Config()
            assert cfg.log_level == "INFO"
            assert cfg.data_dir == "data"
            assert cfg.auto_approval_threshold == 0.95
            assert cfg.manual_review_threshold == 0.5
            assert cfg.document_quality_threshold == 0.8
            assert cfg.min_age == 18
            assert cfg.ubo_threshold == 25
            assert cfg.min_ownership_coverage == 75
            assert cfg.kyc_validity_years == 1
            assert cfg.kyb_validity_years == 2
            assert cfg.expiry_grace_days == 0
            assert cfg.stale_threshold_hours == 72
            assert cfg.screening_timeout == 30
            assert cfg.max_retries == 3
            assert cfg.max_document_size == 10 * 1024 * 1024
            assert cfg.verbose is False

    def test_env_var_override(self):
        test_env = {
            "LOG_LEVEL": "DEBUG",
            "DATA_DIR": "/custom/path",
            "AUTO_APPROVAL_THRESHOLD": "0.9",
            "KYB_VALIDITY_YEARS": "3",
            "SCREENING_TIMEOUT": "2.5",
            "MAX_DOCUMENT_SIZE": "1024",
            "VERBOSE": "yes",
        }
        with patch.dict(os.environ, test_env, clear=True):
            import importlib
            import config as config_module
            importlib.reload(config_module)

            cfg = config_module.Config()
            assert cfg.log_level == "DEBUG"
            assert cfg.data_dir == "/custom/path"
            assert cfg.auto_approval_threshold == 0.9
            assert cfg.kyb_validity_years == 3
            assert cfg.screening_timeout == 2.5
            assert cfg.max_document_size == 1024
            assert cfg.verbose is True

    def test_screening_list_path_override(self):
        with patch.dict(os.environ, {"SCREENING_LIST_PATH": "/lists"}, clear=True):
            import importlib
            import config as config_module
            importlib.reload(config_module)

            assert config_module.Config().screening_list_path == "/lists"

    def test_invalid_log_level_defaults_to_info(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "INVALID"}, clear=True):
            import importlib
            import config as config_module
            importlib.reload(config_module)

            cfg = config_module.Config()
            assert cfg.log_level == "INFO"

    def test_get_log_level_returns_int(self):
        import logging
        import importlib
        import config as config_module
        importlib.reload(config_module)

        cfg = config_module.Config()
        cfg.log_level = "WARNING"
        assert cfg.get_log_level() == logging.WARNING

    def test_review_threshold_capped_at_approval(self):
        from config import Config
        cfg = Config(auto_approval_threshold=0.6, manual_review_threshold=0.8)
        assert cfg.manual_review_threshold == 0.6

    def test_non_numeric_threshold_fails(self):
        with patch.dict(os.environ, {"MIN_AGE": "adult"}):
            from config import Config
            with pytest.raises(ValueError):
                Config()


class TestValidity:
    def test_validity_by_kind(self):
        from config import Config
        cfg = Config(kyc_validity_years=1, kyb_validity_years=2)
        assert cfg.validity_years("KYC") == 1
        assert cfg.validity_years("KYB") == 2
        assert cfg.validity_years("kyb") == 2

    def test_global_config(self):
        from config import Config, get_config, set_config
        custom = Config(min_age=21)
        set_config(custom)
        assert get_config() is custom
