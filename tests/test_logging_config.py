"""
Tests for the logging configuration builder.
"""

from crm_import.core.logging_config import IMPORT_LOGGERS, build_logging_config


class TestBuildLoggingConfig:

    def test_defaults_to_info(self):
        config = build_logging_config()

        assert config["root"]["level"] == "INFO"
        assert config["loggers"]["crm_import"]["level"] == "INFO"
        assert all(config["loggers"][name]["level"] == "INFO" for name in IMPORT_LOGGERS)

    def test_import_pipeline_has_its_own_level(self):
        config = build_logging_config("warning", "debug")

        assert config["loggers"]["crm_import"]["level"] == "WARNING"
        assert config["loggers"]["crm_import.domain.imports"]["level"] == "DEBUG"
        assert config["loggers"]["crm_import.utils.locks"]["level"] == "DEBUG"

    def test_sql_and_access_logs_are_quieted(self):
        config = build_logging_config("debug")

        assert config["loggers"]["sqlalchemy.engine"]["level"] == "WARNING"
        assert config["loggers"]["uvicorn.access"]["level"] == "WARNING"
