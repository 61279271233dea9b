"""
Unit tests for configuration guards and app-factory helpers.

No database access: the production guard is checked against a bare Flask app,
and the validation-message walker is a pure function.
"""

from __future__ import annotations

import pytest
from flask import Flask

from splitplus.app import _first_validation_message
from splitplus.config import TestingConfig, config_by_name, validate_production_config


def _app_with(**overrides) -> Flask:
    app = Flask(__name__)
    app.config.update(
        SQLALCHEMY_DATABASE_URI="postgresql://db/splitplus",
        SECRET_KEY="s3cret",
        JWT_SECRET_KEY="jwt-s3cret",
        DEFAULT_CURRENCY_CODE="EUR",
    )
    app.config.update(overrides)
    return app


def test_config_selector_names():
    assert set(config_by_name) == {"development", "testing", "production"}
    assert config_by_name["testing"] is TestingConfig
    assert TestingConfig.JWT_SECRET_KEY == "test-jwt-secret"


def test_production_config_accepts_complete_settings():
    validate_production_config(_app_with())


@pytest.mark.parametrize(
    "overrides, fragment",
    [
        ({"SQLALCHEMY_DATABASE_URI": ""}, "DATABASE_URL"),
        ({"SECRET_KEY": "change-me-in-production"}, "SECRET_KEY"),
        ({"JWT_SECRET_KEY": "change-me-in-production"}, "JWT_SECRET_KEY"),
        ({"DEFAULT_CURRENCY_CODE": "euro"}, "DEFAULT_CURRENCY_CODE"),
    ],
)
def test_production_config_rejects_unsafe_settings(overrides, fragment):
    with pytest.raises(ValueError) as exc_info:
        validate_production_config(_app_with(**overrides))
    assert fragment in str(exc_info.value)


def test_first_validation_message_reports_top_level_field():
    messages = {"splits": {0: {"split_type": ["INVALID_SPLIT_TYPE"]}}}
    assert _first_validation_message(messages) == ("splits", "INVALID_SPLIT_TYPE")


def test_first_validation_message_for_schema_level_error():
    assert _first_validation_message({"_schema": ["Invalid input type."]}) == (None, "Invalid input type.")
