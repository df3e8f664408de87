import pytest

from orderdesk.config import Settings, collect_settings_errors, validate_settings

STRONG = "x" * 32


def make_settings(**overrides):
    values = {
        "database_url": "postgresql://orderdesk@db/orderdesk",
        "admin_token": STRONG,
        "ecomanager_webhook_secret": STRONG,
        "maystro_webhook_secret": STRONG,
        "environment": "production",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestSettingsValidation:
    def test_valid_production_settings(self):
        assert collect_settings_errors(make_settings()) == []

    def test_missing_required_values(self):
        errors = collect_settings_errors(make_settings(admin_token="", maystro_webhook_secret=""))

        assert "ADMIN_TOKEN is required" in errors
        assert "MAYSTRO_WEBHOOK_SECRET is required" in errors

    def test_short_secrets_rejected_in_production(self):
        errors = collect_settings_errors(make_settings(admin_token="short"))

        assert errors == ["ADMIN_TOKEN must be at least 32 characters in production"]

    def test_short_secrets_allowed_outside_production(self):
        assert collect_settings_errors(make_settings(admin_token="short", environment="development")) == []

    def test_production_requires_postgres(self):
        errors = collect_settings_errors(make_settings(database_url="sqlite:///orderdesk.db"))

        assert errors == ["DATABASE_URL must be a PostgreSQL connection string in production"]

    def test_assignable_roles(self):
        config = make_settings(assignable_roles=" agent_suivi , team_manager ")

        assert config.assignable_role_list == ["AGENT_SUIVI", "TEAM_MANAGER"]
        assert "ASSIGNABLE_ROLES must name at least one role" in collect_settings_errors(
            make_settings(assignable_roles=" , ")
        )

    def test_validate_settings_exits_on_error(self):
        with pytest.raises(SystemExit):
            validate_settings(make_settings(database_url=""))

    def test_validate_settings_returns_config(self):
        config = make_settings()

        assert validate_settings(config) is config
