"""
Tests for configuration loading (courtbot/common/config.py)
"""
from datetime import date, time

import pytest
import yaml
from pydantic import ValidationError

from courtbot.common.config import Config, ResourceConfig, ScheduleConfig, load_config
from courtbot.common.models import SessionMode


class TestDefaults:

    def test_default_resources(self, config):
        assert [r.id for r in config.resources] == ["5", "7"]
        court1 = config.resource("5")
        assert court1.days_ahead == 9
        assert court1.window_for("Monday") == "06:00 AM - 07:00 AM"
        assert court1.window_for("Sunday") is None
        assert config.resource("7").window_for("Monday") is None

    def test_unknown_resource(self, config):
        with pytest.raises(KeyError):
            config.resource("99")

    def test_safe_run_defaults(self, config):
        assert config.run.allow_booking is False
        assert config.run.session_mode == SessionMode.SHARED
        assert config.run.wait_for_unlock is True
        assert config.site.session_required is True

    def test_unlock_clock_time(self):
        assert ScheduleConfig(unlock_time="23:59:30").unlock_clock_time == time(23, 59, 30)


class TestValidation:

    def test_unknown_day_name(self):
        with pytest.raises(ValidationError):
            ResourceConfig(id="5", name="Court", days_ahead=9, slots={"Lunes": "06:00 AM - 07:00 AM"})

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            ScheduleConfig(timezone="Mars/Olympus_Mons")

    def test_frozen(self, config):
        with pytest.raises(ValidationError):
            config.timing.poll_interval_ms = 1


class TestOverrides:

    def test_with_run_copies(self, config):
        updated = config.with_run(allow_booking=True, target_date="2030-08-14", skip=["7"])
        assert updated.run.allow_booking is True
        assert updated.run.target == date(2030, 8, 14)
        assert updated.run.skip == ["7"]
        assert config.run.allow_booking is False
        assert config.run.target is None

    def test_with_timing(self, config):
        updated = config.with_timing(poll_interval_ms=250)
        assert updated.timing.poll_interval_ms == 250
        assert updated.timing.unlock_max_ms == config.timing.unlock_max_ms
        assert config.timing.poll_interval_ms == 180

    def test_with_browser(self, config):
        updated = config.with_browser(mock_unlock_ms=5000)
        assert updated.browser.mock_unlock_ms == 5000
        assert updated.browser.headless is True
        assert config.browser.mock_unlock_ms == 0


class TestYaml:

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "credentials": {"username": "42", "password": "pw"},
            "resources": [
                {"id": "5", "name": "Court 1", "days_ahead": 9, "slots": {"Friday": "06:00 PM - 07:00 PM"}},
            ],
            "run": {"session_mode": "isolated"},
            "timing": {"unlock_max_ms": 20000},
        }))
        config = Config.from_yaml(path)
        assert config.credentials.username == "42"
        assert config.resource("5").window_for("Friday") == "06:00 PM - 07:00 PM"
        assert config.run.session_mode == SessionMode.ISOLATED
        assert config.timing.unlock_max_ms == 20000
        assert config.timing.poll_interval_ms == 180

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config.from_yaml(tmp_path / "nope.yaml")

    def test_round_trip(self, config, tmp_path):
        path = tmp_path / "saved.yaml"
        config.with_run(shadow=True).to_yaml(path)
        loaded = Config.from_yaml(path)
        assert loaded.run.shadow is True
        assert loaded.resources == config.resources


class TestEnvironment:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TENNIS_USERNAME", "1234")
        monkeypatch.setenv("TENNIS_PASSWORD", "secret")
        monkeypatch.setenv("ALLOW_BOOKING", "1")
        monkeypatch.setenv("SESSION_MODE", "isolated")
        monkeypatch.setenv("UNLOCK_POLL_MS", "250")
        monkeypatch.setenv("LOGIN_LEAD_MS", "45000")
        monkeypatch.setenv("RESEND_API_KEY", "re_test")
        monkeypatch.setenv("TO_EMAIL_ADDRESS", "me@example.com")
        monkeypatch.setenv("MOCK_UNLOCK_MS", "5000")

        config = Config.from_env()
        assert config.credentials.password == "secret"
        assert config.run.allow_booking is True
        assert config.run.session_mode == SessionMode.ISOLATED
        assert config.timing.poll_interval_ms == 250
        assert config.schedule.login_lead_ms == 45000
        assert config.notifications.email.enabled is True
        assert config.browser.mock_unlock_ms == 5000

    def test_allow_booking_needs_exact_value(self, monkeypatch):
        monkeypatch.setenv("TENNIS_USERNAME", "1234")
        monkeypatch.setenv("TENNIS_PASSWORD", "secret")
        monkeypatch.setenv("ALLOW_BOOKING", "yes")
        monkeypatch.delenv("RESEND_API_KEY", raising=False)
        assert Config.from_env().run.allow_booking is False

    def test_load_config_without_anything(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.delenv("TENNIS_USERNAME", raising=False)
        monkeypatch.delenv("TENNIS_PASSWORD", raising=False)
        with pytest.raises(RuntimeError, match="TENNIS_USERNAME"):
            load_config()

    def test_load_config_finds_local_file(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config.yaml").write_text(yaml.safe_dump({
            "credentials": {"username": "7", "password": "pw"},
        }))
        assert load_config().credentials.username == "7"
