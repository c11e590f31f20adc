"""
Tests for the dependency-monitor CLI.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml

from dependency_health.cli import (
    build_config,
    build_monitor,
    build_registry,
    build_store,
    create_parser,
    main,
    run_check,
)
from dependency_health.exceptions import ConfigurationError
from dependency_health.models import HealthStatus
from dependency_health.notifications import CompositeAlertTransport, WebhookAlertTransport
from dependency_health.snapshot import HealthSnapshot
from dependency_health.store import InMemorySnapshotStore, JsonFileSnapshotStore


@pytest.fixture
def parser():
    return create_parser()


@pytest.fixture
def no_env(monkeypatch):
    monkeypatch.delenv("HEALTH_MONITOR_CHECK_INTERVAL", raising=False)
    monkeypatch.setattr("dependency_health.config.load_dotenv", lambda *args, **kwargs: False)


class TestParser:
    """Tests for argument parsing."""

    def test_run_defaults(self, parser):
        args = parser.parse_args(["run"])

        assert args.command == "run"
        assert args.serve is False
        assert args.host == "127.0.0.1"
        assert args.port == 8080
        assert args.log_level == "INFO"

    def test_check_options(self, parser, tmp_path):
        args = parser.parse_args([
            "check",
            "--interval", "15",
            "--state-file", str(tmp_path / "state.json"),
            "--log-level", "DEBUG",
        ])

        assert args.command == "check"
        assert args.interval == 15.0
        assert args.state_file == tmp_path / "state.json"

    def test_command_required(self, parser):
        with pytest.raises(SystemExit):
            parser.parse_args([])


class TestBuilders:
    """Tests for config, registry and store construction."""

    def test_interval_override(self, parser, no_env):
        config = build_config(parser.parse_args(["check", "--interval", "12"]))
        assert config.check_interval_seconds == 12.0

    def test_non_positive_interval(self, parser, no_env):
        with pytest.raises(ConfigurationError):
            build_config(parser.parse_args(["check", "--interval", "0"]))

    def test_config_from_yaml(self, parser, tmp_path):
        path = tmp_path / "monitor.yaml"
        path.write_text(yaml.safe_dump({"check_interval_seconds": 60}))

        config = build_config(parser.parse_args(["check", "--config", str(path)]))

        assert config.check_interval_seconds == 60

    def test_registry_from_yaml(self, parser, tmp_path):
        path = tmp_path / "deps.yaml"
        path.write_text(yaml.safe_dump({"dependencies": [{
            "id": "coingecko",
            "category": "price_feed",
            "criticality": "critical",
            "endpoints": [{"name": "ping", "url": "https://api.coingecko.com/api/v3/ping"}],
        }]}))

        registry = build_registry(parser.parse_args(["check", "--dependencies", str(path)]))

        assert registry.ids() == ["coingecko"]

    def test_default_registry(self, parser):
        assert len(build_registry(parser.parse_args(["check"]))) == 14

    def test_store_selection(self, parser, tmp_path):
        assert isinstance(build_store(parser.parse_args(["check"])), InMemorySnapshotStore)
        store = build_store(parser.parse_args(["check", "--state-file", str(tmp_path / "s.json")]))
        assert isinstance(store, JsonFileSnapshotStore)


class TestRunCheck:
    """Tests for the one-shot check command."""

    def _monitor(self, status, clock):
        monitor = MagicMock()
        monitor.run_cycle = AsyncMock(return_value=HealthSnapshot(overall_status=status, generated_at=clock.now()))
        monitor.close = AsyncMock()
        return monitor

    @pytest.mark.asyncio
    async def test_healthy_exit_code(self, clock, capsys):
        monitor = self._monitor(HealthStatus.HEALTHY, clock)

        assert await run_check(monitor) == 0
        monitor.close.assert_awaited_once()
        assert json.loads(capsys.readouterr().out)["overall_status"] == "healthy"

    @pytest.mark.asyncio
    async def test_degraded_exit_code(self, clock):
        monitor = self._monitor(HealthStatus.DEGRADED, clock)
        assert await run_check(monitor) == 1

    @pytest.mark.asyncio
    async def test_closes_on_failure(self):
        monitor = MagicMock()
        monitor.run_cycle = AsyncMock(side_effect=RuntimeError("boom"))
        monitor.close = AsyncMock()

        with pytest.raises(RuntimeError):
            await run_check(monitor)
        monitor.close.assert_awaited_once()


class TestMain:
    """Tests for the entry point."""

    def test_configuration_error_exit_code(self, tmp_path, capsys):
        path = tmp_path / "monitor.yaml"
        path.write_text(yaml.safe_dump({"check_interval_seconds": -1}))

        assert main(["check", "--config", str(path)]) == 2
        assert "Error:" in capsys.readouterr().err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "1.0.0" in capsys.readouterr().out


class TestDotenv:
    """Tests for .env loading before the environment is read."""

    @pytest.fixture
    def dotenv_dir(self, tmp_path, monkeypatch):
        for name in ("INFURA_PROJECT_ID", "HEALTH_MONITOR_WEBHOOK_URL", "TELEGRAM_BOT_TOKEN"):
            # setenv first so teardown also removes values loaded from .env
            monkeypatch.setenv(name, "unset")
            monkeypatch.delenv(name)
        (tmp_path / ".env").write_text(
            "INFURA_PROJECT_ID=fromdotenv\n"
            "HEALTH_MONITOR_WEBHOOK_URL=http://127.0.0.1:9/hook\n"
        )
        (tmp_path / "monitor.yaml").write_text(yaml.safe_dump({"check_interval_seconds": 30}))
        monkeypatch.chdir(tmp_path)
        return tmp_path

    def test_catalog_and_transport_see_dotenv(self, parser, dotenv_dir):
        monitor = build_monitor(parser.parse_args(["check", "--config", "monitor.yaml"]))

        infura = monitor.registry.get("infura_ethereum")
        assert infura.endpoints[0].url.endswith("/v3/fromdotenv")
        assert isinstance(monitor.transport, CompositeAlertTransport)
        assert isinstance(monitor.transport.transports[-1], WebhookAlertTransport)
