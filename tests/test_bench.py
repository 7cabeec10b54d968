"""Tests for the command-line entry point."""

import pytest

from conftest import tx_hash
from relay_bench import bench
from relay_bench.config import BenchConfig
from relay_bench.stats import PERCENTILES_FULL
from relay_bench.streams.base import ConnectivityError
from relay_bench.streams.bloxroute import BloxrouteSource
from relay_bench.streams.relay import RelaySource

ENV_VARS = (
    "PRIMARY_ENDPOINTS", "PRIMARY_API_KEY", "SECONDARY_ENDPOINT",
    "SECONDARY_API_KEY", "DATABASE_URL", "BENCHMARK_ID",
)


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    """No .env, config.yaml or real logging setup from the developer's machine."""
    monkeypatch.chdir(tmp_path)
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(bench, "_setup_logging", lambda *a, **kw: None)
    monkeypatch.setattr(bench, "load_dotenv", lambda *a, **kw: False)


class TestParseArgs:
    def test_subcommand_sets_stream(self):
        args = bench._parse_args(["blocks", "--interval", "5", "--primary-endpoint", "ws://a",
                                  "--primary-endpoint", "ws://b"])
        assert args.command == "blocks"
        assert args.stream == "blocks"
        assert args.interval == 5.0
        assert args.primary_endpoint == ["ws://a", "ws://b"]
        assert args.cross_check is None

    def test_percentiles_kept_as_given(self):
        args = bench._parse_args(["transactions", "--percentiles", "5,50,95"])
        assert args.percentiles == "5,50,95"

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            bench._parse_args([])


class TestBuildConfig:
    def test_layers(self, tmp_path):
        cfg_path = tmp_path / "config.yaml"
        cfg_path.write_text("benchmark:\n  interval_count: 7\n  secondary_kind: relay\n")
        args = bench._parse_args([
            "--config", str(cfg_path), "transactions", "--interval", "2", "--cross-check",
        ])
        cfg = bench.build_config(args, env={
            "PRIMARY_ENDPOINTS": "ws://p",
            "SECONDARY_ENDPOINT": "ws://s",
        })
        assert cfg.interval_count == 7
        assert cfg.interval_sec == 2.0
        assert cfg.cross_check is True
        assert cfg.primary_endpoints == ("ws://p",)
        assert len(cfg.benchmark_id) == 8

    def test_invalid(self):
        args = bench._parse_args(["transactions"])
        with pytest.raises(ValueError, match="Config validation failed"):
            bench.build_config(args, env={})


class TestBuildSources:
    def test_bloxroute_secondary(self):
        cfg = BenchConfig(primary_endpoints=("ws://p1", "ws://p2"), secondary_endpoint="ws://s",
                          secondary_key="sk")
        primary, secondary = bench.build_sources(cfg)
        assert isinstance(primary, RelaySource)
        assert primary.endpoints == ["ws://p1", "ws://p2"]
        assert isinstance(secondary, BloxrouteSource)
        assert secondary.headers == {"Authorization": "sk"}

    def test_relay_secondary_falls_back_to_primary_key(self):
        cfg = BenchConfig(primary_endpoints=("ws://p",), secondary_endpoint="ws://s",
                          secondary_kind="relay", primary_key="pk")
        primary, secondary = bench.build_sources(cfg)
        assert isinstance(secondary, RelaySource)
        assert secondary.name == "relay-2"
        assert secondary.headers == {"Authorization": "pk"}


class TestMain:
    def test_config_error_exit_code(self):
        assert bench.main(["transactions"]) == bench.EXIT_CONFIG

    def test_connectivity_error_exit_code(self, monkeypatch):
        async def fail(cfg):
            raise ConnectivityError("relay: no connection within 3.0s")

        monkeypatch.setattr(bench, "run_benchmark", fail)
        code = bench.main([
            "transactions", "--primary-endpoint", "ws://p", "--secondary-endpoint", "ws://s",
            "--secondary-kind", "relay",
        ])
        assert code == bench.EXIT_CONNECT

    def test_success(self, monkeypatch):
        ran = {}

        async def ok(cfg):
            ran["cfg"] = cfg

        monkeypatch.setattr(bench, "run_benchmark", ok)
        code = bench.main([
            "blocks", "--primary-endpoint", "ws://p", "--secondary-endpoint", "ws://s",
            "--secondary-key", "k", "--benchmark-id", "cli-run", "--sink", "none",
        ])
        assert code == 0
        assert ran["cfg"].benchmark_id == "cli-run"
        assert ran["cfg"].sink == "none"

    def test_report(self, tmp_path, capsys):
        path = tmp_path / "r.observations.csv"
        path.write_text(
            "tx_hash,fiber_timestamp,other_timestamp,diff,from,to,calldata_size\n"
            f"{tx_hash(1)},1000,2000,1000,0xa,0xb,0\n"
        )
        assert bench.main(["report", str(path)]) == 0
        out = capsys.readouterr().out
        assert "BENCHMARK REPORT" in out
        assert "Primary won 100.00% of the time" in out

    def test_report_missing_file(self, tmp_path):
        assert bench.main(["report", str(tmp_path / "missing.csv")]) == bench.EXIT_CONFIG


class TestPercentileFlag:
    VALID = ["--primary-endpoint", "ws://p", "--secondary-endpoint", "ws://s", "--secondary-kind", "relay"]

    def _capture(self, monkeypatch):
        ran = {}

        async def ok(cfg):
            ran["cfg"] = cfg

        monkeypatch.setattr(bench, "run_benchmark", ok)
        return ran

    def test_set_name_any_case(self, monkeypatch):
        ran = self._capture(monkeypatch)
        assert bench.main(["transactions", *self.VALID, "--percentiles", "FULL"]) == 0
        assert ran["cfg"].percentiles == PERCENTILES_FULL

    def test_comma_list(self, monkeypatch):
        ran = self._capture(monkeypatch)
        assert bench.main(["transactions", *self.VALID, "--percentiles", "95, 5,50"]) == 0
        assert ran["cfg"].percentiles == (5, 50, 95)

    @pytest.mark.parametrize("value", ["most", "5,abc", "150", ","])
    def test_bad_value_is_config_error(self, monkeypatch, value):
        ran = self._capture(monkeypatch)
        assert bench.main(["transactions", *self.VALID, "--percentiles", value]) == bench.EXIT_CONFIG
        assert "cfg" not in ran

    def test_bad_value_for_report(self, tmp_path):
        path = tmp_path / "r.observations.csv"
        path.write_text("tx_hash,fiber_timestamp,other_timestamp,diff\n")
        assert bench.main(["report", str(path), "--percentiles", "median"]) == bench.EXIT_CONFIG
