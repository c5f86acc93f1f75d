"""CLI tests via Typer's CliRunner.

Each test points the cache at a temp directory through the environment and
swaps `TrackingClient` for one wired to the in-memory fake API, so every
invocation exercises the real command plumbing and on-disk cache.
"""

from __future__ import annotations

import json
from datetime import timedelta

import pytest
from typer.testing import CliRunner

from aftership_cli.adapters.response_cache import ResponseCache
from aftership_cli.cli import main as cli_main
from aftership_cli.core.services.tracking_client import TrackingClient
from tests.conftest import NOW, FakeTrackingApi


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def fake_api(tmp_path, monkeypatch) -> FakeTrackingApi:
    monkeypatch.setenv("AFTERSHIP_CLI_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("AFTERSHIP_CLI_AFTERSHIP__API_KEY", "test-key")
    api = FakeTrackingApi()

    def factory(settings):
        return TrackingClient(settings, api=api, clock=lambda: NOW)

    monkeypatch.setattr(cli_main, "TrackingClient", factory)
    return api


def _json(result) -> object:
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


# ---------------------------------------------------------------------------
# Basic commands
# ---------------------------------------------------------------------------


def test_no_args_shows_help(runner):
    result = runner.invoke(cli_main.app, [])
    assert "list-trackings" in result.output


def test_list_tools(runner):
    tools = _json(runner.invoke(cli_main.app, ["list-tools"]))
    names = {tool["name"] for tool in tools}
    assert {"list-trackings", "resolve-tracking", "cache-stats"} <= names


def test_list_trackings_maps_flags(runner, fake_api):
    fake_api.trackings = [{"id": "1", "tag": "InTransit", "slug": "ups"}]
    out = _json(
        runner.invoke(
            cli_main.app,
            ["list-trackings", "--status", "InTransit", "--slug", "ups", "--created-after", "2024-01-01T00:00:00Z"],
        )
    )
    assert out == {"trackings": fake_api.trackings, "count": 1}
    _, params = fake_api.calls[0]
    assert params["tag"] == "InTransit"
    assert params["created_at_min"] == "2024-01-01T00:00:00Z"


def test_limit_out_of_range_is_usage_error(runner, fake_api):
    result = runner.invoke(cli_main.app, ["list-trackings", "--limit", "500"])
    assert result.exit_code == 2
    assert fake_api.calls == []


def test_second_invocation_served_from_cache(runner, fake_api):
    runner.invoke(cli_main.app, ["list-couriers"])
    runner.invoke(cli_main.app, ["list-couriers"])
    assert fake_api.count("get_couriers") == 1


def test_no_cache_flag_bypasses(runner, fake_api):
    runner.invoke(cli_main.app, ["--no-cache", "list-couriers"])
    runner.invoke(cli_main.app, ["--no-cache", "list-couriers"])
    assert fake_api.count("get_couriers") == 2


# ---------------------------------------------------------------------------
# get-tracking / create-tracking validation
# ---------------------------------------------------------------------------


def test_get_tracking_by_id(runner, fake_api):
    out = _json(runner.invoke(cli_main.app, ["get-tracking", "--id", "t1"]))
    assert out["id"] == "t1"


def test_get_tracking_requires_id_or_number_and_slug(runner, fake_api):
    result = runner.invoke(cli_main.app, ["get-tracking", "--tracking-number", "1Z999"])
    assert result.exit_code == 2
    assert fake_api.calls == []


def test_get_tracking_not_found_exits_1(runner, fake_api):
    result = runner.invoke(cli_main.app, ["get-tracking", "--tracking-number", "1Z000", "--slug", "ups"])
    assert result.exit_code == 1
    assert "Tracking not found" in result.output


def test_create_tracking_with_custom_fields(runner, fake_api):
    out = _json(
        runner.invoke(
            cli_main.app,
            [
                "create-tracking",
                "--tracking-number",
                "1Z999",
                "--slug",
                "ups",
                "--custom-fields",
                '{"direction":"inbound","vendor":"Acme"}',
            ],
        )
    )
    assert out["custom_fields"] == {"direction": "inbound", "vendor": "Acme"}


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '{"qty": 3}'])
def test_malformed_custom_fields_rejected_before_remote_call(runner, fake_api, raw):
    result = runner.invoke(
        cli_main.app,
        ["create-tracking", "--tracking-number", "1Z999", "--custom-fields", raw],
    )
    assert result.exit_code == 2
    assert fake_api.calls == []


def test_parse_custom_fields():
    assert cli_main.parse_custom_fields(None) is None
    assert cli_main.parse_custom_fields('{"a": "b"}') == {"a": "b"}


# ---------------------------------------------------------------------------
# Mutations and monitoring
# ---------------------------------------------------------------------------


def test_delete_tracking_output(runner, fake_api):
    out = _json(runner.invoke(cli_main.app, ["delete-tracking", "--id", "t1"]))
    assert out == {"success": True, "deleted": "t1"}


def test_mark_completed_default_reason(runner, fake_api):
    runner.invoke(cli_main.app, ["mark-completed", "--id", "t1"])
    assert ("mark_tracking_completed_by_id", ("t1", "DELIVERED")) in fake_api.calls


def test_mark_completed_rejects_unknown_reason(runner, fake_api):
    result = runner.invoke(cli_main.app, ["mark-completed", "--id", "t1", "--reason", "STOLEN"])
    assert result.exit_code == 2


def test_write_invalidates_cached_list(runner, fake_api):
    runner.invoke(cli_main.app, ["list-trackings"])
    runner.invoke(cli_main.app, ["retrack", "--id", "t1"])
    runner.invoke(cli_main.app, ["list-trackings"])
    assert fake_api.count("get_trackings") == 2


def test_find_delayed(runner, fake_api):
    fake_api.trackings = [
        {
            "id": "late",
            "slug": "ups",
            "tag": "InTransit",
            "latest_estimated_delivery": {"datetime": (NOW - timedelta(days=2)).isoformat()},
        }
    ]
    out = _json(runner.invoke(cli_main.app, ["find-delayed"]))
    assert [t["id"] for t in out] == ["late"]


def test_resolve_tracking_not_found(runner, fake_api):
    out = _json(runner.invoke(cli_main.app, ["resolve-tracking", "--tracking-number", "UNKNOWN123"]))
    assert out == {"courier": None, "method": "not-found"}


def test_api_status(runner, fake_api):
    out = _json(runner.invoke(cli_main.app, ["api-status"]))
    assert out["valid"] is True


# ---------------------------------------------------------------------------
# Configuration and cache administration
# ---------------------------------------------------------------------------


def test_missing_api_key_is_fatal(runner, tmp_path, monkeypatch):
    monkeypatch.setenv("AFTERSHIP_CLI_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("AFTERSHIP_CLI_AFTERSHIP__API_KEY", "")
    result = runner.invoke(cli_main.app, ["list-trackings"])
    assert result.exit_code == 1
    assert "aftership.apiKey" in result.output


def test_cache_admin_commands(runner, fake_api):
    runner.invoke(cli_main.app, ["list-couriers"])
    runner.invoke(cli_main.app, ["search-by-order", "--order", "5678"])

    stats = _json(runner.invoke(cli_main.app, ["cache-stats"]))
    assert stats["namespace"] == "aftership-tracking-manager"
    assert stats["entries"] == 2

    invalidated = _json(runner.invoke(cli_main.app, ["cache-invalidate", "--order", "5678"]))
    assert invalidated["invalidated_count"] == 1

    invalidated = _json(runner.invoke(cli_main.app, ["cache-invalidate", "--key", "couriers:all=false"]))
    assert invalidated["invalidated"] is True

    cleared = _json(runner.invoke(cli_main.app, ["cache-clear"]))
    assert cleared == {"success": True, "cleared": 0}


def test_cache_invalidate_requires_target(runner, fake_api):
    result = runner.invoke(cli_main.app, ["cache-invalidate"])
    assert result.exit_code == 2


@pytest.mark.parametrize("command", [["list-trackings"], ["cache-stats"], ["cache-invalidate", "--order", "1"]])
def test_malformed_config_json_is_reported(runner, tmp_path, monkeypatch, command):
    monkeypatch.setenv("AFTERSHIP_CLI_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.json").write_text("{aftership: nope", encoding="utf-8")

    result = runner.invoke(cli_main.app, command)

    assert result.exit_code == 1
    assert not isinstance(result.exception, ValueError)
    assert "Invalid configuration" in result.output


def test_every_invocation_closes_its_cache(runner, fake_api, monkeypatch):
    closed: list[str] = []
    original = ResponseCache.close

    def tracking_close(self):
        closed.append(self.namespace)
        original(self)

    monkeypatch.setattr(ResponseCache, "close", tracking_close)

    runner.invoke(cli_main.app, ["list-couriers"])
    runner.invoke(cli_main.app, ["cache-stats"])
    runner.invoke(cli_main.app, ["get-tracking", "--tracking-number", "1Z000", "--slug", "ups"])

    assert len(closed) == 3
