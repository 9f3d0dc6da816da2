import json

import pytest
from rich.console import Console
from typer.testing import CliRunner

from netcheck import runner
from netcheck.exchanges import CapturedExchange, CapturedRequest
from netcheck.runner import RunResult, app, load_callable

cli = CliRunner()

BASE = "http://localhost:3000"


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    # Keep Rich from wrapping table cells inside the captured output.
    monkeypatch.setattr(runner, "console", Console(width=300))


@pytest.fixture
def fake_bot(monkeypatch):
    monkeypatch.setattr(runner, "load_callable", lambda target: (lambda page: None))


def fake_run_bot(*exchanges, requests=(), ok=True):
    def run_bot(bot_fn, validator, headless, start_url):
        for req in requests:
            validator.record_request(req)
        for exchange in exchanges:
            validator.record(exchange)
        if not ok:
            return RunResult(ok=False, duration_ms=3, error="Traceback: boom [at step 2]")
        return RunResult(ok=True, duration_ms=3)

    return run_bot


def test_load_callable():
    assert load_callable("os.path:join") is __import__("os").path.join


@pytest.mark.parametrize(
    "target, message",
    [
        ("os.path.join", "module:function"),
        ("os.path:does_not_exist", "not found or not callable"),
        ("os:sep", "not found or not callable"),
    ],
)
def test_load_callable_rejects_bad_targets(target, message):
    with pytest.raises(ValueError, match=message):
        load_callable(target)


def test_routes_command_lists_default_table():
    result = cli.invoke(app, ["routes"])

    assert result.exit_code == 0
    for name in ("campaign_membership_delete", "campaign_membership_create", "users_current", "campaign_membership_delete_by_id", "campaigns_list"):
        assert name in result.output


def test_routes_command_with_file(tmp_path):
    path = tmp_path / "routes.json"
    path.write_text(
        json.dumps({"routes": [{"name": "fights_list", "url": "/api/v2/fights", "method": "GET", "expected_success_status": 200}]})
    )

    result = cli.invoke(app, ["routes", "--routes", str(path)])

    assert result.exit_code == 0
    assert "fights_list" in result.output
    assert "users_current" not in result.output


def test_routes_command_bad_file(tmp_path):
    path = tmp_path / "routes.json"
    path.write_text("{}")

    result = cli.invoke(app, ["routes", "--routes", str(path)])

    assert result.exit_code == runner.EXIT_CONFIG
    assert '"routes" list' in result.output


def test_clean_run_exits_zero(monkeypatch, fake_bot):
    monkeypatch.setattr(
        runner,
        "run_bot",
        fake_run_bot(CapturedExchange(url=f"{BASE}/api/v2/users/current", method="GET", status=200, body="{}")),
    )

    result = cli.invoke(app, ["run", "bots.campaigns:run"])

    assert result.exit_code == 0, result.output
    assert "OK" in result.output
    assert "API Contract - Report" in result.output


def test_violations_exit_one(monkeypatch, fake_bot):
    monkeypatch.setattr(
        runner,
        "run_bot",
        fake_run_bot(CapturedExchange(url=f"{BASE}/api/v2/users/current", method="GET", status=418, body='{"error":"x"}')),
    )

    result = cli.invoke(app, ["run", "bots.campaigns:run"])

    assert result.exit_code == 1
    assert "UNEXPECTED_STATUS_CODE" in result.output
    assert "1 violation(s) at LOW or above" in result.output
    assert "Review API endpoints returning unexpected status codes" in result.output


def test_fail_on_ignores_lower_severities(monkeypatch, fake_bot):
    monkeypatch.setattr(
        runner,
        "run_bot",
        fake_run_bot(
            CapturedExchange(
                url=f"{BASE}/api/v2/campaign_memberships?campaign_id=abc&user_id=xyz",
                method="DELETE",
                status=200,
                body="{}",
            )
        ),
    )

    result = cli.invoke(app, ["run", "bots.campaigns:run", "--fail-on", "high"])
    assert result.exit_code == 0, result.output
    assert "INVALID_UUID_FORMAT" in result.output

    result = cli.invoke(app, ["run", "bots.campaigns:run", "--no-check-uuids"])
    assert result.exit_code == 0, result.output
    assert "INVALID_UUID_FORMAT" not in result.output


def test_check_auth_flags_unauthenticated_requests(monkeypatch, fake_bot):
    monkeypatch.setattr(
        runner,
        "run_bot",
        fake_run_bot(requests=[CapturedRequest(url=f"{BASE}/api/v2/campaigns", method="GET")]),
    )

    assert cli.invoke(app, ["run", "bots.campaigns:run"]).exit_code == 0

    result = cli.invoke(app, ["run", "bots.campaigns:run", "--check-auth"])
    assert result.exit_code == 1
    assert "MISSING_AUTHENTICATION" in result.output


def test_bot_failure_exits_two(monkeypatch, fake_bot):
    monkeypatch.setattr(runner, "run_bot", fake_run_bot(ok=False))

    result = cli.invoke(app, ["run", "bots.campaigns:run"])

    assert result.exit_code == 2
    assert "FAIL" in result.output
    assert "Traceback: boom [at step 2]" in result.output


def test_run_passes_options_to_validator(monkeypatch, fake_bot):
    seen = {}

    def run_bot(bot_fn, validator, headless, start_url):
        seen.update(config=validator.config, headless=headless, start_url=start_url)
        return RunResult(ok=True, duration_ms=1)

    monkeypatch.setattr(runner, "run_bot", run_bot)
    monkeypatch.setenv("NETCHECK_BASE_URL", "https://chiwar.example")

    result = cli.invoke(app, ["run", "bots.campaigns:run", "--headed", "--start-url", "https://chiwar.example/", "--no-bodies"])

    assert result.exit_code == 0, result.output
    assert seen["config"].base_url == "https://chiwar.example"
    assert seen["config"].validate_response_bodies is False
    assert seen["headless"] is False
    assert seen["start_url"] == "https://chiwar.example/"


def test_bad_route_file_exits_before_the_bot_runs(monkeypatch, fake_bot, tmp_path):
    path = tmp_path / "routes.json"
    path.write_text('{"routes": [{"name": "x"}]}')
    calls = []
    monkeypatch.setattr(runner, "run_bot", lambda *args, **kwargs: calls.append(args))

    result = cli.invoke(app, ["run", "bots.campaigns:run", "--routes", str(path)])

    assert result.exit_code == runner.EXIT_CONFIG
    assert calls == []
    assert "missing or has an invalid field" in result.output
