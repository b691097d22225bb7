import json
from pathlib import Path

import pytest
from conftest import FakePage, no_sleep

from topads_collector.config_loader import ConfigLoader
from topads_collector.main import build_overrides, parse_args
from topads_collector.orchestrator import (
    EXIT_ABORTED,
    EXIT_CANCELLED,
    EXIT_FAILED,
    EXIT_OK,
    LoginFailed,
    TopAdsCollector,
)
from topads_collector.verification import VerificationAborted, VerificationState

REPO_CONFIG = Path(__file__).resolve().parent.parent / "config" / "settings.yaml"


@pytest.fixture
def collector(tmp_path: Path) -> TopAdsCollector:
    config = ConfigLoader(
        str(REPO_CONFIG),
        overrides={
            "paths.screenshots": str(tmp_path / "shots"),
            "paths.api_responses": str(tmp_path / "responses"),
            "metrics.output_template": str(tmp_path / "metrics_{timestamp}.json"),
            "storage.connection": str(tmp_path / "ads.sqlite3"),
        },
    )
    instance = TopAdsCollector(config, sleep=no_sleep)

    def fake_start():
        instance.page = FakePage()

    instance.start_browser = fake_start
    instance.collect = lambda: 3
    return instance


def _metrics(tmp_path: Path) -> dict:
    files = list(tmp_path.glob("metrics_*.json"))
    assert len(files) == 1
    return json.loads(files[0].read_text(encoding="utf-8"))


def test_successful_run_exits_zero_and_writes_metrics(collector: TopAdsCollector, tmp_path: Path) -> None:
    collector.authenticate = lambda: None

    assert collector.run() == EXIT_OK
    assert _metrics(tmp_path)["status"] == "ok"


def test_verification_abort_exits_two_with_banner(collector: TopAdsCollector, tmp_path: Path) -> None:
    def authenticate():
        raise VerificationAborted("captcha not solved", state=VerificationState.CAPTCHA_MANUAL_WAIT)

    collector.authenticate = authenticate

    assert collector.run() == EXIT_ABORTED
    assert collector.page.banners
    assert _metrics(tmp_path)["status"] == "aborted"


def test_cancelled_verification_exits_130(collector: TopAdsCollector, tmp_path: Path) -> None:
    def authenticate():
        raise VerificationAborted("cancelled", state=VerificationState.EMAIL_MANUAL_WAIT, cancelled=True)

    collector.authenticate = authenticate

    assert collector.run() == EXIT_CANCELLED
    assert _metrics(tmp_path)["status"] == "cancelled"


def test_cancel_during_collection_exits_130(collector: TopAdsCollector) -> None:
    collector.authenticate = lambda: None

    def collect():
        collector.cancel_event.set()
        return 1

    collector.collect = collect

    assert collector.run() == EXIT_CANCELLED


def test_login_failure_exits_one(collector: TopAdsCollector, tmp_path: Path) -> None:
    def authenticate():
        raise LoginFailed("login form could not be completed")

    collector.authenticate = authenticate

    assert collector.run() == EXIT_FAILED
    assert _metrics(tmp_path)["status"] == "login_failed"


def test_unexpected_error_exits_one(collector: TopAdsCollector, tmp_path: Path) -> None:
    def authenticate():
        raise RuntimeError("browser crashed")

    collector.authenticate = authenticate

    assert collector.run() == EXIT_FAILED
    assert list((tmp_path / "shots").glob("run-failed-*.png"))


def test_cli_flags_become_config_overrides() -> None:
    args = parse_args(["--mode", "automatic", "--headless", "--session-file", "s.json"])

    assert build_overrides(args) == {
        "verification.mode": "automatic",
        "browser.headless": True,
        "session.file": "s.json",
    }
    assert build_overrides(parse_args([]))["browser.headless"] is None
    assert build_overrides(parse_args(["--headed"]))["browser.headless"] is False

    with pytest.raises(SystemExit):
        parse_args(["--headless", "--headed"])


def test_collect_scrolls_default_budget_and_records_stored_count(tmp_path: Path) -> None:
    config = ConfigLoader(
        str(REPO_CONFIG),
        overrides={
            "paths.screenshots": str(tmp_path / "shots"),
            "paths.api_responses": str(tmp_path / "responses"),
            "storage.connection": str(tmp_path / "ads.sqlite3"),
        },
    )
    collector = TopAdsCollector(config, sleep=no_sleep)
    collector.page = FakePage()

    try:
        completed = collector.collect()
    finally:
        collector.registry.close_all()

    assert completed == 20
    assert collector.page.routes and collector.page.routes[0][0] == config.get_collection_settings().api_url_pattern
    assert collector.metrics.gauges["records_stored"] == 0
