import json
from datetime import datetime, timezone
from pathlib import Path

from conftest import FakePage

from topads_collector.browser_utils import (
    artifact_name,
    first_success,
    first_visible,
    random_pause,
    timestamp_slug,
)
from topads_collector.notifications import DONE_ATTRIBUTE, PromptBridge, show_process_aborted
from topads_collector.run_metrics import RunMetrics

NOON = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)


def test_first_success_skips_raising_and_empty_strategies() -> None:
    def boom():
        raise RuntimeError("selector engine crashed")

    result = first_success([("raises", boom), ("empty", lambda: None), ("false", lambda: False), ("hit", lambda: 7)])

    assert result == ("hit", 7)
    assert first_success([("empty", lambda: None)]) is None


def test_first_visible_probes_in_order(page: FakePage) -> None:
    page.visible = {"#second"}

    assert first_visible(page, ["#first", "#second", "#third"], 250) == "#second"
    assert page.probes == [("#first", 250), ("#second", 250)]


def test_artifact_names_are_filesystem_safe() -> None:
    assert timestamp_slug(NOON) == "2024-05-01T10-00-00-000Z"
    assert artifact_name("ads_response", "en", 1, "json", NOON) == "ads_response_en_page1_2024-05-01T10-00-00-000Z.json"
    assert artifact_name("ads_response", None, None, ".json", NOON) == "ads_response_unknown_page0_2024-05-01T10-00-00-000Z.json"


def test_random_pause_stays_in_range() -> None:
    slept = []

    seconds = random_pause(100, 300, sleep=slept.append)

    assert 0.1 <= seconds <= 0.3
    assert slept == [seconds]
    assert random_pause(500, 500, sleep=slept.append) == 0.5


def test_prompt_bridge_resolves_only_on_its_own_token(page: FakePage) -> None:
    bridge = PromptBridge(page)
    bridge.show(["Solve the puzzle"])

    assert bridge.is_done() is False

    page.dom_attributes[DONE_ATTRIBUTE] = "someone-else"
    assert bridge.is_done() is False

    page.operator_clicks_done()
    assert bridge.is_done() is True

    # Stays resolved even after the attribute is cleared
    bridge.dismiss()
    assert bridge.resolved is True
    assert bridge.is_done() is True


def test_prompt_bridge_reinjects_after_navigation(page: FakePage) -> None:
    bridge = PromptBridge(page, token="fixed")
    bridge.show(["Enter the code"], button_label="I entered it")

    page.goto("https://ads.example.com/next")
    bridge.ensure_visible()

    assert len(page.prompts) == 2
    assert page.prompts[-1]["token"] == "fixed"
    assert page.prompts[-1]["button"] == "I entered it"


def test_process_aborted_banner_and_screenshot(page: FakePage, tmp_path: Path) -> None:
    shot = show_process_aborted(page, RuntimeError("verification timed out"), tmp_path)

    assert shot is not None and shot.exists()
    assert shot.name.startswith("process-aborted-")
    assert page.banners == ["PROCESS ABORTED - Please restart the application"]


def test_run_metrics_write_json(tmp_path: Path) -> None:
    metrics = RunMetrics()
    metrics.inc("records_persisted", 3)
    metrics.inc("records_persisted")
    metrics.set_gauge("required_advances", 5)
    metrics.record_event("verification", state="solved", detail=None)
    metrics.finish("ok")
    metrics.finish("failed")

    path = metrics.write_json(template=str(tmp_path / "metrics_{timestamp}.json"))
    payload = json.loads(path.read_text(encoding="utf-8"))

    assert "{timestamp}" not in path.name
    assert payload["status"] == "ok"
    assert payload["counters"] == {"records_persisted": 4}
    assert payload["gauges"] == {"required_advances": 5}
    assert payload["events"][0]["kind"] == "verification"
    assert "detail" not in payload["events"][0]
