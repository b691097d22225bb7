import json
from pathlib import Path

from conftest import FakeContext, FakePage, no_sleep

from topads_collector.config_loader import SessionSettings
from topads_collector.session import SessionManager

TARGET = "https://ads.example.com/business/creativecenter/topads"
ORIGIN = "https://ads.example.com"


def _settings(tmp_path: Path) -> SessionSettings:
    return SessionSettings(
        session_file=tmp_path / "session.json",
        target_url=TARGET,
        neutral_url="about:blank",
        replay_attempts=3,
        replay_backoff_ms=(0, 0),
        navigation_timeouts_ms=(100, 200, 300),
        auth_probe_timeout_ms=50,
        auth_settle_ms=0,
        authenticated_selectors=("#avatar", "#user-menu"),
    )


def _cookie(name: str) -> dict:
    return {
        "name": name,
        "value": f"{name}-value",
        "domain": ".example.com",
        "path": "/",
        "expires": -1,
        "httpOnly": True,
        "secure": True,
        "sameSite": "Lax",
    }


def _write_session(path: Path, cookies, origins) -> None:
    path.write_text(json.dumps({"cookies": cookies, "origins": origins}), encoding="utf-8")


def test_restore_two_cookies_without_local_storage(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    _write_session(
        settings.session_file,
        [_cookie("sessionid"), _cookie("csrf")],
        [{"origin": ORIGIN, "localStorage": {}}],
    )
    page = FakePage(visible={"#avatar"})
    context = FakeContext(page)

    restored = SessionManager(context, page, settings, sleep=no_sleep).restore(settings.session_file)

    assert restored is True
    assert [c["name"] for c in context.cookies()] == ["sessionid", "csrf"]
    # Empty localStorage means the origin is never visited for replay
    assert [url for url, _ in page.gotos] == ["about:blank", TARGET]
    assert page.local_storage == {}

    saved = json.loads(settings.session_file.read_text(encoding="utf-8"))
    assert len(saved["cookies"]) == 2
    assert {c["name"] for c in saved["cookies"]} == {"sessionid", "csrf"}


def test_restore_failure_leaves_no_cookies_or_storage(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    _write_session(
        settings.session_file,
        [_cookie("sessionid")],
        [{"origin": ORIGIN, "localStorage": {"token": "abc", "lang": "en"}}],
    )
    original = settings.session_file.read_text(encoding="utf-8")
    page = FakePage(visible=set())
    context = FakeContext(page)

    restored = SessionManager(context, page, settings, sleep=no_sleep).restore(settings.session_file)

    assert restored is False
    assert context.cookies() == []
    assert page.local_storage == {}
    assert settings.session_file.read_text(encoding="utf-8") == original


def test_restore_tries_three_navigations_with_growing_timeouts(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    _write_session(settings.session_file, [_cookie("sessionid")], [])
    page = FakePage(visible=set())
    page.goto_failures[TARGET] = 1
    context = FakeContext(page)

    SessionManager(context, page, settings, sleep=no_sleep).restore(settings.session_file)

    target_timeouts = [timeout for url, timeout in page.gotos if url == TARGET]
    assert target_timeouts == [100, 200, 300]


def test_restore_fails_fast_without_cookies(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    _write_session(settings.session_file, [], [{"origin": ORIGIN, "localStorage": {"k": "v"}}])
    page = FakePage(visible={"#avatar"})
    context = FakeContext(page)

    restored = SessionManager(context, page, settings, sleep=no_sleep).restore(settings.session_file)

    assert restored is False
    assert all(url != TARGET for url, _ in page.gotos)
    assert page.local_storage == {}


def test_restore_missing_or_corrupt_file(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    page = FakePage(visible={"#avatar"})
    context = FakeContext(page)
    context.add_cookies([_cookie("stale")])
    manager = SessionManager(context, page, settings, sleep=no_sleep)

    assert manager.restore(tmp_path / "missing.json") is False
    assert context.cookies() == []

    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json", encoding="utf-8")
    assert manager.restore(corrupt) is False


def test_origin_replay_retries_then_tolerates_partial_failure(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    flaky = "https://flaky.example.com"
    broken = "https://broken.example.com"
    _write_session(
        settings.session_file,
        [_cookie("sessionid")],
        [
            {"origin": flaky, "localStorage": {"a": "1"}},
            {"origin": broken, "localStorage": {"b": "2"}},
            {"origin": flaky, "localStorage": {"ignored": "dup"}},
        ],
    )
    page = FakePage(visible={"#user-menu"})
    page.goto_failures[flaky] = 2
    page.goto_failures[broken] = 10
    context = FakeContext(page)

    restored = SessionManager(context, page, settings, sleep=no_sleep).restore(settings.session_file)

    assert restored is True
    assert page.local_storage[flaky] == {"a": "1"}
    assert broken not in page.local_storage
    assert [url for url, _ in page.gotos].count(broken) == 3


def test_persist_writes_session_file_format(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    page = FakePage()
    page.local_storage[ORIGIN] = {"token": "abc"}
    context = FakeContext(page)
    context.add_cookies([_cookie("sessionid")])

    path = SessionManager(context, page, settings).persist(tmp_path / "out" / "session.json")

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["cookies"][0]["name"] == "sessionid"
    assert saved["cookies"][0]["httpOnly"] is True
    assert saved["origins"] == [{"origin": ORIGIN, "localStorage": {"token": "abc"}}]


def test_verified_session_survives_save_failure(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    _write_session(settings.session_file, [_cookie("sessionid")], [])
    page = FakePage(visible={"#avatar"})
    context = FakeContext(page)
    manager = SessionManager(context, page, settings, sleep=no_sleep)

    def read_only_disk(path=None):
        raise PermissionError("read-only file system")

    manager.persist = read_only_disk

    assert manager.restore(settings.session_file) is True
    assert [c["name"] for c in context.cookies()] == ["sessionid"]
