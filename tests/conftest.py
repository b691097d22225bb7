"""Fake Playwright objects shared by the tests. No real browser is started."""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import pytest


class FakeTimeout(Exception):
    pass


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    @property
    def first(self) -> "FakeLocator":
        return self

    def wait_for(self, state: str = "visible", timeout: Optional[float] = None) -> None:
        self.page.probes.append((self.selector, timeout))
        if self.selector not in self.page.visible:
            raise FakeTimeout(f"{self.selector} not visible within {timeout}ms")

    def screenshot(self, path: str) -> None:
        Path(path).write_bytes(b"\x89PNG fake element")
        self.page.element_shots.append(path)

    def bounding_box(self) -> Optional[Dict[str, float]]:
        return self.page.boxes.get(self.selector, {"x": 10, "y": 20, "width": 300, "height": 200})

    def click(self, position: Optional[Dict[str, float]] = None) -> None:
        self.page.clicks.append((self.selector, position))
        hook = self.page.on_click.get(self.selector)
        if hook:
            hook(self.page)

    def fill(self, value: str) -> None:
        self.page.typed.setdefault(self.selector, "")
        self.page.typed[self.selector] = value

    def press(self, key: str) -> None:
        if len(key) == 1:
            self.page.typed[self.selector] = self.page.typed.get(self.selector, "") + key
        else:
            self.page.keys.append((self.selector, key))

    def press_sequentially(self, text: str, delay: float = 0) -> None:
        self.page.typed[self.selector] = self.page.typed.get(self.selector, "") + text


class FakeMouse:
    def __init__(self) -> None:
        self.wheels: List[int] = []
        self.fail_calls: Set[int] = set()

    def wheel(self, delta_x: float, delta_y: float) -> None:
        call_number = len(self.wheels) + 1
        self.wheels.append(int(delta_y))
        if call_number in self.fail_calls:
            raise RuntimeError("wheel failed")


class FakePage:
    """Enough of playwright.sync_api.Page for the collector's components."""

    def __init__(self, visible: Optional[Set[str]] = None) -> None:
        self.visible: Set[str] = set(visible or ())
        self.url = "about:blank"
        self.probes: List[Any] = []
        self.clicks: List[Any] = []
        self.typed: Dict[str, str] = {}
        self.keys: List[Any] = []
        self.boxes: Dict[str, Dict[str, float]] = {}
        self.on_click: Dict[str, Callable[["FakePage"], None]] = {}
        self.on_goto: Optional[Callable[["FakePage", str], None]] = None
        self.goto_failures: Dict[str, int] = {}
        self.gotos: List[Any] = []
        self.screenshots: List[str] = []
        self.element_shots: List[str] = []
        self.local_storage: Dict[str, Dict[str, str]] = {}
        self.dom_attributes: Dict[str, str] = {}
        self.prompts: List[Dict[str, Any]] = []
        self.prompt_present = False
        self.banners: List[str] = []
        self.routes: List[Any] = []
        self.evaluate_failures: int = 0
        self.mouse = FakeMouse()

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def goto(self, url: str, timeout: Optional[float] = None, wait_until: Optional[str] = None) -> None:
        self.gotos.append((url, timeout))
        remaining = self.goto_failures.get(url, 0)
        if remaining:
            self.goto_failures[url] = remaining - 1
            raise FakeTimeout(f"navigation to {url} timed out")
        self.url = url
        self.prompt_present = False
        if self.on_goto:
            self.on_goto(self, url)

    def screenshot(self, path: str, full_page: bool = False) -> None:
        Path(path).write_bytes(b"\x89PNG fake page")
        self.screenshots.append(path)

    def route(self, pattern: str, handler: Callable) -> None:
        self.routes.append((pattern, handler))

    def unroute(self, pattern: str, handler: Callable) -> None:
        self.routes = [r for r in self.routes if r != (pattern, handler)]

    def operator_clicks_done(self) -> None:
        """Simulate the operator pressing the injected prompt's button."""
        token = self.prompts[-1]["token"]
        self.dom_attributes[self.prompts[-1]["attr"]] = token

    def evaluate(self, script: str, arg: Any = None) -> Any:
        if self.evaluate_failures:
            self.evaluate_failures -= 1
            raise RuntimeError("execution context was destroyed")
        if "localStorage.setItem" in script:
            self.local_storage.setdefault(self.url, {}).update(arg)
            return len(self.local_storage[self.url])
        if "localStorage.clear" in script:
            self.local_storage.pop(self.url, None)
            return True
        if isinstance(arg, dict) and "token" in arg:
            self.prompts.append(dict(arg))
            self.dom_attributes.pop(arg["attr"], None)
            self.prompt_present = True
            return True
        if "getAttribute" in script:
            return self.dom_attributes.get(arg)
        if "!!document.getElementById" in script:
            return self.prompt_present
        if isinstance(arg, dict) and "text" in arg:
            self.banners.append(arg["text"])
            return True
        if isinstance(arg, dict) and "attr" in arg:
            self.prompt_present = False
            self.dom_attributes.pop(arg["attr"], None)
            return True
        return None


class FakeContext:
    def __init__(self, page: FakePage) -> None:
        self.page = page
        self._cookies: List[Dict[str, Any]] = []
        self.clear_calls = 0

    def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        self._cookies.extend(dict(c) for c in cookies)

    def clear_cookies(self) -> None:
        self.clear_calls += 1
        self._cookies = []

    def cookies(self) -> List[Dict[str, Any]]:
        return [dict(c) for c in self._cookies]

    def storage_state(self) -> Dict[str, Any]:
        origins = [
            {"origin": origin, "localStorage": [{"name": k, "value": v} for k, v in entries.items()]}
            for origin, entries in self.page.local_storage.items()
            if entries
        ]
        return {"cookies": self.cookies(), "origins": origins}


class FakeRequest:
    def __init__(self, url: str) -> None:
        self.url = url


class FakeAPIResponse:
    def __init__(self, body: bytes, status: int = 200) -> None:
        self._body = body
        self.status = status

    def body(self) -> bytes:
        return self._body


class FakeRoute:
    def __init__(self, url: str, body: bytes = b"{}", fetch_error: Optional[Exception] = None) -> None:
        self.request = FakeRequest(url)
        self._body = body
        self._fetch_error = fetch_error
        self.fulfilled: List[Any] = []
        self.continued = 0

    def fetch(self) -> FakeAPIResponse:
        if self._fetch_error:
            raise self._fetch_error
        return FakeAPIResponse(self._body)

    def fulfill(self, response: Any = None, **kwargs: Any) -> None:
        self.fulfilled.append(response)

    def continue_(self, **kwargs: Any) -> None:
        self.continued += 1


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []
        self.on_sleep: Optional[Callable[[int], None]] = None

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep:
            self.on_sleep(len(self.sleeps))


@pytest.fixture
def page() -> FakePage:
    return FakePage()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def no_sleep(seconds: float) -> None:
    return None
