from pathlib import Path

from conftest import FakePage

from topads_collector.config_loader import VerificationSettings
from topads_collector.detectors import ChallengeDetector
from topads_collector.models import ChallengeKind

SETTINGS = VerificationSettings(
    probe_timeout_ms=250,
    captcha_image_selectors=("#captcha-verify-image", "img.captcha-a", "img.captcha-b"),
    email_code_selectors=("#code-form", "input[name=code]"),
)


def test_absent_captcha_is_bounded_and_silent(tmp_path: Path) -> None:
    page = FakePage()
    detector = ChallengeDetector(SETTINGS, tmp_path)

    result = detector.detect_captcha(page)

    assert result.present is False
    assert result.kind is None
    assert [selector for selector, _ in page.probes] == list(SETTINGS.captcha_image_selectors)
    # Every probe carries a timeout; total wait is their sum
    assert all(timeout == 250 for _, timeout in page.probes)
    assert sum(timeout for _, timeout in page.probes) == 750
    assert page.element_shots == []


def test_captcha_detection_captures_element(tmp_path: Path) -> None:
    page = FakePage(visible={"img.captcha-b"})
    detector = ChallengeDetector(SETTINGS, tmp_path)

    result = detector.detect_captcha(page)

    assert result.present is True
    assert result.kind == ChallengeKind.CAPTCHA
    assert result.locator == "img.captcha-b"
    assert result.artifact is not None
    artifact = Path(result.artifact)
    assert artifact.exists()
    assert artifact.name.startswith("captcha-detection-")


def test_email_code_detection(tmp_path: Path) -> None:
    detector = ChallengeDetector(SETTINGS, tmp_path)

    assert detector.detect_email_code(FakePage()) is False
    assert detector.detect_email_code(FakePage(visible={"input[name=code]"})) is True

    assert detector.email_code_locator(FakePage(visible={"#code-form"})) == "#code-form"


def test_detector_never_clicks_or_types(tmp_path: Path) -> None:
    page = FakePage(visible={"#captcha-verify-image", "#code-form"})
    detector = ChallengeDetector(SETTINGS, tmp_path)

    detector.detect_captcha(page)
    detector.detect_email_code(page)

    assert page.clicks == []
    assert page.typed == {}
    assert page.gotos == []
