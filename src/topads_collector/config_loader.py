"""
Configuration loader for the top-ads collector
Reads and validates settings.yaml, then builds the per-component settings
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

VERIFICATION_MODES = ("automatic", "manual_fallback", "manual_only")
STORAGE_BACKENDS = ("sqlite", "jsonl")

DEFAULT_START_URL = "https://ads.tiktok.com/business/creativecenter/inspiration/topads/pc/en"
DEFAULT_API_PATTERN = "**/creative_radar_api/v1/top_ads/v2/list**"

DEFAULT_AUTHENTICATED_SELECTORS = [
    'div[data-testid="cc_header_userInfo"]',
    'div[id="HeaderLoginUserProfile"]',
    'div[class*="UserDropDown_trigger"]',
    'div[class*="DefaultAvatar_wrapper"]',
    'img[class*="avatar"]',
]

DEFAULT_CAPTCHA_IMAGE_SELECTORS = [
    "#captcha-verify-image",
    "img.sc-gqjmRU",
    "img.cHbGdz",
    "img.sc-ifAKCX",
    "img.itlNmx",
]

DEFAULT_EMAIL_CODE_SELECTORS = [
    "div.tiktokads-common-login-code-form",
    "#TikTok_Ads_SSO_Login_Code_Content",
    "#TikTok_Ads_SSO_Login_Code_Input",
    'input[placeholder="Enter verification code"]',
]

DEFAULT_EMAIL_INPUT_SELECTORS = [
    "#TikTok_Ads_SSO_Login_Code_Input",
    'input[placeholder="Enter verification code"]',
    'input[name="code"]',
]

DEFAULT_EMAIL_SUBMIT_SELECTORS = [
    "#TikTok_Ads_SSO_Login_Code_Btn",
    "#TikTok_Ads_SSO_Login_Btn",
    'button[type="submit"]',
    'button:has-text("Log in")',
]


class ConfigValidationError(ValueError):
    """Raised when configuration fails invariant validation."""
    pass


def _validate_non_negative(value: Any, field: str) -> None:
    """Validate that a numeric value is non-negative."""
    if value is not None and float(value) < 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be non-negative, got {value}"
        )


def _validate_positive(value: Any, field: str) -> None:
    """Validate that a numeric value is positive (> 0)."""
    if value is not None and float(value) <= 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be positive (> 0), got {value}"
        )


def _validate_min_max_pair(min_val: Any, max_val: Any, min_field: str, max_field: str) -> None:
    """Validate that min_val <= max_val for a delay/range pair."""
    if min_val is not None and max_val is not None:
        if float(min_val) > float(max_val):
            raise ConfigValidationError(
                f"Invalid config: '{min_field}' ({min_val}) must be <= '{max_field}' ({max_val})"
            )


def _validate_choice(value: Any, field: str, choices: Tuple[str, ...]) -> None:
    if value is not None and str(value).strip().lower() not in choices:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be one of {', '.join(choices)}, got {value}"
        )


# === Settings handed to components ===

class SessionSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_file: Path = Path("storage/session.json")
    target_url: str = DEFAULT_START_URL
    neutral_url: str = "about:blank"
    replay_attempts: int = 3
    replay_backoff_ms: Tuple[int, int] = (500, 1500)
    navigation_timeouts_ms: Tuple[int, ...] = (30000, 45000, 60000)
    auth_probe_timeout_ms: int = 2000
    auth_settle_ms: int = 3000
    authenticated_selectors: Tuple[str, ...] = tuple(DEFAULT_AUTHENTICATED_SELECTORS)


class VerificationSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: str = "manual_fallback"
    overall_timeout_seconds: float = 3600.0
    manual_poll_interval_seconds: float = 10.0
    captcha_max_attempts: int = 2
    probe_timeout_ms: int = 1000
    click_pause_ms: int = 500
    post_click_wait_ms: int = 2000
    email_max_attempts: int = 5
    email_poll_interval_seconds: float = 5.0
    captcha_image_selectors: Tuple[str, ...] = tuple(DEFAULT_CAPTCHA_IMAGE_SELECTORS)
    email_code_selectors: Tuple[str, ...] = tuple(DEFAULT_EMAIL_CODE_SELECTORS)
    email_input_selectors: Tuple[str, ...] = tuple(DEFAULT_EMAIL_INPUT_SELECTORS)
    email_submit_selectors: Tuple[str, ...] = tuple(DEFAULT_EMAIL_SUBMIT_SELECTORS)

    @property
    def allows_automatic(self) -> bool:
        return self.mode in ("automatic", "manual_fallback")

    @property
    def allows_manual(self) -> bool:
        return self.mode in ("manual_fallback", "manual_only")


class CollectionSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_url_pattern: str = DEFAULT_API_PATTERN
    default_advances: int = 20
    scroll_steps: Tuple[int, int] = (10, 20)
    step_pixels: Tuple[int, int] = (100, 400)
    step_delay_ms: Tuple[int, int] = (600, 1500)
    advance_delay_ms: Tuple[int, int] = (2000, 3000)
    screenshot_every: int = 5
    settle_seconds: float = 5.0


class StorageSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    backend: str = "sqlite"
    connection: str = "storage/ads.sqlite3"


class PathSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    screenshots_dir: Path = Path("storage/screenshots")
    api_responses_dir: Path = Path("storage/api-responses")


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str = ""
    password: str = Field(default="", repr=False)

    def is_complete(self) -> bool:
        return bool(self.email and self.password)


class ConfigLoader:
    """Loads and validates configuration from YAML file"""

    def __init__(self, config_path: str = "config/settings.yaml", overrides: Optional[Dict[str, Any]] = None):
        self.config_path = Path(config_path)
        self.config: Dict[str, Any] = {}
        self._load()
        for key, value in (overrides or {}).items():
            if value is not None:
                self.set(key, value)
        self._validate_invariants()

    def _load(self) -> None:
        """Load config from YAML file"""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
            logger.info(f"✓ Config loaded from {self.config_path}")
        except yaml.YAMLError as e:
            logger.error(f"Error parsing config file: {e}")
            raise

    def _validate_invariants(self) -> None:
        """Validate configuration invariants. Raises ConfigValidationError on failure."""
        # Browser
        _validate_positive(self.get('browser.page_timeout'), 'browser.page_timeout')
        _validate_positive(self.get('browser.navigation_timeout'), 'browser.navigation_timeout')
        _validate_positive(self.get('browser.launch_timeout'), 'browser.launch_timeout')

        # Session restore
        _validate_positive(self.get('session.replay_attempts'), 'session.replay_attempts')
        _validate_positive(self.get('session.auth_probe_timeout_ms'), 'session.auth_probe_timeout_ms')
        _validate_non_negative(self.get('session.auth_settle_ms'), 'session.auth_settle_ms')
        for value in self.get('session.navigation_timeouts_ms') or []:
            _validate_positive(value, 'session.navigation_timeouts_ms')

        # Verification
        _validate_choice(self.get('verification.mode'), 'verification.mode', VERIFICATION_MODES)
        _validate_positive(self.get('verification.overall_timeout_seconds'), 'verification.overall_timeout_seconds')
        _validate_positive(self.get('verification.manual_poll_interval_seconds'), 'verification.manual_poll_interval_seconds')
        _validate_positive(self.get('verification.captcha_max_attempts'), 'verification.captcha_max_attempts')
        _validate_positive(self.get('verification.email_max_attempts'), 'verification.email_max_attempts')
        _validate_non_negative(self.get('verification.email_poll_interval_seconds'), 'verification.email_poll_interval_seconds')
        _validate_positive(self.get('verification.probe_timeout_ms'), 'verification.probe_timeout_ms')

        # Collection ranges
        for name in ('scroll_steps', 'step_pixels', 'step_delay_ms', 'advance_delay_ms'):
            low = self.get(f'collection.{name}_min')
            high = self.get(f'collection.{name}_max')
            _validate_non_negative(low, f'collection.{name}_min')
            _validate_non_negative(high, f'collection.{name}_max')
            _validate_min_max_pair(low, high, f'collection.{name}_min', f'collection.{name}_max')
        _validate_positive(self.get('collection.screenshot_every'), 'collection.screenshot_every')
        _validate_positive(self.get('collection.default_advances'), 'collection.default_advances')
        _validate_non_negative(self.get('collection.settle_seconds'), 'collection.settle_seconds')

        # Storage
        _validate_choice(self.get('storage.backend'), 'storage.backend', STORAGE_BACKENDS)

        logger.debug("✓ Config invariants validated")

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value by dot notation (e.g., 'verification.mode')"""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set config value by dot notation, creating sections as needed"""
        keys = key.split('.')
        node = self.config
        for k in keys[:-1]:
            child = node.get(k)
            if not isinstance(child, dict):
                child = {}
                node[k] = child
            node = child
        node[keys[-1]] = value

    def _range(self, section: str, name: str, default: Tuple[int, int]) -> Tuple[int, int]:
        low = self.get(f'{section}.{name}_min', default[0])
        high = self.get(f'{section}.{name}_max', default[1])
        return int(low), int(high)

    def _selectors(self, key: str, default: List[str]) -> Tuple[str, ...]:
        values = self.get(key) or default
        return tuple(str(v) for v in values if str(v).strip())

    # === Target ===

    def get_start_url(self) -> str:
        return self.get('target.start_url', DEFAULT_START_URL)

    # === Credentials (env only) ===

    def get_credentials(self) -> Credentials:
        """Read login credentials from the env vars named in config"""
        email_env = self.get('credentials.email_env', 'TOPADS_EMAIL')
        password_env = self.get('credentials.password_env', 'TOPADS_PASSWORD')
        return Credentials(
            email=(os.getenv(email_env) or "").strip(),
            password=os.getenv(password_env) or "",
        )

    # === Browser ===

    def is_headless(self) -> bool:
        return bool(self.get('browser.headless', False))

    def get_page_timeout(self) -> int:
        return int(self.get('browser.page_timeout', 30000))

    def get_navigation_timeout(self) -> int:
        return int(self.get('browser.navigation_timeout', 60000))

    def get_launch_timeout(self) -> int:
        return int(self.get('browser.launch_timeout', 60000))

    def get_browser_channel(self) -> str:
        return (self.get('browser.channel', '') or '').strip()

    def get_browser_executable_path(self) -> str:
        return (self.get('browser.executable_path', '') or '').strip()

    def get_user_agent(self) -> str:
        return (self.get('browser.user_agent', '') or '').strip()

    def use_stealth(self) -> bool:
        return bool(self.get('browser.stealth', False))

    # === Captcha / mail services ===

    def get_captcha_base_url(self) -> str:
        return self.get('captcha.base_url', 'https://www.sadcaptcha.com/api/v1')

    def get_captcha_api_key_env(self) -> str:
        """Get env var name that contains the captcha licence key."""
        return (self.get('captcha.api_key_env', '') or 'SAD_CAPTCHA_API_KEY').strip() or 'SAD_CAPTCHA_API_KEY'

    def get_captcha_api_key(self) -> str:
        """Read captcha licence key from env (never stored in config)."""
        return (os.getenv(self.get_captcha_api_key_env()) or "").strip()

    def get_captcha_request_timeout(self) -> int:
        return int(self.get('captcha.request_timeout_seconds', 30))

    def get_mail_base_url(self) -> str:
        return (self.get('mail.base_url', '') or os.getenv('EMAIL_API_BASE_URL') or '').strip()

    def get_mail_token(self) -> str:
        env_name = (self.get('mail.token_env', '') or 'EMAIL_API_TOKEN').strip()
        return (os.getenv(env_name) or "").strip()

    def get_mail_request_timeout(self) -> int:
        return int(self.get('mail.request_timeout_seconds', 15))

    # === Component settings ===

    def get_session_settings(self) -> SessionSettings:
        timeouts = self.get('session.navigation_timeouts_ms') or [30000, 45000, 60000]
        return SessionSettings(
            session_file=Path(self.get('session.file', 'storage/session.json')),
            target_url=self.get_start_url(),
            neutral_url=self.get('session.neutral_url', 'about:blank'),
            replay_attempts=int(self.get('session.replay_attempts', 3)),
            replay_backoff_ms=self._range('session', 'replay_backoff_ms', (500, 1500)),
            navigation_timeouts_ms=tuple(int(v) for v in timeouts),
            auth_probe_timeout_ms=int(self.get('session.auth_probe_timeout_ms', 2000)),
            auth_settle_ms=int(self.get('session.auth_settle_ms', 3000)),
            authenticated_selectors=self._selectors('session.authenticated_selectors', DEFAULT_AUTHENTICATED_SELECTORS),
        )

    def get_verification_settings(self) -> VerificationSettings:
        return VerificationSettings(
            mode=str(self.get('verification.mode', 'manual_fallback')).strip().lower(),
            overall_timeout_seconds=float(self.get('verification.overall_timeout_seconds', 3600)),
            manual_poll_interval_seconds=float(self.get('verification.manual_poll_interval_seconds', 10)),
            captcha_max_attempts=int(self.get('verification.captcha_max_attempts', 2)),
            probe_timeout_ms=int(self.get('verification.probe_timeout_ms', 1000)),
            click_pause_ms=int(self.get('verification.click_pause_ms', 500)),
            post_click_wait_ms=int(self.get('verification.post_click_wait_ms', 2000)),
            email_max_attempts=int(self.get('verification.email_max_attempts', 5)),
            email_poll_interval_seconds=float(self.get('verification.email_poll_interval_seconds', 5)),
            captcha_image_selectors=self._selectors('verification.captcha_image_selectors', DEFAULT_CAPTCHA_IMAGE_SELECTORS),
            email_code_selectors=self._selectors('verification.email_code_selectors', DEFAULT_EMAIL_CODE_SELECTORS),
            email_input_selectors=self._selectors('verification.email_input_selectors', DEFAULT_EMAIL_INPUT_SELECTORS),
            email_submit_selectors=self._selectors('verification.email_submit_selectors', DEFAULT_EMAIL_SUBMIT_SELECTORS),
        )

    def get_collection_settings(self) -> CollectionSettings:
        return CollectionSettings(
            api_url_pattern=self.get('collection.api_url_pattern', DEFAULT_API_PATTERN),
            default_advances=int(self.get('collection.default_advances', 20)),
            scroll_steps=self._range('collection', 'scroll_steps', (10, 20)),
            step_pixels=self._range('collection', 'step_pixels', (100, 400)),
            step_delay_ms=self._range('collection', 'step_delay_ms', (600, 1500)),
            advance_delay_ms=self._range('collection', 'advance_delay_ms', (2000, 3000)),
            screenshot_every=int(self.get('collection.screenshot_every', 5)),
            settle_seconds=float(self.get('collection.settle_seconds', 5)),
        )

    def get_storage_settings(self) -> StorageSettings:
        backend = str(self.get('storage.backend', 'sqlite')).strip().lower()
        default_connection = "storage/ads.sqlite3" if backend == "sqlite" else "storage/ads-jsonl"
        return StorageSettings(
            backend=backend,
            connection=str(self.get('storage.connection', default_connection)),
        )

    def get_path_settings(self) -> PathSettings:
        return PathSettings(
            screenshots_dir=Path(self.get('paths.screenshots', 'storage/screenshots')),
            api_responses_dir=Path(self.get('paths.api_responses', 'storage/api-responses')),
        )

    # === Metrics / logging ===

    def get_metrics_template(self) -> str:
        return self.get('metrics.output_template', 'storage/run_metrics_{timestamp}.json')

    def get_log_level(self) -> str:
        """Get logging level"""
        return str(self.get('logging.level', 'INFO')).upper()

    def get_log_file(self) -> Path:
        """Get log file path with timestamp"""
        template = self.get('logging.log_file', 'logs/topads_collector.log')
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        filename = template.replace('{timestamp}', timestamp)
        return Path(filename)

    def __repr__(self) -> str:
        return (
            f"<Config: start_url={self.get_start_url()}, "
            f"mode={self.get('verification.mode', 'manual_fallback')}, "
            f"storage={self.get('storage.backend', 'sqlite')}>"
        )


# Convenience function
def load_config(config_path: str = "config/settings.yaml", overrides: Optional[Dict[str, Any]] = None) -> ConfigLoader:
    """Load configuration from file"""
    return ConfigLoader(config_path, overrides=overrides)
