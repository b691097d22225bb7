#!/usr/bin/env python3

"""
Top Ads Collector - Main Entry Point
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .config_loader import VERIFICATION_MODES, ConfigValidationError, load_config
from .orchestrator import EXIT_FAILED, TopAdsCollector


def setup_logging(config) -> None:
    """Configure logging for the application"""
    log_file = config.get_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, config.get_log_level(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file}")


def display_config(config) -> None:
    """Display loaded configuration"""
    logger = logging.getLogger(__name__)
    session = config.get_session_settings()
    verification = config.get_verification_settings()
    collection = config.get_collection_settings()
    storage = config.get_storage_settings()
    paths = config.get_path_settings()

    print("\n" + "="*60)
    print("🤖 TOP ADS COLLECTOR - Configuration Loaded")
    print("="*60)

    print(f"\n🎯 Target: {config.get_start_url()}")
    print(f"🔐 Credentials: {'set' if config.get_credentials().is_complete() else 'MISSING'}")
    print(f"🍪 Session file: {session.session_file}")

    print(f"\n⚙️  BROWSER SETTINGS:")
    print(f"  Headless mode: {config.is_headless()}")
    print(f"  Page timeout: {config.get_page_timeout()/1000}s")
    print(f"  Stealth: {config.use_stealth()}")

    print(f"\n🧩 VERIFICATION:")
    print(f"  Mode: {verification.mode}")
    print(f"  CAPTCHA solver: {'configured' if config.get_captcha_api_key() else 'not configured'}")
    print(f"  Mail service: {config.get_mail_base_url() or 'not configured'}")
    print(f"  Overall timeout: {verification.overall_timeout_seconds:.0f}s")

    print(f"\n📜 COLLECTION:")
    print(f"  Default advances: {collection.default_advances}")
    print(f"  Advance delay: {collection.advance_delay_ms[0]}-{collection.advance_delay_ms[1]}ms")

    print(f"\n💾 OUTPUT:")
    print(f"  Storage: {storage.backend} ({storage.connection})")
    print(f"  API responses: {paths.api_responses_dir}")
    print(f"  Screenshots: {paths.screenshots_dir}")

    print("\n" + "="*60 + "\n")

    logger.info("Config validated: mode=%s storage=%s", verification.mode, storage.backend)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Top Ads Collector")
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to config YAML",
    )
    parser.add_argument(
        "--mode",
        choices=VERIFICATION_MODES,
        help="Override verification.mode",
    )
    headless = parser.add_mutually_exclusive_group()
    headless.add_argument("--headless", dest="headless", action="store_true", default=None,
                          help="Run the browser headless")
    headless.add_argument("--headed", dest="headless", action="store_false",
                          help="Show the browser window")
    parser.add_argument(
        "--session-file",
        help="Override session.file",
    )
    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict:
    return {
        "verification.mode": args.mode,
        "browser.headless": args.headless,
        "session.file": args.session_file,
    }


def install_sigint_handler(cancel_event: threading.Event) -> None:
    """First Ctrl+C requests a graceful stop, the second one interrupts."""
    def handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        print("\n⚠️  Stop requested - finishing current step (Ctrl+C again to force)")
        logging.getLogger(__name__).warning("Cancellation requested")
        cancel_event.set()

    signal.signal(signal.SIGINT, handler)


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function"""
    print("\n🚀 Starting Top Ads Collector...")
    args = parse_args(argv)
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Load configuration
    try:
        config = load_config(args.config, overrides=build_overrides(args))
    except FileNotFoundError as e:
        print(f"❌ Error: {e}")
        print("Make sure config/settings.yaml exists!")
        return EXIT_FAILED
    except ConfigValidationError as e:
        print(f"❌ Invalid configuration: {e}")
        return EXIT_FAILED
    except Exception as e:
        print(f"❌ Error loading config: {e}")
        return EXIT_FAILED

    # Setup logging
    setup_logging(config)
    logger = logging.getLogger(__name__)

    # Display configuration
    display_config(config)

    if not config.get_credentials().is_complete():
        logger.warning("Login credentials not set; only a saved session can be used")

    cancel_event = threading.Event()
    install_sigint_handler(cancel_event)

    collector = TopAdsCollector(config, cancel_event=cancel_event)
    exit_code = collector.run()

    logger.info("Run finished with exit code %s", exit_code)
    return exit_code


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
