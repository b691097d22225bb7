#!/usr/bin/env python3

"""
Session Setup - log in by hand once and save the session file
"""

import argparse
import sys
from pathlib import Path

from playwright.sync_api import sync_playwright

from .config_loader import load_config
from .session import SessionManager


def setup_session(config_path: str = "config/settings.yaml") -> int:
    """Open a headed browser for a manual login, then persist the session"""
    config = load_config(config_path)
    settings = config.get_session_settings()
    session_path = Path(settings.session_file)

    print("\n" + "="*60)
    print("🔐 SESSION SETUP")
    print("="*60)
    print(f"\nSession file: {session_path}")
    print("\nThis will open a browser window.")
    print("1. Log in to the Creative Center with your email and password")
    print("2. Solve the CAPTCHA and enter the email code if prompted")
    print("3. Wait until your avatar shows in the header")
    print("4. Press Enter here when done")
    print("\n" + "="*60 + "\n")

    with sync_playwright() as p:
        browser = p.chromium.launch(
            headless=False,
            args=[
                "--disable-blink-features=AutomationControlled",
                "--disable-dev-shm-usage",
                "--no-first-run",
                "--no-default-browser-check",
            ],
        )
        context = browser.new_context(viewport={"width": 1280, "height": 800})
        page = context.new_page()

        print("🌐 Opening Creative Center...")
        page.goto(settings.target_url)

        input("\n✋ Log in and clear any verification, then press Enter...")

        manager = SessionManager(context, page, settings)
        saved = manager.is_authenticated()
        if not saved:
            print("\n⚠️  No logged-in header found. Try:")
            print("   - Finish the email code step")
            print("   - Reload the page once logged in")
            print("   - Run this command again")
        else:
            manager.persist(session_path)
            print(f"\n✅ Session saved to {session_path}")
            print("\n   You can now run topads-collector!")

        context.close()
        browser.close()

    return 0 if saved else 1


def cli() -> None:
    parser = argparse.ArgumentParser(description="Save a logged-in Creative Center session")
    parser.add_argument("--config", default="config/settings.yaml", help="Path to settings.yaml")
    args = parser.parse_args()
    sys.exit(setup_session(args.config))


if __name__ == "__main__":
    cli()
