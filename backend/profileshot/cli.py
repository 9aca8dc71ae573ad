"""Command-line entry points for ProfileShot.

Usage:
    python -m profileshot.cli screenshot https://www.linkedin.com/in/someone
    python -m profileshot.cli screenshot linkedin.com/in/someone --out me.png --visible
    python -m profileshot.cli verify-browser
"""

import argparse
import asyncio
import json
import logging
import shutil
import sys


def _setup_logging(verbose: bool = False):
    from profileshot.core.logging_config import configure_logging

    configure_logging(log_format="text", log_level="DEBUG" if verbose else "WARNING")
    # configure_logging writes to stdout; keep stdout clean for the JSON result
    for handler in logging.getLogger().handlers:
        handler.setStream(sys.stderr)


def _cli_settings(args):
    from profileshot.config import settings

    update = {}
    if getattr(args, "visible", False):
        update["BROWSER_HEADLESS"] = False
    if getattr(args, "fast", False):
        update["HUMAN_PACING"] = False
    # A one-shot run has nothing to space out
    update["PROFILE_REQUEST_DELAY_MS"] = 0
    return settings.model_copy(update=update)


async def _cmd_screenshot(args) -> int:
    """Capture one profile with a private session."""
    from profileshot.services.profile import build_profile_fetcher

    fetcher = build_profile_fetcher(_cli_settings(args))
    try:
        result = await fetcher.fetch_profile_screenshot(args.url)
    finally:
        await fetcher.shutdown()

    if result.success and args.out:
        shutil.copyfile(result.screenshot_path, args.out)
        result.screenshot_path = args.out

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


async def _cmd_verify_browser(args) -> int:
    """Launch and close a throwaway browser."""
    from profileshot.services.browser import BrowserProvider

    provider = BrowserProvider(_cli_settings(args))
    try:
        version = await provider.verify_setup()
    except Exception as exc:
        print(json.dumps({"ok": False, "error": str(exc)}, indent=2))
        return 1
    finally:
        await provider.shutdown()

    print(json.dumps({"ok": True, "version": version}, indent=2))
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="profileshot",
        description="ProfileShot CLI: LinkedIn profile screenshots from the command line",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # --- screenshot ---
    shot_parser = subparsers.add_parser("screenshot", help="Screenshot a profile")
    shot_parser.add_argument("url", help="LinkedIn profile URL")
    shot_parser.add_argument("--out", default=None, help="Copy the screenshot to this path")
    shot_parser.add_argument(
        "--visible", action="store_true", help="Run the browser in a visible window"
    )
    shot_parser.add_argument(
        "--fast", action="store_true", help="Skip randomized human pacing pauses"
    )

    # --- verify-browser ---
    subparsers.add_parser("verify-browser", help="Check that Chromium can be launched")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _setup_logging(args.verbose)

    if args.command == "screenshot":
        sys.exit(asyncio.run(_cmd_screenshot(args)))
    elif args.command == "verify-browser":
        sys.exit(asyncio.run(_cmd_verify_browser(args)))


if __name__ == "__main__":
    main()
