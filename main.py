#!/usr/bin/env python3
"""
PageGate -- Session gateway in front of public and protected static pages.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py check
  python main.py check --wait 30
  python main.py history <subject>
  python main.py history <subject> --limit 50 --json

Environment variables (see core/config.py for the full list):
  FIREBASE_PROJECT_ID     Identity provider project.
  FIREBASE_CLIENT_EMAIL   Service-account email.
  FIREBASE_PRIVATE_KEY    Service-account private key (escaped \\n accepted).
  ENVIRONMENT             "production" marks the session cookie Secure.
  INIT_POLICY             "fail_fast" (default) or "retry".
"""

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from typing import Optional

from activity.store import ActivityStore
from auth.provider import initialize_firebase
from core.config import get_settings
from core.errors import ConfigurationFatal
from core.lifecycle import ProviderLifecycle


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


async def _await_provider(lifecycle: ProviderLifecycle, timeout: float) -> bool:
    await lifecycle.start()
    try:
        return await asyncio.wait_for(lifecycle.wait_ready(), timeout)
    except asyncio.TimeoutError:
        return lifecycle.is_ready
    finally:
        await lifecycle.stop()


def _cmd_check(args: argparse.Namespace) -> int:
    """Readiness check against the initialization state machine.

    With --wait, transient failures are retried (INIT_RETRY_* backoff) until
    the provider is ready or the timeout passes.
    """
    settings = get_settings()
    settings.log_identity_provider_presence()
    lifecycle = ProviderLifecycle(
        lambda: initialize_firebase(settings),
        policy="retry" if args.wait > 0 else "fail_fast",
        retry_base_seconds=settings.init_retry_base_seconds,
        retry_cap_seconds=settings.init_retry_cap_seconds,
    )
    try:
        if args.wait > 0:
            asyncio.run(_await_provider(lifecycle, args.wait))
        else:
            lifecycle.initialize()
    except ConfigurationFatal as exc:
        print(f"  [!] {exc}")
        print(f"  identity_provider={lifecycle.state.value}")
        return 2
    except Exception as exc:
        print(f"  [!] Identity provider initialization failed: {type(exc).__name__}")
        print(f"  identity_provider={lifecycle.state.value}")
        return 1
    print(f"  identity_provider={lifecycle.state.value} attempts={lifecycle.snapshot()['attempts']}")
    return 0 if lifecycle.is_ready else 1


def _cmd_history(args: argparse.Namespace) -> int:
    if args.limit < 1:
        print("  [!] --limit must be at least 1.")
        return 2
    store = ActivityStore(get_settings().activity_db_url)
    try:
        entries = store.history(args.subject, args.limit)
    finally:
        store.close()

    if args.json:
        print(json.dumps([asdict(e) for e in entries], indent=2))
        return 0
    if not entries:
        print(f"  No activity recorded for {args.subject}.")
        return 0
    for e in entries:
        print(f"  {e.recorded_at}  {e.action}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="pagegate",
        description="Session gateway in front of public and protected static pages.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py check
  python main.py history 2b9sKq0aYxQ --limit 10
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the gateway with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    serve.set_defaults(func=_cmd_serve)

    check = sub.add_parser("check", help="Initialize the identity provider client once and report readiness")
    check.add_argument(
        "--wait",
        type=float,
        default=0,
        metavar="SECONDS",
        help="Retry transient failures for up to SECONDS before giving up (default: single attempt)",
    )
    check.set_defaults(func=_cmd_check)

    history = sub.add_parser("history", help="Print a subject's most recent activity, newest first")
    history.add_argument("subject", help="Identity provider user ID")
    history.add_argument("--limit", type=int, default=20, help="Maximum entries to print (default: 20)")
    history.add_argument("--json", action="store_true", help="Output structured JSON")
    history.set_defaults(func=_cmd_history)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
