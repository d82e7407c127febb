from __future__ import annotations

import argparse
import asyncio
import importlib.metadata
import json
import logging
import sys

from .config import CompanionSettings
from .daemon import CompanionDaemon
from .daemon import run as run_daemon


def _get_version() -> str:
    """Get the version from package metadata."""
    try:
        return importlib.metadata.version("companion-thoughts")
    except importlib.metadata.PackageNotFoundError:
        return "0.1.0 (dev)"


async def _preview(entity_id: str, long_session: bool, json_output: bool) -> int:
    settings = CompanionSettings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(message)s")
    daemon = CompanionDaemon(settings)
    try:
        message = await daemon.scheduler.compose(entity_id, long_session_interrupt=long_session)
    finally:
        await daemon.shutdown()

    if message is None:
        print("Could not produce a message; see the log for details.", file=sys.stderr)
        return 1
    if json_output:
        print(json.dumps(message.to_dict(), ensure_ascii=False))
    else:
        method = message.method.value if message.method else "unknown"
        tag = " (fallback)" if message.is_fallback else ""
        print(f"[{method}{tag}] {message.text}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Companion thoughts runtime")
    parser.add_argument(
        "mode",
        choices=["daemon", "preview", "version"],
        nargs="?",
        default="daemon",
    )
    parser.add_argument("--version", "-V", action="store_true", help="Show version and exit")
    parser.add_argument("--json", dest="json_output", action="store_true", help="Emit machine-readable JSON")
    parser.add_argument("--entity", dest="entity_id", default="preview", help="Entity id used by `preview`")
    parser.add_argument(
        "--long-session",
        dest="long_session",
        action="store_true",
        help="When used with `preview`, write a rest reminder instead of a casual thought.",
    )

    args = parser.parse_args()

    if args.version or args.mode == "version":
        print(f"companion-thoughts {_get_version()}")
        return

    if args.mode == "preview":
        raise SystemExit(asyncio.run(_preview(args.entity_id, args.long_session, args.json_output)))

    asyncio.run(run_daemon())


if __name__ == "__main__":
    main()
