"""Command line entry point: ``python -m run_tracker <command>``."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Optional, Sequence

from .auth import exchange_code
from .config import TOKEN_FILE, WEB_HOST, WEB_PORT
from .errors import AuthRefreshFailed, FetchFailed, TokenExchangeFailed
from .models import Credential
from .service import RunTrackerService
from .token_store import FileTokenStore, MemoryTokenStore


def _setup_logging(verbose: bool = False) -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def _print_json(payload: Any) -> None:
    json.dump(payload, sys.stdout, indent=2)
    sys.stdout.write("\n")


def _load_credential(store: FileTokenStore) -> Optional[Credential]:
    credential = store.load()
    if credential is None:
        credential = MemoryTokenStore().load()
    if credential is None:
        logging.error(
            "No credential found in %s and STRAVA_REFRESH_TOKEN is unset; run 'authorize' first",
            store.path,
        )
    return credential


def _cmd_sync(args: argparse.Namespace) -> int:
    store = FileTokenStore(args.token_file)
    credential = _load_credential(store)
    if credential is None:
        return 1
    service = RunTrackerService.from_config()
    try:
        runs, _ = service.get_runs(credential, store.save)
        if args.command == "locations":
            _print_json(service.run_locations(runs))
        else:
            _print_json([run.to_dict() for run in runs])
    except AuthRefreshFailed as exc:
        logging.error("Not authenticated: %s", exc)
        return 1
    except FetchFailed as exc:
        logging.error("Sync failed: %s", exc)
        return 1
    return 0


def _cmd_authorize(args: argparse.Namespace) -> int:
    try:
        credential = exchange_code(args.code)
    except TokenExchangeFailed as exc:
        logging.error("Authorisation failed: %s", exc)
        return 1
    FileTokenStore(args.token_file).save(credential)
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:  # pragma: no cover - blocking
    from .web import serve

    serve(args.host, args.port)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="run_tracker", description="Strava run sync and cache"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument(
        "--token-file",
        default=TOKEN_FILE,
        help="JSON file holding the Strava credential (default: %(default)s)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sync", help="Sync the run cache and print runs as JSON").set_defaults(
        handler=_cmd_sync
    )
    sub.add_parser(
        "locations", help="Sync, then print the city/country of each run"
    ).set_defaults(handler=_cmd_sync)

    authorize = sub.add_parser(
        "authorize", help="Exchange an OAuth authorisation code and save the tokens"
    )
    authorize.add_argument("--code", required=True, help="Code from the OAuth redirect")
    authorize.set_defaults(handler=_cmd_authorize)

    serve = sub.add_parser("serve", help="Run the JSON API server")
    serve.add_argument("--host", default=WEB_HOST)
    serve.add_argument("--port", type=int, default=WEB_PORT)
    serve.set_defaults(handler=_cmd_serve)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(list(argv) if argv is not None else None)
    _setup_logging(args.verbose)
    return int(args.handler(args))
