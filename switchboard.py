#!/usr/bin/env python3
"""Capture, refresh and switch the accounts of the host application."""
import argparse
import logging
import sys
from datetime import datetime

from core.account_switcher import AccountSwitcher
from core.extraction import ExtractionPipeline
from core.oauth_client import OAuthClient, build_session
from core.settings import Settings, load_settings
from core.token_service import TokenService
from stores.factory import build_secret_store, build_state_store

logger = logging.getLogger("switchboard")


def build_services(settings: Settings) -> tuple[TokenService, AccountSwitcher]:
    state_store = build_state_store(settings)
    secrets = build_secret_store(settings)
    oauth_client = OAuthClient(build_session(settings.refresh_retries), settings.token_endpoint, settings.request_timeout)
    pipeline = ExtractionPipeline(state_store)
    return TokenService(settings, oauth_client, secrets, pipeline), AccountSwitcher(state_store, secrets)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="switchboard", description=__doc__)
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("whoami", help="print the account the host has logged in")
    for name, help_text in (
        ("capture", "store the active account's credentials"),
        ("token", "print a usable access token"),
        ("status", "show the credential state"),
        ("forget", "delete stored credentials"),
        ("switch", "make the host log in as this account"),
        ("login-url", "print an OAuth consent URL"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("email")

    authorize = sub.add_parser("authorize", help="exchange an authorization code")
    authorize.add_argument("email")
    authorize.add_argument("code")

    snapshot = sub.add_parser("snapshot", help="manage identity snapshots")
    snapshot_sub = snapshot.add_subparsers(dest="action", required=True)
    snapshot_sub.add_parser("save")
    snapshot_sub.add_parser("list")
    delete = snapshot_sub.add_parser("delete")
    delete.add_argument("email")
    return parser


def _run(args: argparse.Namespace, tokens: TokenService, switcher: AccountSwitcher) -> bool:
    if args.command == "whoami":
        email = tokens.pipeline.current_email()
        if email:
            print(email)
        return email is not None

    if args.command == "capture":
        record = tokens.capture(args.email)
        if record:
            print(f"captured {record.email} (refresh token: {'yes' if record.refresh_token else 'no'})")
        return record is not None

    if args.command == "token":
        token = tokens.get_token(args.email)
        if token:
            print(token)
        return token is not None

    if args.command == "status":
        print(tokens.credential_state(args.email).value)
        return True

    if args.command == "forget":
        tokens.delete_token(args.email)
        return True

    if args.command == "switch":
        result = switcher.switch_to_account(args.email)
        if result.ok:
            print(f"switched to {result.email}; reload the host window to apply")
        else:
            print(f"switch failed: {result.error}", file=sys.stderr)
        return result.ok

    if args.command == "login-url":
        url = tokens.authorization_url(args.email)
        if url:
            print(url)
        return url is not None

    if args.command == "authorize":
        return tokens.authorize_with_code(args.email, args.code) is not None

    if args.action == "save":
        snapshot = switcher.save_snapshot()
        if snapshot:
            print(f"saved snapshot for {snapshot.email}")
        return snapshot is not None
    if args.action == "list":
        for item in switcher.list_snapshots():
            print(f"{item.email}\t{datetime.fromtimestamp(item.saved_at).isoformat(timespec='seconds')}")
        return True
    return switcher.delete_snapshot(args.email)


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s: %(message)s")

    tokens, switcher = build_services(load_settings())
    try:
        ok = _run(args, tokens, switcher)
    except Exception as exc:
        logger.exception("event=command_failed command=%s error=%s", args.command, exc)
        return 1
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
