#!/usr/bin/env python3
"""Create an efhub admin account, or promote an existing player to admin."""

from __future__ import annotations

import argparse
import getpass
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sqlalchemy import select

from efhub.db.models import Player
from efhub.db.session import get_session
from efhub.errors import EfhubError
from efhub.players.auth import register_player
from efhub.players.phone import normalize_phone


def main() -> int:
    parser = argparse.ArgumentParser(description="Create or promote an admin account")
    parser.add_argument("--phone", required=True, help="Mobile number, e.g. 0712345678")
    parser.add_argument("--efootball-id", default=None, help="Handle for a new account")
    parser.add_argument(
        "--password",
        default=None,
        help="Password for a new account (omit to be prompted securely)",
    )
    args = parser.parse_args()

    phone = normalize_phone(args.phone)
    if phone is None:
        print(f"Invalid phone number: {args.phone}", file=sys.stderr)
        return 1

    with get_session() as session:
        player = session.scalars(select(Player).where(Player.phone == phone)).first()
        if player is not None:
            player.role = "admin"
            print(f"Promoted player id={player.id} ({player.efootball_id}) to admin")
            return 0

        if not args.efootball_id:
            print("--efootball-id is required for a new account.", file=sys.stderr)
            return 1
        password = args.password
        if password is None:
            password = getpass.getpass("Password: ")
            confirm = getpass.getpass("Confirm password: ")
            if password != confirm:
                print("Passwords do not match.", file=sys.stderr)
                return 1
        try:
            admin = register_player(session, phone, args.efootball_id, password, role="admin")
        except EfhubError as exc:
            print(exc.message, file=sys.stderr)
            return 1
        print(f"Admin ready: id={admin.id}, efootball_id={admin.efootball_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
