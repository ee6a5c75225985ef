#!/usr/bin/env python3
"""
Create or update a moderator account.

Usage:
  python scripts/create_admin.py --email admin@example.com --name Admin --password s3cret

Any argument left out falls back to ADMIN_EMAIL, ADMIN_NAME and ADMIN_PASSWORD
from the environment (or .env). Running it again for the same email updates the
name and resets the password.
"""

from __future__ import annotations

import argparse
import os
import sys

from dotenv import load_dotenv

# Allow running from repo root
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from anonwall import create_app  # noqa: E402
from anonwall.helpers import create_or_update_admin  # noqa: E402


def main():
    load_dotenv()
    ap = argparse.ArgumentParser(description="Create or update an admin account")
    ap.add_argument("--email", default=os.environ.get("ADMIN_EMAIL"))
    ap.add_argument("--name", default=os.environ.get("ADMIN_NAME", "Admin"))
    ap.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"))
    args = ap.parse_args()

    if not args.email or not args.password:
        ap.error("--email and --password are required (or ADMIN_EMAIL/ADMIN_PASSWORD)")

    os.environ["ANONWALL_SWEEPER"] = "0"
    app = create_app()
    with app.app_context():
        admin = create_or_update_admin(args.email.strip(), args.name, args.password)
        print(f"Admin #{admin.id} <{admin.email}> saved.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
