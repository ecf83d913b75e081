#!/usr/bin/env python3
"""Give a user the admin role (idempotent).

Usage:
  python scripts/promote_admin.py --email someone@school.local
"""

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.community.constants import ROLE_ADMIN
from app.community.models import User
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="Email of the user to promote")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///community.db").strip()
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email.ilike(args.email.strip())).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            return
        if user.role == ROLE_ADMIN:
            print(f"User is already an admin: {args.email}")
            return
        user.role = ROLE_ADMIN
        print(f"Admin role granted to {args.email}")


if __name__ == "__main__":
    main()
