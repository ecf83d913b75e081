import os
import secrets
import string
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.community.constants import GRADES, ROLE_ADMIN, SCOPE_GLOBAL, SCOPE_GRADE, SCOPE_SECTION, SECTION_LETTERS
from app.community.models import User
from app.community.modules.scopes.models import Scope
from app.community.modules.scopes.service import get_global_scope
from scripts._db_utils import script_session

_CODE_ALPHABET = string.ascii_letters + string.digits


def _new_access_code() -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(10))


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the scope tree (global, grades 1-6, sections A-E) and the first admin, idempotently.
    Existing scopes keep their access codes; an existing admin keeps its password.
    """
    admin_username = (os.environ.get("ADMIN_USERNAME") or "admin").strip()
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@school.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///community.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    created: list[tuple[str, str]] = []
    with script_session(db_url) as s:
        if get_global_scope(s) is None:
            s.add(Scope(name="Public Square", type=SCOPE_GLOBAL))

        for grade in GRADES:
            if not s.query(Scope).filter(Scope.type == SCOPE_GRADE, Scope.grade_number == grade).count():
                code = _new_access_code()
                s.add(Scope(name=f"Grade {grade}", type=SCOPE_GRADE, grade_number=grade, access_code=code))
                created.append((f"Grade {grade}", code))
            for letter in SECTION_LETTERS:
                section = f"{grade}-{letter}"
                if not s.query(Scope).filter(Scope.type == SCOPE_SECTION, Scope.section_name == section).count():
                    code = _new_access_code()
                    s.add(Scope(name=f"Class {section}", type=SCOPE_SECTION, section_name=section, access_code=code))
                    created.append((f"Class {section}", code))

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                username=admin_username,
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                name="Administrator",
                role=ROLE_ADMIN,
                is_active=True,
            )
            s.add(user)
        elif user.role != ROLE_ADMIN:
            user.role = ROLE_ADMIN

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    if created:
        print("New scope access codes (share with each class; shown once):")
        for name, code in created:
            print(f"  {name}: {code}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
