import argparse
import getpass
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gateway.config import resolve_database_path
from gateway.database import Database
from gateway.validation import MIN_PASSWORD_LENGTH, validate_email, validate_password


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an account in the local gateway database")
    parser.add_argument("email", help="Unique email address for the account")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to GATEWAY_DB_PATH or data/gateway.sqlite3)",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if not validate_password(password):
            print(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    email = args.email.strip()
    if not validate_email(email):
        print("Error: Invalid email format", file=sys.stderr)
        return 1

    password = prompt_for_password()

    db_env = args.db_path or os.getenv("GATEWAY_DB_PATH")
    db_path = resolve_database_path(db_env)

    database = Database(db_path)
    database.initialize()

    try:
        user = database.create_user(email, password)
    except ValueError as exc:  # duplicates, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user {user['id']} <{user['email']}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
