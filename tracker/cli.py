"""
Command line entry points.

    tracker hash-password          print an Argon2id hash for a prompted password
    tracker create-user NAME       create a user account
    tracker serve                  run the API with uvicorn
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from tracker.auth import PasswordParams, create_user, hash_password
from tracker.config import get_settings
from tracker.database import SessionLocal, configure_engine, init_db


def _prompt_password() -> str:
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        sys.exit("Passwords do not match")
    if not password:
        sys.exit("Password must not be empty")
    return password


def cmd_hash_password(args):
    settings = get_settings()
    print(hash_password(_prompt_password(), PasswordParams.from_settings(settings)))


def cmd_create_user(args):
    settings = get_settings()
    engine = configure_engine(settings.database_url)
    init_db(engine)

    db = SessionLocal()
    try:
        user = create_user(
            db,
            args.username,
            _prompt_password(),
            person_name=args.name or args.username,
            params=PasswordParams.from_settings(settings),
        )
    except IntegrityError:
        sys.exit(f"User {args.username} already exists")
    finally:
        db.close()
    print(f"Created user {user.username} with id {user.user_id}")


def cmd_serve(args):
    import uvicorn
    uvicorn.run(
        "tracker.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tracker", description="Transaction tracker administration")
    commands = parser.add_subparsers(dest="command", required=True)

    hash_cmd = commands.add_parser("hash-password", help="Print an Argon2id hash")
    hash_cmd.set_defaults(func=cmd_hash_password)

    user_cmd = commands.add_parser("create-user", help="Create a user account")
    user_cmd.add_argument("username")
    user_cmd.add_argument("--name", help="Display name shown to connected users")
    user_cmd.set_defaults(func=cmd_create_user)

    serve_cmd = commands.add_parser("serve", help="Run the HTTP server")
    serve_cmd.add_argument("--host", default="0.0.0.0")
    serve_cmd.add_argument("--port", type=int, default=8000)
    serve_cmd.add_argument("--reload", action="store_true")
    serve_cmd.set_defaults(func=cmd_serve)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
