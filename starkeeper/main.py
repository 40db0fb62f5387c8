"""Maintenance entry point.

    python -m starkeeper.main generate-activation-codes
    python -m starkeeper.main backfill-star-positions
    python -m starkeeper.main serve [--host 0.0.0.0] [--port 8000]
"""
import argparse
import datetime
import logging
import random
import secrets
from typing import Optional, Sequence

from sqlmodel import Session, or_, select

from .config import configure_logging, load_settings
from .constants import ACTIVATION_CODE_ALPHABET, ACTIVATION_CODE_LENGTH
from .db import init_db
from .db_helpers import session_scope
from .models import Star, User
from .placement import allocate_spawn_position

logger = logging.getLogger(__name__)


def _new_activation_code(session: Session, rng: random.Random) -> str:
    while True:
        code = ''.join(rng.choice(ACTIVATION_CODE_ALPHABET) for _ in range(ACTIVATION_CODE_LENGTH))
        if session.exec(select(User.id).where(User.activation_code == code)).first() is None:
            return code
        logger.debug("Activation code collision; drawing another")


def generate_activation_codes(engine, rng: Optional[random.Random] = None) -> int:
    """Give every user without an activation code a unique one. Returns how many were assigned."""
    rng = rng or secrets.SystemRandom()
    assigned = 0
    with session_scope(engine) as session:
        users = session.exec(select(User).where(User.activation_code == None)).all()  # noqa: E711
        logger.info("%d user(s) without activation code", len(users))
        for user in users:
            user.activation_code = _new_activation_code(session, rng)
            user.updated_at = datetime.datetime.now(datetime.timezone.utc)
            session.add(user)
            # Commit per user so the uniqueness check sees earlier assignments.
            session.commit()
            assigned += 1
            logger.info("Assigned activation code to %s", user.username)
    return assigned


def backfill_star_positions(engine, rng: Optional[random.Random] = None) -> int:
    """Place every star that has no coordinate yet. Returns how many were placed."""
    rng = rng or random.Random()
    placed = 0
    with session_scope(engine) as session:
        stars = session.exec(
            select(Star).where(or_(Star.x == None, Star.y == None, Star.z == None))  # noqa: E711
        ).all()
        logger.info("%d star(s) without position", len(stars))
        for star in stars:
            star.x, star.y, star.z = allocate_spawn_position(session, rng)
            session.add(star)
            session.commit()
            placed += 1
    logger.info("Position added to %d star(s)", placed)
    return placed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="starkeeper")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("generate-activation-codes", help="assign activation codes to users without one")
    sub.add_parser("backfill-star-positions", help="assign spawn coordinates to stars without one")
    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    configure_logging(settings)

    if args.command == "serve":
        import uvicorn
        uvicorn.run("starkeeper.app:app", host=args.host, port=args.port, log_config=None)
        return 0

    engine = init_db(settings.database_url)
    if args.command == "generate-activation-codes":
        count = generate_activation_codes(engine)
        logger.info("Generated %d activation code(s)", count)
    elif args.command == "backfill-star-positions":
        backfill_star_positions(engine)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
