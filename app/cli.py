"""
Chat maintenance CLI

Usage:
    python -m app.cli sweep-presence                # take stale members offline
    python -m app.cli cleanup-moderations [--room]  # clear expired mutes and bans
    python -m app.cli list-moderations [--room]     # show active mutes and bans
    python -m app.cli clear-cache [--room]          # drop cached entries
    python -m app.cli warm-cache [--room]           # precompute room list, stats, online lists
"""

import argparse
import json
import sys
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.clock import SystemClock
from app.core.config import settings
from app.core.logging import get_logger, setup_logging
from app.database.cache_store import MemoryCacheStore, RedisCacheStore
from app.database.redis import close_redis, init_redis
from app.database.sql import SessionLocal, init_db
from app.services import ChatServices, build_services
from app.services.broadcast import NullBroadcastPublisher, RedisBroadcastPublisher

logger = get_logger(__name__)


def open_services(backend: str) -> ChatServices:
    clock = SystemClock()
    if backend == "redis":
        client = init_redis()
        return build_services(RedisCacheStore(client), RedisBroadcastPublisher(client), clock)
    return build_services(MemoryCacheStore(clock), NullBroadcastPublisher(log_events=True), clock)


def sweep_presence(services: ChatServices, db: Session, args) -> Dict:
    return services.maintenance.sweep_presence(db)


def cleanup_moderations(services: ChatServices, db: Session, args) -> Dict:
    return services.maintenance.cleanup_moderations(db, args.room)


def list_moderations(services: ChatServices, db: Session, args) -> List[Dict]:
    return services.moderation.list_active_restrictions(db, args.room)


def clear_cache(services: ChatServices, db: Session, args) -> Dict:
    return services.maintenance.clear_cache(args.room)


def warm_cache(services: ChatServices, db: Session, args) -> Dict:
    return services.maintenance.warm_cache(db, args.room)


COMMANDS: Dict[str, Callable] = {
    "sweep-presence": sweep_presence,
    "cleanup-moderations": cleanup_moderations,
    "list-moderations": list_moderations,
    "clear-cache": clear_cache,
    "warm-cache": warm_cache,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chat maintenance tasks")
    parser.add_argument(
        "--backend", choices=["redis", "memory"], default=settings.cache_backend,
        help="Cache backend (default: CACHE_BACKEND setting)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("sweep-presence", help="Take members with stale heartbeats offline")
    for name, help_text in [
        ("cleanup-moderations", "Clear mutes and bans whose end time has passed"),
        ("list-moderations", "List active mutes and bans"),
        ("clear-cache", "Drop cached entries for one room or the whole chat namespace"),
        ("warm-cache", "Precompute the room list, room stats and online lists"),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--room", type=int, default=None, help="Limit to one room id")

    return parser


def main(argv: Optional[List[str]] = None, services: Optional[ChatServices] = None,
         session_factory=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    if services is None:
        init_db()
        services = open_services(args.backend)
    session_factory = session_factory or SessionLocal

    db = session_factory()
    try:
        result = COMMANDS[args.command](services, db, args)
    except Exception as e:
        logger.error(f"Command {args.command} failed: {e}")
        print(f"{args.command} failed: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()
        if args.backend == "redis":
            close_redis()

    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
