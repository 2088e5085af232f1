"""Command-line entry point for never-played.

Looks up Steam data through the shared request queue and prints JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

import httpx

from never_played.config import get_settings
from never_played.logging import get_logger, setup_logging
from never_played.queue.errors import RequestQueueError
from never_played.queue.models import RequestPriority
from never_played.steam.client import SteamAPIError, SteamClient


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="never-played",
        description="Fetch Steam player, library, friends, store and rating data",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Override LOG_LEVEL for this run",
    )
    parser.add_argument(
        "--high-priority",
        action="store_true",
        help="Submit requests at HIGH priority",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    player = sub.add_parser("player", help="Show a player's summary")
    player.add_argument("steam_id")

    library = sub.add_parser("library", help="List a player's games")
    library.add_argument("steam_id")
    library.add_argument(
        "--unplayed", action="store_true", help="Only list games with no playtime"
    )
    library.add_argument(
        "--include-free", action="store_true", help="Include played free-to-play games"
    )

    friends = sub.add_parser("friends", help="List a player's friends")
    friends.add_argument("steam_id")
    friends.add_argument(
        "--verify", action="store_true", help="Also fetch each friend's name and library"
    )

    store = sub.add_parser("store", help="Show store details for an app")
    store.add_argument("appid", type=int)

    rating = sub.add_parser("rating", help="Show SteamSpy rating, tags and price for an app")
    rating.add_argument("appid", type=int)

    return parser


async def execute(client: SteamClient, args: argparse.Namespace) -> Any:
    """Run the selected command and return a JSON-serialisable result."""
    priority = RequestPriority.HIGH if args.high_priority else RequestPriority.LOW

    if args.command == "player":
        return (await client.get_player_summary(args.steam_id, priority)).to_dict()

    if args.command == "library":
        games = await client.get_owned_games(
            args.steam_id, priority, include_free=args.include_free
        )
        if args.unplayed:
            games = [g for g in games if g.never_played]
        return [g.to_dict() for g in games]

    if args.command == "friends":
        friends = await client.get_friend_list(args.steam_id, priority)
        if not args.verify:
            return [{"steamid": f.steam_id, "friend_since": f.friend_since} for f in friends]
        verified = await client.verify_friends([f.steam_id for f in friends], priority)
        return {
            "totalFriends": len(verified),
            "friendsWithGames": sum(1 for f in verified if f.games),
            "friendsWithPrivateLibraries": sum(
                1 for f in verified if f.error == "Private library"
            ),
            "friends": [f.to_dict() for f in verified],
        }

    if args.command == "store":
        return (await client.get_app_details(args.appid, priority)).to_dict()

    if args.command == "rating":
        return (await client.get_steamspy_info(args.appid, priority)).to_dict()

    raise ValueError(f"Unknown command: {args.command}")


async def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    log = get_logger("never_played.main")

    try:
        client = SteamClient.from_settings(get_settings())
    except SteamAPIError as e:
        log.error("steam_client_unavailable", error=str(e))
        return 1

    try:
        result = await execute(client, args)
    except (SteamAPIError, RequestQueueError, httpx.HTTPError) as e:
        log.error(
            "command_failed",
            command=args.command,
            error=str(e),
            error_type=type(e).__name__,
        )
        return 1
    finally:
        log.debug("request_queue_stats", **client.queue.get_stats().to_dict())
        await client.close()

    print(json.dumps(result, indent=2))
    return 0


def run() -> None:
    """Run the application."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
