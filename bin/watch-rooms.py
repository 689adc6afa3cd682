"""Connect as an observer and log room directory changes until interrupted.

Usage: python bin/watch-rooms.py <user_id> [display_name]

Reads SYNC_* environment variables for the broker address and timings.
"""

import asyncio
import sys
from pathlib import Path

# Add client to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "client"))

import structlog

from app.client import SyncClient
from app.settings import ClientSettings
from shared.logging import setup_logging
from transport.bus import EventCategory
from transport.exceptions import TransportError
from transport.types import Role, Session

logger = structlog.get_logger()


def _log_rooms(rooms: list) -> None:
    for room in rooms:
        logger.info(
            "room",
            room_id=room.room_id,
            name=room.name,
            game_type=room.game_type,
            players=f"{room.current_player_count}/{room.max_players}",
            playing=room.is_playing,
        )


async def main() -> None:
    if len(sys.argv) not in (2, 3):
        print(f"Usage: {sys.argv[0]} <user_id> [display_name]")
        sys.exit(1)

    user_id = sys.argv[1]
    display_name = sys.argv[2] if len(sys.argv) == 3 else user_id

    settings = ClientSettings(plaza_enabled=False)
    setup_logging(log_dir=settings.log_dir)

    async with SyncClient(settings) as client:
        client.on(EventCategory.ROOM_LIST, _log_rooms)
        client.on(EventCategory.CONNECTION_STATUS, lambda status: logger.info("status", state=status.state))
        try:
            await client.connect(Session(user_id=user_id, display_name=display_name, role=Role.OBSERVER))
        except TransportError as e:
            print(f"Error: {e}")
            sys.exit(1)
        await asyncio.Event().wait()


if __name__ == "__main__":
    asyncio.run(main())
