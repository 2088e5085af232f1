"""Steam Web API and Steam Store client built on the request queue."""

from never_played.steam.client import (
    SteamAPIError,
    SteamClient,
    SteamConfigurationError,
    SteamNotFoundError,
    SteamPrivateProfileError,
)
from never_played.steam.models import (
    Friend,
    FriendData,
    OwnedGame,
    PlayerSummary,
    SteamSpyInfo,
    StoreInfo,
)

__all__ = [
    "Friend",
    "FriendData",
    "OwnedGame",
    "PlayerSummary",
    "SteamAPIError",
    "SteamClient",
    "SteamConfigurationError",
    "SteamNotFoundError",
    "SteamPrivateProfileError",
    "SteamSpyInfo",
    "StoreInfo",
]
