"""Async Steam Web API, Steam Store and SteamSpy client on the request queue.

Every outbound call is submitted to a shared :class:`RequestQueue`, so the
number of concurrent Steam requests stays bounded and transient failures
(network errors, 5xx, 429, HTML throttle pages) are retried with backoff.
User-triggered lookups should pass ``RequestPriority.HIGH`` so they overtake
background verification work.
"""

from __future__ import annotations

import asyncio
from typing import Any

from never_played.config import Settings, get_settings
from never_played.http.attempt import HttpAttempt, HttpTarget
from never_played.logging import get_logger
from never_played.queue.errors import ClientRequestError
from never_played.queue.manager import RequestQueue
from never_played.queue.models import RequestPriority
from never_played.steam.models import (
    Friend,
    FriendData,
    OwnedGame,
    PlayerSummary,
    SteamSpyInfo,
    StoreInfo,
    private_profile_name,
)

log = get_logger("never_played.steam.client")

STEAM_API_BASE = "https://api.steampowered.com"
STEAM_STORE_BASE = "https://store.steampowered.com"
STEAMSPY_BASE = "https://steamspy.com"


class SteamAPIError(Exception):
    """Base exception for Steam client errors."""

    def __init__(self, message: str, steam_id: str | None = None):
        super().__init__(message)
        self.steam_id = steam_id


class SteamConfigurationError(SteamAPIError):
    """Raised when the client cannot be configured (e.g. no API key)."""

    pass


class SteamNotFoundError(SteamAPIError):
    """Player or app does not exist (or is unavailable in the store)."""

    pass


class SteamPrivateProfileError(SteamAPIError):
    """Profile, library or friends list is private."""

    pass


class SteamClient:
    """Steam client whose requests all flow through one :class:`RequestQueue`.

    The queue must perform attempts with :class:`HttpAttempt` (or any
    callable that accepts an :class:`HttpTarget` and returns an
    ``httpx.Response``).
    """

    def __init__(
        self,
        queue: RequestQueue,
        api_key: str,
        *,
        attempt: HttpAttempt | None = None,
        api_base_url: str = STEAM_API_BASE,
        store_base_url: str = STEAM_STORE_BASE,
        steamspy_base_url: str = STEAMSPY_BASE,
    ):
        """Initialize the Steam client.

        Args:
            queue: Shared request queue.
            api_key: Steam Web API key.
            attempt: The queue's attempt callable, closed by :meth:`close`.
            api_base_url: Steam Web API base URL.
            store_base_url: Steam Store base URL.
            steamspy_base_url: SteamSpy base URL.

        Raises:
            SteamConfigurationError: If no API key is given.
        """
        if not api_key:
            raise SteamConfigurationError("Steam API key not configured")
        self._queue = queue
        self._api_key = api_key
        self._attempt = attempt
        self._api_base_url = api_base_url.rstrip("/")
        self._store_base_url = store_base_url.rstrip("/")
        self._steamspy_base_url = steamspy_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SteamClient:
        """Build a client, its queue and its HTTP attempt from settings."""
        settings = settings or get_settings()
        if settings.steam_api_key is None:
            raise SteamConfigurationError("Steam API key not configured")
        attempt = HttpAttempt(timeout=settings.http_timeout_seconds)
        queue = RequestQueue.from_settings(settings, perform=attempt)
        return cls(
            queue,
            settings.steam_api_key.get_secret_value(),
            attempt=attempt,
            api_base_url=settings.steam_api_base_url,
            store_base_url=settings.steam_store_base_url,
            steamspy_base_url=settings.steamspy_base_url,
        )

    @property
    def queue(self) -> RequestQueue:
        """The shared request queue."""
        return self._queue

    async def close(self) -> None:
        """Wait for in-flight requests and close the HTTP client."""
        await self._queue.drain()
        if self._attempt is not None:
            await self._attempt.close()

    async def _get_json(
        self,
        url: str,
        params: dict[str, Any],
        priority: RequestPriority,
    ) -> dict[str, Any]:
        """Submit a GET to the queue and decode its JSON object body.

        Raises:
            SteamAPIError: The body is not JSON, or not a JSON object
                (the store answers ``null`` for some app IDs).
        """
        response = await self._queue.submit(HttpTarget(url=url, params=params), priority)
        try:
            data = response.json()
        except ValueError as e:
            raise SteamAPIError(f"Malformed JSON from {url}") from e
        if not isinstance(data, dict):
            raise SteamAPIError(f"Unexpected JSON from {url}: expected an object")
        return data

    def _api_params(self, **params: Any) -> dict[str, Any]:
        return {"key": self._api_key, "format": "json", **params}

    # ========== Players ==========

    async def get_player_summary(
        self,
        steam_id: str,
        priority: RequestPriority = RequestPriority.HIGH,
    ) -> PlayerSummary:
        """Get a player's public summary.

        Raises:
            SteamNotFoundError: No player with this ID.
        """
        data = await self._get_json(
            f"{self._api_base_url}/ISteamUser/GetPlayerSummaries/v2/",
            self._api_params(steamids=steam_id),
            priority,
        )
        players = (data.get("response") or {}).get("players") or []
        if not players:
            raise SteamNotFoundError("Player not found", steam_id=steam_id)
        return PlayerSummary.from_api(players[0])

    async def get_owned_games(
        self,
        steam_id: str,
        priority: RequestPriority = RequestPriority.HIGH,
        include_free: bool = False,
    ) -> list[OwnedGame]:
        """Get a player's game library.

        Raises:
            SteamPrivateProfileError: The profile or its library is private,
                or the Steam ID is invalid.
        """
        params = self._api_params(steamid=steam_id, include_appinfo=1)
        if include_free:
            params["include_played_free_games"] = 1
        data = await self._get_json(
            f"{self._api_base_url}/IPlayerService/GetOwnedGames/v1/",
            params,
            priority,
        )
        response = data.get("response")
        if response is None:
            raise SteamPrivateProfileError(
                "Profile may be private or the Steam ID is invalid", steam_id=steam_id
            )
        if "games" not in response:
            raise SteamPrivateProfileError("Profile is private", steam_id=steam_id)
        return [OwnedGame.from_api(g) for g in response["games"]]

    async def get_friend_list(
        self,
        steam_id: str,
        priority: RequestPriority = RequestPriority.HIGH,
    ) -> list[Friend]:
        """Get a player's friends.

        Raises:
            SteamPrivateProfileError: The friends list is private or empty.
        """
        try:
            data = await self._get_json(
                f"{self._api_base_url}/ISteamUser/GetFriendList/v1/",
                self._api_params(steamid=steam_id, relationship="friend"),
                priority,
            )
        except ClientRequestError as e:
            if e.status_code in (401, 403):
                raise SteamPrivateProfileError(
                    "Friends list is private", steam_id=steam_id
                ) from e
            raise

        friends = (data.get("friendslist") or {}).get("friends")
        if not friends:
            raise SteamPrivateProfileError("Friends list is empty or private", steam_id=steam_id)
        return [Friend.from_api(f) for f in friends]

    async def verify_friend(
        self,
        steam_id: str,
        priority: RequestPriority = RequestPriority.LOW,
    ) -> FriendData:
        """Fetch a friend's persona name and library.

        Per-friend failures are recorded on the result instead of raised.
        """
        summary, games = await asyncio.gather(
            self.get_player_summary(steam_id, priority),
            self.get_owned_games(steam_id, priority),
            return_exceptions=True,
        )

        if isinstance(summary, PlayerSummary) and summary.persona_name:
            persona_name = summary.persona_name
        else:
            persona_name = private_profile_name(steam_id)
            if isinstance(summary, BaseException) and not isinstance(summary, SteamAPIError):
                log.warning("friend_summary_failed", steam_id=steam_id, error=str(summary))

        friend = FriendData(steam_id=steam_id, persona_name=persona_name)
        if isinstance(games, SteamPrivateProfileError):
            friend.error = "Private library"
        elif isinstance(games, BaseException):
            friend.error = "Failed to fetch"
            log.warning(
                "friend_library_failed",
                steam_id=steam_id,
                error=str(games),
                error_type=type(games).__name__,
            )
        else:
            friend.games = games

        log.debug(
            "friend_verified",
            steam_id=steam_id,
            games=len(friend.games or []),
            error=friend.error,
        )
        return friend

    async def verify_friends(
        self,
        steam_ids: list[str],
        priority: RequestPriority = RequestPriority.LOW,
    ) -> list[FriendData]:
        """Verify several friends; results keep the input order."""
        results = await asyncio.gather(*(self.verify_friend(s, priority) for s in steam_ids))
        log.info(
            "friends_verified",
            total=len(results),
            with_games=sum(1 for f in results if f.games),
        )
        return list(results)

    # ========== Store ==========

    async def get_app_details(
        self,
        appid: int,
        priority: RequestPriority = RequestPriority.LOW,
    ) -> StoreInfo:
        """Get store metadata for an app.

        Raises:
            SteamNotFoundError: The app is region-locked, removed or unreleased.
        """
        data = await self._get_json(
            f"{self._store_base_url}/api/appdetails",
            {"appids": appid},
            priority,
        )
        entry = data.get(str(appid)) or {}
        if not entry.get("success") or not entry.get("data"):
            raise SteamNotFoundError(f"App {appid} not found or unavailable")
        return StoreInfo.from_api(appid, entry["data"])

    # ========== SteamSpy ==========

    async def get_steamspy_info(
        self,
        appid: int,
        priority: RequestPriority = RequestPriority.LOW,
    ) -> SteamSpyInfo:
        """Get the community rating, top tags and price for an app from SteamSpy."""
        data = await self._get_json(
            f"{self._steamspy_base_url}/api.php",
            {"request": "appdetails", "appid": appid},
            priority,
        )
        return SteamSpyInfo.from_api(appid, data)
