"""Data models for Steam Web API, Steam Store and SteamSpy responses."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

PROFILE_URL_TEMPLATE = "https://steamcommunity.com/profiles/{steam_id}"


def private_profile_name(steam_id: str) -> str:
    """Placeholder persona name for a profile whose summary is hidden."""
    return f"Private Profile {steam_id[-4:]}"


@dataclass
class PlayerSummary:
    """Steam player summary (ISteamUser/GetPlayerSummaries)."""

    steam_id: str
    persona_name: str
    profile_url: str = ""
    avatar: str = ""
    avatar_medium: str = ""
    avatar_full: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PlayerSummary":
        """Create from Steam API response."""
        return cls(
            steam_id=str(data["steamid"]),
            persona_name=data.get("personaname", ""),
            profile_url=data.get("profileurl", ""),
            avatar=data.get("avatar", ""),
            avatar_medium=data.get("avatarmedium", ""),
            avatar_full=data.get("avatarfull", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "steamid": self.steam_id,
            "personaname": self.persona_name,
            "profileurl": self.profile_url,
            "avatar": self.avatar,
            "avatarmedium": self.avatar_medium,
            "avatarfull": self.avatar_full,
        }


@dataclass
class OwnedGame:
    """A game in a player's library (IPlayerService/GetOwnedGames)."""

    appid: int
    name: str = ""
    playtime_forever: int = 0

    @property
    def never_played(self) -> bool:
        return self.playtime_forever == 0

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "OwnedGame":
        """Create from Steam API response."""
        return cls(
            appid=int(data["appid"]),
            name=data.get("name", ""),
            playtime_forever=int(data.get("playtime_forever", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "appid": self.appid,
            "name": self.name,
            "playtime_forever": self.playtime_forever,
        }


@dataclass
class Friend:
    """Entry of ISteamUser/GetFriendList."""

    steam_id: str
    relationship: str = "friend"
    friend_since: int = 0

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Friend":
        """Create from Steam API response."""
        return cls(
            steam_id=str(data["steamid"]),
            relationship=data.get("relationship", "friend"),
            friend_since=int(data.get("friend_since", 0)),
        )


@dataclass
class FriendData:
    """Result of verifying one friend's profile and library.

    ``error`` is ``"Private library"`` when the library is hidden and
    ``"Failed to fetch"`` when Steam could not be reached for it.
    """

    steam_id: str
    persona_name: str
    games: list[OwnedGame] | None = None
    error: str | None = None

    @property
    def profile_url(self) -> str:
        return PROFILE_URL_TEMPLATE.format(steam_id=self.steam_id)

    @property
    def total_playtime(self) -> int:
        return sum(g.playtime_forever for g in self.games or [])

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "steamid": self.steam_id,
            "personaname": self.persona_name,
            "profileurl": self.profile_url,
            "games": [g.to_dict() for g in self.games] if self.games is not None else None,
            "error": self.error,
        }


@dataclass
class StoreInfo:
    """Steam Store appdetails fields used for library enrichment.

    ``positive_reviews``/``negative_reviews``/``review_score*`` are only
    present for some apps and stay ``None`` otherwise.
    """

    appid: int
    name: str | None = None
    short_description: str | None = None
    header_image: str | None = None
    release_date: str | None = None
    coming_soon: bool = False
    genres: list[str] = field(default_factory=list)
    metacritic: int | None = None
    recommendations: int | None = None
    developers: list[str] = field(default_factory=list)
    publishers: list[str] = field(default_factory=list)
    positive_reviews: int | None = None
    negative_reviews: int | None = None
    review_score: int | None = None
    review_score_desc: str | None = None

    @classmethod
    def from_api(cls, appid: int, data: dict[str, Any]) -> "StoreInfo":
        """Create from the ``data`` object of a Steam Store appdetails entry."""
        release = data.get("release_date") or {}
        return cls(
            appid=appid,
            name=data.get("name") or None,
            short_description=data.get("short_description") or None,
            header_image=data.get("header_image") or None,
            release_date=release.get("date") or None,
            coming_soon=bool(release.get("coming_soon")),
            genres=[g["description"] for g in data.get("genres") or [] if "description" in g],
            metacritic=(data.get("metacritic") or {}).get("score") or None,
            recommendations=(data.get("recommendations") or {}).get("total") or None,
            developers=list(data.get("developers") or []),
            publishers=list(data.get("publishers") or []),
            positive_reviews=data.get("positive") or None,
            negative_reviews=data.get("negative") or None,
            review_score=data.get("review_score") or None,
            review_score_desc=data.get("review_score_desc") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "appid": self.appid,
            "name": self.name,
            "short_description": self.short_description,
            "header_image": self.header_image,
            "release_date": {"date": self.release_date, "coming_soon": self.coming_soon},
            "genres": self.genres,
            "metacritic": self.metacritic,
            "recommendations": self.recommendations,
            "developers": self.developers,
            "publishers": self.publishers,
            "positive_reviews": self.positive_reviews,
            "negative_reviews": self.negative_reviews,
            "review_score": self.review_score,
            "review_score_desc": self.review_score_desc,
        }


@dataclass
class SteamSpyInfo:
    """Community rating, tags and price from SteamSpy appdetails."""

    appid: int
    rating: int | None = None
    tags: list[str] = field(default_factory=list)
    price: float | None = None
    release_date: str | None = None

    @classmethod
    def from_api(cls, appid: int, data: dict[str, Any]) -> "SteamSpyInfo":
        """Create from a SteamSpy ``request=appdetails`` response.

        ``rating`` is the rounded share of positive reviews, ``tags`` the five
        most-voted tags, and ``price`` the initial price in dollars.
        """
        positive = data.get("positive") or 0
        negative = data.get("negative") or 0
        total = positive + negative
        # Halves round up
        rating = None if total == 0 else math.floor(positive / total * 100 + 0.5)

        tags: list[str] = []
        if isinstance(data.get("tags"), dict):
            ranked = sorted(data["tags"].items(), key=lambda item: item[1], reverse=True)
            tags = [tag for tag, _ in ranked[:5]]

        initial_price = data.get("initialprice")
        price = None if initial_price in (None, "") else int(initial_price) / 100

        release_date = data.get("release_date")
        if isinstance(release_date, int | float) and release_date:
            released = datetime.fromtimestamp(release_date, tz=timezone.utc)
            release_date = f"{released:%b} {released.day}, {released.year}"
        elif not isinstance(release_date, str) or not release_date:
            release_date = None

        return cls(
            appid=appid,
            rating=rating,
            tags=tags,
            price=price,
            release_date=release_date,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "appid": self.appid,
            "rating": self.rating,
            "tags": self.tags,
            "price": self.price,
            "releaseDate": self.release_date,
        }
