"""Catalog lookups used by distribution and royalty ingestion."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Protocol


@dataclass(slots=True, frozen=True)
class ReleaseTrack:
    track_id: str
    title: str
    isrc: str | None = None
    artist: str | None = None
    duration_s: int | None = None
    explicit: bool = False
    audio_file_url: str | None = None
    holder_id: str | None = None


@dataclass(slots=True, frozen=True)
class Release:
    release_id: str
    title: str
    primary_artist: str
    tracks: tuple[ReleaseTrack, ...] = ()
    release_date: date | None = None
    genre: str | None = None
    label: str | None = None
    catalog_number: str | None = None
    upc: str | None = None
    holder_id: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class TrackRef:
    """Canonical track identity resolved from a report line."""

    track_id: str
    release_id: str
    holder_id: str
    title: str | None = None
    artist: str | None = None


class CatalogResolver(Protocol):
    def get_release(self, release_id: str) -> Release | None | Awaitable[Release | None]:
        """Return the release with its tracks or ``None`` when unknown."""

    def find_track(
        self,
        *,
        isrc: str | None,
        title: str | None,
        artist: str | None,
    ) -> TrackRef | None | Awaitable[TrackRef | None]:
        """Resolve a track by ISRC first, then by title and artist."""


def validate_release_for_distribution(release: Release) -> list[str]:
    """Return a list of problems that prevent ``release`` from being delivered."""

    errors: list[str] = []
    if not (release.title or "").strip():
        errors.append("release title is missing")
    if not (release.primary_artist or "").strip():
        errors.append("primary artist is missing")
    if not release.tracks:
        errors.append("release has no tracks")
    for index, track in enumerate(release.tracks, start=1):
        if not (track.title or "").strip():
            errors.append(f"track {index} has no title")
    return errors


def _identity_key(title: str | None, artist: str | None) -> tuple[str, str] | None:
    if not title or not artist:
        return None
    return title.strip().casefold(), artist.strip().casefold()


class InMemoryCatalog:
    """Catalog backed by a fixed set of releases."""

    def __init__(self, releases: Iterable[Release] = ()) -> None:
        self._releases: dict[str, Release] = {}
        self._by_isrc: dict[str, TrackRef] = {}
        self._by_identity: dict[tuple[str, str], TrackRef] = {}
        for release in releases:
            self.add_release(release)

    def add_release(self, release: Release) -> None:
        self._releases[release.release_id] = release
        for track in release.tracks:
            holder = track.holder_id or release.holder_id or release.primary_artist
            artist = track.artist or release.primary_artist
            ref = TrackRef(
                track_id=track.track_id,
                release_id=release.release_id,
                holder_id=holder,
                title=track.title,
                artist=artist,
            )
            if track.isrc:
                self._by_isrc[track.isrc.strip().upper()] = ref
            key = _identity_key(track.title, artist)
            if key is not None:
                self._by_identity.setdefault(key, ref)

    def get_release(self, release_id: str) -> Release | None:
        return self._releases.get(release_id)

    def find_track(
        self,
        *,
        isrc: str | None,
        title: str | None,
        artist: str | None,
    ) -> TrackRef | None:
        if isrc:
            ref = self._by_isrc.get(isrc.strip().upper())
            if ref is not None:
                return ref
        key = _identity_key(title, artist)
        if key is None:
            return None
        return self._by_identity.get(key)


__all__ = [
    "CatalogResolver",
    "InMemoryCatalog",
    "Release",
    "ReleaseTrack",
    "TrackRef",
    "validate_release_for_distribution",
]
