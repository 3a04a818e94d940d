from __future__ import annotations

import pytest

from backoffice.bootstrap import merge_builtin_parsers
from backoffice.errors import ConfigurationError
from backoffice.integrations.contracts import PlatformAdapter
from backoffice.integrations.normalizers import TabularReportParser
from backoffice.integrations.registry import PlatformRegistry
from tests.helpers import ScriptedDistributor


def test_lookup_is_case_insensitive() -> None:
    distributor = ScriptedDistributor("spotify")
    registry = PlatformRegistry([PlatformAdapter(name="Spotify", distributor=distributor)])

    assert registry.distributor(" SPOTIFY ") is distributor
    assert registry.parser("spotify") is None
    assert "spotify" in registry
    assert "tidal" not in registry
    assert registry.names == ("spotify",)
    assert len(registry) == 1


def test_duplicate_registration_is_rejected() -> None:
    adapters = [
        PlatformAdapter(name="tidal", distributor=ScriptedDistributor("tidal")),
        PlatformAdapter(name="TIDAL", distributor=ScriptedDistributor("tidal")),
    ]

    with pytest.raises(ConfigurationError) as excinfo:
        PlatformRegistry(adapters)

    assert excinfo.value.meta == {"platform": "tidal"}


def test_adapter_without_capability_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        PlatformRegistry([PlatformAdapter(name="deezer")])
    with pytest.raises(ConfigurationError):
        PlatformRegistry([PlatformAdapter(name=" ", distributor=ScriptedDistributor("x"))])


def test_capability_objects_are_checked() -> None:
    with pytest.raises(ConfigurationError):
        PlatformRegistry([PlatformAdapter(name="deezer", distributor=object())])


def test_ensure_known_lists_unknown_platforms() -> None:
    registry = PlatformRegistry(
        [PlatformAdapter(name="spotify", distributor=ScriptedDistributor("spotify"))]
    )

    registry.ensure_known(["spotify"])
    with pytest.raises(ConfigurationError) as excinfo:
        registry.ensure_known(["spotify", "napster", "zune"])

    assert excinfo.value.meta == {"platforms": ["napster", "zune"]}


def test_builtin_parsers_are_merged_into_adapters() -> None:
    distributor = ScriptedDistributor("spotify")
    custom_parser = TabularReportParser(merge_builtin_parsers([])[0].parser.layout)

    merged = merge_builtin_parsers(
        [
            PlatformAdapter(name="spotify", distributor=distributor),
            PlatformAdapter(name="tidal", parser=custom_parser),
        ]
    )
    registry = PlatformRegistry(merged)

    assert registry.distributor("spotify") is distributor
    assert isinstance(registry.parser("spotify"), TabularReportParser)
    assert registry.parser("tidal") is custom_parser
    assert registry.parser("deezer") is not None
    assert registry.distributor("deezer") is None
    assert set(registry.names) >= {"spotify", "apple_music", "youtube_music", "amazon_music", "tidal", "deezer"}
