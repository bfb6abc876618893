import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from anime_sentinel.config import ResolverSettings
from anime_sentinel.models import (
    CatalogMirror,
    CatalogSearchHit,
    CatalogSearchResult,
    ExtractedRecord,
    LocalShow,
)
from anime_sentinel.services.cache import CachePolicy
from anime_sentinel.services.resolver import ShowResolver
from anime_sentinel.state import ShowConflictError


def _resolver(repository, catalog, now, **kwargs) -> ShowResolver:
    return ShowResolver(repository, catalog, clock=lambda: now, **kwargs)


# --- resolve_by_title ---


@pytest.mark.asyncio
async def test_local_match_short_circuits_catalog(repository, catalog, make_show, now):
    naruto = repository.add(make_show("Naruto", "NARUTO -ナルト-"))
    resolver = _resolver(repository, catalog, now)

    resolved = await resolver.resolve_by_title("naruto ナルト")

    assert resolved is naruto
    catalog.search_api.assert_not_awaited()
    catalog.search.assert_not_awaited()
    catalog.get_anime_data.assert_not_awaited()


@pytest.mark.asyncio
async def test_local_match_uses_first_show_in_order(
    repository, catalog, make_show, now
):
    first = repository.add(make_show("Naruto"))
    repository.add(make_show("Naruto Remastered", "naruto!"))
    resolver = _resolver(repository, catalog, now)

    assert await resolver.resolve_by_title("NARUTO") is first


@pytest.mark.asyncio
async def test_api_match_returns_existing_local_show_by_mal_id(
    repository, catalog, make_show, now
):
    shippuden = repository.add(make_show("Naruto Shippuden", mal_id=1735))
    catalog.search_api.return_value = [
        CatalogSearchHit(id=1735, title="Naruto: Shippuuden", english=None)
    ]
    resolver = _resolver(repository, catalog, now)

    assert await resolver.resolve_by_title("naruto: shippuuden") is shippuden
    catalog.search.assert_not_awaited()
    catalog.get_anime_data.assert_not_awaited()


@pytest.mark.asyncio
async def test_api_match_returns_catalog_mirror(repository, catalog, make_mirror, now):
    mirror = make_mirror(20, "Naruto", "NARUTO")
    catalog.search_api.return_value = [
        CatalogSearchHit(id=31, title="Bleach"),
        CatalogSearchHit(id=20, title="Naruto", english="Naruto", synonyms=["NRT"]),
    ]
    catalog.get_anime_data.return_value = mirror
    resolver = _resolver(repository, catalog, now)

    resolved = await resolver.resolve_by_title("NRT")

    assert resolved is mirror
    catalog.get_anime_data.assert_awaited_once_with(20)
    catalog.search.assert_not_awaited()
    assert repository.all() == []


@pytest.mark.asyncio
async def test_api_candidates_are_capped(repository, catalog, now):
    catalog.search_api.return_value = [
        CatalogSearchHit(id=1, title="Other"),
        CatalogSearchHit(id=2, title="Target"),
    ]
    resolver = _resolver(
        repository,
        catalog,
        now,
        settings=ResolverSettings(api_candidate_limit=1),
    )

    assert await resolver.find_mal_id("target") is None
    catalog.search.assert_awaited_once()


@pytest.mark.asyncio
async def test_search_page_fallback_matches_detail_alts(
    repository, catalog, make_mirror, now
):
    shippuden = make_mirror(1735, "Naruto: Shippuuden", "Naruto Hurricane Chronicles")
    details = {20: make_mirror(20, "Naruto"), 1735: shippuden}
    catalog.search.return_value = [
        CatalogSearchResult(mal_id=20, title="Naruto"),
        CatalogSearchResult(mal_id=1735, title="Naruto: Shippuuden"),
    ]
    catalog.get_anime_data.side_effect = lambda mal_id: details[mal_id]
    resolver = _resolver(repository, catalog, now)

    resolved = await resolver.resolve_by_title("Naruto Hurricane Chronicles")

    assert resolved is shippuden
    catalog.search.assert_awaited_once_with("Naruto Hurricane Chronicles", limit=8)
    # The mirror fetched while matching is reused, not fetched again.
    assert catalog.get_anime_data.await_count == 2


@pytest.mark.asyncio
async def test_search_page_fallback_probes_at_most_limit(repository, catalog, now):
    catalog.search.return_value = [
        CatalogSearchResult(mal_id=i, title=f"Show {i}") for i in range(1, 20)
    ]
    resolver = _resolver(
        repository, catalog, now, settings=ResolverSettings(fallback_probe_limit=3)
    )

    assert await resolver.resolve_by_title("Unknown Show") is None
    assert catalog.get_anime_data.await_count == 3


@pytest.mark.asyncio
async def test_not_found_returns_none(repository, catalog, now):
    resolver = _resolver(repository, catalog, now)

    assert await resolver.resolve_by_title("Completely Unknown") is None
    assert await resolver.resolve_by_title("   ") is None
    catalog.search_api.assert_awaited_once()


@pytest.mark.asyncio
async def test_api_match_with_failed_detail_fetch_is_not_found(
    repository, catalog, now
):
    catalog.search_api.return_value = [CatalogSearchHit(id=20, title="Naruto")]
    resolver = _resolver(repository, catalog, now)

    assert await resolver.resolve_by_title("Naruto") is None


# --- resolve_from_record / add_show_with_title ---


@pytest.mark.asyncio
async def test_resolve_from_record_merges_into_local_show(
    repository, catalog, make_show, now
):
    naruto = repository.add(make_show("Naruto"))
    record = ExtractedRecord(
        "kissanime",
        {
            "name": "naruto",
            "alt_names": ["ナルト", "NARUTO"],
            "description": "Ninjas.",
            "type": "TV",
            "genres": ["Action", "Comedy"],
        },
    )
    resolver = _resolver(repository, catalog, now)

    resolved = await resolver.resolve_from_record(record)

    assert resolved is naruto
    assert naruto.alts.titles() == ["Naruto", "ナルト"]
    assert [a.origin for a in naruto.alts][1] == "kissanime"
    assert naruto.description == "Ninjas."
    assert naruto.type == "tv"
    assert naruto.genres == ["action", "comedy"]
    assert len(repository.all()) == 1


@pytest.mark.asyncio
async def test_resolve_from_record_keeps_existing_metadata(
    repository, catalog, make_show, now
):
    naruto = repository.add(
        make_show("Naruto", description="Canonical.", type="tv", genres=["action"])
    )
    record = ExtractedRecord(
        "kissanime",
        {"name": "Naruto", "description": "Other.", "type": "Movie", "genres": ["x"]},
    )
    resolver = _resolver(repository, catalog, now)

    await resolver.resolve_from_record(record)

    assert (naruto.description, naruto.type, naruto.genres) == (
        "Canonical.",
        "tv",
        ["action"],
    )


@pytest.mark.asyncio
async def test_resolve_from_record_provisions_from_catalog(
    repository, catalog, make_mirror, now
):
    mirror = make_mirror(
        20,
        "Naruto",
        "NARUTO",
        "ナルト",
        type="tv",
        genres=("action",),
        episode_amount=220,
        thumbnail_id="13-17405.jpg",
    )
    catalog.search_api.return_value = [CatalogSearchHit(id=20, title="Naruto")]
    catalog.get_anime_data.return_value = mirror
    record = ExtractedRecord(
        "kissanime", {"name": "Naruto", "alt_names": ["Naruto (TV)"]}
    )
    resolver = _resolver(repository, catalog, now)

    show = await resolver.resolve_from_record(record)

    assert isinstance(show, LocalShow)
    assert show.id == 1
    assert show.mal_id == 20
    assert show.title == "Naruto"
    assert show.alts.titles() == ["Naruto", "ナルト", "Naruto (TV)"]
    assert show.alts.suggested() == []
    assert show.episode_amount == 220
    assert show.cache_updated_at == now
    assert repository.get_by_mal_id(20) is show


@pytest.mark.asyncio
async def test_resolve_from_record_provisions_bare_show(repository, catalog, now):
    record = ExtractedRecord(
        "kissanime",
        {"name": "  Obscure Show  ", "alt_names": ["Obscure"], "type": "OVA"},
    )
    resolver = _resolver(repository, catalog, now)

    show = await resolver.resolve_from_record(record)

    assert show.title == "Obscure Show"
    assert show.mal_id is None
    assert show.type == "ova"
    assert show.alts.titles() == ["Obscure Show", "Obscure"]


@pytest.mark.asyncio
async def test_resolve_from_record_without_name(repository, catalog, now):
    resolver = _resolver(repository, catalog, now)

    with pytest.raises(ValueError):
        await resolver.resolve_from_record(ExtractedRecord("kissanime", {}))


@pytest.mark.asyncio
async def test_add_show_with_title_is_idempotent(repository, catalog, now):
    resolver = _resolver(repository, catalog, now)

    first = await resolver.add_show_with_title("Obscure Show")
    second = await resolver.add_show_with_title("obscure show")

    assert first is second
    assert len(repository.all()) == 1


@pytest.mark.asyncio
async def test_concurrent_provisioning_creates_one_show(repository, catalog, now):
    async def slow_search_api(query):
        await asyncio.sleep(0)
        return []

    catalog.search_api.side_effect = slow_search_api
    record = ExtractedRecord("kissanime", {"name": "Obscure Show"})
    resolver = _resolver(repository, catalog, now)

    shows = await asyncio.gather(
        resolver.add_show_with_title("Obscure Show"),
        resolver.resolve_from_record(record),
        resolver.add_show_with_title("OBSCURE SHOW"),
    )

    assert len(repository.all()) == 1
    assert all(show is shows[0] for show in shows)


@pytest.mark.asyncio
async def test_concurrent_catalog_provisioning_creates_one_show(
    repository, catalog, make_mirror, now
):
    mirror = make_mirror(20, "Naruto")
    catalog.search_api.return_value = [CatalogSearchHit(id=20, title="Naruto")]
    catalog.get_anime_data.return_value = mirror
    resolver = _resolver(repository, catalog, now)

    shows = await asyncio.gather(
        *(resolver.add_show_with_title(t) for t in ("Naruto", "naruto", "NARUTO"))
    )

    assert len(repository.all()) == 1
    assert {id(show) for show in shows} == {id(shows[0])}


@pytest.mark.asyncio
async def test_provisioning_conflict_propagates(repository, catalog, make_show, now):
    repository.add(make_show("Kimi no Na wa.", mal_id=99))
    record = ExtractedRecord("kissanime", {"name": "Your Name"})
    catalog.search_api.return_value = [
        CatalogSearchHit(id=32281, title="Kimi no Na wa", english="Your Name.")
    ]
    catalog.get_anime_data.return_value = CatalogMirror(
        mal_id=32281, title="Kimi no Na wa!"
    )
    resolver = _resolver(repository, catalog, now)

    with pytest.raises(ShowConflictError):
        await resolver.resolve_from_record(record)



@pytest.mark.asyncio
async def test_catalog_provisioning_links_show_owning_a_catalog_title(
    repository, catalog, make_show, make_mirror, now
):
    titan = repository.add(make_show("Attack on Titan"))
    catalog.search_api.return_value = [
        CatalogSearchHit(id=16498, title="Shingeki no Kyojin")
    ]
    catalog.get_anime_data.return_value = make_mirror(
        16498, "Shingeki no Kyojin", "Attack on Titan", type="tv", episode_amount=25
    )
    resolver = _resolver(repository, catalog, now)

    show = await resolver.add_show_with_title("Shingeki no Kyojin")

    assert show is titan
    assert repository.all() == [titan]
    assert titan.mal_id == 16498
    assert titan.title == "Attack on Titan"
    assert "Shingeki no Kyojin" in titan.alts
    assert titan.type == "tv"
    assert titan.episode_amount == 25


@pytest.mark.asyncio
async def test_catalog_provisioning_links_record_into_existing_show(
    repository, catalog, make_show, make_mirror, now
):
    titan = repository.add(make_show("Attack on Titan"))
    record = ExtractedRecord(
        "kissanime", {"name": "Shingeki no Kyojin", "alt_names": ["AoT"]}
    )
    catalog.search_api.return_value = [
        CatalogSearchHit(id=16498, title="Shingeki no Kyojin")
    ]
    catalog.get_anime_data.return_value = make_mirror(
        16498, "Shingeki no Kyojin", "Attack on Titan"
    )
    resolver = _resolver(repository, catalog, now)

    assert await resolver.resolve_from_record(record) is titan
    assert len(repository.all()) == 1
    assert "AoT" in titan.alts


@pytest.mark.asyncio
async def test_catalog_provisioning_ignores_shows_linked_to_other_entries(
    repository, catalog, make_show, make_mirror, now
):
    movie = repository.add(
        make_show("Attack on Titan Movie", "Attack on Titan", mal_id=1)
    )
    catalog.search_api.return_value = [
        CatalogSearchHit(id=16498, title="Shingeki no Kyojin")
    ]
    catalog.get_anime_data.return_value = make_mirror(
        16498, "Shingeki no Kyojin", "Attack on Titan"
    )
    resolver = _resolver(repository, catalog, now)

    show = await resolver.add_show_with_title("Shingeki no Kyojin")

    assert show is not movie
    assert show.mal_id == 16498
    assert movie.mal_id == 1
    assert len(repository.all()) == 2


# --- Cache refresh ---


@pytest.mark.asyncio
async def test_refresh_show_updates_metadata(
    repository, catalog, make_show, make_mirror, now
):
    show = repository.add(
        make_show(
            "Shingeki no Kyojin",
            mal_id=16498,
            cache_updated_at=now - timedelta(days=30),
        )
    )
    catalog.get_anime_data.return_value = make_mirror(
        16498,
        "Attack on Titan",
        "Shingeki no Kyojin",
        type="tv",
        genres=("action", "drama"),
        episode_amount=25,
        episode_duration=24,
    )
    resolver = _resolver(repository, catalog, now)

    refreshed = await resolver.refresh_show(show)

    assert refreshed is show
    assert show.title == "Attack on Titan"
    assert show.alts.titles() == ["Attack on Titan", "Shingeki no Kyojin"]
    assert show.genres == ["action", "drama"]
    assert show.episode_amount == 25
    assert show.cache_updated_at == now



@pytest.mark.asyncio
async def test_refresh_show_title_conflict_leaves_show_untouched(
    repository, catalog, make_show, make_mirror, now
):
    stale = now - timedelta(days=30)
    shingeki = repository.add(make_show("Shingeki", cache_updated_at=stale))
    titan = repository.add(make_show("Attack on Titan"))
    catalog.search_api.return_value = [CatalogSearchHit(id=16498, title="Shingeki")]
    catalog.get_anime_data.return_value = make_mirror(
        16498, "Attack on Titan", "Shingeki"
    )
    resolver = _resolver(repository, catalog, now)

    with pytest.raises(ShowConflictError) as excinfo:
        await resolver.refresh_show(shingeki)

    assert excinfo.value.existing is titan
    assert shingeki.title == "Shingeki"
    assert shingeki.mal_id is None
    assert shingeki.alts.titles() == ["Shingeki"]
    assert shingeki.cache_updated_at == stale
    assert sorted(show.title for show in repository.all()) == [
        "Attack on Titan",
        "Shingeki",
    ]


@pytest.mark.asyncio
async def test_refresh_show_without_catalog_data_marks_fresh(
    repository, catalog, make_show, now
):
    show = repository.add(
        make_show("Obscure Show", cache_updated_at=now - timedelta(days=30))
    )
    resolver = _resolver(repository, catalog, now)

    await resolver.refresh_show(show)

    assert show.cache_updated_at == now
    assert show.title == "Obscure Show"


@pytest.mark.asyncio
async def test_stale_local_show_schedules_refresh(repository, catalog, make_show, now):
    show = repository.add(
        make_show("Naruto", mal_id=20, cache_updated_at=now - timedelta(days=30))
    )
    catalog.get_anime_data.return_value = CatalogMirror(
        mal_id=20, title="Naruto", episode_amount=220
    )
    resolver = _resolver(repository, catalog, now, cache_policy=CachePolicy(168, 336))

    assert await resolver.resolve_by_title("Naruto") is show
    assert await resolver.resolve_by_title("naruto") is show
    await resolver.cache_monitor.drain()

    catalog.get_anime_data.assert_awaited_once_with(20)
    assert show.episode_amount == 220
    assert show.cache_updated_at == now


@pytest.mark.asyncio
async def test_fresh_local_show_is_not_refreshed(repository, catalog, make_show, now):
    repository.add(make_show("Naruto", cache_updated_at=now))
    resolver = _resolver(repository, catalog, now, cache_policy=CachePolicy(168, 336))

    await resolver.resolve_by_title("Naruto")
    await resolver.cache_monitor.drain()

    catalog.get_anime_data.assert_not_awaited()
    catalog.search_api.assert_not_awaited()
