import pandas as pd

from simrec.pipeline_types import RecommendationFilters
from simrec.store import CatalogStore, item_from_row

from conftest import make_item


def test_lexical_search_requires_every_term(store):
    hits = store.lexical_search("matrix reloaded", RecommendationFilters(), 10)
    assert [item.id for item, _ in hits] == ["m-matrix-2"]

    hits = store.lexical_search("matrix", RecommendationFilters(), 10)
    assert {item.id for item, _ in hits} == {"m-matrix", "m-matrix-2"}

    # stop words alone never match
    assert store.lexical_search("the", RecommendationFilters(), 10) == []


def test_lexical_search_respects_filters(store):
    hits = store.lexical_search("matrix", RecommendationFilters(year_min=2000), 10)
    assert [item.id for item, _ in hits] == ["m-matrix-2"]
    assert store.lexical_search("matrix", RecommendationFilters(type="tv"), 10) == []


def test_semantic_search_ranks_self_first(store, catalog):
    inception = next(it for it in catalog if it.id == "m-inception")
    hits = store.semantic_search(inception.embedding, RecommendationFilters(), 5)
    assert hits[0][0].id == "m-inception"
    assert hits[0][1] > 0.99
    scores = [s for _, s in hits]
    assert scores == sorted(scores, reverse=True)


def test_semantic_search_skips_dimension_mismatch_and_empty(store):
    assert store.semantic_search([1.0, 0.0], RecommendationFilters(), 5) == []
    assert store.semantic_search([], RecommendationFilters(), 5) == []


def test_null_years_pass_search_filters(store, catalog):
    anchor = next(it for it in catalog if it.id == "m-no-year")
    hits = store.semantic_search(anchor.embedding, RecommendationFilters(year_min=2015, year_max=2020), 50)
    ids = {item.id for item, _ in hits}
    assert "m-no-year" in ids
    assert "m-inception" not in ids


def test_popularity_floor_filter(store, catalog):
    anchor = catalog[0]
    hits = store.semantic_search(anchor.embedding, RecommendationFilters(pop_min=80), 50)
    assert hits
    assert all(item.popularity >= 80 for item, _ in hits)


def test_random_sample_requires_known_year_under_year_filters(store):
    items = store.random_sample(RecommendationFilters(type="movie", year_min=2000), 50)
    assert items
    assert all(it.type == "movie" and it.year is not None and it.year >= 2000 for it in items)
    assert len({it.id for it in items}) == len(items)


def test_random_sample_is_reproducible_with_a_seed(catalog):
    a = CatalogStore(catalog, seed=11).random_sample(RecommendationFilters(), 5)
    b = CatalogStore(catalog, seed=11).random_sample(RecommendationFilters(), 5)
    assert [it.id for it in a] == [it.id for it in b]


def test_find_seed_match(store):
    assert store.find_seed_match("Inception").id == "m-inception"
    assert store.find_seed_match("inception", item_type="movie").id == "m-inception"
    assert store.find_seed_match("Inception", item_type="book") is None
    assert store.find_seed_match("Dune").id == "m-dune"
    assert store.find_seed_match("the") is None


def test_find_seed_match_ignores_items_without_vectors():
    items = [make_item("x", "Solaris", embed=False)]
    assert CatalogStore(items).find_seed_match("Solaris") is None


def test_from_frame_and_item_from_row():
    df = pd.DataFrame(
        [
            {
                "id": "b1",
                "title": "Neuromancer",
                "type": "book",
                "year": 1984.0,
                "genres": '["Science Fiction"]',
                "popularity": float("nan"),
                "embedding": [1.0, 0.0],
                "availability": [{"name": "Library", "url": "https://lib.example/b1"}, "junk"],
            }
        ]
    )
    store = CatalogStore.from_frame(df)
    assert len(store) == 1
    item = store.get("b1")
    assert item.year == 1984
    assert item.genres == ["Science Fiction"]
    assert item.popularity == 0.0
    assert item.availability == [{"name": "Library", "url": "https://lib.example/b1"}]
    assert store.items()[0] is item

    row_item = item_from_row({"id": 7, "title": "Dark", "type": "series"})
    assert row_item.id == "7" and row_item.type == "tv"
