from simrec.config import EngineSettings, RecommendationRequest
from simrec.normalize import franchise_group_key
from simrec.pipeline import (
    Deadline,
    RecommendationEngine,
    build_random_recommendations,
    build_recommendations,
    build_relaxations,
    desired_count,
    front_load_semantic,
    trim_pool,
)
from simrec.pipeline_types import RecommendationFilters
from simrec.rerank import Reranker
from simrec.store import CatalogStore

from conftest import make_candidate, make_item


class RecordingReranker(Reranker):
    name = "recording"

    def __init__(self):
        self.calls = 0

    def score(self, query, candidates, anchor=None, locale="en"):
        self.calls += 1
        return None


def _ids(result):
    return [it.id for it in result.items]


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def test_desired_count_clamps():
    assert desired_count(None) == 10
    assert desired_count(0) == 1
    assert desired_count(7) == 7
    assert desired_count(500) == 100


def test_build_relaxations_full_sequence():
    base = RecommendationFilters(type="movie", year_min=2000, year_max=2010, pop_min=50)
    steps = build_relaxations(base)
    assert [s.key() for s in steps] == [
        ("movie", 2000, 2010, 50),
        ("movie", 2000, 2010, 30.0),
        ("movie", 2000, 2010, None),
        ("movie", 1990, 2020, 50),
        ("movie", None, None, 50),
    ]


def test_build_relaxations_deduplicates():
    assert len(build_relaxations(RecommendationFilters())) == 1
    steps = build_relaxations(RecommendationFilters(pop_min=0))
    assert [s.key() for s in steps] == [(None, None, None, 0)]


def test_front_load_and_trim():
    cands = [
        make_candidate("weak-high-fused", fused=0.9, vector=0.1),
        make_candidate("strong-b", fused=0.1, vector=0.5),
        make_candidate("strong-a", fused=0.2, vector=0.8),
        make_candidate("lexical", fused=0.5),
    ]
    ordered = front_load_semantic(cands)
    assert [c.id for c in ordered] == ["strong-a", "strong-b", "weak-high-fused", "lexical"]

    many = [make_candidate(f"c{i:03d}") for i in range(300)]
    assert len(trim_pool(many, 10)) == 120
    assert len(trim_pool(many, 100)) == 200


def test_deadline():
    assert Deadline(0).expired()
    assert Deadline(0).remaining_ms() == 0.0
    live = Deadline(60_000)
    assert not live.expired()
    assert 0 < live.remaining_ms() <= 60_000


# ---------------------------------------------------------------------------
# search mode
# ---------------------------------------------------------------------------

def test_inception_scenario(engine):
    result = engine.recommend(RecommendationRequest(query="Inception", type="movie"))

    assert result.anchor is not None
    assert result.anchor.title == "Inception"
    assert len(result.items) == 10
    assert "m-inception" not in _ids(result)
    assert all(it.type == "movie" for it in result.items)
    nolan = {"m-interstellar", "m-prestige", "m-tenet", "m-memento"}
    assert nolan & set(_ids(result))
    assert result.debug["relaxations"] == 0
    assert result.debug["totalCandidates"] > 0


def test_items_are_unique_by_id_and_franchise(engine):
    result = engine.recommend(RecommendationRequest(query="Dune", limit=20))
    ids = _ids(result)
    assert len(ids) == len(set(ids))
    keys = [franchise_group_key(it.franchise_key, it.title) for it in result.items]
    assert len(keys) == len(set(keys))
    assert result.anchor.id == "m-dune"
    assert "m-dune" not in ids
    assert sum(1 for it in result.items if it.franchise_key == "matrix") <= 1


def test_result_size_follows_limit(engine):
    assert len(engine.recommend(RecommendationRequest(query="Inception", limit=3)).items) == 3
    big = engine.recommend(RecommendationRequest(query="Inception", limit=500))
    assert 5 <= len(big.items) <= 100


def test_recommendations_are_deterministic(engine):
    req = RecommendationRequest(query="Inception", limit=8)
    first = engine.recommend(req)
    second = engine.recommend(req)
    assert _ids(first) == _ids(second)
    assert [it.score for it in first.items] == [it.score for it in second.items]


def test_pop_floor_relaxes_instead_of_returning_nothing(engine):
    result = engine.recommend(RecommendationRequest(query="Inception", popMin=90))
    assert len(result.items) >= 1
    assert "m-inception" not in _ids(result)


def test_year_filters_apply_before_relaxation(engine):
    result = engine.recommend(RecommendationRequest(query="Inception", type="movie", yearMin=2010, yearMax=2016))
    assert result.items
    in_window = [it for it in result.items if it.year is None or 2010 <= it.year <= 2016]
    assert len(in_window) >= 5


def test_free_text_query_without_anchor(engine, embeddings):
    result = engine.recommend(RecommendationRequest(query="dream thief mind"))
    assert result.anchor is None
    assert result.items
    assert embeddings.calls == [["dream thief mind"]]


def test_small_catalog_returns_what_exists(embeddings):
    items = [
        make_item("a", "Arrival", genres=["Drama"], synopsis="Aliens land."),
        make_item("b", "Contact", genres=["Drama"], synopsis="Aliens call."),
        make_item("c", "Sphere", genres=["Drama"], synopsis="Aliens sleep."),
    ]
    engine = RecommendationEngine(CatalogStore(items), embeddings, reranker_chain=[])
    result = engine.recommend(RecommendationRequest(query="Arrival"))
    assert result.anchor.id == "a"
    assert sorted(_ids(result)) == ["b", "c"]


def test_expired_deadline_skips_external_rerankers(store, embeddings):
    reranker = RecordingReranker()
    engine = RecommendationEngine(
        store, embeddings, reranker_chain=[reranker], settings=EngineSettings(request_deadline_ms=0)
    )
    assert engine.recommend(RecommendationRequest(query="Inception")).items
    assert reranker.calls == 0

    live = RecommendationEngine(store, embeddings, reranker_chain=[reranker])
    live.recommend(RecommendationRequest(query="Inception"))
    assert reranker.calls >= 1


# ---------------------------------------------------------------------------
# random mode
# ---------------------------------------------------------------------------

def test_random_mode_honours_filters(engine):
    result = engine.recommend(RecommendationRequest(mode="random", type="movie", yearMin=2000, limit=5))
    assert result.anchor is None
    assert 1 <= len(result.items) <= 5
    assert len(set(_ids(result))) == len(result.items)
    for it in result.items:
        assert it.type == "movie"
        assert it.year is not None and it.year >= 2000
        assert it.score == 0.0


def test_module_entry_points_accept_an_engine(engine):
    search = build_recommendations(RecommendationRequest(query="Inception", limit=4), engine=engine)
    assert len(search.items) == 4
    rnd = build_random_recommendations(RecommendationRequest(mode="random", limit=3), engine=engine)
    assert len(rnd.items) == 3
    assert rnd.debug["relaxations"] == 0


def test_fallback_tops_up_single_franchise_catalog(embeddings):
    anchor = make_item("origin", "Origins", genres=["Fantasy"], synopsis="A kingdom at war with dragons.")
    saga = [
        make_item(
            f"saga-{i}",
            f"Saga Chapter {i}",
            year=2000 + i,
            genres=["Fantasy"],
            synopsis="A kingdom at war with dragons.",
            franchise_key="saga",
        )
        for i in range(8)
    ]
    engine = RecommendationEngine(CatalogStore([anchor] + saga), embeddings, reranker_chain=[])
    result = engine.recommend(RecommendationRequest(query="Origins"))

    ids = _ids(result)
    assert result.anchor.id == "origin"
    assert len(ids) >= min(5, desired_count(None))
    assert "origin" not in ids
    assert len(set(ids)) == len(ids)
    # the relaxation steps keep one entry per franchise; the rest come from the fallback
    assert all(it.franchise_key == "saga" for it in result.items)
