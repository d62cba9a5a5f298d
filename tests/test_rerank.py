import httpx
import pytest

from simrec.config import EngineSettings
from simrec.rerank import (
    CohereReranker,
    HttpReranker,
    Reranker,
    apply_scores,
    build_document_text,
    build_enhanced_query,
    build_reranker_chain,
    get_reranker_chain,
    heuristic_rerank,
    rerank_candidates,
    reset_reranker_chain,
)

from conftest import make_candidate, make_item


class FakeResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


class FailingReranker(Reranker):
    name = "failing"

    def score(self, query, candidates, anchor=None, locale="en"):
        raise httpx.ReadTimeout("too slow")


class EmptyReranker(Reranker):
    name = "empty"

    def score(self, query, candidates, anchor=None, locale="en"):
        return None


class FixedReranker(Reranker):
    name = "fixed"

    def __init__(self, scores):
        self.scores = scores
        self.seen = []

    def score(self, query, candidates, anchor=None, locale="en"):
        self.seen.append([c.id for c in candidates])
        return self.scores


def test_heuristic_rerank_formula():
    c = make_candidate("a", fused=0.1, year=2000, popularity=50)
    no_year = make_candidate("b", fused=0.1, year=None, popularity=50)
    ranked = heuristic_rerank([c, no_year], current_year=2020)
    assert c.rerank_score == pytest.approx(0.1 + 0.5 - 0.02)
    assert no_year.rerank_score == pytest.approx(0.6)
    assert [x.id for x in ranked] == ["b", "a"]


def test_apply_scores_only_touches_scored_ids():
    a = make_candidate("a", fused=0.5, rerank=0.5)
    b = make_candidate("b", fused=0.4, rerank=0.4)
    ranked = apply_scores([a, b], {"b": 0.9})
    assert [c.id for c in ranked] == ["b", "a"]
    assert a.rerank_score == 0.5


def test_chain_falls_through_failures_to_first_answer():
    a = make_candidate("a", fused=0.9, popularity=90)
    b = make_candidate("b", fused=0.1, popularity=10)
    fixed = FixedReranker({"b": 5.0})
    later = FixedReranker({"a": 10.0})
    ranked = rerank_candidates("q", [a, b], chain=[FailingReranker(), EmptyReranker(), fixed, later])
    assert [c.id for c in ranked] == ["b", "a"]
    assert b.rerank_score == 5.0
    # a keeps its heuristic value
    assert a.rerank_score < 5.0
    assert later.seen == []


def test_rerank_without_chain_is_heuristic_only():
    a = make_candidate("a", fused=0.1, popularity=10)
    b = make_candidate("b", fused=0.1, popularity=80)
    ranked = rerank_candidates("q", [a, b], chain=[])
    assert [c.id for c in ranked] == ["b", "a"]
    assert rerank_candidates("q", []) == []


def test_rerank_sends_only_top_k():
    cands = [make_candidate(f"c{i:02d}", fused=1.0 - i / 100) for i in range(10)]
    fixed = FixedReranker({"c00": 1.0})
    rerank_candidates("q", cands, top_k=3, chain=[fixed])
    assert fixed.seen == [["c00", "c01", "c02"]]


def test_enhanced_query_and_document_text():
    anchor = make_item(
        "m", "Inception", genres=["Sci-Fi", "Thriller", "Action", "Drama"],
        creators=["Christopher Nolan", "Emma Thomas", "Someone"], synopsis="Dreams within dreams.", embed=False,
    )
    query = build_enhanced_query("inception", anchor)
    assert query.startswith('Similar to "Inception"')
    assert "Genres: Sci-Fi, Thriller, Action" in query
    assert "Drama" not in query
    assert "By: Christopher Nolan, Emma Thomas" in query
    assert build_enhanced_query("inception", None) == "inception"

    doc = build_document_text(anchor)
    assert doc.splitlines()[0] == "Inception"
    assert "Creators: Christopher Nolan" in doc


def test_cohere_reranker_maps_indexes_to_ids(monkeypatch):
    captured = {}

    def fake_post(self, url, json=None, headers=None):
        captured["body"] = json
        captured["headers"] = headers
        return FakeResponse({"results": [{"index": 1, "relevance_score": 0.9}, {"index": 0}, {"index": 7}]})

    monkeypatch.setattr(httpx.Client, "post", fake_post)
    cands = [make_candidate("a"), make_candidate("b")]
    scores = CohereReranker("secret").score("q", cands)
    assert scores["b"] == pytest.approx(0.9)
    # missing relevance falls back to a position score
    assert scores["a"] == pytest.approx(2.0)
    assert captured["body"]["top_n"] == 2
    assert captured["headers"]["Authorization"] == "Bearer secret"


def test_http_reranker_parses_results(monkeypatch):
    def fake_post(self, url, json=None, headers=None):
        assert json["locale"] == "de"
        return FakeResponse({"results": [{"id": "a", "score": 0.3}, {"id": "b", "score": "bad"}]})

    monkeypatch.setattr(httpx.Client, "post", fake_post)
    scores = HttpReranker("http://rerank.test").score("q", [make_candidate("a"), make_candidate("b")], locale="de")
    assert scores == {"a": 0.3}


def test_build_reranker_chain_from_settings():
    assert build_reranker_chain(EngineSettings(rerank_enabled=False, cohere_api_key="k")) == []
    chain = build_reranker_chain(EngineSettings(cohere_api_key="k", llm_rerank_url="http://rerank.test"))
    assert [r.name for r in chain] == ["cohere", "lightweight"]


def test_get_reranker_chain_is_cached():
    reset_reranker_chain()
    try:
        first = get_reranker_chain(EngineSettings(rerank_enabled=False))
        assert first == []
        assert get_reranker_chain(EngineSettings(cohere_api_key="k")) is first
    finally:
        reset_reranker_chain()
