import pytest

from simrec.config import DEFAULT_WEIGHTS
from simrec.scoring import (
    BoostBreakdown,
    combined_score,
    compute_boosts,
    creator_boost,
    effective_weights,
    franchise_boost,
    genre_boost,
    popularity_boost,
    rating_boost,
    reserve_cap,
    reserve_high_relevance,
    sort_by_combined,
    synopsis_boost,
    tag_boost,
    year_boost,
)

from conftest import make_candidate, make_item


def _anchor(**kw):
    base = dict(
        genres=["Science Fiction", "Thriller", "Action"],
        creators=["Christopher Nolan", "Emma Thomas"],
        tags=["dreams", "heist", "mind"],
        year=2010,
        popularity=85,
        synopsis="A thief steals corporate secrets through dream sharing technology.",
        franchise_key="inception",
        embed=False,
    )
    base.update(kw)
    return make_item("anchor", "Inception", **base)


def test_boosts_are_zero_without_anchor():
    item = make_item("x", "Tenet", genres=["Action"], creators=["Christopher Nolan"], embed=False)
    assert compute_boosts(None, item) == BoostBreakdown()
    for fn in (creator_boost, genre_boost, tag_boost, franchise_boost, synopsis_boost,
               year_boost, popularity_boost, rating_boost):
        assert fn(None, item) == 0.0


def test_creator_boost_is_position_weighted():
    anchor = _anchor()
    first = make_item("a", "Tenet", creators=["christopher nolan"], embed=False)
    second = make_item("b", "Dunkirk", creators=["Emma Thomas"], embed=False)
    both = make_item("c", "Interstellar", creators=["Emma Thomas", "Christopher Nolan"], embed=False)
    assert creator_boost(anchor, first) == pytest.approx(1.0 / 1.7)
    assert creator_boost(anchor, second) == pytest.approx(0.7 / 1.7)
    assert creator_boost(anchor, both) == pytest.approx(1.0)
    assert creator_boost(anchor, make_item("d", "Up", embed=False)) == 0.0


def test_genre_and_tag_bands():
    anchor = _anchor()
    assert genre_boost(anchor, make_item("a", "A", genres=["Drama"], embed=False)) == 0.0
    assert genre_boost(anchor, make_item("a", "A", genres=["Thriller"], embed=False)) == 0.4
    assert genre_boost(anchor, make_item("a", "A", genres=["Thriller", "action"], embed=False)) == 0.7
    assert genre_boost(anchor, make_item("a", "A", genres=anchor.genres, embed=False)) == 1.0
    assert tag_boost(anchor, make_item("a", "A", tags=["heist"], embed=False)) == 0.3
    assert tag_boost(anchor, make_item("a", "A", tags=["heist", "mind", "dreams"], embed=False)) == 0.8


def test_franchise_year_popularity_rating():
    anchor = _anchor()
    assert franchise_boost(anchor, make_item("a", "Inception 2", franchise_key="Inception", embed=False)) == 1.0
    assert year_boost(anchor, make_item("a", "A", year=2014, embed=False)) == 1.0
    assert year_boost(anchor, make_item("a", "A", year=2000, embed=False)) == 0.5
    assert year_boost(anchor, make_item("a", "A", year=1997, embed=False)) == 0.2
    assert year_boost(anchor, make_item("a", "A", year=2022, embed=False)) == 0.2
    assert year_boost(anchor, make_item("a", "A", year=1980, embed=False)) == 0.0
    assert popularity_boost(anchor, make_item("a", "A", popularity=70, embed=False)) == 1.0
    assert popularity_boost(anchor, make_item("a", "A", popularity=10, embed=False)) == 0.0
    # popularity stands in for unknown ratings
    assert rating_boost(anchor, make_item("a", "A", popularity=80, embed=False)) == 1.0
    rated = _anchor(rating=80.0)
    assert rating_boost(rated, make_item("a", "A", rating=55.0, embed=False)) == 0.3


def test_synopsis_boost_scales_between_floor_and_ceiling():
    anchor = _anchor()
    same = make_item("a", "A", synopsis=anchor.synopsis, embed=False)
    unrelated = make_item("b", "B", synopsis="Penguins waddle across frozen beaches.", embed=False)
    assert synopsis_boost(anchor, same) == 1.0
    assert synopsis_boost(anchor, unrelated) == 0.0


def test_boosts_stay_in_unit_range(catalog):
    anchor = catalog[0]
    for item in catalog:
        for value in compute_boosts(anchor, item).as_dict().values():
            assert 0.0 <= value <= 1.0


def test_effective_weights_redistributes_creator_weight():
    no_creators = _anchor(creators=[])
    w = effective_weights(no_creators)
    assert w.creator == 0.0
    assert w.genre == pytest.approx(DEFAULT_WEIGHTS.genre + DEFAULT_WEIGHTS.creator / 2)
    assert w.synopsis == pytest.approx(DEFAULT_WEIGHTS.synopsis + DEFAULT_WEIGHTS.creator / 2)
    assert effective_weights(_anchor()) is DEFAULT_WEIGHTS


def test_combined_score_without_anchor_uses_signal_terms_only():
    c = make_candidate("a", fused=0.5, vector=0.8, rerank=0.4)
    expected = 0.28 * 0.8 + 0.25 * 0.4 + 0.10 * 0.5
    assert combined_score(c, None) == pytest.approx(expected)


def test_combined_score_prefers_shared_creator():
    anchor = _anchor()
    same_director = make_candidate("a", fused=0.3, vector=0.5, creators=["Christopher Nolan"])
    stranger = make_candidate("b", fused=0.3, vector=0.5, creators=["Someone Else"])
    ranked = sort_by_combined([stranger, same_director], anchor)
    assert [c.id for c in ranked] == ["a", "b"]


def test_reserve_cap():
    assert reserve_cap(10) == 15
    assert reserve_cap(40) == 20
    assert reserve_cap(41) == 21


def test_reserve_prefers_creator_matches_and_excludes_anchor():
    anchor = _anchor()
    anchor_cand = make_candidate("anchor", vector=1.0, creators=["Christopher Nolan"])
    by_vector = make_candidate("v", vector=0.6)
    by_creator = make_candidate("c", vector=0.1, creators=["Christopher Nolan"])
    weak = make_candidate("w", vector=0.1)
    reserved, remainder = reserve_high_relevance([anchor_cand, by_vector, by_creator, weak], anchor, 10)
    assert [c.id for c in reserved] == ["c", "v"]
    assert [c.id for c in remainder] == ["w"]


def test_reserve_is_capped():
    cands = [make_candidate(f"c{i:02d}", vector=0.9) for i in range(30)]
    reserved, remainder = reserve_high_relevance(cands, None, 10)
    assert len(reserved) == 15
    assert len(remainder) == 15
