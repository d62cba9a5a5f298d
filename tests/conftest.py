import pytest

from simrec.catalog_build import build_embedding_text
from simrec.embeddings import LocalTfIdfEmbeddings
from simrec.normalize import compute_franchise_key
from simrec.pipeline import RecommendationEngine
from simrec.pipeline_types import Candidate, Item
from simrec.store import CatalogStore

TEST_DIM = 64
_EMB = LocalTfIdfEmbeddings(TEST_DIM)


def make_item(
    item_id,
    title,
    type="movie",
    year=None,
    genres=(),
    creators=(),
    synopsis=None,
    popularity=50.0,
    franchise_key=None,
    embed=True,
    **extra,
):
    genres = list(genres)
    embedding = _EMB.embed([build_embedding_text(title, genres, synopsis)])[0] if embed else []
    return Item(
        id=item_id,
        title=title,
        type=type,
        year=year,
        genres=genres,
        creators=list(creators),
        synopsis=synopsis,
        popularity=popularity,
        franchise_key=franchise_key or compute_franchise_key(title) or None,
        embedding=embedding,
        **extra,
    )


def make_candidate(item_id, fused=0.5, vector=None, rerank=None, fts=None, **item_kw):
    item_kw.setdefault("embed", False)
    item = make_item(item_id, item_kw.pop("title", f"Title {item_id}"), **item_kw)
    return Candidate(
        id=item_id,
        item=item,
        fused_score=fused,
        fts_score=fts,
        vector_score=vector,
        rerank_score=rerank,
    )


NOLAN = ["Christopher Nolan"]
DREAMS = "A thief who steals corporate secrets through dream-sharing technology plants an idea in a mind."


def build_catalog():
    return [
        make_item("m-inception", "Inception", year=2010, genres=["Science Fiction", "Thriller", "Action"],
                  creators=NOLAN, synopsis=DREAMS, popularity=85),
        make_item("m-interstellar", "Interstellar", year=2014, genres=["Science Fiction", "Drama", "Adventure"],
                  creators=NOLAN, synopsis="Explorers travel through a wormhole in space to ensure humanity's survival.",
                  popularity=84),
        make_item("m-prestige", "The Prestige", year=2006, genres=["Drama", "Mystery", "Thriller"],
                  creators=NOLAN, synopsis="Two rival magicians obsess over the perfect illusion.", popularity=78),
        make_item("m-tenet", "Tenet", year=2020, genres=["Action", "Science Fiction", "Thriller"],
                  creators=NOLAN, synopsis="A secret agent manipulates the flow of time to prevent a war.",
                  popularity=70),
        make_item("m-memento", "Memento", year=2000, genres=["Mystery", "Thriller"],
                  creators=NOLAN, synopsis="A man with short-term memory loss hunts his wife's killer.", popularity=75),
        make_item("m-matrix", "The Matrix", year=1999, genres=["Science Fiction", "Action"],
                  creators=["Lana Wachowski", "Lilly Wachowski"], franchise_key="matrix",
                  synopsis="A hacker learns his reality is a simulated dream world controlled by machines.",
                  popularity=88),
        make_item("m-matrix-2", "The Matrix Reloaded", year=2003, genres=["Science Fiction", "Action"],
                  creators=["Lana Wachowski", "Lilly Wachowski"], franchise_key="matrix",
                  synopsis="Neo and the rebels fight the machines as the simulated world closes in.",
                  popularity=70),
        make_item("m-shutter", "Shutter Island", year=2010, genres=["Mystery", "Thriller"],
                  creators=["Martin Scorsese"], synopsis="A marshal investigates a mind hospital on an island.",
                  popularity=76),
        make_item("m-dune", "Dune", year=2021, genres=["Science Fiction", "Adventure"],
                  creators=["Denis Villeneuve"], franchise_key="dune",
                  synopsis="A noble family becomes embroiled in a war for a desert planet.", popularity=80),
        make_item("m-dune-2", "Dune: Part Two", year=2024, genres=["Science Fiction", "Adventure"],
                  creators=["Denis Villeneuve"], franchise_key="dune",
                  synopsis="Paul unites with the desert people in a war against the conspirators.", popularity=82),
        make_item("m-arrival", "Arrival", year=2016, genres=["Science Fiction", "Drama"],
                  creators=["Denis Villeneuve"], synopsis="A linguist communicates with alien visitors and time.",
                  popularity=74),
        make_item("m-source-code", "Source Code", year=2011, genres=["Science Fiction", "Thriller"],
                  synopsis="A soldier relives the same eight minutes inside another man's mind.", popularity=60),
        make_item("m-looper", "Looper", year=2012, genres=["Science Fiction", "Action"],
                  synopsis="A hitman for the mob kills targets sent back in time.", popularity=58),
        make_item("m-primer", "Primer", year=2004, genres=["Science Fiction", "Drama"],
                  synopsis="Engineers accidentally build a time machine in a garage.", popularity=40),
        make_item("m-no-year", "Paprika Dreams", year=None, genres=["Fantasy"],
                  synopsis="A dream detective enters the mind of patients.", popularity=30),
        make_item("tv-dark", "Dark", type="tv", year=2017, genres=["Mystery", "Science Fiction"],
                  synopsis="Families in a small town unravel a time travel conspiracy.", popularity=79),
        make_item("tv-westworld", "Westworld", type="tv", year=2016, genres=["Science Fiction", "Western"],
                  synopsis="Android hosts in a theme park begin to question their reality.", popularity=77),
        make_item("an-paprika", "Paprika", type="anime", year=2006, genres=["Animation", "Science Fiction"],
                  creators=["Satoshi Kon"], synopsis="A device lets therapists enter patients' dream worlds.",
                  popularity=68),
        make_item("an-gits", "Ghost in the Shell", type="anime", year=1995, genres=["Animation", "Science Fiction"],
                  synopsis="A cyborg officer hunts a hacker who invades minds.", popularity=72),
        make_item("bk-neuromancer", "Neuromancer", type="book", year=1984, genres=["Science Fiction"],
                  creators=["William Gibson"], synopsis="A washed-up hacker is hired for one last job in cyberspace.",
                  popularity=65),
        make_item("bk-three-body", "The Three-Body Problem", type="book", year=2008, genres=["Science Fiction"],
                  creators=["Liu Cixin"], synopsis="Contact with an alien civilization during a time of upheaval.",
                  popularity=66),
    ]


class FakeEmbeddings:
    """Records calls; vectors from the same local TF-IDF as the catalog."""

    def __init__(self, dim=TEST_DIM):
        self.dim = dim
        self.calls = []

    def embed(self, texts):
        self.calls.append(list(texts))
        local = LocalTfIdfEmbeddings(self.dim)
        return [local.embed([t])[0] for t in texts]


@pytest.fixture
def catalog():
    return build_catalog()


@pytest.fixture
def store(catalog):
    return CatalogStore(catalog, seed=7)


@pytest.fixture
def embeddings():
    return FakeEmbeddings()


@pytest.fixture
def engine(store, embeddings):
    return RecommendationEngine(store, embeddings, registry=None, reranker_chain=[])
