"""Tests for rerankers, semantic dedup, search and the LangChain retriever."""

from types import SimpleNamespace

import pytest

from helpers import make_chunk
from rag_engine.embeddings import DeterministicEmbeddingProvider
from rag_engine.errors import ConfigurationError
from rag_engine.retrieval import (
    HeuristicReranker,
    HybridWeights,
    NoneReranker,
    Reranker,
    RerankOptions,
    SemanticDeduplicator,
    SmartHeuristicReranker,
    create_reranker,
    fuse,
    keyword_search,
    query_weights,
    search,
    snippet,
)
from rag_engine.retrieval.cross_encoder import CrossEncoderReranker, build_prompt, parse_score
from rag_engine.retrieval.retriever import CodebaseRetriever
from rag_engine.retrieval.smart import extract_identifiers, extract_symbols, is_definition
from rag_engine.vector_store import LocalVectorStore, VectorSearchMatch


def match(chunk_id, score, text="x = 1", path="src/a.py", embedding=None, start=1):
    return VectorSearchMatch(make_chunk(chunk_id, path=path, text=text, embedding=embedding, start=start), score)


def ids(matches):
    return [m.chunk.chunk_id for m in matches]


# ---------------------------------------------------------------------------
# Rerankers
# ---------------------------------------------------------------------------


def test_heuristic_reranker_boosts_keyword_matches():
    matches = [match("b", 0.6, text="unrelated helper"), match("a", 0.5, text="def parse_config(): pass")]
    out = HeuristicReranker().rerank("parse config", matches)
    assert ids(out) == ["a", "b"]
    assert [m.score for m in out] == [1.0, 0.0]


def test_rerank_only_touches_top_k():
    """Matches past top_k keep their order and vector score."""
    matches = [match("a", 0.9), match("b", 0.8, text="parse this"), match("c", 0.7, text="parse that")]
    out = HeuristicReranker().rerank("parse", matches, RerankOptions(top_k=1))
    assert ids(out) == ["a", "b", "c"]
    assert [m.score for m in out[1:]] == [0.8, 0.7]


def test_rerank_min_score_and_no_normalisation():
    matches = [match("a", 0.9), match("b", 0.1)]
    out = HeuristicReranker().rerank("zzz qqq", matches, RerankOptions(min_score=0.5, normalize=False))
    assert ids(out) == ["a"] and out[0].score == 0.9


def test_none_reranker_and_factory():
    matches = [match("a", 0.1), match("b", 0.9)]
    assert ids(NoneReranker().rerank("q", matches)) == ["a", "b"]
    assert isinstance(create_reranker("heuristic"), HeuristicReranker)
    assert isinstance(create_reranker("smart-heuristic", exact_match=0.5), SmartHeuristicReranker)
    assert create_reranker("smart-heuristic", exact_match=0.5).weights.exact_match == 0.5
    with pytest.raises(ConfigurationError):
        create_reranker("bm25")


def test_identifier_and_symbol_extraction():
    assert extract_identifiers("where is `load_config` raising ParseError") == ["load_config", "ParseError"]
    assert extract_symbols("export { alpha, beta }") == ["alpha", "beta"]
    assert is_definition("def handler(event):\n    pass")
    assert not is_definition("x = 1")


def test_smart_reranker_prefers_definitions():
    definition = match("def", 0.5, text="def load_config(path):\n    return read(path)", path="src/config.py")
    usage = match("use", 0.6, text="cfg = other()\nprint(cfg)", path="src/main.py", start=400)
    reranker = SmartHeuristicReranker()
    out = reranker.rerank("load_config", [usage, definition])
    assert ids(out) == ["def", "use"]
    breakdown = reranker.explain("load_config", definition)
    assert breakdown.exact_match == 1.0
    assert breakdown.symbol_match == 1.0
    assert breakdown.definition_bonus == 1.0
    assert breakdown.original_score == 0.5


class FakeLLM:
    def __init__(self):
        self.prompts = []

    def invoke(self, prompt):
        self.prompts.append(prompt)
        if "broken" in prompt:
            raise RuntimeError("upstream error")
        return SimpleNamespace(content="0.9")


def test_cross_encoder_keeps_original_score_on_failure():
    llm = FakeLLM()
    matches = [match("ok", 0.3, text="good code"), match("bad", 0.4, text="broken code")]
    out = CrossEncoderReranker(llm=llm, batch_size=2).rerank("code", matches, RerankOptions(normalize=False))
    assert [(m.chunk.chunk_id, m.score) for m in out] == [("ok", 0.9), ("bad", 0.4)]
    assert len(llm.prompts) == 2
    assert 'Query: "code"' in llm.prompts[0]


def test_parse_score():
    assert parse_score("0.75") == 0.75
    assert parse_score([{"type": "text", "text": "0.5 fairly relevant"}]) == 0.5
    for bad in ("", "1.5", "nan", "relevant"):
        with pytest.raises(ValueError):
            parse_score(bad)


def test_build_prompt_truncates_long_chunks():
    prompt = build_prompt("q", "x" * 1500)
    assert "x" * 1000 + "..." in prompt
    assert "x" * 1001 not in prompt


# ---------------------------------------------------------------------------
# Semantic dedup
# ---------------------------------------------------------------------------


def near_duplicates():
    """Same embedding and text in one file, plus two distinct chunks elsewhere."""
    same = "def load(path): return open(path).read()"
    return [
        match("a1", 0.9, text=same, path="a.py"),
        match("a2", 0.8, text=same, path="a.py"),
        match("a3", 0.7, text=same, path="a.py"),
        match("b1", 0.6, text="class Cache: ttl seconds", path="b.py", embedding=[0.0, 1.0, 0.0]),
        match("c1", 0.5, text="render template jinja", path="c.py", embedding=[0.0, 0.0, 1.0]),
    ]


@pytest.mark.parametrize("strategy", ["greedy", "max-score", "diverse"])
def test_dedup_drops_identical_matches(strategy):
    result = SemanticDeduplicator(strategy=strategy, preserve_top_n=1).deduplicate(near_duplicates())
    assert ids(result.matches) == ["a1", "b1", "c1"]
    assert result.duplicates_removed == 2
    assert ids(result.duplicate_groups[0].removed) == ["a2", "a3"]


def test_dedup_preserves_top_n():
    result = SemanticDeduplicator(preserve_top_n=2).deduplicate(near_duplicates())
    assert ids(result.matches) == ["a1", "a2", "b1", "c1"]


def test_dedup_cross_file_off_compares_within_file_only():
    same = "shared helper body text"
    matches = [match("a", 0.9, text=same, path="a.py"), match("b", 0.8, text=same, path="b.py")]
    result = SemanticDeduplicator(preserve_top_n=0, cross_file=False, min_different_files=1).deduplicate(matches)
    assert ids(result.matches) == ["a", "b"]


def test_diverse_strategy_is_stricter_for_new_files():
    """Similarity 0.88 survives greedy at 0.95 but not diverse (0.95 x 0.9) from another file."""
    matches = [
        match("a", 0.9, text="alpha beta gamma delta", path="a.py"),
        match("b", 0.8, text="alpha beta gamma omega", path="b.py"),
    ]
    greedy = SemanticDeduplicator(strategy="greedy", preserve_top_n=1, min_different_files=1)
    diverse = SemanticDeduplicator(strategy="diverse", preserve_top_n=1, min_different_files=1)
    assert ids(greedy.deduplicate(matches).matches) == ["a", "b"]
    assert ids(diverse.deduplicate(matches).matches) == ["a"]


def test_dedup_restores_file_diversity():
    """Collapsed duplicates from other files are pulled back to reach min_different_files."""
    same = "def load(path): return open(path).read()"
    matches = [match(f"{p}1", s, text=same, path=f"{p}.py") for p, s in (("a", 0.9), ("b", 0.8), ("c", 0.7))]
    result = SemanticDeduplicator(preserve_top_n=1, min_different_files=3).deduplicate(matches)
    assert ids(result.matches) == ["a1", "b1", "c1"]
    collapsed = SemanticDeduplicator(preserve_top_n=1, min_different_files=1).deduplicate(matches)
    assert ids(collapsed.matches) == ["a1"]


def test_higher_threshold_never_removes_more():
    matches = near_duplicates()
    kept = [
        len(SemanticDeduplicator(threshold=t, preserve_top_n=0, min_different_files=1).deduplicate(matches).matches)
        for t in (0.3, 0.6, 0.95, 1.01)
    ]
    assert kept == sorted(kept)
    assert kept[-1] == len(matches)


def test_dedup_failure_returns_input():
    broken = match("a", 0.9)
    broken.chunk.embedding = None
    matches = [broken, match("b", 0.8)]
    result = SemanticDeduplicator(preserve_top_n=0).deduplicate(matches)
    assert result.matches == matches and result.duplicates_removed == 0


def test_dedup_rejects_unknown_strategy():
    with pytest.raises(ValueError):
        SemanticDeduplicator(strategy="random")


# ---------------------------------------------------------------------------
# Search and retriever
# ---------------------------------------------------------------------------

TEXTS = {
    "auth": "def login(user, password):\n    return check(user, password)",
    "cache": "class LRUCache:\n    def get(self, key): ...",
    "render": "def render(template, context):\n    return template.format(**context)",
}


@pytest.fixture
def provider():
    return DeterministicEmbeddingProvider(dimension=32)


@pytest.fixture
def store(provider):
    store = LocalVectorStore()
    chunks = [
        make_chunk(cid, path=f"src/{cid}.py", text=text, embedding=provider.embed([text])[0])
        for cid, text in TEXTS.items()
    ]
    store.replace_scope("scope", chunks)
    return store


def test_search_returns_exact_text_first(store, provider):
    results = search(store, provider, "scope", TEXTS["cache"], limit=2)
    assert len(results) == 2
    assert results[0].chunk.chunk_id == "cache"
    assert results[0].score == pytest.approx(1.0)


def test_search_empty_query_and_missing_scope(store, provider):
    assert search(store, provider, "scope", "   ") == []
    assert search(store, provider, "nope", "login") == []


class ExplodingReranker(Reranker):
    name = "exploding"

    def score(self, query, matches, token=None):
        raise RuntimeError("model unavailable")


def test_search_keeps_vector_order_when_rerank_fails(store, provider):
    plain = search(store, provider, "scope", TEXTS["auth"], limit=3)
    degraded = search(store, provider, "scope", TEXTS["auth"], limit=2, reranker=ExplodingReranker())
    assert ids(degraded) == ids(plain)[:2]


def test_search_with_rerank_and_dedup(store, provider):
    results = search(
        store,
        provider,
        "scope",
        "render template",
        limit=3,
        reranker=create_reranker("smart-heuristic"),
        deduplicator=SemanticDeduplicator(),
    )
    assert results[0].chunk.chunk_id == "render"
    assert len(results) == 3


def test_snippet_caps_lines():
    text = "\n".join(str(i) for i in range(40))
    assert snippet(text).splitlines()[-1] == "..."
    assert len(snippet(text).splitlines()) == 31
    assert snippet("short") == "short"


def test_codebase_retriever_documents(store, provider):
    retriever = CodebaseRetriever(store=store, provider=provider, scope_id="scope", top_k=2)
    docs = retriever.invoke(TEXTS["render"])
    assert len(docs) == 2
    assert docs[0].page_content == TEXTS["render"]
    assert docs[0].metadata["file_path"] == "src/render.py"
    assert docs[0].metadata["chunk_id"] == "render"
    assert set(docs[0].metadata) == {"file_path", "start_line", "end_line", "chunk_id", "source_id", "score"}


# ---------------------------------------------------------------------------
# Hybrid (keyword + vector)
# ---------------------------------------------------------------------------


def test_keyword_search_ranks_by_bm25():
    chunks = [
        make_chunk("both", text="token bucket rate limiter"),
        make_chunk("one", text="token counting helper for prompts and other long text"),
        make_chunk("none", text="render template"),
    ]
    out = keyword_search(chunks, "token bucket", limit=5)
    assert ids(out) == ["both", "one"]
    assert out[0].score > out[1].score > 0
    assert keyword_search(chunks, "   ", limit=5) == []


def test_fuse_prefers_chunks_found_by_both_searches():
    vector_hits = [match("a", 0.9), match("b", 0.8)]
    keyword_hits = [match("b", 7.0), match("c", 3.0)]
    fused = fuse(vector_hits, keyword_hits, limit=3, weights=HybridWeights(0.7, 0.3))
    assert ids(fused) == ["b", "a", "c"]
    assert fused[0].score == pytest.approx((0.7 / 62 + 0.3 / 61) * 1.2)
    assert fused[1].score == pytest.approx(0.7 / 61)


def test_query_weights_follow_query_shape():
    assert query_weights("How does the embedding cache expire entries?").vector == 0.8
    assert query_weights("LRUCache get").keyword == 0.7
    assert query_weights("cache eviction") == HybridWeights()


def test_hybrid_search_surfaces_exact_identifier(store, provider):
    results = search(store, provider, "scope", "LRUCache get", limit=1, hybrid=True)
    assert ids(results) == ["cache"]
