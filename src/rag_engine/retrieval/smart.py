"""Multi-signal heuristic reranker that needs no model or network call."""

import re
from dataclasses import dataclass

from rag_engine.retrieval.rerankers import Reranker
from rag_engine.vector_store.base import VectorSearchMatch

ORIGINAL_SCORE_WEIGHT = 0.10

DEFINITION_PATTERNS = [
    re.compile(r"^export\s+(function|class|interface|type|const|enum|let|var)\s+", re.M),
    re.compile(r"^(function|class|interface|type)\s+\w+", re.M),
    re.compile(r"^(const|let|var)\s+\w+\s*=\s*(function|\(|async|\{|class)", re.M),
    re.compile(r"^\s*(public|private|protected)?\s*(static)?\s*(async)?\s*\w+\s*\([^)]*\)\s*[:{]", re.M),
    re.compile(r"^(export\s+)?default\s+(function|class)", re.M),
    re.compile(r"^\s*(async\s+)?def\s+\w+\s*\(", re.M),
    re.compile(r"^\s*class\s+\w+\s*[(:]", re.M),
]

SYMBOL_PATTERNS = [
    re.compile(r"(?:function|class|interface|type|enum|def)\s+(\w+)"),
    re.compile(r"(?:const|let|var)\s+(\w+)\s*="),
    re.compile(r"(\w+)\s*\([^)]*\)\s*[:{]"),
    re.compile(r"export\s+{\s*([^}]+)\s*}"),
]

IDENTIFIER_PATTERNS = [
    re.compile(r"\b[A-Z][a-zA-Z0-9]+\b"),
    re.compile(r"\b[a-z]+[A-Z][a-zA-Z0-9]*\b"),
    re.compile(r"\b\w+_\w+\b"),
]

STOP_WORDS = frozenset(
    """
    the a an is are was were be been being have has had do does did will would could
    should may might can to of in for on with at by from as into through during before
    after above below between under again further then once here there when where why
    how all each few more most other some such no not only own same so than too very
    just and but or if this that these those what which who whom
    """.split()
)


@dataclass
class SmartWeights:
    exact_match: float = 0.25
    symbol_match: float = 0.20
    definition: float = 0.15
    path_relevance: float = 0.10
    term_density: float = 0.15
    position: float = 0.05


@dataclass
class ScoreBreakdown:
    exact_match: float
    symbol_match: float
    definition_bonus: float
    path_relevance: float
    term_density: float
    position_bonus: float
    original_score: float
    total: float


def extract_terms(query: str) -> list[str]:
    return [t for t in query.lower().split() if len(t) > 2 and t not in STOP_WORDS]


def extract_identifiers(query: str) -> list[str]:
    """Backticked names plus PascalCase, camelCase and snake_case tokens, first occurrence order."""
    found = re.findall(r"`([^`]+)`", query)
    for pattern in IDENTIFIER_PATTERNS:
        found.extend(pattern.findall(query))
    return list(dict.fromkeys(found))


def extract_symbols(text: str) -> list[str]:
    symbols: list[str] = []
    for pattern in SYMBOL_PATTERNS:
        for name in pattern.findall(text):
            if "," in name:
                symbols.extend(s.strip() for s in name.split(","))
            elif name:
                symbols.append(name)
    return list(dict.fromkeys(s for s in symbols if s))


def is_definition(text: str) -> bool:
    return any(p.search(text) for p in DEFINITION_PATTERNS)


class SmartHeuristicReranker(Reranker):
    """Weighted sum of exact phrase, symbol, definition, path, density and position signals."""

    name = "smart-heuristic"

    def __init__(self, weights: SmartWeights | None = None, **overrides: float):
        self.weights = weights or SmartWeights(**overrides)

    def score(self, query, matches, token=None) -> list[float]:
        terms = extract_terms(query)
        identifiers = extract_identifiers(query)
        return [self.explain(query, m, terms, identifiers).total for m in matches]

    def explain(
        self,
        query: str,
        match: VectorSearchMatch,
        terms: list[str] | None = None,
        identifiers: list[str] | None = None,
    ) -> ScoreBreakdown:
        terms = extract_terms(query) if terms is None else terms
        identifiers = extract_identifiers(query) if identifiers is None else identifiers
        text = match.chunk.text
        text_lower = text.lower()
        path = match.chunk.path.lower()

        exact = 1.0 if query.lower() in text_lower else 0.0
        symbols = [s.lower() for s in extract_symbols(text)]
        symbol_hits = sum(1 for ident in identifiers if any(ident.lower() in s for s in symbols))
        symbol = symbol_hits / len(identifiers) if identifiers else 0.0
        definition = 1.0 if is_definition(text) else 0.0
        path_rel = sum(1 for t in terms if t in path) / len(terms) if terms else 0.0
        density = sum(1 for t in terms if t in text_lower) / len(terms) if terms else 0.0
        position = max(0.0, 1 - match.chunk.span.start_line / 1000)

        w = self.weights
        total = (
            exact * w.exact_match
            + symbol * w.symbol_match
            + definition * w.definition
            + path_rel * w.path_relevance
            + density * w.term_density
            + position * w.position
            + match.score * ORIGINAL_SCORE_WEIGHT
        )
        return ScoreBreakdown(exact, symbol, definition, path_rel, density, position, match.score, total)
