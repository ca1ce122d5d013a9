import re
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

# Candidates at or below this never make it into the ranked list
INCLUSION_THRESHOLD = 0.3
# Head candidate must be strictly above this to be accepted as the match
ACCEPTANCE_THRESHOLD = 0.5

_CLEAN_RE = re.compile(r"[^a-z0-9\s]")


class RemoteCandidate(NamedTuple):
    id: str
    title_variants: List[str]
    primary_title: Optional[str] = None


class ScoredVariant(NamedTuple):
    text: str
    similarity: float


class RankedCandidate(NamedTuple):
    id: str
    title: str
    similarity: float


# --- Normalizer ---

def normalize_title(title: Optional[str]) -> str:
    """Lowercase and keep only ascii letters, digits and whitespace."""
    return _CLEAN_RE.sub("", (title or "").lower())


def title_tokens(clean: str) -> List[str]:
    return [t for t in clean.split() if len(t) > 2]


def normalize_title_tokens(title: Optional[str]) -> Tuple[str, List[str]]:
    clean = normalize_title(title)
    return clean, title_tokens(clean)


# --- Scorer ---

def token_similarity(query_tokens: List[str], cand_tokens: List[str]) -> float:
    """Fraction of query tokens found in the candidate by substring relation
    in either direction, over the larger token count."""
    if not query_tokens or not cand_tokens:
        return 0.0
    common = [t for t in query_tokens if any(ct in t or t in ct for ct in cand_tokens)]
    return len(common) / max(len(query_tokens), len(cand_tokens))


def string_similarity(a: str, b: str) -> float:
    """Positional character agreement. Not an edit distance: shifted content
    scores poorly, same-prefix same-length strings score well."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 0.0
    same = sum(1 for x, y in zip(a, b) if x == y)
    return same / longest


def title_similarity(query: Optional[str], candidate: Optional[str]) -> float:
    q_clean, q_tokens = normalize_title_tokens(query)
    c_clean, c_tokens = normalize_title_tokens(candidate)
    return _score(q_clean, q_tokens, c_clean, c_tokens)


def _score(q_clean: str, q_tokens: List[str], c_clean: str, c_tokens: List[str]) -> float:
    return max(token_similarity(q_tokens, c_tokens), string_similarity(q_clean, c_clean))


# --- Ranker ---

def candidate_from_manga(item: Dict[str, Any]) -> RemoteCandidate:
    """Flatten a MangaDex manga record into its usable title variants.

    Variants are the en / ja / ja_ro primary titles followed by the first
    value of every altTitles group, in that order, with empties dropped.
    """
    attrs = item.get("attributes") or {}
    titles = attrs.get("title") or {}
    raw: List[Any] = [titles.get("en"), titles.get("ja"), titles.get("ja_ro")]
    for alt in attrs.get("altTitles") or []:
        if isinstance(alt, dict) and alt:
            raw.append(next(iter(alt.values())))
    variants = [v for v in raw if isinstance(v, str) and v]
    primary = titles.get("en") if isinstance(titles.get("en"), str) and titles.get("en") else None
    return RemoteCandidate(id=str(item.get("id") or ""), title_variants=variants, primary_title=primary)


def score_variants(query: str, candidate: RemoteCandidate) -> List[ScoredVariant]:
    q_clean, q_tokens = normalize_title_tokens(query)
    # A candidate with no titles is scored as the empty title
    variants = candidate.title_variants or [""]
    scored: List[ScoredVariant] = []
    for text in variants:
        c_clean, c_tokens = normalize_title_tokens(text)
        scored.append(ScoredVariant(text, _score(q_clean, q_tokens, c_clean, c_tokens)))
    return scored


def best_variant(query: str, candidate: RemoteCandidate) -> ScoredVariant:
    # max() keeps the first of equal scores
    return max(score_variants(query, candidate), key=lambda sv: sv.similarity)


def rank_candidate(query: str, candidate: RemoteCandidate) -> RankedCandidate:
    best = best_variant(query, candidate)
    display = candidate.primary_title or (candidate.title_variants[0] if candidate.title_variants else "")
    return RankedCandidate(id=candidate.id, title=display, similarity=best.similarity)


def rank_candidates(query: str, candidates: List[RemoteCandidate]) -> List[RankedCandidate]:
    """Score every candidate, drop weak ones and sort best first.

    Ties keep their search order.
    """
    ranked = [rank_candidate(query, c) for c in candidates]
    kept = [r for r in ranked if r.similarity > INCLUSION_THRESHOLD]
    return sorted(kept, key=lambda r: r.similarity, reverse=True)


def select_match(ranked: List[RankedCandidate]) -> Optional[RankedCandidate]:
    """Head of the ranked list if it clears the acceptance gate."""
    if ranked and ranked[0].similarity > ACCEPTANCE_THRESHOLD:
        return ranked[0]
    return None
