"""
Heuristic relevance ranking for research papers.

Search results from Semantic Scholar come back in the API's own order; this
module re-scores them against the user's query using keyword overlap,
citation count and recency so the most useful papers land in the prompt.
"""
from typing import List, Optional
import math

from app.models import ResearchPaper

TITLE_MATCH_WEIGHT = 3.0
ABSTRACT_MATCH_WEIGHT = 1.0
CITATION_WEIGHT = 0.5


def recency_bonus(year: Optional[int]) -> float:
    """+1 from 2020 on, another +0.5 from 2022 on."""
    if not year:
        return 0.0
    bonus = 0.0
    if year >= 2020:
        bonus += 1.0
    if year >= 2022:
        bonus += 0.5
    return bonus


def score_paper(paper: ResearchPaper, query_terms: List[str]) -> float:
    title = (paper.title or "").lower()
    abstract = (paper.abstract or "").lower()

    score = 0.0
    for term in query_terms:
        if term in title:
            score += TITLE_MATCH_WEIGHT
        if term in abstract:
            score += ABSTRACT_MATCH_WEIGHT

    # Log-scaled citation count
    score += math.log(paper.citation_count + 1) * CITATION_WEIGHT
    score += recency_bonus(paper.year)
    return score


def rank_papers_by_relevance(papers: List[ResearchPaper], query: str) -> List[ResearchPaper]:
    """
    Score papers against a query and sort them, best first.

    Args:
        papers: Papers from search, in API order
        query: User query; an empty query ranks on citations and recency only

    Returns:
        New list of papers with relevance_score set, sorted descending.
        Ties keep their input order.
    """
    query_terms = query.lower().split()
    scored = [paper.with_score(score_paper(paper, query_terms)) for paper in papers]
    return sorted(scored, key=lambda p: p.relevance_score, reverse=True)
