"""
Research augmentation for ScholarChat.

Decides when a chat message would benefit from academic sources, fetches and
ranks papers from Semantic Scholar, and formats them as a numbered citation
block for the system prompt.
"""
from typing import List, Optional
import re
import time

from app.config import DEFAULT_NUM_PAPERS, MAX_RESEARCH_CANDIDATES
from app.exceptions import ExternalServiceError
from app.ingestion.semantic_scholar import SemanticScholarClient, format_authors
from app.logging_config import get_logger
from app.models import ResearchContext, ResearchPaper
from app.retrieval.ranking import rank_papers_by_relevance

logger = get_logger(__name__)

ABSTRACT_PREVIEW_CHARS = 300

RESEARCH_KEYWORDS = (
    "research",
    "study",
    "studies",
    "evidence",
    "findings",
    "methodology",
    "citation",
    "citations",
    "cite",
    "papers",
    "literature",
    "peer-reviewed",
    "peer reviewed",
    "meta-analysis",
    "systematic review",
    "clinical trial",
    "experiment",
    "scientific",
    "journal",
    "publication",
    "academic",
)

# Whole-word / whole-phrase match so "cite" doesn't fire on "excited"
KEYWORD_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(k) for k in RESEARCH_KEYWORDS) + r")\b",
    re.IGNORECASE,
)

# Interrogative followed (within a few words) by an evidence word, e.g.
# "what does the science say", "is there any proof", "how effective is ..."
# Bare "is", "are" and "do" openers do not count
EVIDENCE_QUESTION_PATTERN = re.compile(
    r"\b(?:what|how|why|does|can|which|is there|are there)\b(?:\W+\w+){0,5}?\W+"
    r"(?:research|science|scientists|evidence|proof|studies|experts|effective|effectiveness|efficacy|proven)\b",
    re.IGNORECASE,
)


def should_use_research(query: str) -> bool:
    """Heuristic: does this message ask for evidence-backed, citable answers?"""
    if not query or not query.strip():
        return False
    return bool(KEYWORD_PATTERN.search(query) or EVIDENCE_QUESTION_PATTERN.search(query))


def extract_paper_context(papers: List[ResearchPaper]) -> str:
    """
    Format papers as numbered prompt blocks the model can cite as [1], [2], ...

    Each block carries title, first two authors, year, citation count, a 300
    character abstract preview and the URL. Blocks are separated by a blank line.
    """
    blocks = []
    for index, paper in enumerate(papers, 1):
        authors = format_authors(paper.authors, 2)
        year = paper.year or "n.d."
        if paper.abstract:
            abstract = paper.abstract[:ABSTRACT_PREVIEW_CHARS]
            if len(paper.abstract) > ABSTRACT_PREVIEW_CHARS:
                abstract += "..."
        else:
            abstract = "No abstract available."

        blocks.append(
            f"[{index}] {paper.title} ({authors}, {year})\n"
            f"Citation count: {paper.citation_count}\n"
            f"Abstract: {abstract}\n"
            f"URL: {paper.url or 'N/A'}"
        )
    return "\n\n".join(blocks)


class ResearchAugmenter:
    """Fetches, ranks and formats papers for a query using a SemanticScholarClient."""

    def __init__(self, client: SemanticScholarClient):
        self.client = client

    def find_papers(
        self,
        query: str,
        num_papers: int = DEFAULT_NUM_PAPERS,
        max_candidates: int = MAX_RESEARCH_CANDIDATES,
        fields_of_study: Optional[List[str]] = None,
    ):
        """
        Search for 2x num_papers candidates (capped), rank, keep the best.

        Returns:
            (selected papers, total hits reported by the API)

        Raises:
            ExternalServiceError: search failed (RateLimitedError on 429)
        """
        search_results = self.client.search_papers(
            query=query,
            limit=min(num_papers * 2, max_candidates),
            fields_of_study=fields_of_study,
            min_citation_count=1,  # Filter out papers with no citations
        )
        ranked = rank_papers_by_relevance(search_results.papers, query)
        return ranked[:num_papers], search_results.total

    def augment(
        self,
        query: str,
        num_papers: int = DEFAULT_NUM_PAPERS,
        force: Optional[bool] = None,
    ) -> ResearchContext:
        """
        Build the research context for a chat message.

        Args:
            query: The user's message
            num_papers: How many papers to cite
            force: True/False overrides the heuristic; None lets should_use_research decide

        Returns:
            ResearchContext; empty when research doesn't apply or retrieval failed
        """
        use_research = should_use_research(query) if force is None else force
        if not use_research:
            return ResearchContext()

        research_start = time.time()
        try:
            papers, _ = self.find_papers(query, num_papers)
        except ExternalServiceError as e:
            logger.warning(f"Research papers unavailable, continuing without: {e}")
            return ResearchContext()
        except Exception as e:
            logger.error(f"Error retrieving research papers: {e}", exc_info=True)
            return ResearchContext()

        research_time = (time.time() - research_start) * 1000
        logger.info(f"  Research retrieval time: {research_time:.0f}ms ({len(papers)} papers)")

        if not papers:
            return ResearchContext()
        return ResearchContext(papers=papers, context=extract_paper_context(papers))
