"""
Semantic Scholar fetcher using the public Graph API.
Searches academic papers and normalizes them into ResearchPaper records.
"""
from typing import List, Optional
import requests

from app.config import SEMANTIC_SCHOLAR_API_BASE, SEMANTIC_SCHOLAR_API_KEY, HTTP_TIMEOUT
from app.exceptions import ExternalServiceError, NotFoundError, RateLimitedError
from app.ingestion.rate_limiter import RateLimiter, semantic_scholar_rate_limiter
from app.logging_config import get_logger
from app.models import Author, PaperSearchResponse, ResearchPaper

logger = get_logger(__name__)

PAPER_FIELDS = [
    "paperId",
    "title",
    "abstract",
    "year",
    "authors",
    "venue",
    "citationCount",
    "url",
    "externalIds",
    "s2FieldsOfStudy",
]


def semantic_scholar_url(paper_id: str) -> str:
    return f"https://www.semanticscholar.org/paper/{paper_id}"


def parse_paper(raw: dict) -> ResearchPaper:
    """Normalize a raw API paper, filling defaults for missing optional fields."""
    paper_id = raw.get("paperId") or ""
    external_ids = raw.get("externalIds") or {}
    fields = raw.get("s2FieldsOfStudy")

    return ResearchPaper(
        paper_id=paper_id,
        title=raw.get("title") or "",
        abstract=raw.get("abstract"),
        year=raw.get("year"),
        authors=[
            Author(name=a.get("name") or "", author_id=a.get("authorId"))
            for a in (raw.get("authors") or [])
            if a
        ],
        venue=raw.get("venue") or None,
        citation_count=raw.get("citationCount") or 0,
        url=raw.get("url") or semantic_scholar_url(paper_id),
        doi=external_ids.get("DOI") or None,
        fields_of_study=[f.get("category") for f in fields] if fields else None,
    )


class SemanticScholarClient:
    """Fetches research papers from Semantic Scholar, rate limited per process."""

    def __init__(
        self,
        base_url: str = SEMANTIC_SCHOLAR_API_BASE,
        api_key: Optional[str] = SEMANTIC_SCHOLAR_API_KEY,
        rate_limiter: RateLimiter = semantic_scholar_rate_limiter,
        timeout: int = HTTP_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers["Accept"] = "application/json"
        if api_key:
            self.session.headers["x-api-key"] = api_key

    def _get(self, path: str, params) -> requests.Response:
        self.rate_limiter.wait_if_needed()
        try:
            return self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ExternalServiceError(f"Semantic Scholar request failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: requests.Response) -> None:
        if response.status_code == 429:
            logger.warning("Rate limit exceeded, Semantic Scholar returned 429")
            raise RateLimitedError()
        if response.status_code == 404:
            raise NotFoundError(f"Semantic Scholar API error: 404 {response.reason}")
        if not response.ok:
            raise ExternalServiceError(
                f"Semantic Scholar API error: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )

    def search_papers(
        self,
        query: str,
        limit: int = 10,
        offset: int = 0,
        year: Optional[str] = None,
        fields_of_study: Optional[List[str]] = None,
        venue: Optional[str] = None,
        min_citation_count: Optional[int] = None,
    ) -> PaperSearchResponse:
        """
        Search Semantic Scholar for papers matching query.

        Args:
            query: Free-text search query
            limit: Maximum number of papers to return
            offset: Starting index for pagination
            year: Year or range filter, e.g. "2019" or "2016-2020"
            fields_of_study: Restrict to these fields (e.g. ["Medicine"])
            venue: Restrict to a publication venue
            min_citation_count: Drop papers with fewer citations

        Returns:
            PaperSearchResponse with normalized papers, total hits and next offset

        Raises:
            RateLimitedError: API returned 429
            ExternalServiceError: any other non-2xx status or transport failure
        """
        # List of tuples so fieldsOfStudy can repeat
        params = [
            ("query", query),
            ("limit", str(limit)),
            ("offset", str(offset)),
            ("fields", ",".join(PAPER_FIELDS)),
        ]
        if year:
            params.append(("year", year))
        for field_name in fields_of_study or []:
            params.append(("fieldsOfStudy", field_name))
        if venue:
            params.append(("venue", venue))
        if min_citation_count:
            params.append(("minCitationCount", str(min_citation_count)))

        logger.info(f"Searching Semantic Scholar (limit: {limit}, offset: {offset}): {query[:100]}")
        response = self._get("/paper/search", params)
        self._raise_for_status(response)

        data = response.json()
        papers = [parse_paper(raw) for raw in data.get("data") or []]
        logger.info(f"Found {len(papers)} papers ({data.get('total') or 0} total)")

        return PaperSearchResponse(
            papers=papers,
            total=data.get("total") or 0,
            next=data.get("next") or None,
        )

    def get_paper_details(self, paper_id: str) -> Optional[ResearchPaper]:
        """Fetch a single paper. Returns None if Semantic Scholar has no such paper."""
        logger.info(f"Fetching paper details for: {paper_id}")
        response = self._get(f"/paper/{paper_id}", {"fields": ",".join(PAPER_FIELDS)})
        try:
            self._raise_for_status(response)
        except NotFoundError:
            return None
        return parse_paper(response.json())

    def batch_get_paper_details(self, paper_ids: List[str]) -> List[Optional[ResearchPaper]]:
        """
        Fetch details for multiple papers, one rate-limited request each.

        A failed lookup leaves None in its slot so results line up with paper_ids.
        """
        logger.info(f"Batch fetching {len(paper_ids)} paper details")
        results = []
        for paper_id in paper_ids:
            try:
                results.append(self.get_paper_details(paper_id))
            except ExternalServiceError as e:
                logger.error(f"Error fetching paper {paper_id}: {e}")
                results.append(None)
        return results


def format_authors(authors: List[Author], max_authors: int = 3) -> str:
    """Join author names, truncating to max_authors with "et al."."""
    if not authors:
        return "Unknown Authors"

    names = ", ".join(a.name for a in authors[:max_authors])
    if len(authors) <= max_authors:
        return names
    return f"{names} et al."


def generate_apa_citation(paper: ResearchPaper) -> str:
    """APA-style reference string for a paper."""
    authors = format_authors(paper.authors)
    year = f"({paper.year})" if paper.year else "(n.d.)"
    link = f"https://doi.org/{paper.doi}" if paper.doi else paper.url

    citation = f"{authors} {year}. {paper.title}."
    if paper.venue:
        citation += f" *{paper.venue}*."
    if link:
        citation += f" {link}"
    return citation
