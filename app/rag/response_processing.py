"""
Response post-processing for ScholarChat.

Turns numbered citation markers in generated answers into links for display.
"""
import re
from typing import List

from app.ingestion.semantic_scholar import semantic_scholar_url
from app.models import ResearchPaper

# Matches "[3]" but not the "[[3]]" produced by link_citations, so it is idempotent
CITATION_MARKER_PATTERN = r'(?<!\[)\[(\d+)\](?!\])'
LINK_TITLE_MAX_CHARS = 50


def link_citations(text: str, papers: List[ResearchPaper]) -> str:
    """
    Replace [n] markers with markdown links to the n-th paper.

    [2] becomes [[2]](url "Paper title") with the title cut to 50 chars.
    Markers without a matching paper are left as they are.
    """
    if not papers or not text:
        return text

    def replace_marker(match):
        number = int(match.group(1))
        if number < 1 or number > len(papers):
            return match.group(0)

        paper = papers[number - 1]
        url = paper.url or semantic_scholar_url(paper.paper_id)
        title = paper.title
        if len(title) > LINK_TITLE_MAX_CHARS:
            title = title[:LINK_TITLE_MAX_CHARS] + "..."
        title = title.replace('"', "'")
        return f'[[{number}]]({url} "{title}")'

    return re.sub(CITATION_MARKER_PATTERN, replace_marker, text)
