"""
Tests for heuristic paper relevance ranking.
"""
import math
import unittest

from app.models import ResearchPaper
from app.retrieval.ranking import rank_papers_by_relevance, recency_bonus, score_paper


def make_paper(paper_id: str, title: str = "Untitled", abstract=None, citations: int = 0, year=None) -> ResearchPaper:
    """Helper to create ResearchPaper objects for testing."""
    return ResearchPaper(
        paper_id=paper_id,
        title=title,
        abstract=abstract,
        year=year,
        citation_count=citations,
    )


class TestRecencyBonus(unittest.TestCase):

    def test_bonus_tiers(self):
        assert recency_bonus(None) == 0.0
        assert recency_bonus(2015) == 0.0
        assert recency_bonus(2020) == 1.0
        assert recency_bonus(2021) == 1.0
        assert recency_bonus(2022) == 1.5
        assert recency_bonus(2023) == 1.5


class TestScorePaper(unittest.TestCase):

    def test_title_and_abstract_matches(self):
        """Test +3 per term in title and +1 per term in abstract."""
        paper = make_paper("p1", title="Deep learning for vision", abstract="We study learning methods.")

        score = score_paper(paper, ["learning", "vision"])

        # learning: title 3 + abstract 1; vision: title 3
        assert score == 7.0

    def test_citation_component_is_logarithmic(self):
        paper = make_paper("p1", citations=99)

        assert score_paper(paper, []) == math.log(100) * 0.5

    def test_missing_abstract_is_safe(self):
        paper = make_paper("p1", title="Graph networks", abstract=None)

        assert score_paper(paper, ["graph"]) == 3.0


class TestRankPapersByRelevance(unittest.TestCase):

    def test_keyword_match_beats_unrelated_older_paper(self):
        """Test a recent, cited, matching paper ranks above an old unrelated one."""
        a = make_paper("A", title="Advances in neural networks", citations=100, year=2023)
        b = make_paper("B", title="Soil chemistry survey", citations=5, year=2015)

        ranked = rank_papers_by_relevance([b, a], "neural networks")

        assert [p.paper_id for p in ranked] == ["A", "B"]
        assert ranked[0].relevance_score > ranked[1].relevance_score

    def test_empty_query_ranks_by_citations_and_recency(self):
        """Test empty query scores are exactly 0.5*ln(c+1) + recency bonus."""
        papers = [
            make_paper("old", citations=1000, year=2010),
            make_paper("recent", citations=10, year=2022),
            make_paper("mid", citations=50, year=2020),
        ]

        ranked = rank_papers_by_relevance(papers, "")

        for paper in ranked:
            expected = 0.5 * math.log(paper.citation_count + 1) + recency_bonus(paper.year)
            assert abs(paper.relevance_score - expected) < 1e-9
        scores = [p.relevance_score for p in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_whitespace_query_matches_empty_query(self):
        papers = [make_paper("a", citations=3, year=2021), make_paper("b", citations=30)]

        assert [p.paper_id for p in rank_papers_by_relevance(papers, "   ")] == \
            [p.paper_id for p in rank_papers_by_relevance(papers, "")]

    def test_ties_keep_input_order(self):
        """Test stable sort for equal scores."""
        papers = [make_paper(str(i), title="Same title", citations=7, year=2019) for i in range(5)]

        ranked = rank_papers_by_relevance(papers, "title")

        assert [p.paper_id for p in ranked] == ["0", "1", "2", "3", "4"]

    def test_query_is_case_insensitive(self):
        paper = make_paper("p", title="CRISPR Gene Editing")

        ranked = rank_papers_by_relevance([paper], "crispr EDITING")

        assert ranked[0].relevance_score == 6.0

    def test_input_papers_are_not_mutated(self):
        paper = make_paper("p", title="Quantum error correction")

        ranked = rank_papers_by_relevance([paper], "quantum")

        assert paper.relevance_score is None
        assert ranked[0].relevance_score == 3.0

    def test_empty_list(self):
        assert rank_papers_by_relevance([], "anything") == []


if __name__ == "__main__":
    unittest.main()
