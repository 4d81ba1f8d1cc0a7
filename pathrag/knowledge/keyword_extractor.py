"""
Keyword Extractor - Query Keyword Extraction.

Splits a user question into high-level keywords (themes, matched against
relationship vectors) and low-level keywords (concrete names and details,
matched against entity vectors).
"""

import json
import re

from pydantic import BaseModel, Field

from pathrag.utils.llm_factory import CompleteFunc
from pathrag.utils.logger import get_logger

logger = get_logger(__name__)


_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


KEYWORDS_EXTRACTION_PROMPT = """---Role---

You are a helpful assistant tasked with identifying both high-level and low-level keywords in the user's query.

---Goal---

Given the query, list both high-level and low-level keywords. High-level keywords focus on overarching concepts or themes, while low-level keywords focus on specific entities, details, or concrete terms.

---Instructions---

- Output the keywords in JSON format.
- The JSON should have two keys:
  - "high_level_keywords" for overarching concepts or themes.
  - "low_level_keywords" for specific entities or details.

######################
-Examples-
######################
{examples}

#############################
-Real Data-
######################
Query: {query}
######################
The `Output` should be human text, not unicode characters. Keep the same language as `Query`.
Output:

"""

KEYWORDS_EXTRACTION_EXAMPLES = """Example 1:

Query: "How does international trade influence global economic stability?"
################
Output:
{
  "high_level_keywords": ["International trade", "Global economic stability", "Economic impact"],
  "low_level_keywords": ["Trade agreements", "Tariffs", "Currency exchange", "Imports", "Exports"]
}
#############################
Example 2:

Query: "What are the environmental consequences of deforestation on biodiversity?"
################
Output:
{
  "high_level_keywords": ["Environmental consequences", "Deforestation", "Biodiversity loss"],
  "low_level_keywords": ["Species extinction", "Habitat destruction", "Carbon emissions", "Rainforest", "Ecosystem"]
}
#############################
Example 3:

Query: "What is the role of education in reducing poverty?"
################
Output:
{
  "high_level_keywords": ["Education", "Poverty reduction", "Socioeconomic development"],
  "low_level_keywords": ["School access", "Literacy rates", "Job training", "Income inequality"]
}
#############################"""


class QueryKeywords(BaseModel):
    """Keywords extracted from a query."""

    high_level: list[str] = Field(default_factory=list, description="Themes; seed relationship search")
    low_level: list[str] = Field(default_factory=list, description="Specifics; seed entity search")

    @property
    def is_empty(self) -> bool:
        return not self.high_level and not self.low_level


def _keyword_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [kw.strip() for kw in value if isinstance(kw, str) and kw.strip()]


def parse_keywords_output(output: str) -> QueryKeywords:
    """
    Parse the first ``{...}`` span of the LLM output as the keyword object.

    Missing keys or unparseable JSON yield empty keyword lists.
    """
    match = _JSON_OBJECT_RE.search(output)
    if match is None:
        return QueryKeywords()

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.warning(f"Keyword extraction returned invalid JSON: {e}")
        return QueryKeywords()

    if not isinstance(data, dict):
        return QueryKeywords()

    return QueryKeywords(
        high_level=_keyword_list(data.get("high_level_keywords")),
        low_level=_keyword_list(data.get("low_level_keywords")),
    )


class KeywordExtractor:
    """
    LLM-based query keyword extractor.

    Usage:
        extractor = KeywordExtractor(complete)
        keywords = await extractor.extract("Who does Alice work with?")
    """

    def __init__(self, complete: CompleteFunc | None = None) -> None:
        self._complete = complete

    @property
    def complete(self) -> CompleteFunc:
        if self._complete is None:
            from pathrag.utils.llm_factory import get_complete_func

            self._complete = get_complete_func()
        return self._complete

    async def extract(self, query: str) -> QueryKeywords:
        prompt = KEYWORDS_EXTRACTION_PROMPT.format(
            examples=KEYWORDS_EXTRACTION_EXAMPLES,
            query=query,
        )
        keywords = parse_keywords_output(await self.complete(prompt))
        logger.info(
            f"Extracted keywords: high={keywords.high_level} low={keywords.low_level}"
        )
        return keywords
