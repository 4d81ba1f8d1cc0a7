"""
Entity Extractor - LLM-based Entity and Relationship Extraction.

Prompts the LLM for delimited entity/relationship records, optionally
"gleans" further records with follow-up turns, and parses the output into
extraction candidates for the merge engine.

Record format (one record per ``##``, terminated by ``<|COMPLETE|>``):

    ("entity"<|>NAME<|>TYPE<|>DESCRIPTION)
    ("relationship"<|>SOURCE<|>TARGET<|>DESCRIPTION<|>KEYWORDS<|>STRENGTH)
"""

import re
import time
from uuid import UUID

from pydantic import ValidationError

from pathrag.knowledge.schemas import (
    UNKNOWN_ENTITY_TYPE,
    ExtractedEntity,
    ExtractedRelationship,
    ExtractionResult,
    TextChunk,
)
from pathrag.utils.llm_factory import CompleteFunc
from pathrag.utils.logger import get_logger

logger = get_logger(__name__)


class EntityExtractionError(Exception):
    """Raised when entity extraction fails."""

    pass


TUPLE_DELIMITER = "<|>"
RECORD_DELIMITER = "##"
COMPLETION_DELIMITER = "<|COMPLETE|>"

DEFAULT_ENTITY_TYPES = ["organization", "person", "geo", "event", "category"]

_RECORD_RE = re.compile(r"\((.*)\)", re.DOTALL)
_FLOAT_RE = re.compile(r"^[-+]?[0-9]*\.?[0-9]+$")


# ============================================================================
# Extraction Prompts
# ============================================================================

ENTITY_EXTRACTION_PROMPT = """-Goal-
Given a text document that is potentially relevant to this activity and a list of entity types, identify all entities of those types from the text and all relationships among the identified entities.
Use English as output language.

-Steps-
1. Identify all entities. For each identified entity, extract the following information:
- entity_name: Name of the entity, use same language as input text. If English, capitalized the name.
- entity_type: One of the following types: [{entity_types}]
- entity_description: Comprehensive description of the entity's attributes and activities
Format each entity as ("entity"{tuple_delimiter}<entity_name>{tuple_delimiter}<entity_type>{tuple_delimiter}<entity_description>)

2. From the entities identified in step 1, identify all pairs of (source_entity, target_entity) that are *clearly related* to each other.
For each pair of related entities, extract the following information:
- source_entity: name of the source entity, as identified in step 1
- target_entity: name of the target entity, as identified in step 1
- relationship_description: explanation as to why you think the source entity and the target entity are related to each other
- relationship_strength: a numeric score indicating strength of the relationship between the source entity and target entity
- relationship_keywords: one or more high-level key words that summarize the overarching nature of the relationship, focusing on concepts or themes rather than specific details
Format each relationship as ("relationship"{tuple_delimiter}<source_entity>{tuple_delimiter}<target_entity>{tuple_delimiter}<relationship_description>{tuple_delimiter}<relationship_keywords>{tuple_delimiter}<relationship_strength>)

3. Identify high-level key words that summarize the main concepts, themes, or topics of the entire text. These should capture the overarching ideas present in the document.
Format the content-level key words as ("content_keywords"{tuple_delimiter}<high_level_keywords>)

4. Return output in English as a single list of all the entities and relationships identified in steps 1 and 2. Use **{record_delimiter}** as the list delimiter.

5. When finished, output {completion_delimiter}

######################
-Examples-
######################
{examples}

#############################
-Real Data-
######################
Entity_types: {entity_types}
Text: {text}
######################
Output:
"""

EXTRACTION_EXAMPLES = """Example 1:

Entity_types: [person, technology, mission, organization, location]
Text:
while Alex clenched his jaw, the buzz of frustration dull against the backdrop of Taylor's authoritarian certainty. It was this competitive undercurrent that kept him alert, the sense that his and Jordan's shared commitment to discovery was an unspoken rebellion against Cruz's narrowing vision of control and order.

Then Taylor did something unexpected. They paused beside Jordan and, for a moment, observed the device with something akin to reverence. "If this tech can be understood..." Taylor said, their voice quieter, "It could change the game for us. For all of us."

The underlying dismissal earlier seemed to falter, replaced by a glimpse of reluctant respect for the gravity of what lay in their hands. Jordan looked up, and for a fleeting heartbeat, their eyes locked with Taylor's, a wordless clash of wills softening into an uneasy truce.

It was a small transformation, barely perceptible, but one that Alex noted with an inward nod. They had all been brought here by different paths
################
Output:
("entity"{tuple_delimiter}"Alex"{tuple_delimiter}"person"{tuple_delimiter}"Alex is a character who experiences frustration and is observant of the dynamics among other characters."){record_delimiter}
("entity"{tuple_delimiter}"Taylor"{tuple_delimiter}"person"{tuple_delimiter}"Taylor is portrayed with authoritarian certainty and shows a moment of reverence towards a device, indicating a change in perspective."){record_delimiter}
("entity"{tuple_delimiter}"Jordan"{tuple_delimiter}"person"{tuple_delimiter}"Jordan shares a commitment to discovery and has a significant interaction with Taylor regarding a device."){record_delimiter}
("entity"{tuple_delimiter}"Cruz"{tuple_delimiter}"person"{tuple_delimiter}"Cruz is associated with a vision of control and order, influencing the dynamics among other characters."){record_delimiter}
("entity"{tuple_delimiter}"The Device"{tuple_delimiter}"technology"{tuple_delimiter}"The Device is central to the story, with potential game-changing implications, and is revered by Taylor."){record_delimiter}
("relationship"{tuple_delimiter}"Alex"{tuple_delimiter}"Taylor"{tuple_delimiter}"Alex is affected by Taylor's authoritarian certainty and observes changes in Taylor's attitude towards the device."{tuple_delimiter}"power dynamics, perspective shift"{tuple_delimiter}7){record_delimiter}
("relationship"{tuple_delimiter}"Alex"{tuple_delimiter}"Jordan"{tuple_delimiter}"Alex and Jordan share a commitment to discovery, which contrasts with Cruz's vision."{tuple_delimiter}"shared goals, rebellion"{tuple_delimiter}6){record_delimiter}
("relationship"{tuple_delimiter}"Taylor"{tuple_delimiter}"Jordan"{tuple_delimiter}"Taylor and Jordan interact directly regarding the device, leading to a moment of mutual respect and an uneasy truce."{tuple_delimiter}"conflict resolution, mutual respect"{tuple_delimiter}8){record_delimiter}
("relationship"{tuple_delimiter}"Jordan"{tuple_delimiter}"Cruz"{tuple_delimiter}"Jordan's commitment to discovery is in rebellion against Cruz's vision of control and order."{tuple_delimiter}"ideological conflict, rebellion"{tuple_delimiter}5){record_delimiter}
("relationship"{tuple_delimiter}"Taylor"{tuple_delimiter}"The Device"{tuple_delimiter}"Taylor shows reverence towards the device, indicating its importance and potential impact."{tuple_delimiter}"reverence, technological significance"{tuple_delimiter}9){record_delimiter}
("content_keywords"{tuple_delimiter}"power dynamics, ideological conflict, discovery, rebellion"){completion_delimiter}
#############################"""

CONTINUE_EXTRACTION_PROMPT = (
    "MANY entities were missed in the last extraction.  Add them below using the same format:\n"
)

IF_LOOP_EXTRACTION_PROMPT = (
    "It appears some entities may have still been missed.  "
    "Answer YES | NO if there are still entities that need to be added.\n"
)


def build_extraction_prompt(text: str, entity_types: list[str] | None = None) -> str:
    """Fill the extraction prompt (and its worked example) for ``text``."""
    delimiters = {
        "tuple_delimiter": TUPLE_DELIMITER,
        "record_delimiter": RECORD_DELIMITER,
        "completion_delimiter": COMPLETION_DELIMITER,
    }
    return ENTITY_EXTRACTION_PROMPT.format(
        entity_types=",".join(entity_types or DEFAULT_ENTITY_TYPES),
        examples=EXTRACTION_EXAMPLES.format(**delimiters),
        text=text,
        **delimiters,
    )


# ============================================================================
# Record Parsing
# ============================================================================


def split_by_markers(content: str, markers: list[str]) -> list[str]:
    """Split on any of ``markers``, dropping blank pieces and stripping the rest."""
    if not markers:
        return [content]
    pattern = "|".join(re.escape(marker) for marker in markers)
    return [piece.strip() for piece in re.split(pattern, content) if piece.strip()]


def clean_str(value: str) -> str:
    return value.strip().strip('"').strip("'").strip()


def parse_extraction_output(
    output: str,
    source_id: str,
    document_id: UUID,
) -> ExtractionResult:
    """
    Parse delimited LLM output into entity and relationship candidates.

    Records that are not well-formed entity/relationship tuples are skipped.

    Args:
        output: Raw LLM output (all gleaning passes concatenated)
        source_id: Text unit the candidates are attributed to
        document_id: Owning document

    Returns:
        ExtractionResult with the parsed candidates
    """
    result = ExtractionResult(source_id=source_id, document_id=document_id)

    for record in split_by_markers(output, [RECORD_DELIMITER, COMPLETION_DELIMITER]):
        match = _RECORD_RE.search(record)
        if match is None:
            continue

        attributes = split_by_markers(match.group(1), [TUPLE_DELIMITER])
        if not attributes:
            continue

        kind = attributes[0]
        try:
            if kind == '"entity"' and len(attributes) >= 4:
                result.entities.append(ExtractedEntity(
                    name=clean_str(attributes[1]),
                    entity_type=clean_str(attributes[2]).upper() or UNKNOWN_ENTITY_TYPE,
                    description=clean_str(attributes[3]),
                    source_id=source_id,
                    document_id=document_id,
                ))
            elif kind == '"relationship"' and len(attributes) >= 5:
                last = attributes[-1].strip()
                weight = float(last) if len(attributes) > 5 and _FLOAT_RE.match(last) else 1.0
                result.relationships.append(ExtractedRelationship(
                    source_name=clean_str(attributes[1]),
                    target_name=clean_str(attributes[2]),
                    description=clean_str(attributes[3]),
                    keywords=clean_str(attributes[4]),
                    weight=weight,
                    source_id=source_id,
                    document_id=document_id,
                ))
            elif kind != '"content_keywords"':
                result.skipped_records += 1
        except ValidationError as e:
            result.skipped_records += 1
            logger.debug(f"Skipping malformed extraction record {record[:80]!r}: {e.errors()[0]['msg']}")

    return result


# ============================================================================
# Entity Extractor
# ============================================================================


class EntityExtractor:
    """
    LLM-based entity and relationship extractor.

    Converts text units into extraction candidates for the merge engine.

    Usage:
        extractor = EntityExtractor(complete)
        result = await extractor.extract(chunk)
        for entity in result.entities:
            await merger.merge_entity(entity)
    """

    def __init__(
        self,
        complete: CompleteFunc | None = None,
        max_gleaning: int = 1,
        entity_types: list[str] | None = None,
    ) -> None:
        """
        Initialize the entity extractor.

        Args:
            complete: Completion capability (if None, uses the configured LLM)
            max_gleaning: Number of "continue extraction" follow-ups
            entity_types: Entity types offered to the LLM
        """
        self._complete = complete
        self.max_gleaning = max_gleaning
        self.entity_types = entity_types or list(DEFAULT_ENTITY_TYPES)

    @property
    def complete(self) -> CompleteFunc:
        """Get the completion capability."""
        if self._complete is None:
            from pathrag.utils.llm_factory import get_complete_func

            self._complete = get_complete_func()
        return self._complete

    async def extract(self, chunk: TextChunk) -> ExtractionResult:
        """Extract candidates from one text unit."""
        return await self.extract_text(chunk.content, chunk.chunk_id, chunk.document_id)

    async def extract_text(
        self,
        text: str,
        source_id: str,
        document_id: UUID,
    ) -> ExtractionResult:
        """
        Extract entities and relationships from arbitrary text.

        Args:
            text: Text to analyze
            source_id: Text unit the candidates are attributed to
            document_id: Owning document

        Returns:
            ExtractionResult with the parsed candidates

        Raises:
            EntityExtractionError: If an LLM call fails
        """
        start_time = time.time()
        prompt = build_extraction_prompt(text, self.entity_types)

        try:
            output = await self.complete(prompt)
            history = [
                {"role": "user", "content": prompt},
                {"role": "assistant", "content": output},
            ]

            for i in range(self.max_gleaning):
                glean = await self.complete(CONTINUE_EXTRACTION_PROMPT, history)
                history += [
                    {"role": "user", "content": CONTINUE_EXTRACTION_PROMPT},
                    {"role": "assistant", "content": glean},
                ]
                output += glean

                if i == self.max_gleaning - 1:
                    break

                answer = await self.complete(IF_LOOP_EXTRACTION_PROMPT, history)
                answer = answer.strip().strip('"').strip("'").lower()
                history += [
                    {"role": "user", "content": IF_LOOP_EXTRACTION_PROMPT},
                    {"role": "assistant", "content": answer},
                ]
                if answer != "yes":
                    break

        except Exception as e:
            logger.error(f"Extraction failed for {source_id}: {e}")
            raise EntityExtractionError(f"LLM extraction failed for {source_id}: {e}") from e

        result = parse_extraction_output(output, source_id, document_id)
        result.extraction_time_seconds = time.time() - start_time

        logger.info(
            f"Extracted {result.entity_count} entities, {result.relationship_count} relationships "
            f"from {source_id} in {result.extraction_time_seconds:.2f}s"
        )
        if result.skipped_records:
            logger.debug(f"Skipped {result.skipped_records} malformed records from {source_id}")

        return result

    async def extract_batch(self, chunks: list[TextChunk]) -> list[ExtractionResult]:
        """
        Extract candidates from multiple text units, one after another.

        Args:
            chunks: Text units to process

        Returns:
            One ExtractionResult per chunk, in input order
        """
        results: list[ExtractionResult] = []

        for i, chunk in enumerate(chunks):
            logger.info(f"Processing chunk {i + 1}/{len(chunks)}")
            results.append(await self.extract(chunk))

        logger.info(
            f"Batch extraction complete: {sum(r.entity_count for r in results)} entities, "
            f"{sum(r.relationship_count for r in results)} relationships from {len(chunks)} chunks"
        )
        return results
