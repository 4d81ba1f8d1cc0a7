"""
Test suite for the PathRAG engine.

Organized by module:
- test_formatting.py - <SEP> fields, token budgets, CSV tables
- test_knowledge.py - Graph store and vector store
- test_entity_merger.py - Merge-and-upsert of entities and relationships
- test_extraction.py - Entity/relationship and query keyword extraction
- test_path_finder.py - Path search, flow scoring and path rendering
- test_context_builder.py - Dual-level query context assembly
- test_ingestion.py - Chunking, ingestion pipeline, orphan repair, deletion
"""

# Test fixtures are provided in conftest.py
