"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Content sources (text and PDF directories)
- Change detection between stored records and a source
- Chunk extraction with page locators
- Embedding generation
- SQLite + FAISS record collections
- Incremental ingestion and semantic search
"""
