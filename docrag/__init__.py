"""docrag: incremental document ingestion and semantic retrieval for RAG chat."""

__version__ = "0.1.0"
