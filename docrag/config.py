"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DOCRAG_DATA_DIR", str(BASE_DIR / "data")))
DOCUMENTS_DIR = Path(os.getenv("DOCRAG_DOCUMENTS_DIR", str(BASE_DIR / "Data")))

# Ensure data directory exists
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_TIMEOUT = float(os.getenv("OLLAMA_TIMEOUT", "60.0"))
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama3.1:8b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "nomic-embed-text:latest")

# Chunking (token counts are estimated as characters / 4)
CHUNK_MAX_TOKENS = int(os.getenv("CHUNK_MAX_TOKENS", "200"))
CHARS_PER_TOKEN = 4

# Retrieval
SEARCH_MAX_RESULTS = int(os.getenv("SEARCH_MAX_RESULTS", "5"))

# Ingestion
INGEST_TIMEOUT_SECONDS = float(os.getenv("INGEST_TIMEOUT_SECONDS", "300"))
INGEST_CONTINUE_ON_ERROR = os.getenv("INGEST_CONTINUE_ON_ERROR", "false").lower() in ("1", "true", "yes")
HASH_CONTENT = os.getenv("HASH_CONTENT", "false").lower() in ("1", "true", "yes")
WATCH_DEBOUNCE_SECONDS = float(os.getenv("WATCH_DEBOUNCE_SECONDS", "2.0"))

# Agent tools
TOOL_TIMEOUT_SECONDS = float(os.getenv("TOOL_TIMEOUT_SECONDS", "30.0"))
MAX_TOOL_ROUNDS = int(os.getenv("MAX_TOOL_ROUNDS", "3"))

# Estimated prices in USD per token, for the session usage summary
INPUT_TOKEN_PRICE = float(os.getenv("INPUT_TOKEN_PRICE", "0.000001"))
OUTPUT_TOKEN_PRICE = float(os.getenv("OUTPUT_TOKEN_PRICE", "0.000002"))
EMBEDDING_TOKEN_PRICE = float(os.getenv("EMBEDDING_TOKEN_PRICE", "0.0000001"))

# Database
DB_PATH = DATA_DIR / "docrag.sqlite"
DOCUMENTS_COLLECTION = "data-documents"
CHUNKS_COLLECTION = "data-chunks"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
