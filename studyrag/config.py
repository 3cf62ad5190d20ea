import os
from dotenv import load_dotenv
from pathlib import Path

# Load environment variables from .env file with explicit path
load_dotenv(dotenv_path=Path(__file__).parent.parent / '.env')

# OpenAI Configuration
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# Embedding Configuration
#
# EMBEDDING_PROVIDER selects the embedding backend: "openai" uses the OpenAI SDK,
# "http" posts {model, input} to EMBEDDING_ENDPOINT (self-hosted inference servers).
EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "openai").lower()
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "0")) or None
EMBEDDING_ENDPOINT = os.getenv("EMBEDDING_ENDPOINT")
EMBEDDING_API_KEY = os.getenv("EMBEDDING_API_KEY") or OPENAI_API_KEY
EMBEDDING_BATCH_SIZE = int(os.getenv("EMBEDDING_BATCH_SIZE", "20"))
EMBEDDING_CONCURRENCY = int(os.getenv("EMBEDDING_CONCURRENCY", "5"))
EMBEDDING_TIMEOUT_SECONDS = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "30"))
EMBEDDING_MAX_ATTEMPTS = int(os.getenv("EMBEDDING_MAX_ATTEMPTS", "2"))
EMBEDDING_BACKOFF_SECONDS = float(os.getenv("EMBEDDING_BACKOFF_SECONDS", "0.5"))

# Chat Model Configuration (any OpenAI-compatible endpoint, e.g. Groq)
CHAT_API_KEY = os.getenv("CHAT_API_KEY") or OPENAI_API_KEY
CHAT_BASE_URL = os.getenv("CHAT_BASE_URL")  # None -> api.openai.com
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o-mini")
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.2"))
CHAT_TIMEOUT_SECONDS = float(os.getenv("CHAT_TIMEOUT_SECONDS", "60"))

# Chunk Store Configuration
CHROMA_PERSIST_DIR = os.getenv(
    "CHROMA_PERSIST_DIR", str(Path(__file__).parent.parent / "chroma_db")
)
CHROMA_COLLECTION = os.getenv("CHROMA_COLLECTION", "document_chunks")
# Minimum similarity (1 - cosine distance) a row needs to be returned by search
MATCH_THRESHOLD = float(os.getenv("MATCH_THRESHOLD", "0.2"))

# Ingestion Configuration
MAX_TEXT_LENGTH = int(os.getenv("MAX_TEXT_LENGTH", "500000"))
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "800"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "300"))
MIN_CHUNK_LENGTH = int(os.getenv("MIN_CHUNK_LENGTH", "100"))
# "append" keeps earlier rows for a re-ingested docId, "replace" deletes them first
INGEST_ON_CONFLICT = os.getenv("INGEST_ON_CONFLICT", "append").lower()
INGEST_ROLLBACK_ON_FAILURE = os.getenv("INGEST_ROLLBACK_ON_FAILURE", "false").lower() == "true"

# Retrieval Configuration
DEFAULT_TOP_K = int(os.getenv("DEFAULT_TOP_K", "10"))
