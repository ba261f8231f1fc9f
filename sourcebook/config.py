"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
INDEX_DIR = Path(os.getenv("INDEX_DIR", str(DATA_DIR / "index")))

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama3.1:8b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "mxbai-embed-large:latest")
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.1"))

# Model call resilience
MODEL_TIMEOUT = float(os.getenv("MODEL_TIMEOUT", "30.0"))        # seconds, per connect/read/write
MODEL_MAX_RETRIES = int(os.getenv("MODEL_MAX_RETRIES", "2"))     # additional attempts
MODEL_RETRY_DELAY = float(os.getenv("MODEL_RETRY_DELAY", "2.0")) # fixed backoff, seconds

# Chunking (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1200"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))
CHUNK_SEPARATORS = ["\n\n", "\n", " ", ""]

# Retrieval
QA_TOP_K = int(os.getenv("QA_TOP_K", "5"))
SUMMARY_TOP_K = int(os.getenv("SUMMARY_TOP_K", "10"))
SUMMARY_QUERY = os.getenv("SUMMARY_QUERY", "summary main topics content")
MAX_CONTEXT_CHARS = int(os.getenv("MAX_CONTEXT_CHARS", "16000"))

# URL ingestion
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "20.0"))
FETCH_USER_AGENT = os.getenv(
    "FETCH_USER_AGENT", "Mozilla/5.0 (compatible; Sourcebook/1.0)"
)

# HTTP surface
MAX_QUESTION_CHARS = int(os.getenv("MAX_QUESTION_CHARS", "2000"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
QUIET_LOGGERS = [
    name.strip()
    for name in os.getenv(
        "QUIET_LOGGERS", "pdfminer,httpx,httpcore,readability,faiss"
    ).split(",")
    if name.strip()
]
