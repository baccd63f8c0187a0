"""Configuration management for Chat Hub backend."""
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Keys
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:8000"
).split(",")

# Model Configuration
SIMPLE_MODEL = "llama-3.1-8b-instant"
COMPLEX_MODEL = "llama-3.3-70b-versatile"
SUPPORTED_MODELS = {SIMPLE_MODEL, COMPLEX_MODEL}
MODEL_ALIASES = {
    "simple": SIMPLE_MODEL,
    "complex": COMPLEX_MODEL,
}
DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", SIMPLE_MODEL)
MAX_OUTPUT_TOKENS = 2048
TEMPERATURE = 0.7

# Chat Configuration
TITLE_MAX_LENGTH = 30  # characters
TITLE_ELLIPSIS = "..."
DEFAULT_CHAT_TITLE = "New Chat"

# Auth Configuration
PASSWORD_HASH_ITERATIONS = int(os.getenv("PASSWORD_HASH_ITERATIONS", "200000"))

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
