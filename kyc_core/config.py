
# ═════════════════════════════════════════════════════════════════════════
# KYC INTERVIEW AGENT
# Runtime Configuration & Constants
# ═════════════════════════════════════════════════════════════════════════

import os
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv

from .errors import ConfigurationError

# Load environment variables
load_dotenv()

# ── UPSTREAM PROVIDER ──
PROVIDER = os.getenv("KYC_PROVIDER", "gemini").strip().lower()

GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")

# Safe default endpoints, used when discovery fails
DEFAULT_MODELS = {
    "gemini": "gemini-2.0-flash",
    "groq": "llama-3.3-70b-versatile",
}
DEFAULT_MODEL = os.getenv("KYC_DEFAULT_MODEL") or DEFAULT_MODELS.get(PROVIDER, "gemini-2.0-flash")
VISION_MODEL: Optional[str] = os.getenv("KYC_VISION_MODEL") or None

LLM_TEMP = float(os.getenv("KYC_LLM_TEMP", "0.4"))  # Low: the model must stay on the JSON contract

# ── FAILURE POLICY ──
UPSTREAM_TIMEOUT_SECONDS = float(os.getenv("KYC_UPSTREAM_TIMEOUT", "20"))
MAX_ATTEMPTS = int(os.getenv("KYC_MAX_ATTEMPTS", "2"))
RETRY_WAIT_SECONDS = float(os.getenv("KYC_RETRY_WAIT", "1"))

# ── INTERVIEW PROTOCOL ──
MAX_RESPONDENT_TURNS = int(os.getenv("KYC_MAX_TURNS", "8"))
DEFAULT_LANGUAGE = os.getenv("KYC_DEFAULT_LANGUAGE", "en-IN")

# ── STORAGE ──
# Unset means non-durable, in-memory sessions
_sessions_dir = os.getenv("KYC_SESSIONS_DIR")
SESSIONS_DIR: Optional[Path] = Path(_sessions_dir) if _sessions_dir else None


def load_api_keys(provider: str = PROVIDER) -> List[str]:
    """Collect the credentials for the selected provider. Missing credentials are fatal."""
    if provider == "gemini":
        env_vars = ["GEMINI_API_KEY"]
    elif provider == "groq":
        env_vars = ["GROQ_API_KEY", "GROQ_API_KEY_2", "GROQ_API_KEY_3"]
    else:
        raise ConfigurationError(f"Unknown KYC_PROVIDER '{provider}' (expected 'gemini' or 'groq')")

    keys = []
    for var_name in env_vars:
        key = os.getenv(var_name)
        if key and key not in keys:
            keys.append(key)

    if not keys:
        raise ConfigurationError(f"CRITICAL ERROR: {env_vars[0]} environment variable not set.")
    return keys
