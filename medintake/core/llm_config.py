import os

from medintake.core.env import load_env

load_env()

# which completion backend drives the intake conversation: ollama | hf | openai
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "ollama").strip().lower()

OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434/api")
OLLAMA_MODEL_CHAT = os.getenv("OLLAMA_MODEL_CHAT", "llama3.2")
OLLAMA_TIMEOUT_S = int(os.getenv("OLLAMA_TIMEOUT_S", "90"))

HF_MODEL_CHAT = os.getenv("HF_MODEL_CHAT", "meta-llama/Llama-3.1-8B-Instruct")
HF_TIMEOUT_S = int(os.getenv("HF_TIMEOUT_S", "60"))

OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_MODEL_CHAT = os.getenv("OPENAI_MODEL_CHAT", "gpt-3.5-turbo")
OPENAI_TIMEOUT_S = int(os.getenv("OPENAI_TIMEOUT_S", "60"))

CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.7"))
CHAT_MAX_TOKENS = int(os.getenv("CHAT_MAX_TOKENS", "250"))

# rate-limit backoff: retry n waits CHAT_RETRY_BASE_DELAY_S * 2**n
CHAT_MAX_RETRIES = int(os.getenv("CHAT_MAX_RETRIES", "3"))
CHAT_RETRY_BASE_DELAY_S = float(os.getenv("CHAT_RETRY_BASE_DELAY_S", "1.0"))

MEDS_DB_PATH = os.getenv("MEDS_DB_PATH", "")  # empty -> medintake/db/medications.db
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
