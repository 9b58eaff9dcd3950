"""
Constantes globales pour LLM Gateway.
"""

# ============================================================================
# CONFIGURATION PAR DÉFAUT
# ============================================================================
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8045
DEFAULT_HEARTBEAT_INTERVAL = 15.0  # secondes
DEFAULT_TIMEOUT = 300.0  # secondes (les streams longs des modèles "thinking")
DEFAULT_RETRY_TIMES = 0
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_ROUTES_FILE = "data/routes.json"

DEFAULT_GENERATION_PARAMS = {
    "temperature": 1.0,
    "top_p": 0.85,
    "top_k": 50,
    "max_tokens": 8096,
    "thinking_budget": 1024,
}

MASTER_ROUTE_ID = "master"
MODEL_CREATED_TIMESTAMP = 1704067200

# ============================================================================
# PROVIDERS
# ============================================================================
PROVIDER_ANTIGRAVITY = "antigravity"
PROVIDER_KIRO = "kiro"
PROVIDER_CODEX = "codex"

DEFAULT_PROVIDER_PRIORITIES = {
    PROVIDER_ANTIGRAVITY: 1,
    PROVIDER_KIRO: 2,
    PROVIDER_CODEX: 3,
}

DEFAULT_ACCOUNTS_FILES = {
    PROVIDER_ANTIGRAVITY: "data/accounts.json",
    PROVIDER_KIRO: "data/kiro_accounts.json",
    PROVIDER_CODEX: "data/codex_accounts.json",
}

# Marge avant expiration à partir de laquelle un token est rafraîchi (ms)
REFRESH_BUFFERS_MS = {
    PROVIDER_ANTIGRAVITY: 5 * 60 * 1000,
    PROVIDER_KIRO: 10 * 60 * 1000,
    PROVIDER_CODEX: 10 * 60 * 1000,
}

# ============================================================================
# ANTIGRAVITY (Google cloudcode v1internal)
# ============================================================================
ANTIGRAVITY_API_URL = "https://daily-cloudcode-pa.sandbox.googleapis.com/v1internal:streamGenerateContent?alt=sse"
ANTIGRAVITY_NO_STREAM_URL = "https://daily-cloudcode-pa.sandbox.googleapis.com/v1internal:generateContent"
ANTIGRAVITY_HOST = "daily-cloudcode-pa.sandbox.googleapis.com"
ANTIGRAVITY_USER_AGENT = "antigravity/1.11.3 windows/amd64"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

ANTIGRAVITY_MODELS = [
    "gemini-2.5-pro",
    "gemini-2.5-flash",
    "gemini-2.0-flash",
    "gemini-2.0-flash-thinking",
    "gemini-1.5-pro",
    "gemini-1.5-flash",
    "gemini-*",
]

PROJECT_ID_ADJECTIVES = ["useful", "bright", "swift", "calm", "bold"]
PROJECT_ID_NOUNS = ["fuze", "wave", "spark", "flow", "core"]

# ============================================================================
# KIRO (AWS CodeWhisperer)
# ============================================================================
KIRO_BASE_URL = "https://codewhisperer.{region}.amazonaws.com/generateAssistantResponse"
KIRO_SOCIAL_REFRESH_URL = "https://prod.{region}.auth.desktop.kiro.dev/refreshToken"
KIRO_IDC_REFRESH_URL = "https://oidc.{region}.amazonaws.com/token"
KIRO_VERSION = "0.7.5"
KIRO_DEFAULT_REGION = "us-east-1"
KIRO_AUTH_SOCIAL = "social"
KIRO_AUTH_IDC = "idc"
KIRO_DEFAULT_EXPIRES_IN = 3600
KIRO_CHAT_TRIGGER_TYPE = "MANUAL"
KIRO_ORIGIN = "AI_EDITOR"

KIRO_MODEL_MAPPING = {
    "claude-opus-4-5": "claude-opus-4.5",
    "claude-opus-4-5-20251101": "claude-opus-4.5",
    "claude-haiku-4-5": "claude-haiku-4.5",
    "claude-sonnet-4-5": "CLAUDE_SONNET_4_5_20250929_V1_0",
    "claude-sonnet-4-5-20250929": "CLAUDE_SONNET_4_5_20250929_V1_0",
    "claude-sonnet-4-20250514": "CLAUDE_SONNET_4_20250514_V1_0",
    "claude-3-7-sonnet-20250219": "CLAUDE_3_7_SONNET_20250219_V1_0",
}
KIRO_DEFAULT_MODEL = "claude-opus-4-5"

# ============================================================================
# CODEX (OpenAI)
# ============================================================================
CODEX_BASE_URL = "https://chatgpt.com/backend-api"
CODEX_RESPONSES_PATH = "/codex/responses"
CODEX_PLATFORM_API_URL = "https://api.openai.com/v1"
CODEX_TOKEN_URL = "https://auth.openai.com/oauth/token"
CODEX_CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"
CODEX_REDIRECT_URI = "http://localhost:1455/auth/callback"
CODEX_DEFAULT_MODEL = "gpt-4o"
CODEX_AUTH_OAUTH = "oauth"
CODEX_AUTH_API_KEY = "api_key"
CODEX_JWT_AUTH_CLAIM = "https://api.openai.com/auth"

CODEX_MODELS = [
    "gpt-5.2",
    "gpt-5.2-codex",
    "gpt-5.1-codex-max",
    "gpt-5.1-codex-mini",
    "gpt-4o",
    "gpt-4o-mini",
    "o3-mini",
    "o4-mini",
    "gpt-5*",
    "gpt-4*",
    "o3-*",
    "o4-*",
]

# Fenêtre par défaut quand un 429 ne donne aucun délai exploitable (3h)
DEFAULT_RATE_LIMIT_WINDOW_MS = 3 * 60 * 60 * 1000

# ============================================================================
# STREAMING
# ============================================================================
SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
HEARTBEAT_FRAME = ": heartbeat\n\n"
CHUNK_POOL_MAX_SIZE = 256

# ============================================================================
# QUOTAS
# ============================================================================
QUOTA_PERIODS = ("daily", "weekly", "monthly")
QUOTA_REASON_EXPIRED = "expired"
QUOTA_REASON_TOTAL = "total_exceeded"
QUOTA_REASON_PERIOD = "period_exceeded"
