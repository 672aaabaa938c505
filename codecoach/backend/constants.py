APP_NAME = "CodeCoach Gateway"
APP_VERSION = "1.0.0"
DEFAULT_DB_PATH = "codecoach_state.db"
DEFAULT_CORS_ALLOW_ORIGINS = [
	"http://localhost",
	"http://127.0.0.1",
	"http://localhost:3000",
]
DEFAULT_TRUSTED_HOSTS = [
	"127.0.0.1",
	"localhost",
	"testserver",
]
SQLITE_BUSY_TIMEOUT_MS = 5000

DEFAULT_CALLER_ID = "popup"
# scheme and host must match exactly; an entry without a port accepts any port
DEFAULT_ALLOWED_ORIGINS = (
	"https://leetcode.com",
	"chrome-extension://",
	"http://localhost",
	"http://127.0.0.1",
)

# requests per window, keyed by message type
DEFAULT_RATE_LIMITS = {
	"completion": (10, 60.0),
	"explanation": (5, 60.0),
	"optimization": (5, 60.0),
	"hint": (15, 60.0),
	"default": (20, 60.0),
}
GLOBAL_LIMIT_MULTIPLIER = 2
RATE_HISTORY_RETENTION_S = 10 * 60

# (max_retries, base_delay_s, max_delay_s), keyed by error category
DEFAULT_RETRY_POLICIES = {
	"network": (3, 1.0, 8.0),
	"upstream_server_error": (2, 2.0, 10.0),
	"rate_limited": (1, 5.0, 30.0),
	"timeout": (2, 1.5, 6.0),
	"quota_exceeded": (0, 0.0, 0.0),
	"authentication": (0, 0.0, 0.0),
	"validation": (0, 0.0, 0.0),
	"configuration": (0, 0.0, 0.0),
	"unknown": (0, 0.0, 0.0),
}
RETRY_JITTER_MAX_S = 1.0
RETRY_RECORD_MAX_AGE_S = 10 * 60

HINT_MAX_LEVEL = 4
HINT_SESSION_TTL_S = 30 * 60
HINT_MAX_SESSIONS_PER_CALLER = 5
HINT_CODE_EVOLUTION_LIMIT = 10

SWEEP_INTERVAL_S = 5 * 60

AI_MESSAGE_TYPES = ("completion", "explanation", "optimization", "hint", "chatMessage")
CONFIG_MESSAGE_TYPES = (
	"getConfiguration",
	"saveConfiguration",
	"testAPIConnection",
	"updateSetting",
	"getSettings",
)
HINT_MESSAGE_TYPES = ("resetHints",)
SECURITY_MESSAGE_TYPES = ("securityStatus",)
SYSTEM_MESSAGE_TYPES = ("ping", "getStats")

AUTO_TRIGGER_FEATURES = {
	"completion": "autoComplete",
	"hint": "autoHint",
	"explanation": "autoErrorFix",
	"optimization": "autoOptimize",
}
