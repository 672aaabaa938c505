from codecoach.backend.core.errors import ResilienceError, RoutingError
from codecoach.backend.core.hint_sessions import HintSessionManager
from codecoach.backend.core.rate_limiter import RateLimiter
from codecoach.backend.core.resilience import ResilienceExecutor, classify
from codecoach.backend.core.router import MessageRouter
from codecoach.backend.core.sweeper import PeriodicSweeper
from codecoach.backend.core.types import CallerInfo, Route

__all__ = [
	"CallerInfo",
	"HintSessionManager",
	"MessageRouter",
	"PeriodicSweeper",
	"RateLimiter",
	"ResilienceError",
	"ResilienceExecutor",
	"Route",
	"RoutingError",
	"classify",
]
