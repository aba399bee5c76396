from edge_guard.rate_limit.limiter import Allowed, Decision, RateLimiter, Throttled, rate_limit_headers
from edge_guard.rate_limit.policies import RateLimitPolicy, default_policies, parse_policy, policy_name_for_path
from edge_guard.rate_limit.predicates import build_skip_predicates
from edge_guard.rate_limit.store import MemoryCounterStore, RateCounter

__all__ = [
    "Allowed",
    "Decision",
    "MemoryCounterStore",
    "RateCounter",
    "RateLimitPolicy",
    "RateLimiter",
    "Throttled",
    "build_skip_predicates",
    "default_policies",
    "parse_policy",
    "policy_name_for_path",
    "rate_limit_headers",
]
