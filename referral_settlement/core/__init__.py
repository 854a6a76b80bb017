"""Core checkout, settlement and cache consistency logic."""
from .accounts import AccountService
from .ambassadors import AmbassadorRevenueCache, calculate_revenue, link_stats
from .background import BestEffortDispatcher
from .cache_invalidation import CacheInvalidationWorker
from .leaderboard import Leaderboard
from .revenue import RevenueSplit, split_revenue
from .settlement import CheckoutRequest, CompletionResult, OrderLine, SettlementCoordinator

__all__ = [
    "AccountService",
    "AmbassadorRevenueCache",
    "BestEffortDispatcher",
    "CacheInvalidationWorker",
    "CheckoutRequest",
    "CompletionResult",
    "Leaderboard",
    "OrderLine",
    "RevenueSplit",
    "SettlementCoordinator",
    "calculate_revenue",
    "link_stats",
    "split_revenue",
]
