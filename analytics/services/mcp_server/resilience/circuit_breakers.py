"""Circuit Breaker Pattern

This module implements circuit breakers to prevent cascade failures when
ranked-order sources (files, databases) keep failing.

Circuit breaker states:
- CLOSED: Normal operation, requests flow through
- OPEN: Failure threshold exceeded, requests fail fast
- HALF_OPEN: Testing if the source recovered, limited requests allowed

Usage:
    >>> breaker = get_circuit_breaker("ranked_order_source")
    >>> orders = breaker.call(fetch_ranked_orders, source, scope)
"""

from collections.abc import Callable, Sequence
from typing import Any

import structlog
from pybreaker import CircuitBreaker

logger = structlog.get_logger(__name__)

_circuit_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    fail_max: int = 5,
    timeout_duration: int = 60,
    exclude: Sequence[type[BaseException]] = (),
) -> CircuitBreaker:
    """Get or create a circuit breaker by name.

    Circuit breakers are singletons per name. If a breaker with the given name
    already exists, it will be returned. Otherwise, a new one is created.

    Args:
        name: Unique name for this circuit breaker (e.g., "ranked_order_source")
        fail_max: Maximum number of failures before opening the circuit (default: 5)
        timeout_duration: Seconds to keep circuit open before trying again (default: 60)
        exclude: Exception types that do not count as failures (e.g. bad input data)

    Returns:
        CircuitBreaker instance
    """
    if name not in _circuit_breakers:
        logger.info(
            "creating_circuit_breaker",
            name=name,
            fail_max=fail_max,
            timeout_duration=timeout_duration,
        )

        breaker = CircuitBreaker(
            fail_max=fail_max,
            reset_timeout=timeout_duration,
            exclude=list(exclude),
            name=name,
            listeners=[_CircuitBreakerListener(name)],
        )

        _circuit_breakers[name] = breaker

    return _circuit_breakers[name]


class _CircuitBreakerListener:
    """Listener for circuit breaker state changes.

    Logs state transitions for monitoring and debugging.
    """

    def __init__(self, name: str):
        self.name = name

    def before_call(self, cb: CircuitBreaker, func: Callable, *args, **kwargs):
        logger.debug(
            "circuit_breaker_before_call",
            name=self.name,
            state=cb.current_state,
            fail_count=cb.fail_counter,
        )

    def success(self, cb: CircuitBreaker):
        logger.debug(
            "circuit_breaker_success",
            name=self.name,
            state=cb.current_state,
            fail_count=cb.fail_counter,
        )

    def failure(self, cb: CircuitBreaker, exc: Exception):
        logger.warning(
            "circuit_breaker_failure",
            name=self.name,
            state=cb.current_state,
            fail_count=cb.fail_counter,
            error_type=type(exc).__name__,
            error=str(exc),
        )

    def state_change(self, cb: CircuitBreaker, old_state, new_state):
        logger.warning(
            "circuit_breaker_state_change",
            name=self.name,
            old_state=old_state.name if old_state else None,
            new_state=new_state.name,
            fail_count=cb.fail_counter,
        )


def get_circuit_breaker_status() -> dict[str, dict[str, Any]]:
    """Get current status of all circuit breakers.

    Returns:
        Dict mapping circuit breaker names to their status:
        {
            "ranked_order_source": {
                "state": "closed",  # or "open", "half-open"
                "fail_count": 0,
                "fail_max": 5,
                "timeout_duration": 60
            },
        }
    """
    status = {}

    for name, breaker in _circuit_breakers.items():
        status[name] = {
            "state": breaker.current_state,
            "fail_count": breaker.fail_counter,
            "fail_max": breaker.fail_max,
            "timeout_duration": breaker.reset_timeout,
        }

    return status


def reset_all_circuit_breakers():
    """Reset all circuit breakers to closed state.

    This is useful for testing or after resolving underlying issues.
    """
    logger.info("resetting_all_circuit_breakers", count=len(_circuit_breakers))

    for name, breaker in _circuit_breakers.items():
        breaker.close()
        logger.info("circuit_breaker_reset", name=name)
