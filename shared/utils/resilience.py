"""
shared/utils/resilience.py
Circuit breakers for outbound calls to external services.
"""

import logging

from pybreaker import CircuitBreaker, CircuitBreakerListener

logger = logging.getLogger(__name__)


class _LoggingListener(CircuitBreakerListener):
    def __init__(self, service_name: str):
        self.service_name = service_name

    def state_change(self, cb, old_state, new_state):
        logger.warning(
            "Circuit breaker for %s changed %s -> %s",
            self.service_name,
            getattr(old_state, "name", old_state),
            getattr(new_state, "name", new_state),
        )


class CircuitBreakerManager:
    """Manages circuit breakers for each downstream service."""

    def __init__(self, fail_max: int = 5, reset_timeout: int = 60):
        self.fail_max = fail_max
        self.reset_timeout = reset_timeout
        self.breakers = {}

    def get_breaker(self, service_name: str) -> CircuitBreaker:
        """Get or create a circuit breaker for a service."""
        if service_name not in self.breakers:
            self.breakers[service_name] = CircuitBreaker(
                fail_max=self.fail_max,
                reset_timeout=self.reset_timeout,
                listeners=[_LoggingListener(service_name)],
                name=service_name,
            )
        return self.breakers[service_name]


circuit_breaker_manager = CircuitBreakerManager()
