"""
Circuit Breaker Pattern Implementation.

Provides circuit breaker protection for the side-effect providers called by
node executors (scheduling API, catalog lookup, lead CRM, text generation),
so a provider outage makes executors fail fast into their error branch
instead of waiting on every call for the full timeout.

Circuit breaker states:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is down, requests fail fast without calling the service
- HALF_OPEN: Testing if service recovered, limited requests allowed

Usage:
    from shared.circuit_breaker import scheduling_breaker, call_with_breaker
    import pybreaker

    try:
        slots = await call_with_breaker(scheduling_breaker, client.get_slots, ...)
    except pybreaker.CircuitBreakerError:
        # Circuit is OPEN - provider is down, executor takes its error branch
        ...
"""

import logging
from typing import Any, Callable

import pybreaker

logger = logging.getLogger(__name__)


class CircuitBreakerLogger(pybreaker.CircuitBreakerListener):
    """Log circuit breaker state changes and failures."""

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        """Log state transitions."""
        if new_state.name == "open":
            logger.warning(
                f"Circuit breaker '{cb.name}' OPENED - "
                f"provider appears down, failing fast for {cb.reset_timeout}s"
            )
        elif new_state.name == "closed":
            logger.info(f"Circuit breaker '{cb.name}' CLOSED - provider recovered")
        else:
            logger.info(
                f"Circuit breaker '{cb.name}' state: {old_state.name} -> {new_state.name}"
            )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: Exception) -> None:
        """Log failures that count toward opening the circuit."""
        logger.warning(
            f"Circuit breaker '{cb.name}' recorded failure: {type(exc).__name__}: {exc}"
        )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}
_logger_instance = CircuitBreakerLogger()


def get_circuit_breaker(
    name: str,
    fail_max: int = 5,
    reset_timeout: int = 30,
    exclude: list[type] | None = None,
) -> pybreaker.CircuitBreaker:
    """
    Get or create a circuit breaker for a provider.

    Args:
        name: Unique identifier for the circuit breaker
        fail_max: Number of consecutive failures before opening circuit
        reset_timeout: Seconds before attempting recovery (half-open)
        exclude: Exception types that should NOT count as failures

    Returns:
        CircuitBreaker instance (singleton per name)
    """
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            name=name,
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            exclude=exclude or [],
            listeners=[_logger_instance],
        )
        logger.info(
            f"Created circuit breaker '{name}' | "
            f"fail_max={fail_max} | reset_timeout={reset_timeout}s"
        )
    return _breakers[name]


# =============================================================================
# PRE-CONFIGURED CIRCUIT BREAKERS FOR SIDE-EFFECT PROVIDERS
# =============================================================================

scheduling_breaker = get_circuit_breaker(name="scheduling", fail_max=5, reset_timeout=15)

catalog_breaker = get_circuit_breaker(name="catalog", fail_max=5, reset_timeout=30)

crm_breaker = get_circuit_breaker(name="crm", fail_max=5, reset_timeout=30)

openrouter_breaker = get_circuit_breaker(name="openrouter", fail_max=5, reset_timeout=30)


async def call_with_breaker(
    breaker: pybreaker.CircuitBreaker,
    func: Callable,
    *args,
    **kwargs,
) -> Any:
    """
    Call async function with circuit breaker protection (native asyncio).

    pybreaker's call_async() requires Tornado, so this provides fail-fast
    behaviour for asyncio: an OPEN circuit raises immediately, a success in
    HALF_OPEN closes it and a failure in HALF_OPEN reopens it.

    Args:
        breaker: CircuitBreaker instance to use
        func: Async function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result from func

    Raises:
        pybreaker.CircuitBreakerError: If circuit is open
        Exception: Any exception raised by func
    """
    if breaker.current_state == pybreaker.STATE_OPEN:
        logger.warning(f"Circuit breaker '{breaker.name}' is OPEN, failing fast")
        raise pybreaker.CircuitBreakerError(breaker)

    try:
        result = await func(*args, **kwargs)

        if breaker.current_state == pybreaker.STATE_HALF_OPEN:
            breaker.close()

        return result

    except pybreaker.CircuitBreakerError:
        raise

    except Exception as e:
        if breaker.is_system_error(e):
            logger.warning(
                f"Circuit breaker '{breaker.name}' recorded failure: "
                f"{type(e).__name__}: {e}"
            )
            if breaker.current_state == pybreaker.STATE_HALF_OPEN:
                breaker.open()
        raise


def get_breaker_status() -> dict[str, dict[str, Any]]:
    """
    Get status of all circuit breakers for health checks.

    Returns:
        Dict of {name: {state, fail_counter, reset_timeout}}
    """
    return {
        name: {
            "state": breaker.current_state,
            "fail_counter": breaker.fail_counter,
            "reset_timeout": breaker.reset_timeout,
        }
        for name, breaker in _breakers.items()
    }
