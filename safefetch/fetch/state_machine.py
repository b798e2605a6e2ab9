"""State machine for a single request's retry lifecycle."""

from enum import Enum

import structlog


logger = structlog.get_logger()


class RetryPhase(str, Enum):
    """Phase of a request inside RetryPolicy.execute.

    - IDLE: No attempt made yet
    - ATTEMPTING: An attempt is in progress
    - WAITING: Backing off before the next attempt
    - SUCCEEDED: An attempt returned a result
    - FAILED: Terminal error or retries exhausted
    """

    IDLE = "IDLE"
    ATTEMPTING = "ATTEMPTING"
    WAITING = "WAITING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


# Valid state transitions
_VALID_TRANSITIONS: dict[RetryPhase, set[RetryPhase]] = {
    RetryPhase.IDLE: {RetryPhase.ATTEMPTING, RetryPhase.FAILED},
    RetryPhase.ATTEMPTING: {
        RetryPhase.SUCCEEDED,
        RetryPhase.WAITING,
        RetryPhase.FAILED,
    },
    RetryPhase.WAITING: {RetryPhase.ATTEMPTING, RetryPhase.FAILED},
    RetryPhase.SUCCEEDED: set(),  # Terminal state
    RetryPhase.FAILED: set(),  # Terminal state
}


class RetryStateTransitionError(Exception):
    """Raised when an illegal phase transition is attempted."""

    def __init__(self, url: str, from_phase: RetryPhase, to_phase: RetryPhase) -> None:
        """Initialize the transition error.

        Args:
            url: URL of the request.
            from_phase: Current phase.
            to_phase: Attempted target phase.
        """
        self.url = url
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(
            f"Illegal retry transition for '{url}': "
            f"{from_phase.value} -> {to_phase.value}"
        )


class RetryStateMachine:
    """Tracks attempt count, last error, and backoff delay for one request.

    Enforces valid transitions and logs all phase changes.
    """

    def __init__(self, url: str, max_attempts: int) -> None:
        """Initialize the state machine.

        Args:
            url: URL of the request.
            max_attempts: Normalized attempt limit.
        """
        self._url = url
        self._max_attempts = max_attempts
        self._phase = RetryPhase.IDLE
        self._attempt = 0
        self._last_error: BaseException | None = None
        self._delay_ms: int | None = None
        self._log = logger.bind(component="retry", url=url)

    @property
    def phase(self) -> RetryPhase:
        """Get the current phase."""
        return self._phase

    @property
    def attempt(self) -> int:
        """Get the number of attempts started so far."""
        return self._attempt

    @property
    def max_attempts(self) -> int:
        """Get the attempt limit."""
        return self._max_attempts

    @property
    def last_error(self) -> BaseException | None:
        """Get the error from the most recent failed attempt."""
        return self._last_error

    @property
    def delay_ms(self) -> int | None:
        """Get the most recently computed backoff delay."""
        return self._delay_ms

    @property
    def is_terminal(self) -> bool:
        """Check if the current phase is terminal."""
        return self._phase in (RetryPhase.SUCCEEDED, RetryPhase.FAILED)

    @property
    def has_attempts_left(self) -> bool:
        """Check if another attempt is allowed."""
        return self._attempt < self._max_attempts

    def can_transition_to(self, target: RetryPhase) -> bool:
        """Check if a transition to the target phase is valid."""
        return target in _VALID_TRANSITIONS.get(self._phase, set())

    def transition_to(self, target: RetryPhase) -> None:
        """Transition to a new phase.

        Raises:
            RetryStateTransitionError: If the transition is invalid.
        """
        if not self.can_transition_to(target):
            self._log.error(
                "illegal_state_transition",
                from_state=self._phase.value,
                to_state=target.value,
            )
            raise RetryStateTransitionError(self._url, self._phase, target)

        old_phase = self._phase
        self._phase = target
        self._log.debug(
            "state_transition",
            from_state=old_phase.value,
            to_state=target.value,
            attempt=self._attempt,
        )

    def start_attempt(self) -> int:
        """Enter ATTEMPTING and count the attempt.

        Returns:
            The 1-based attempt number.
        """
        self.transition_to(RetryPhase.ATTEMPTING)
        self._attempt += 1
        return self._attempt

    def succeed(self) -> None:
        """Transition to SUCCEEDED."""
        self.transition_to(RetryPhase.SUCCEEDED)

    def wait(self, error: BaseException, delay_ms: int) -> None:
        """Record a retryable failure and enter WAITING."""
        self._last_error = error
        self._delay_ms = delay_ms
        self.transition_to(RetryPhase.WAITING)

    def fail(self, error: BaseException | None = None) -> None:
        """Record the terminal error and transition to FAILED."""
        if error is not None:
            self._last_error = error
        self.transition_to(RetryPhase.FAILED)
