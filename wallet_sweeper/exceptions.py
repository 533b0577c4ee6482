"""
Sweeper Exceptions

Error taxonomy shared by every component. Everything below SweeperError is
caught inside the scheduler; only ConfigurationError is fatal, and only at
startup.
"""

from typing import Optional


class SweeperError(Exception):
    """Base class for all sweeper errors"""


class ConfigurationError(SweeperError):
    """Missing or invalid startup configuration"""


class NetworkError(SweeperError):
    """RPC or connection failure reaching a chain"""


class ContractError(SweeperError):
    """Malformed, unregistered or unreadable token contract"""


class InsufficientAfterFeeError(SweeperError):
    """Send amount would be <= 0 once the fee reserve is taken out"""


class SubmissionError(SweeperError):
    """Transfer construction, signing or broadcast failed before acceptance"""


class RetryExhaustedError(SweeperError):
    """A unit of work failed on every allowed attempt"""

    def __init__(self, description: str, attempts: int, last_error: Optional[BaseException]):
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{description} failed after {attempts} attempt(s): {last_error}"
        )
