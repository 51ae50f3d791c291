class CallNotFoundError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidTransitionError(Exception):
    def __init__(self, message: str, current: str | None = None, target: str | None = None):
        self.message = message
        self.current = current
        self.target = target
        super().__init__(message)


class InvalidScheduleError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ProviderError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ProviderUnavailableError(ProviderError):
    """Transient: timeouts, network errors, rate limits and 5xx responses."""


class ProviderRejectedError(ProviderError):
    """Permanent: the provider refused the request (4xx other than 429)."""
