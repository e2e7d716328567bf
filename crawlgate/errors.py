class RuleConfigError(Exception):
    """Routing configuration could not be loaded."""


class ConflictingRulesError(RuleConfigError):
    def __init__(self, first, second):
        self.first = first
        self.second = second
        super().__init__(
            f"Rules {first.label()} and {second.label()} share host "
            f"{first.host!r} and priority {first.priority} with overlapping prefixes"
        )


class LabelParseError(RuleConfigError):
    pass


class PortInUseError(Exception):
    def __init__(self, port: int, reason: str = ""):
        self.port = port
        message = f"Host port {port} is already in use"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class CrawlerAPIError(Exception):
    """Non-success response from the crawler API."""
    def __init__(self, status_code: int, detail):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{status_code}: {detail}")


class AuthenticationError(CrawlerAPIError):
    pass


class CrawlValidationError(CrawlerAPIError):
    def __init__(self, status_code: int, errors: list):
        self.errors = errors
        super().__init__(status_code, [e.msg for e in errors])


class GatewayError(CrawlerAPIError):
    """The reverse proxy could not reach the crawler backend."""
