"""Error taxonomy for the query agent."""


class StewardError(Exception):
    """Base class for query agent errors."""

    pass


class ValidationError(StewardError):
    """Raised when a query is empty or too long. User-correctable."""

    pass


class ToolArgumentParseError(StewardError):
    """Raised when the model emits tool arguments that are not valid JSON."""

    def __init__(self, function: str, raw_arguments: str, reason: str):
        self.function = function
        self.raw_arguments = raw_arguments
        super().__init__(f"Invalid arguments for {function}: {reason}")


class ToolLoopExceededError(StewardError):
    """Raised when the model keeps requesting tools past the turn limit."""

    def __init__(self, max_turns: int):
        self.max_turns = max_turns
        super().__init__(f"Tool-calling loop exceeded {max_turns} turns")


class ExecutionError(StewardError):
    """Raised when an analytics function fails or cannot be resolved."""

    def __init__(self, function: str, message: str, cause: BaseException | None = None):
        self.function = function
        self.cause = cause
        super().__init__(f"{function}: {message}")


class UpstreamModelError(StewardError):
    """Raised when the LLM chat endpoint fails."""

    pass
