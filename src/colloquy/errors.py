"""Error taxonomy for the conversation engine.

Transport and decode errors are caught by the orchestrator and always
resolve to a closed turn.  Tool errors are converted to
:class:`~colloquy.tools.Failure` values by the dispatch table.
"""


class ColloquyError(Exception):
    """Base class for all colloquy errors."""


class StreamTransportError(ColloquyError):
    """The model stream could not be opened or broke mid-stream."""


class MalformedToolCall(ColloquyError):
    """A streamed tool call names an unknown tool or its arguments
    fail to decode against the declared schema.

    Args:
        tool_name: The accumulated tool name, possibly empty.
        raw_arguments: The accumulated argument string.
    """

    def __init__(self, message: str, tool_name: str = "", raw_arguments: str = ""):
        super().__init__(message)
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments


class ToolExecutionFailure(ColloquyError):
    """Raised by tool executors to report a failure with a user-facing
    reason.  Never crosses the dispatch table boundary."""


class CancelledByUser(ColloquyError):
    """A suspension point observed that its turn is no longer answering."""
