"""Optional OpenTelemetry instrumentation for colloquy.

Call ``instrument()`` once at startup to enable tracing.
Requires ``opentelemetry-api``; without it, and until ``instrument()``
is called, every span helper yields ``None`` and records nothing.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "colloquy") -> None:
    """Enable OpenTelemetry tracing for chains, model requests and tools.

    Configure a TracerProvider first, then::

        from colloquy.instrumentation import instrument
        instrument()

    Spans follow the GenAI semantic conventions: one ``invoke_agent``
    span per chain, one ``chat`` span per model request and one
    ``execute_tool`` span per tool dispatch.

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install colloquy[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured; spans will be discarded."
        )
    else:
        logger.info("Colloquy instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def chain_span(chat_id: str, model: str):
    """Wrap one answer -> tool -> answer chain."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        "invoke_agent colloquy",
        attributes={
            "gen_ai.operation.name": "invoke_agent",
            "gen_ai.conversation.id": chat_id,
            "gen_ai.request.model": model,
        },
    ) as span:
        yield span


@asynccontextmanager
async def completion_span(system: str, model: str):
    """Wrap a single streamed model request."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.provider.name": system,
            "gen_ai.request.model": model,
        },
    ) as span:
        yield span


@asynccontextmanager
async def tool_span(tool_name: str, call_id: str):
    """Wrap a tool execution in an ``execute_tool`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"execute_tool {tool_name}",
        attributes={
            "gen_ai.operation.name": "execute_tool",
            "gen_ai.tool.name": tool_name,
            "gen_ai.tool.call.id": call_id,
        },
    ) as span:
        yield span


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute(
        "error.type", type(exception).__qualname__
    )
