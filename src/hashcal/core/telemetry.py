"""OpenTelemetry span helpers for the codec.

hashcal never installs a TracerProvider itself; a host application that does
gets encode/decode spans for free, everyone else gets the no-op tracer.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

_TRACER_NAME = "hashcal"


def get_tracer(name: str = _TRACER_NAME) -> trace.Tracer:
    """Get a tracer from the current provider."""
    return trace.get_tracer(name)


@contextmanager
def codec_span(operation: str, *, encrypted: bool) -> Iterator[trace.Span]:
    """Wrap a codec operation in a ``hashcal.codec.<operation>`` span.

    Exceptions are recorded on the span and re-raised.  Never attach the
    password or the token text as attributes.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        f"hashcal.codec.{operation}",
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        span.set_attribute("hashcal.encrypted", encrypted)
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
            raise
