# Services package
#
# Provider-backed modules (image_generator, text_generator) are built through
# services.factory and are not imported here, so loading the package does not
# pull in openai or langchain.

from funnel_presentations.services.progress_store import ProgressStore
from funnel_presentations.services.slide_orchestrator import (
    SlideGenerationOrchestrator,
    compute_progress,
)
from funnel_presentations.services.sse_events import (
    SSE_HEADERS,
    EventChannel,
    HeartbeatTicker,
    format_heartbeat,
    format_sse_event,
)
from funnel_presentations.services.stream_session import (
    FailureReason,
    GenerationJob,
    SessionState,
    StreamRequest,
    StreamSessionController,
)

__all__ = [
    "ProgressStore",
    "SlideGenerationOrchestrator",
    "compute_progress",
    "SSE_HEADERS",
    "EventChannel",
    "HeartbeatTicker",
    "format_heartbeat",
    "format_sse_event",
    "FailureReason",
    "GenerationJob",
    "SessionState",
    "StreamRequest",
    "StreamSessionController",
]
