"""cqrs-ddd-pubsub — Pub/Sub client layer for the CQRS/DDD toolkit.

Messages carry correlation metadata across services; producers publish them
through a transport adapter with retries and telemetry; consumers unpack them
for application handlers.
"""

from __future__ import annotations

# ── Adapters ────────────────────────────────────────────────────
from .adapters import TestingAdapter

# ── Configuration ───────────────────────────────────────────────
from .config import (
    JsonCodec,
    PubSubConfig,
    StdlibJsonCodec,
    configure,
    get_config,
    set_config,
)
from .consumer import Consumer
from .correlation import (
    correlation_metadata_hook,
    correlation_scope,
    generate_correlation_id,
    get_causation_id,
    get_context_vars,
    get_correlation_id,
    get_current_user,
    set_causation_id,
    set_context_vars,
    set_correlation_id,
    set_current_user,
)

# ── Exceptions ──────────────────────────────────────────────────
from .exceptions import (
    AdapterError,
    ConfigurationError,
    MissingSchemaSpecError,
    PayloadDecodingError,
    PayloadEncodingError,
    ProducerNotFoundError,
    PublishRequestError,
    PubSubError,
    ResultError,
    SchemaError,
    TelemetryHandlerExistsError,
    UnknownMetadataFieldError,
)

# ── Messages ────────────────────────────────────────────────────
from .message import EncodedMessage, Message
from .metadata import Metadata, UserInfo
from .pipeline import (
    BatchMode,
    CallerAcknowledger,
    InMemoryPipeline,
    NoopAcknowledger,
    PipelineMessage,
)

# ── Ports ───────────────────────────────────────────────────────
from .ports import IBatchPipeline, IPubSubAdapter

# ── Producers ───────────────────────────────────────────────────
from .producer import (
    Producer,
    ProducerConfig,
    ProducerRegistry,
    get_producer_registry,
    publish,
    set_producer_registry,
)
from .result import Result
from .retry import ExponentialBackoff
from .schema_spec import SchemaSpec, SchemaType

# ── Telemetry ───────────────────────────────────────────────────
from .telemetry import (
    PUBLISH_END,
    PUBLISH_EVENTS,
    PUBLISH_FAILURE,
    PUBLISH_RETRY,
    PUBLISH_START,
    LoggingTelemetryHandler,
    TelemetryRegistry,
    attach_default_logger,
    get_telemetry_registry,
    set_telemetry_registry,
)

__all__ = [
    "PUBLISH_END",
    "PUBLISH_EVENTS",
    "PUBLISH_FAILURE",
    "PUBLISH_RETRY",
    "PUBLISH_START",
    "AdapterError",
    "BatchMode",
    "CallerAcknowledger",
    "ConfigurationError",
    "Consumer",
    "EncodedMessage",
    "ExponentialBackoff",
    "IBatchPipeline",
    "IPubSubAdapter",
    "InMemoryPipeline",
    "JsonCodec",
    "LoggingTelemetryHandler",
    "Message",
    "Metadata",
    "MissingSchemaSpecError",
    "NoopAcknowledger",
    "PayloadDecodingError",
    "PayloadEncodingError",
    "PipelineMessage",
    "Producer",
    "ProducerConfig",
    "ProducerNotFoundError",
    "ProducerRegistry",
    "PubSubConfig",
    "PubSubError",
    "PublishRequestError",
    "Result",
    "ResultError",
    "SchemaError",
    "SchemaSpec",
    "SchemaType",
    "StdlibJsonCodec",
    "TelemetryHandlerExistsError",
    "TelemetryRegistry",
    "TestingAdapter",
    "UnknownMetadataFieldError",
    "UserInfo",
    "attach_default_logger",
    "configure",
    "correlation_metadata_hook",
    "correlation_scope",
    "generate_correlation_id",
    "get_causation_id",
    "get_config",
    "get_context_vars",
    "get_correlation_id",
    "get_current_user",
    "get_producer_registry",
    "get_telemetry_registry",
    "publish",
    "set_causation_id",
    "set_config",
    "set_context_vars",
    "set_correlation_id",
    "set_current_user",
    "set_producer_registry",
    "set_telemetry_registry",
]
