"""
ProcFlow Infrastructure Layer
"""
from infrastructure.graph_db import GraphDB
from infrastructure.event_bus import (
    EventBus,
    MessageType,
    Notifier,
    EventBusNotifier,
    NOTIFICATION_TOPIC
)
from infrastructure.error_logger import ErrorLogger, ErrorCategory, ErrorRecord
from infrastructure.config import EngineConfig, configure_logging

__all__ = [
    'GraphDB',
    'EventBus',
    'MessageType',
    'Notifier',
    'EventBusNotifier',
    'NOTIFICATION_TOPIC',
    'ErrorLogger',
    'ErrorCategory',
    'ErrorRecord',
    'EngineConfig',
    'configure_logging',
]
