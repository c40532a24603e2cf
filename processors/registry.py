# ============================================================================
# RECORD PROCESSOR REGISTRY
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Record processor interface, registration and lookup
# PURPOSE: Pluggable per-record work invoked by the orchestrator loop
# CREATED: 18 OCT 2026
# ============================================================================
"""
Record Processor Registry

The orchestrator treats record processing as opaque: it hands each record
to a RecordProcessor and gets back success or failure(reason). What the
processor does with the record is up to the deployment.

Design:
- RecordProcessor is the interface the loop calls
- Plain functions (sync or async) are registered by name via decorator
  and wrapped in FunctionRecordProcessor
- Fail-fast on duplicate registration
- RECORD_PROCESSOR selects the processor at startup
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


# ============================================================================
# PROCESSOR TYPES
# ============================================================================

@dataclass
class RecordContext:
    """
    Everything a processor gets to see about one record.

    record_data is the payload exactly as fetched.
    """
    session_id: str
    activity_id: str
    application_date: date
    record_id: str
    packet_number: int
    record_index: int
    record_data: Any
    retry_count: int = 0
    activity_type: Optional[str] = None
    activity_status: Optional[str] = None


@dataclass
class ProcessResult:
    """
    Outcome of processing one record.

    A processor may also raise; the loop converts the exception into a
    failure and keeps the traceback on the record.
    """
    success: bool = True
    error_message: Optional[str] = None
    output: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success_result(cls, output: Optional[Dict[str, Any]] = None) -> "ProcessResult":
        return cls(success=True, output=output or {})

    @classmethod
    def failure_result(cls, error_message: str) -> "ProcessResult":
        return cls(success=False, error_message=error_message)


ProcessorFunc = Callable[[RecordContext], Union[ProcessResult, Awaitable[ProcessResult]]]


class RecordProcessor(ABC):
    """Interface the orchestrator calls once per record, strictly in order."""

    name: str = "processor"

    @abstractmethod
    async def process(self, context: RecordContext) -> ProcessResult:
        """Process one record. May take arbitrarily long."""


class FunctionRecordProcessor(RecordProcessor):
    """Adapts a registered sync or async function to RecordProcessor."""

    def __init__(self, name: str, func: ProcessorFunc):
        self.name = name
        self._func = func

    async def process(self, context: RecordContext) -> ProcessResult:
        if asyncio.iscoroutinefunction(self._func):
            return await self._func(context)
        # Sync processors run in the default thread pool so the loop stays responsive
        return await asyncio.get_running_loop().run_in_executor(None, self._func, context)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class ProcessorError(Exception):
    """Base exception for processor registry errors."""
    pass


class ProcessorNotFoundError(ProcessorError):
    """Raised when a processor is not found in the registry."""
    def __init__(self, name: str):
        self.processor_name = name
        super().__init__(f"Record processor not found: {name}")


class DuplicateProcessorError(ProcessorError):
    """Raised when a processor name is already registered."""
    def __init__(self, name: str):
        self.processor_name = name
        super().__init__(f"Record processor already registered: {name}")


# ============================================================================
# REGISTRY
# ============================================================================

_processors: Dict[str, ProcessorFunc] = {}
_processor_metadata: Dict[str, Dict[str, Any]] = {}


def register_processor(
    name: str,
    *,
    description: str = "",
) -> Callable[[ProcessorFunc], ProcessorFunc]:
    """
    Decorator to register a record processor function.

    Example:
        @register_processor("accept")
        async def accept(ctx: RecordContext) -> ProcessResult:
            return ProcessResult.success_result()
    """
    def decorator(func: ProcessorFunc) -> ProcessorFunc:
        if name in _processors:
            raise DuplicateProcessorError(name)

        _processors[name] = func
        _processor_metadata[name] = {
            "name": name,
            "description": description,
            "function": func.__name__,
            "module": func.__module__,
            "is_async": asyncio.iscoroutinefunction(func),
            "registered_at": datetime.utcnow().isoformat(),
        }

        logger.debug(f"Registered record processor: {name} ({func.__module__}.{func.__name__})")
        return func

    return decorator


def get_processor(name: str) -> RecordProcessor:
    """
    Get a processor by name.

    Raises:
        ProcessorNotFoundError if not registered
    """
    func = _processors.get(name)
    if func is None:
        raise ProcessorNotFoundError(name)
    return FunctionRecordProcessor(name, func)


def list_processors() -> List[Dict[str, Any]]:
    """List all registered processors with metadata."""
    return list(_processor_metadata.values())


def unregister_processor(name: str) -> None:
    """Remove one processor (tests register throwaway processors)."""
    _processors.pop(name, None)
    _processor_metadata.pop(name, None)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "RecordContext",
    "ProcessResult",
    "ProcessorFunc",
    "RecordProcessor",
    "FunctionRecordProcessor",
    "ProcessorError",
    "ProcessorNotFoundError",
    "DuplicateProcessorError",
    "register_processor",
    "get_processor",
    "list_processors",
    "unregister_processor",
]
