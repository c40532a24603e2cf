# ============================================================================
# RECORD PROCESSORS
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Record processor registration and lookup
# PURPOSE: Register and discover record processors
# CREATED: 18 OCT 2026
# ============================================================================
"""
Record Processors

Decorator-based registration for the per-record work the orchestrator
invokes.

Usage:
    from processors import register_processor, get_processor

    @register_processor("my_processor")
    async def my_processor(ctx: RecordContext) -> ProcessResult:
        return ProcessResult.success_result()

    processor = get_processor("my_processor")
    result = await processor.process(ctx)
"""

from processors.registry import (
    RecordContext,
    ProcessResult,
    ProcessorFunc,
    RecordProcessor,
    FunctionRecordProcessor,
    ProcessorError,
    ProcessorNotFoundError,
    DuplicateProcessorError,
    register_processor,
    get_processor,
    list_processors,
    unregister_processor,
)

# Import processor modules to trigger registration
import processors.builtin  # noqa: F401 - import for side effects

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
