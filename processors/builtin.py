# ============================================================================
# BUILT-IN RECORD PROCESSORS
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Processors - Default record processor implementations
# PURPOSE: Ready-to-use processors selectable via RECORD_PROCESSOR
# CREATED: 18 OCT 2026
# ============================================================================
"""
Built-in Record Processors

- accept: acknowledges every record (useful for draining an endpoint and
  for smoke tests)
- require_fields: fails records missing any field listed in
  PROCESSOR_REQUIRED_FIELDS (comma separated)

Real deployments register their own processor with @register_processor.
"""

import logging
import os
from typing import List

from processors.registry import ProcessResult, RecordContext, register_processor

logger = logging.getLogger(__name__)


@register_processor("accept", description="Acknowledges every record")
async def accept_record(ctx: RecordContext) -> ProcessResult:
    logger.debug(f"Accepted record {ctx.record_id} (packet {ctx.packet_number})")
    return ProcessResult.success_result({"record_id": ctx.record_id})


def _required_fields() -> List[str]:
    raw = os.getenv("PROCESSOR_REQUIRED_FIELDS", "")
    return [name.strip() for name in raw.split(",") if name.strip()]


@register_processor(
    "require_fields",
    description="Fails records missing any field in PROCESSOR_REQUIRED_FIELDS",
)
def require_fields(ctx: RecordContext) -> ProcessResult:
    if not isinstance(ctx.record_data, dict):
        return ProcessResult.failure_result(
            f"Invalid format: expected object, got {type(ctx.record_data).__name__}"
        )

    missing = [name for name in _required_fields() if ctx.record_data.get(name) in (None, "")]
    if missing:
        return ProcessResult.failure_result(f"Missing field(s): {', '.join(missing)}")

    return ProcessResult.success_result()
