############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# __init__.py: Services package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Services for toolgate."""

from backend.app.services.ai_service import (
    AIService,
    DispatchResult,
    FailoverAIService,
    get_ai_service_by_id,
    get_default_ai_service,
)
from backend.app.services.tool_handler import (
    ToolContext,
    ToolHandlerOptions,
    ToolResult,
    create_tool_handler,
)

__all__ = [
    "AIService",
    "DispatchResult",
    "FailoverAIService",
    "ToolContext",
    "ToolHandlerOptions",
    "ToolResult",
    "create_tool_handler",
    "get_ai_service_by_id",
    "get_default_ai_service",
]
