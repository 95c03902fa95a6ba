############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# registry.py: Registry mounting tool handlers on a router
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Tool registry."""

from typing import Dict, List

from fastapi import APIRouter

from backend.app.services.tool_handler import ToolHandlerOptions, create_tool_handler


class ToolRegistry:
    """Collects tool definitions and exposes each at ``POST /{slug}``."""

    def __init__(self):
        self._tools: Dict[str, ToolHandlerOptions] = {}

    def register(self, options: ToolHandlerOptions) -> ToolHandlerOptions:
        if options.tool_slug in self._tools:
            raise ValueError(f"Tool already registered: {options.tool_slug}")
        self._tools[options.tool_slug] = options
        return options

    def get(self, slug: str) -> ToolHandlerOptions:
        return self._tools[slug]

    @property
    def slugs(self) -> List[str]:
        return sorted(self._tools)

    def build_router(self, prefix: str = "/api/tools") -> APIRouter:
        router = APIRouter(prefix=prefix, tags=["tools"])
        for slug in self.slugs:
            router.add_api_route(
                f"/{slug}",
                create_tool_handler(self._tools[slug]),
                methods=["POST"],
                name=f"tool:{slug}",
            )
        return router
