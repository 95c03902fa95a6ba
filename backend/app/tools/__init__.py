############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# __init__.py: Built-in AI tools
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Built-in AI tools and the registry that mounts them."""

from backend.app.tools import aura_check, corporate_clapback, dream_interpreter
from backend.app.tools.registry import ToolRegistry


def build_default_registry() -> ToolRegistry:
    """Registry holding every built-in tool."""
    registry = ToolRegistry()
    for module in (aura_check, corporate_clapback, dream_interpreter):
        registry.register(module.OPTIONS)
    return registry


__all__ = ["ToolRegistry", "build_default_registry"]
