"""VetCare tools.  Importing this package registers every tool on ``registry``."""

from vetcare_mcp.tools import (  # noqa: F401
    appointments,
    catalog,
    clients,
    clinical,
    dashboard,
    finance,
    pets,
    products,
    search,
    workflows,
)
from vetcare_mcp.tools.registry import (
    ToolContext,
    ToolDefinition,
    ToolRegistry,
    ToolResult,
    registry,
)

__all__ = ["ToolContext", "ToolDefinition", "ToolRegistry", "ToolResult", "registry"]
