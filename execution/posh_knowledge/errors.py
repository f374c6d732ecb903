"""
Error taxonomy for the PoSH knowledge tool server.

Everything raised below the dispatcher is a subclass of KnowledgeToolError
(or an unexpected bug). The dispatcher converts all of them into an error
response; none of them is allowed to terminate the serving process.

"Not found" is deliberately absent: an empty search is a normal result
(found=False), not an exception.
"""

from typing import Optional


class KnowledgeToolError(Exception):
    """Base class for all tool-server errors."""


class UnknownToolError(KnowledgeToolError):
    """The requested tool name is not in the catalog."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ArgumentValidationError(KnowledgeToolError):
    """Tool arguments failed schema validation."""

    def __init__(self, tool: str, errors: Optional[list[dict]] = None):
        self.tool = tool
        self.errors = errors or []
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())) or '<arguments>'}: {err.get('msg', 'invalid')}"
            for err in self.errors
        )
        message = f"Invalid arguments for tool '{tool}'"
        if details:
            message += f": {details}"
        super().__init__(message)


class EmbeddingServiceError(KnowledgeToolError):
    """The embedding provider failed (credentials, quota, network, bad response, timeout)."""


class DatastoreError(KnowledgeToolError):
    """A datastore query or connection failed."""
