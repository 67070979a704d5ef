"""A language-model agent wired to a remote tool server.

The tool server speaks JSON-RPC 2.0 over a split transport: requests are
POSTed, replies arrive on a Server-Sent Events stream. Use agentlink to:

- connect to such a server and call its tools with correlated replies
- infer tool arguments from loosely formed model output
- serve a chat API that lets a language model use those tools

## Example - call a tool

```python
from agentlink import ClientSession, ToolsManager

async with ClientSession("http://localhost:8080") as session:
    tools = ToolsManager(session)
    tools.initialize_tools()
    print(await tools.invoke("calculator", "5 3 add"))
```

"""

from .client.session import ClientSession
from .shared.exceptions import (
    AgentLinkError,
    ConnectionNotReadyError,
    DisconnectedError,
    McpError,
    ModelError,
    ProtocolError,
    RequestTimeoutError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    TransportError,
)
from .tools.inference import InferredArguments, infer_arguments
from .tools.invoker import RemoteTool, ToolsManager, format_tool_result
from .tools.schema import ParameterSpec, ToolSchema
from .types import (
    CallToolResult,
    ErrorData,
    Implementation,
    InitializeResult,
    JSONRPCError,
    JSONRPCRequest,
    JSONRPCResponse,
    ListToolsResult,
    Tool,
)

__all__ = [
    "AgentLinkError",
    "CallToolResult",
    "ClientSession",
    "ConnectionNotReadyError",
    "DisconnectedError",
    "ErrorData",
    "Implementation",
    "InferredArguments",
    "InitializeResult",
    "JSONRPCError",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "ListToolsResult",
    "McpError",
    "ModelError",
    "ParameterSpec",
    "ProtocolError",
    "RemoteTool",
    "RequestTimeoutError",
    "Tool",
    "ToolError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolSchema",
    "ToolsManager",
    "TransportError",
    "format_tool_result",
    "infer_arguments",
]
