from .inference import InferredArguments, coerce_value, default_for, infer_arguments
from .invoker import RemoteTool, ToolInvoker, ToolsManager, format_tool_result
from .schema import ParameterSpec, ToolSchema, function_descriptor

__all__ = [
    "InferredArguments",
    "ParameterSpec",
    "RemoteTool",
    "ToolInvoker",
    "ToolSchema",
    "ToolsManager",
    "coerce_value",
    "default_for",
    "format_tool_result",
    "function_descriptor",
    "infer_arguments",
]
