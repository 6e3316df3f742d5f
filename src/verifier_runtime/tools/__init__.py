"""
Tool System：协议（ToolSpec/ToolCall/ToolResult）、注册表与内置工具。
"""
