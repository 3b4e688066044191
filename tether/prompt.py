"""System prompt templates and tool catalogue rendering."""

from pathlib import Path
from typing import Any

TOOLS_HEADER = "You have access to the following tools"

DEFAULT_SYSTEM_PROMPT = """You are a helpful coding assistant running in the user's terminal.
The current working directory is {cwd}.

When you need to use a tool, emit exactly one tool call in your reply and wait
for its result before continuing. The available tools are:

{tools}

Remember:
1. Think through problems step by step
2. Use tools when you need to gather information or perform actions
3. Do not make up file contents or command output; use tools instead
4. Reply in markdown
5. Be concise"""


class _SafeFormatDict(dict[str, str]):
    """Leave unknown placeholders untouched instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def format_tool_catalogue(definitions: list[dict[str, Any]]) -> str:
    """Render tool definitions as a markdown catalogue."""
    lines: list[str] = []
    for definition in definitions:
        schema = definition.get("parameters") or {}
        properties = schema.get("properties") or {}
        required = set(schema.get("required") or [])

        lines.append(f"## {definition.get('name', '')}")
        lines.append(f"Description: {definition.get('description', '')}")
        lines.append("Parameters:")
        for param_name, param_schema in properties.items():
            line = f"- {param_name}: {param_schema.get('description', '')}"
            if param_name in required:
                line += " (required)"
            line += f" [{param_schema.get('type', 'string')}]"
            if "default" in param_schema:
                line += f" (default: {param_schema['default']})"
            lines.append(line)
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def format_system_prompt(
    template: str | None,
    definitions: list[dict[str, Any]],
    cwd: Path | str | None = None,
) -> str:
    """Fill ``{tools}`` and ``{cwd}`` in a system prompt template."""
    values = _SafeFormatDict(
        tools=format_tool_catalogue(definitions),
        cwd=str(cwd or Path.cwd()),
    )
    return (template or DEFAULT_SYSTEM_PROMPT).format_map(values)


def tool_usage_instructions(definitions: list[dict[str, Any]]) -> str:
    """Tool list plus the accepted tool-call syntaxes, appended to system text."""
    if not definitions:
        return ""
    parts = [f"{TOOLS_HEADER}:\n"]
    for definition in definitions:
        parts.append(f"- {definition.get('name', '')}: {definition.get('description', '')}")
    parts.append("")
    parts.append("When you need to use a tool, you can format your response in one of these ways:")
    parts.append("")
    parts.append("1. XML format:")
    parts.append(
        "<tool>\n  <name>toolName</name>\n  <params>\n"
        "    <param1>value1</param1>\n    <param2>value2</param2>\n  </params>\n</tool>"
    )
    parts.append("")
    parts.append("2. JSON format:")
    parts.append(
        '```json\n{\n  "tool": "toolName",\n  "params": {\n'
        '    "param1": "value1",\n    "param2": "value2"\n  }\n}\n```'
    )
    parts.append("")
    parts.append("3. For bash/shell commands, use code blocks:")
    parts.append("```bash\ncommand here\n```")
    return "\n".join(parts) + "\n"
