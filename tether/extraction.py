"""Decode tool-call requests embedded in free-form model output.

Models announce tool use in several overlapping surface syntaxes. Each
syntax is handled by a ``ToolCallDecoder``; the extractor tries them in a
fixed priority order and acts on the first one that decodes:

1. fenced ```json block with ``tool`` (or ``name``) and ``params``
2. fenced ```bash / sh / shell / terminal / console block -> ``execute``
3. ``<tool>`` XML block, parsed structurally
4. the same XML block, recovered positionally when the markup is malformed
5. inline JSON wrapped in ``<tool>`` tags (legacy prompt format)
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any, NamedTuple
from xml.parsers import expat

from tether.logging import get_logger
from tether.messages import ToolCall, coerce_scalar

log = get_logger(__name__)

SHELL_TOOL_NAME = "execute"
SHELL_LANGUAGES = ("bash", "sh", "shell", "terminal", "console")

_JSON_FENCE_RE = re.compile(r"```json\s*\n(.*?)\n?```", re.DOTALL)
_SHELL_FENCE_RE = re.compile(
    r"```(" + "|".join(SHELL_LANGUAGES) + r")\s*\n(.*?)\n?```",
    re.DOTALL,
)
_TOOL_BLOCK_RE = re.compile(r"<tool>\s*(.*?)\s*</tool>", re.DOTALL)
_XML_FENCE_RE = re.compile(r"```xml\s*(.*?)\s*```", re.DOTALL)
_BARE_NAME_RE = re.compile(r"<n>\s*(.*?)\s*</n>", re.DOTALL)
_BARE_PARAMS_RE = re.compile(r"<params>(.*?)</params>", re.DOTALL)
_OPEN_TAG_RE = re.compile(r"<([A-Za-z_][A-Za-z0-9_.-]*)(?:\s[^>]*)?>")

NAME_TAGS = ("name", "n")


class DecodedCall(NamedTuple):
    """A decoded call plus the span of source text it was read from."""

    tool_call: ToolCall
    span: tuple[int, int]


class Extraction(NamedTuple):
    """Result of scanning one model response."""

    tool_call: ToolCall | None
    remaining_text: str
    found: bool


class ToolCallDecoder(ABC):
    """One candidate surface syntax for tool calls."""

    name: str = ""

    @abstractmethod
    def try_decode(self, text: str) -> DecodedCall | None:
        """Return the decoded call, or None when this syntax does not match."""


def _build_call(tool_name: Any, params: Any) -> ToolCall | None:
    if not isinstance(tool_name, str) or not tool_name.strip():
        return None
    if not isinstance(params, dict):
        return None
    return ToolCall(tool_name=tool_name, params=params)


def parse_json_tool_call(raw: str) -> ToolCall | None:
    """Parse ``{"tool"|"name": ..., "params": {...}}``; None if the shape is wrong."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    tool_name = payload.get("tool") or payload.get("name")
    return _build_call(tool_name, payload.get("params"))


class JsonFenceDecoder(ToolCallDecoder):
    """```json fenced block carrying a tool object."""

    name = "json_fence"

    def try_decode(self, text: str) -> DecodedCall | None:
        for match in _JSON_FENCE_RE.finditer(text):
            call = parse_json_tool_call(match.group(1).strip())
            if call is not None:
                return DecodedCall(call, match.span())
            log.debug("JSON block is not a tool call", content=match.group(1)[:200])
        return None


class ShellFenceDecoder(ToolCallDecoder):
    """Shell-family fenced block; the body becomes an ``execute`` command."""

    name = "shell_fence"

    def __init__(self, tool_name: str = SHELL_TOOL_NAME):
        self.tool_name = tool_name

    def try_decode(self, text: str) -> DecodedCall | None:
        for match in _SHELL_FENCE_RE.finditer(text):
            command = match.group(2).strip()
            if not command:
                continue
            call = ToolCall(tool_name=self.tool_name, params={"command": command})
            return DecodedCall(call, match.span())
        return None


class XmlBlock(NamedTuple):
    """A located XML tool block, normalised to a single ``<tool>`` root."""

    xml: str
    span: tuple[int, int]


def locate_xml_block(text: str) -> XmlBlock | None:
    """Find the first XML-style tool block in text."""
    match = _TOOL_BLOCK_RE.search(text)
    if match:
        return XmlBlock(match.group(0).strip(), match.span())

    match = _XML_FENCE_RE.search(text)
    if match:
        inner = match.group(1).strip()
        if not inner.startswith("<tool>"):
            inner = f"<tool>{inner}</tool>"
        return XmlBlock(inner, match.span())

    # Older prompts had models emit <n>NAME</n><params>...</params> with no wrapper.
    name_match = _BARE_NAME_RE.search(text)
    if name_match:
        params_match = _BARE_PARAMS_RE.search(text)
        if params_match is None:
            log.debug("Bare <n> tag without params section")
            return None
        xml = f"<tool><n>{name_match.group(1)}</n>\n<params>{params_match.group(1)}</params></tool>"
        span = (
            min(name_match.start(), params_match.start()),
            max(name_match.end(), params_match.end()),
        )
        return XmlBlock(xml, span)
    return None


class _ParamBag:
    """Ordered parameter mapping where a repeated key becomes a list."""

    def __init__(self):
        self.values: dict[str, Any] = {}
        self._repeated: set[str] = set()

    def add(self, key: str, value: Any) -> None:
        if value is None:
            return
        if key not in self.values:
            self.values[key] = value
        elif key in self._repeated:
            self.values[key].append(value)
        else:
            self.values[key] = [self.values[key], value]
            self._repeated.add(key)

    def __bool__(self) -> bool:
        return bool(self.values)


class _ParamNode:
    __slots__ = ("tag", "text", "children")

    def __init__(self, tag: str):
        self.tag = tag
        self.text: list[str] = []
        self.children = _ParamBag()

    def value(self) -> Any:
        if self.children:
            return self.children.values
        return coerce_scalar("".join(self.text))


class _ToolXmlHandler:
    """Expat event handler that walks a ``<tool>`` document.

    Tracks the open element stack. Character data under ``<name>``/``<n>``
    forms the tool name; each child of ``<params>`` becomes a parameter,
    nested children become objects and repeated siblings become lists.
    """

    def __init__(self):
        self.stack: list[str] = []
        self.name_parts: list[str] = []
        self.params = _ParamBag()
        self.saw_params = False
        self._nodes: list[_ParamNode] = []

    def _in_params(self) -> bool:
        return len(self.stack) >= 2 and self.stack[1] == "params"

    def start(self, tag: str, attrs: dict[str, str]) -> None:
        self.stack.append(tag)
        depth = len(self.stack)
        if depth == 2 and tag == "params":
            self.saw_params = True
        elif depth >= 3 and self._in_params():
            self._nodes.append(_ParamNode(tag))

    def end(self, tag: str) -> None:
        depth = len(self.stack)
        if depth >= 3 and self._in_params() and self._nodes:
            node = self._nodes.pop()
            parent = self._nodes[-1].children if self._nodes else self.params
            parent.add(node.tag, node.value())
        if self.stack:
            self.stack.pop()

    def chars(self, data: str) -> None:
        depth = len(self.stack)
        if depth == 2 and self.stack[1] in NAME_TAGS:
            self.name_parts.append(data)
        elif depth >= 3 and self._in_params() and self._nodes:
            self._nodes[-1].text.append(data)


def parse_tool_xml(xml: str) -> tuple[str, dict[str, Any]]:
    """Structurally parse a ``<tool>`` document.

    Raises:
        expat.ExpatError: if the markup is not well formed
    """
    handler = _ToolXmlHandler()
    parser = expat.ParserCreate()
    parser.StartElementHandler = handler.start
    parser.EndElementHandler = handler.end
    parser.CharacterDataHandler = handler.chars
    parser.Parse(xml, True)
    return "".join(handler.name_parts).strip(), handler.params.values


class XmlToolDecoder(ToolCallDecoder):
    """``<tool><name>..</name><params>..</params></tool>`` via an XML parser."""

    name = "xml"

    def try_decode(self, text: str) -> DecodedCall | None:
        block = locate_xml_block(text)
        if block is None:
            return None
        try:
            tool_name, params = parse_tool_xml(block.xml)
        except expat.ExpatError as e:
            log.debug("Structural XML parse failed", error=str(e))
            return None
        if not tool_name:
            return None
        return DecodedCall(ToolCall(tool_name=tool_name, params=params), block.span)


def _tag_re(tag: str) -> tuple[re.Pattern[str], re.Pattern[str]]:
    escaped = re.escape(tag)
    return re.compile(rf"<{escaped}(?:\s[^>]*)?>"), re.compile(rf"</{escaped}\s*>")


def extract_xml_element(xml: str, tag: str) -> str | None:
    """Content between the first ``<tag>`` and the first ``</tag>`` after it."""
    open_re, close_re = _tag_re(tag)
    open_match = open_re.search(xml)
    if open_match is None:
        return None
    close_match = close_re.search(xml, open_match.end())
    if close_match is None:
        return None
    return xml[open_match.end():close_match.start()].strip()


def extract_xml_params(section: str) -> dict[str, Any]:
    """Positionally recover first-level child elements of a params section."""
    params = _ParamBag()
    pos = 0
    while True:
        open_match = _OPEN_TAG_RE.search(section, pos)
        if open_match is None:
            break
        tag = open_match.group(1)
        _, close_re = _tag_re(tag)
        close_match = close_re.search(section, open_match.end())
        if close_match is None:
            pos = open_match.end()
            continue
        if tag != "params":
            raw = section[open_match.end():close_match.start()]
            params.add(tag, coerce_scalar(raw))
        pos = close_match.end()
    return params.values


def _is_well_formed(xml: str) -> bool:
    try:
        parse_tool_xml(xml)
    except expat.ExpatError:
        return False
    return True


class XmlRegexDecoder(ToolCallDecoder):
    """Best-effort recovery of malformed XML tool blocks.

    Only markup the XML parser rejects is considered; a well-formed block
    without a top-level name stays undecoded here.
    """

    name = "xml_regex"

    def try_decode(self, text: str) -> DecodedCall | None:
        block = locate_xml_block(text)
        if block is None:
            return None
        if _is_well_formed(block.xml):
            return None

        tool_name = None
        for tag in NAME_TAGS:
            tool_name = extract_xml_element(block.xml, tag)
            if tool_name:
                break
        if not tool_name:
            return None

        section = extract_xml_element(block.xml, "params")
        if not section:
            log.debug("Tool block missing params section", xml=block.xml[:200])
            return None
        params = extract_xml_params(section)
        if not params:
            return None
        return DecodedCall(ToolCall(tool_name=tool_name, params=params), block.span)


class LegacyJsonDecoder(ToolCallDecoder):
    """JSON object wrapped in ``<tool>`` tags instead of a fenced block."""

    name = "legacy_json"

    def try_decode(self, text: str) -> DecodedCall | None:
        block = locate_xml_block(text)
        if block is None or '"name"' not in block.xml:
            return None
        inner = block.xml
        if inner.startswith("<tool>") and inner.endswith("</tool>"):
            inner = inner[len("<tool>"):-len("</tool>")].strip()

        call = parse_json_tool_call(inner)
        if call is None:
            call = parse_json_tool_call(inner.replace("\n", "").replace("\r", ""))
        if call is None:
            log.debug("Legacy JSON tool call did not parse", content=inner[:200])
            return None
        return DecodedCall(call, block.span)


def default_decoders() -> list[ToolCallDecoder]:
    return [
        JsonFenceDecoder(),
        ShellFenceDecoder(),
        XmlToolDecoder(),
        XmlRegexDecoder(),
        LegacyJsonDecoder(),
    ]


class ToolCallExtractor:
    """Find the first tool call in a model response."""

    def __init__(self, decoders: list[ToolCallDecoder] | None = None):
        self.decoders = list(decoders) if decoders is not None else default_decoders()

    def extract(self, response: str) -> Extraction:
        """Decode the highest-priority tool call in ``response``.

        Returns:
            Extraction with the call, the response minus the matched block
            (stripped), and a found flag. When nothing matches the original
            text is returned unchanged.
        """
        text = response or ""
        for decoder in self.decoders:
            try:
                decoded = decoder.try_decode(text)
            except Exception as e:
                log.warning("Tool call decoder failed", decoder=decoder.name, error=str(e))
                continue
            if decoded is None:
                continue
            start, end = decoded.span
            remaining = (text[:start] + text[end:]).strip()
            log.debug(
                "Tool call detected",
                decoder=decoder.name,
                tool=decoded.tool_call.tool_name,
                params=list(decoded.tool_call.params),
            )
            return Extraction(decoded.tool_call, remaining, True)

        log.debug("No tool call found in response", length=len(text))
        return Extraction(None, response, False)
