"""
MCPFunctions - exposes an MCP server's tools as callable functions.

Turns tool listings into function definitions a language model can be given,
and tool-call results into FunctionResponse objects. Failures never escape
call_method(); they come back as error responses.

Example:
    from mcplink import create_sse_client, MCPFunctions

    functions = MCPFunctions(create_sse_client('http://localhost:3000/sse'))
    definitions = functions.generate_function_definitions()
    response = functions.call_method('search', {'query': 'mcp'})
    print(response.status, [item.text for item in response.items if item.type == 'text'])

Notes:
    - Definitions are cached on first use. If the server adds/removes tools,
      call refresh() to drop the cache.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, Field, create_model

from .client import ConnectionState, MCPClient

logger = logging.getLogger('mcplink')


# ============================================================================
# Response items
# ============================================================================

class TextItem(BaseModel):
    type: Literal['text'] = 'text'
    text: str


class ImageItem(BaseModel):
    type: Literal['image'] = 'image'
    data: str
    mime_type: str = Field(alias='mimeType')

    model_config = {'populate_by_name': True}


class AudioItem(BaseModel):
    type: Literal['audio'] = 'audio'
    data: str
    mime_type: str = Field(alias='mimeType')

    model_config = {'populate_by_name': True}


ResponseItem = Union[TextItem, ImageItem, AudioItem]

_ITEM_TYPES = {
    'text': TextItem,
    'image': ImageItem,
    'audio': AudioItem,
}


class FunctionResponse(BaseModel):
    STATUS_SUCCESS: ClassVar[str] = 'success'
    STATUS_ERROR: ClassVar[str] = 'error'

    status: Literal['success', 'error']
    items: list[ResponseItem] = []

    @property
    def is_error(self) -> bool:
        return self.status == self.STATUS_ERROR

    @classmethod
    def error(cls, message: str) -> "FunctionResponse":
        return cls(status=cls.STATUS_ERROR, items=[TextItem(text=message)])


class ToolResult(BaseModel):
    """The result member of a tools/call response."""
    content: list[dict[str, Any]]
    is_error: bool = Field(False, alias='isError')


# ============================================================================
# Adapter
# ============================================================================

class MCPFunctions:
    """Function-calling view of one MCP client's tools."""

    def __init__(
        self,
        client: MCPClient,
        interceptor: Optional[Callable[[str, dict], Any]] = None,
        connect: bool = True
    ):
        """
        Args:
            client: The MCP client. Connected here unless already connected
                   (or connect=False).
            interceptor: Optional callback(name, arguments). A non-None return
                        value is used as the result and the server is not called.
        """
        self.client = client
        self.interceptor = interceptor
        self._definitions: Optional[list[dict]] = None
        self._tools: Optional[dict[str, dict]] = None
        if connect and client.state is ConnectionState.UNINITIALIZED:
            client.connect()

    def refresh(self):
        self._definitions = None
        self._tools = None

    def _load_tools(self) -> dict[str, dict]:
        if self._tools is None:
            self._tools = {tool['name']: tool for tool in self.client.list_all_tools()}
        return self._tools

    def generate_function_definitions(self) -> list[dict]:
        if self._definitions is not None:
            return self._definitions

        definitions = []
        for tool_def in self._load_tools().values():
            schema = tool_def.get('inputSchema') or {}
            definition = {
                'type': 'function',
                'name': tool_def['name'],
                'description': tool_def.get('description', ''),
                'parameters': schema,
                'strict': False,
            }
            # Tools without arguments are declared without parameters
            if 'properties' in schema and not schema['properties']:
                del definition['parameters']
            definitions.append(definition)

        self._definitions = definitions
        return definitions

    def input_model(self, name: str) -> type[BaseModel]:
        """Convert a tool's JSON Schema input to a Pydantic model."""
        tools = self._load_tools()
        if name not in tools:
            raise KeyError(f"Unknown tool: {name}")
        tool_def = tools[name]

        schema = tool_def.get('inputSchema', {})
        props = schema.get('properties', {})
        required = set(schema.get('required', []))

        type_map = {
            'string': str,
            'integer': int,
            'number': float,
            'boolean': bool,
            'array': list,
            'object': dict,
        }

        fields = {}
        for pname, pschema in props.items():
            ptype = type_map.get(pschema.get('type', 'string'), str)
            desc = pschema.get('description', '')
            if pname in required:
                fields[pname] = (ptype, Field(..., description=desc))
            else:
                fields[pname] = (Optional[ptype], Field(None, description=desc))

        model_name = ''.join(w.title() for w in name.replace('-', '_').split('_'))
        model = create_model(model_name or 'Tool', **fields)
        model.__doc__ = tool_def.get('description', name)
        return model

    def call_method(self, name: str, arguments: Optional[dict] = None) -> FunctionResponse:
        arguments = arguments or {}
        try:
            if self.interceptor is not None:
                intercepted = self.interceptor(name, arguments)
                if intercepted is not None:
                    return self._wrap(intercepted)

            response = self.client.call_tool(name, arguments)
            return self._convert(response)
        except Exception as e:
            logger.error(f"call_method {name} {type(e).__name__}: {e}")
            return FunctionResponse.error(f"An error occurred: {e}")

    def _wrap(self, value: Any) -> FunctionResponse:
        if isinstance(value, FunctionResponse):
            return value
        return FunctionResponse(status=FunctionResponse.STATUS_SUCCESS, items=[TextItem(text=str(value))])

    def _convert(self, response: dict) -> FunctionResponse:
        if 'error' in response:
            error = response['error']
            message = error.get('message', str(error)) if isinstance(error, dict) else str(error)
            return FunctionResponse.error(message)

        result = ToolResult.model_validate(response.get('result'))
        items = []
        for element in result.content:
            item_type = _ITEM_TYPES.get(element.get('type'))
            if item_type is None:
                logger.debug(f"Skipping content item of type {element.get('type')!r}")
                continue
            items.append(item_type.model_validate(element))

        status = FunctionResponse.STATUS_ERROR if result.is_error else FunctionResponse.STATUS_SUCCESS
        return FunctionResponse(status=status, items=items)
