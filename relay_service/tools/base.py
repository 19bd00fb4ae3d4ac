import inspect
import re
from abc import abstractmethod
from typing import Any, Dict, Literal, Optional, get_args, get_origin, get_type_hints

from relay_service.core.interfaces import Tool

# =============================
# Tool Authoring Guidelines
# =============================
#
# To create a new local tool:
# 1. Subclass BaseTool and implement the async run() method with explicit, type-annotated arguments.
# 2. Use a Google-style docstring for run() with an Args: section, e.g.:
#
#     async def run(self, timezone: str = "UTC") -> dict:
#         """
#         Get the current time for a timezone.
#         Args:
#             timezone: IANA timezone (e.g., Europe/Dublin, UTC).
#         """
#
# 3. The schema is generated from the run() signature and docstring.
# 4. The class docstring's first paragraph becomes the tool description.
#
# Schemas are emitted in strict mode, so every parameter is listed as
# required; optional parameters accept null and fall back to their default.

_JSON_TYPES = {str: "string", int: "integer", float: "number", bool: "boolean"}


class BaseTool(Tool):

    def __init__(self):
        self._registry_name: str | None = None
        self._require_approval: bool = False

    @staticmethod
    def _extract_param_descriptions(docstring: str) -> dict:
        """
        Parse the docstring for an Args: section and return a mapping of param name to description.
        """
        if not docstring:
            return {}
        param_desc = {}
        args_section = re.search(r"Args?:\s*(.*?)(^\s*\w+:\s*$|\Z)", docstring, re.DOTALL | re.MULTILINE)
        if args_section:
            for line in args_section.group(1).splitlines():
                match = re.match(r"\s*(\w+)\s*:\s*(.*)", line)
                if match:
                    name, desc = match.groups()
                    param_desc[name] = desc.strip()
        return param_desc

    @staticmethod
    def _json_schema_for(param_type: Any) -> Dict[str, Any]:
        if get_origin(param_type) is Literal:
            values = list(get_args(param_type))
            base = _JSON_TYPES.get(type(values[0]), "string") if values else "string"
            return {"type": base, "enum": values}
        return {"type": _JSON_TYPES.get(param_type, "string")}

    @property
    def auto_schema(self) -> Dict[str, Any]:
        sig = inspect.signature(self.run)
        hints = get_type_hints(self.run)
        param_docs = self._extract_param_descriptions(self.run.__doc__ or self.__doc__ or "")
        params = {}
        for name, param in sig.parameters.items():
            if name == "self" or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            prop = self._json_schema_for(hints.get(name, str))
            if param.default is not inspect.Parameter.empty:
                prop["type"] = [prop["type"], "null"]
            prop["description"] = param_docs.get(name, "")
            params[name] = prop
        description = (self.__doc__ or "").strip().split("\n\n")[0].strip()
        return self.build_schema(
            function_name=self.name,
            description=description,
            parameters=params,
        )

    @property
    def name(self) -> str:
        # Use registry name if set, otherwise fall back to class name
        if self._registry_name:
            return self._registry_name
        return self.__class__.__name__

    @property
    def require_approval(self) -> bool:
        return self._require_approval

    @staticmethod
    def build_schema(
        function_name: str,
        description: str,
        parameters: dict,
        required: Optional[list] = None,
    ) -> dict:
        """
        Build a function tool schema in the flat shape the turn API expects.
        Args:
            function_name: Name of the function/tool.
            description: Description of the tool.
            parameters: Dict of parameter names to their JSON schema.
            required: Required parameter names; defaults to all of them.
        """
        return {
            "type": "function",
            "name": function_name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": parameters,
                "required": list(parameters) if required is None else required,
                "additionalProperties": False,
            },
            "strict": True,
        }

    @property
    def schema(self) -> Dict[str, Any]:
        return self.auto_schema

    @abstractmethod
    async def run(self, *args, **kwargs) -> Any:
        """Execute tool with given arguments (auto-schema will match signature)."""
        raise NotImplementedError()
