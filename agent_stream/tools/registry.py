from typing import Any, Callable, Dict, List, Optional

from agent_stream.domain.exceptions import ToolError
from .definitions import ToolDef, ToolParam


ToolFunc = Callable[..., Any]


class ToolRegistry:
    """本地工具注册表：把 Python 函数暴露为可被模型调用的工具。"""

    def __init__(self) -> None:
        self._funcs: Dict[str, ToolFunc] = {}
        self._defs: Dict[str, ToolDef] = {}

    def register(
        self,
        name: str,
        func: ToolFunc,
        description: str = "",
        params: Optional[Dict[str, ToolParam]] = None,
    ) -> None:
        self._funcs[name] = func
        self._defs[name] = ToolDef(name=name, description=description or (func.__doc__ or "").strip(), params=params or {})

    def tool(self, name: Optional[str] = None, description: str = "", params: Optional[Dict[str, ToolParam]] = None):
        """装饰器形式的注册。"""

        def decorator(func: ToolFunc) -> ToolFunc:
            self.register(name or func.__name__, func, description, params)
            return func

        return decorator

    def definitions(self) -> List[ToolDef]:
        return list(self._defs.values())

    def execute(self, name: str, arguments: Any) -> Any:
        func = self._funcs.get(name)
        if func is None:
            raise ToolError(f"Tool not registered: {name}", tool=name)
        try:
            if isinstance(arguments, dict):
                return func(**arguments)
            if arguments is None:
                return func()
            return func(arguments)
        except ToolError:
            raise
        except Exception as exc:
            raise ToolError(f"{name} failed: {exc}", tool=name) from exc
