"""远程工具服务适配器。

工具后端以 HTTP 服务形式部署：
- GET  {endpoint}/tools          返回工具定义列表。
- POST {endpoint}/tools/{name}   请求体 {"input": ...}，响应 {"output": ...} 或 {"error": "..."}。

认证: Authorization: Bearer <tool_api_key>（可选）。
"""

from typing import Any, Dict, List, Optional

import httpx

from agent_stream.domain.exceptions import ToolError
from agent_stream.tools.definitions import ToolDef, ToolParam


class HttpToolProvider:
    """通过 HTTP 调用远程工具，失败统一抛出 ToolError。"""

    def __init__(self, endpoint: str, api_key: Optional[str] = None, timeout: float = 30.0):
        self._endpoint = endpoint.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._defs: Optional[List[ToolDef]] = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def definitions(self) -> List[ToolDef]:
        """拉取并缓存远程工具定义。"""

        if self._defs is not None:
            return self._defs
        try:
            with httpx.Client(timeout=self._timeout, trust_env=False) as client:
                resp = client.get(f"{self._endpoint}/tools", headers=self._headers())
        except httpx.HTTPError as e:
            raise ToolError(f"tool discovery failed: {e}")
        if resp.status_code >= 400:
            raise ToolError(f"tool discovery failed: HTTP {resp.status_code}")
        self._defs = [self._parse_def(item) for item in resp.json().get("tools", [])]
        return self._defs

    def execute(self, name: str, arguments: Any) -> Any:
        try:
            with httpx.Client(timeout=self._timeout, trust_env=False) as client:
                resp = client.post(
                    f"{self._endpoint}/tools/{name}",
                    json={"input": arguments},
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            raise ToolError(f"{name} request failed: {e}", tool=name)
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"output": data}
        if resp.status_code >= 400 or data.get("error"):
            raise ToolError(str(data.get("error") or f"HTTP {resp.status_code}"), tool=name)
        return data.get("output")

    @staticmethod
    def _parse_def(item: Dict[str, Any]) -> ToolDef:
        schema = item.get("parameters") or {}
        required = set(schema.get("required") or [])
        params = {
            pname: ToolParam(
                name=pname,
                description=str(pschema.get("description", "")),
                required=pname in required,
                schema={k: v for k, v in pschema.items() if k != "description"},
            )
            for pname, pschema in (schema.get("properties") or {}).items()
        }
        return ToolDef(name=item["name"], description=item.get("description", ""), params=params)
