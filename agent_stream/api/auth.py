"""请求认证。

认证本身属于外部协作者，这里只提供最小实现：静态 Bearer token 到 user id 的映射。
"""

from typing import Dict, Optional, Protocol

from agent_stream.domain.exceptions import AuthError


class AuthCheck(Protocol):
    def authenticate(self, authorization: Optional[str]) -> str:
        """返回 user id；未认证时抛出 AuthError。"""
        ...


class TokenAuth:
    def __init__(self, tokens: Dict[str, str]):
        self._tokens = dict(tokens)

    def authenticate(self, authorization: Optional[str]) -> str:
        if not authorization:
            raise AuthError("Missing Authorization header")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthError("Malformed Authorization header")
        user_id = self._tokens.get(token.strip())
        if not user_id:
            raise AuthError()
        return user_id
