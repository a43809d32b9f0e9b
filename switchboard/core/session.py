"""Cookie-backed session state for the web portal.

Switchboard keeps no server-side session store: the encrypted refresh token,
the CSRF token and the ephemeral OAuth cookies all live in the browser.
CookieJar reads the request's cookies and stages writes so route handlers can
apply them to whatever response they return.
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from starlette.requests import Request
from starlette.responses import Response


@dataclass(frozen=True)
class CookieWrite:
    """A pending Set-Cookie (value is None for a deletion)."""

    name: str
    value: Optional[str]
    max_age: Optional[int] = None
    http_only: bool = True
    secure: bool = False
    same_site: str = "lax"
    path: str = "/"

    @property
    def is_deletion(self) -> bool:
        return self.value is None


class CookieJar:
    """
    Request cookies plus staged writes.

    Usage:
        jar = CookieJar.from_request(request)
        jar.set("sb_csrf", token, max_age=3600, http_only=False)
        response = RedirectResponse("/")
        jar.apply(response)
    """

    def __init__(self, incoming: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = dict(incoming or {})
        self._pending: Dict[str, CookieWrite] = {}

    @classmethod
    def from_request(cls, request: Request) -> "CookieJar":
        return cls(request.cookies)

    def get(self, name: str) -> Optional[str]:
        """Return the cookie value, or None if absent or empty."""
        value = self._values.get(name)
        return value if value else None

    def set(
        self,
        name: str,
        value: str,
        *,
        max_age: Optional[int] = None,
        http_only: bool = True,
        secure: bool = False,
        same_site: str = "lax",
        path: str = "/",
    ) -> None:
        self._values[name] = value
        self._pending[name] = CookieWrite(
            name=name,
            value=value,
            max_age=max_age,
            http_only=http_only,
            secure=secure,
            same_site=same_site,
            path=path,
        )

    def delete(self, name: str, path: str = "/") -> None:
        self._values.pop(name, None)
        self._pending[name] = CookieWrite(name=name, value=None, path=path)

    @property
    def pending(self) -> List[CookieWrite]:
        return list(self._pending.values())

    def apply(self, response: Response) -> Response:
        """Write every staged cookie change onto the response."""
        for write in self._pending.values():
            if write.is_deletion:
                response.delete_cookie(write.name, path=write.path)
            else:
                response.set_cookie(
                    write.name,
                    write.value,
                    max_age=write.max_age,
                    path=write.path,
                    secure=write.secure,
                    httponly=write.http_only,
                    samesite=write.same_site,
                )
        return response
