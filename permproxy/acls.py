"""
permproxy.acls
~~~~~~~~~~~~~~
Per-request allow/deny.  :meth:`PermissionChecker.check` never raises for
a bad request: every failure becomes a denied :class:`Verdict` the server
renders as a 403 in the upstream API's own error envelope.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Mapping
from urllib.parse import parse_qsl

from .auth import AuthError, basic_authorization, extract_credential
from .credentials import CredentialError, verify
from .permissions import Access, Permission, Resource
from .routes import DEFAULT_ROUTES, RouteTable, UnroutablePath, classify_access


class DenyKind(str, enum.Enum):
    INVALID_CREDENTIAL = "invalid_credential"
    INSUFFICIENT_PERMISSION = "insufficient_permission"
    CONFIGURATION = "configuration"


_ERROR_TYPES = {
    DenyKind.INVALID_CREDENTIAL: "authentication_error",
    DenyKind.INSUFFICIENT_PERMISSION: "permission_error",
    DenyKind.CONFIGURATION: "permission_error",
}


@dataclass(frozen=True, slots=True)
class Verdict:
    allowed: bool
    access: Access = Access.NONE
    resource: Resource | None = None
    kind: DenyKind | None = None
    message: str = ""
    upstream_authorization: str | None = None

    @property
    def status(self) -> int:
        return 200 if self.allowed else 403

    @property
    def error_type(self) -> str | None:
        return _ERROR_TYPES[self.kind] if self.kind else None

    def error_body(self) -> Dict[str, Any]:
        return {
            "error": {
                "type": self.error_type,
                "message": self.message,
                "status": self.status,
            }
        }


def _deny(kind: DenyKind, message: str, access: Access = Access.NONE,
          resource: Resource | None = None) -> Verdict:
    return Verdict(False, access, resource, kind, message)


def wants_expansion(target: str) -> bool:
    """True if the query string asks the upstream to inline related objects."""
    query = target.partition("?")[2].partition("#")[0]
    for key, value in parse_qsl(query, keep_blank_values=True):
        if (key == "expand" or key.startswith("expand[")) and value:
            return True
    return False


class PermissionChecker:
    def __init__(
        self,
        signing_key: bytes,
        upstream_secret: str,
        routes: RouteTable = DEFAULT_ROUTES,
        require_full_access_to_expand: bool = True,
    ) -> None:
        if not signing_key:
            raise ValueError("signing key must not be empty")
        if not upstream_secret:
            raise ValueError("upstream secret must not be empty")
        self._key = signing_key
        self._upstream_authorization = basic_authorization(upstream_secret)
        self._routes = routes
        self.require_full_access_to_expand = require_full_access_to_expand

    @property
    def routes(self) -> RouteTable:
        return self._routes

    def replace_routes(self, routes: RouteTable) -> None:
        # RouteTable validated on construction; one reference swap publishes it
        self._routes = routes

    def check(self, method: str, target: str, headers: Mapping[str, str]) -> Verdict:
        try:
            credential = extract_credential(headers)
        except AuthError as e:
            return _deny(DenyKind.INVALID_CREDENTIAL, str(e))

        access = classify_access(method)
        routes = self._routes
        try:
            resource = routes.classify(target)
        except UnroutablePath as e:
            return _deny(DenyKind.CONFIGURATION, str(e), access)
        if access is Access.NONE:
            return _deny(
                DenyKind.CONFIGURATION,
                f"Method {method} is not mapped to an access level",
                access,
                resource,
            )

        try:
            granted = verify(credential, self._key)
        except CredentialError as e:
            return _deny(DenyKind.INVALID_CREDENTIAL, str(e), access, resource)

        return self._authorize(granted, access, resource, target)

    def _authorize(self, granted: Permission, access: Access, resource: Resource,
                   target: str) -> Verdict:
        if not granted.can(access, resource):
            return _deny(
                DenyKind.INSUFFICIENT_PERMISSION,
                "Request requires permission that was not granted",
                access,
                resource,
            )

        if (
            self.require_full_access_to_expand
            and wants_expansion(target)
            and not granted.can(access, Resource.ALL)
        ):
            # Expanded objects may belong to any resource family.
            return _deny(
                DenyKind.INSUFFICIENT_PERMISSION,
                "Requests that expand return values must have permissions to all resources",
                access,
                resource,
            )

        return Verdict(
            True,
            access,
            resource,
            upstream_authorization=self._upstream_authorization,
        )
