"""
permproxy.routes
~~~~~~~~~~~~~~~~
Maps a request onto ``(Access, Resource)``.

Routes match in order and the first hit wins, so a sub-resource
(``/v1/transfers/{id}/reversals``) must be listed before its parent
(``/v1/transfers``).  :class:`RouteTable` refuses tables where an earlier
route makes a later one unreachable, and requires the catch-all ``/``
route for ``Resource.ALL`` at the end.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Sequence, Tuple
from urllib.parse import unquote

from .permissions import Access, Resource

ACCESS_METHODS: Dict[Access, FrozenSet[str]] = {
    Access.READ: frozenset({"GET", "HEAD"}),
    Access.WRITE: frozenset({"POST", "PUT", "PATCH", "DELETE"}),
}


class RouteConfigurationError(ValueError):
    pass


class UnroutablePath(ValueError):
    pass


def classify_access(method: str) -> Access:
    """Access level exercised by *method*; ``Access.NONE`` if unmapped."""
    method = method.upper()
    for access, methods in ACCESS_METHODS.items():
        if method in methods:
            return access
    return Access.NONE


def _is_placeholder(segment: str) -> bool:
    return len(segment) > 2 and segment[0] == "{" and segment[-1] == "}"


def split_path(path: str) -> Tuple[str, ...]:
    """Percent-decoded path segments of *path* (query string dropped)."""
    path = unquote(path.partition("?")[0].partition("#")[0])
    trimmed = path[1:] if path.startswith("/") else path
    if trimmed.endswith("/"):
        trimmed = trimmed[:-1]
    segments = tuple(trimmed.split("/")) if trimmed else ()
    # no segment the upstream could merge away or resolve
    if any(s in ("", ".", "..") for s in segments):
        raise UnroutablePath(f"path {path!r} contains empty or dot segments")
    return segments


@dataclass(frozen=True, slots=True)
class Route:
    pattern: str
    resource: Resource
    segments: Tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.pattern.startswith("/"):
            raise RouteConfigurationError(f"route {self.pattern!r} must start with '/'")
        segs = tuple(s for s in self.pattern.strip("/").split("/") if s)
        object.__setattr__(self, "segments", segs)

    def matches(self, segments: Sequence[str]) -> bool:
        if len(segments) < len(self.segments):
            return False
        for want, got in zip(self.segments, segments):
            if _is_placeholder(want):
                if not got:
                    return False
            elif want != got:
                return False
        return True

    def shadows(self, other: "Route") -> bool:
        """True if every path matched by *other* is also matched by self."""
        if len(self.segments) > len(other.segments):
            return False
        for mine, theirs in zip(self.segments, other.segments):
            if _is_placeholder(mine):
                continue
            if _is_placeholder(theirs) or mine != theirs:
                return False
        return True


class RouteTable:
    """Validated, immutable, ordered list of routes."""

    def __init__(self, routes: Iterable[Route | Tuple[str, Resource]]) -> None:
        table = tuple(r if isinstance(r, Route) else Route(*r) for r in routes)
        _validate(table)
        self._routes = table

    @property
    def routes(self) -> Tuple[Route, ...]:
        return self._routes

    def classify(self, path: str) -> Resource:
        segments = split_path(path)
        for route in self._routes:
            if route.matches(segments):
                return route.resource
        # unreachable: the catch-all matches everything
        return Resource.ALL

    def __iter__(self):
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)


def _validate(table: Tuple[Route, ...]) -> None:
    if not table:
        raise RouteConfigurationError("route table is empty")

    last = table[-1]
    if last.segments or last.resource is not Resource.ALL:
        raise RouteConfigurationError(
            "route table must end with the catch-all '/' route for Resource.ALL"
        )

    for i, later in enumerate(table):
        for earlier in table[:i]:
            if earlier.shadows(later):
                raise RouteConfigurationError(
                    f"route {later.pattern!r} ({later.resource.name}) is unreachable: "
                    f"shadowed by earlier route {earlier.pattern!r} "
                    f"({earlier.resource.name})"
                )


DEFAULT_ROUTES = RouteTable(
    [
        # payment methods
        ("/v1/customers/{customer}/sources", Resource.SOURCE),
        ("/v1/sources", Resource.SOURCE),
        # core resources
        ("/v1/balance", Resource.BALANCE),
        ("/v1/charges", Resource.CHARGES),
        ("/v1/customers", Resource.CUSTOMERS),
        ("/v1/disputes", Resource.DISPUTES),
        ("/v1/events", Resource.EVENTS),
        ("/v1/files", Resource.FILE_UPLOADS),
        ("/v1/refunds", Resource.REFUNDS),
        ("/v1/tokens", Resource.TOKENS),
        ("/v1/transfers/{transfer}/reversals", Resource.TRANSFER_REVERSALS),
        ("/v1/transfers", Resource.TRANSFERS),
        # connect resources
        ("/v1/accounts/{account}/external_accounts", Resource.EXTERNAL_ACCOUNT),
        ("/v1/accounts", Resource.ACCOUNT),
        ("/v1/application_fees/{fee}/refunds", Resource.APPLICATION_FEE_REFUND),
        ("/v1/application_fees", Resource.APPLICATION_FEE),
        ("/v1/recipients", Resource.RECIPIENT),
        ("/v1/country_specs", Resource.COUNTRY_SPEC),
        # relay resources
        ("/v1/orders", Resource.ORDER),
        ("/v1/order_returns", Resource.ORDER_RETURN),
        ("/v1/products", Resource.PRODUCT),
        ("/v1/skus", Resource.SKU),
        # subscription resources
        ("/v1/coupons", Resource.COUPON),
        ("/v1/invoices", Resource.INVOICE),
        ("/v1/invoiceitems", Resource.INVOICE_ITEM),
        ("/v1/plans", Resource.PLAN),
        ("/v1/subscriptions", Resource.SUBSCRIPTION),
        ("/v1/subscription_items", Resource.SUBSCRIPTION_ITEM),
        # radar resources
        ("/v1/reviews", Resource.RADAR_REVIEW),
        # catch-all
        ("/", Resource.ALL),
    ]
)
