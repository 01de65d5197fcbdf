import base64

import pytest

from permproxy.acls import DenyKind, PermissionChecker, wants_expansion
from permproxy.credentials import sign
from permproxy.permissions import Access, Permission, Resource
from permproxy.routes import RouteTable

KEY = b"pk_live_thisisateststripekey"
UPSTREAM_SECRET = "sk_live_realsecret"


def bearer(*grants, encoded=0):
    p = Permission(encoded)
    for access, resource in grants:
        p.set_access(access, resource)
    return {"authorization": "Bearer " + sign(p, KEY)}


@pytest.fixture
def checker():
    return PermissionChecker(KEY, UPSTREAM_SECRET)


class TestAllow:
    def test_read_customers(self, checker):
        verdict = checker.check("GET", "/v1/customers", bearer((Access.READ, Resource.CUSTOMERS)))
        assert verdict.allowed
        assert verdict.access is Access.READ
        assert verdict.resource is Resource.CUSTOMERS
        assert verdict.kind is None
        assert verdict.status == 200

    def test_upstream_secret_substituted(self, checker):
        headers = bearer((Access.READ, Resource.CUSTOMERS))
        verdict = checker.check("GET", "/v1/customers", headers)
        scheme, encoded = verdict.upstream_authorization.split(" ")
        assert scheme == "Basic"
        assert base64.b64decode(encoded) == (UPSTREAM_SECRET + ":").encode()
        assert headers["authorization"].split(" ")[1] not in verdict.upstream_authorization

    def test_basic_auth_credential(self, checker):
        p = Permission()
        p.set_access(Access.WRITE, Resource.CHARGES)
        token = base64.b64encode((sign(p, KEY) + ":").encode()).decode()
        verdict = checker.check("POST", "/v1/charges", {"authorization": "Basic " + token})
        assert verdict.allowed

    def test_wildcard_grant(self, checker):
        verdict = checker.check("DELETE", "/v1/customers/cus_1", bearer(encoded=3))
        assert verdict.allowed
        assert verdict.resource is Resource.CUSTOMERS

    def test_sub_resource(self, checker):
        headers = bearer((Access.WRITE, Resource.TRANSFER_REVERSALS))
        assert checker.check("POST", "/v1/transfers/tr_1/reversals", headers).allowed
        assert not checker.check("POST", "/v1/transfers", headers).allowed

    def test_unknown_path_needs_wildcard(self, checker):
        headers = bearer((Access.READ, Resource.CUSTOMERS))
        assert not checker.check("GET", "/v1/mystery", headers).allowed
        assert checker.check("GET", "/v1/mystery", bearer(encoded=1)).allowed


class TestDeny:
    def test_missing_authorization(self, checker):
        verdict = checker.check("GET", "/v1/customers", {})
        assert not verdict.allowed
        assert verdict.kind is DenyKind.INVALID_CREDENTIAL
        assert verdict.message == "missing authorization"
        assert verdict.upstream_authorization is None

    def test_tampered_credential(self, checker):
        headers = bearer((Access.READ, Resource.CUSTOMERS))
        headers["authorization"] = headers["authorization"][:-1]
        verdict = checker.check("GET", "/v1/customers", headers)
        assert verdict.kind is DenyKind.INVALID_CREDENTIAL
        assert verdict.error_type == "authentication_error"
        assert verdict.status == 403

    def test_credential_signed_with_other_key(self, checker):
        p = Permission(3)
        headers = {"authorization": "Bearer " + sign(p, b"another key")}
        verdict = checker.check("GET", "/v1/customers", headers)
        assert verdict.kind is DenyKind.INVALID_CREDENTIAL

    def test_write_only_cannot_read(self, checker):
        verdict = checker.check("GET", "/v1/customers", bearer((Access.WRITE, Resource.CUSTOMERS)))
        assert not verdict.allowed
        assert verdict.kind is DenyKind.INSUFFICIENT_PERMISSION
        assert verdict.error_type == "permission_error"

    def test_read_only_cannot_delete(self, checker):
        verdict = checker.check(
            "DELETE", "/v1/customers/cus_fake", bearer((Access.READ, Resource.CUSTOMERS))
        )
        assert verdict.kind is DenyKind.INSUFFICIENT_PERMISSION

    def test_other_resource(self, checker):
        verdict = checker.check("GET", "/v1/transfers", bearer((Access.READ, Resource.CUSTOMERS)))
        assert verdict.kind is DenyKind.INSUFFICIENT_PERMISSION

    def test_unmapped_method(self, checker):
        verdict = checker.check("OPTIONS", "/v1/customers", bearer(encoded=3))
        assert not verdict.allowed
        assert verdict.kind is DenyKind.CONFIGURATION
        assert verdict.status == 403

    def test_dot_segments(self, checker):
        verdict = checker.check(
            "GET", "/v1/customers/../transfers", bearer((Access.READ, Resource.CUSTOMERS))
        )
        assert verdict.kind is DenyKind.CONFIGURATION

    def test_empty_segment_cannot_reach_sub_resource(self, checker):
        headers = bearer((Access.WRITE, Resource.CUSTOMERS))
        verdict = checker.check("POST", "/v1/customers/cus_1//sources", headers)
        assert not verdict.allowed
        assert verdict.kind is DenyKind.CONFIGURATION
        assert checker.check("POST", "/v1/customers/cus_1", headers).allowed

    def test_error_body(self, checker):
        body = checker.check("GET", "/v1/customers", {}).error_body()
        assert body == {
            "error": {
                "type": "authentication_error",
                "message": "missing authorization",
                "status": 403,
            }
        }


class TestExpand:
    def test_expand_needs_wildcard(self, checker):
        headers = bearer((Access.READ, Resource.CHARGES))
        assert checker.check("GET", "/v1/charges/ch_1", headers).allowed

        verdict = checker.check("GET", "/v1/charges/ch_1?expand[]=customer", headers)
        assert not verdict.allowed
        assert verdict.kind is DenyKind.INSUFFICIENT_PERMISSION

    def test_expand_with_wildcard(self, checker):
        headers = bearer((Access.READ, Resource.CHARGES), (Access.READ, Resource.ALL))
        assert checker.check("GET", "/v1/charges/ch_1?expand[]=customer", headers).allowed

    def test_wildcard_must_cover_requested_access(self, checker):
        headers = bearer((Access.WRITE, Resource.CHARGES), (Access.READ, Resource.ALL))
        verdict = checker.check("POST", "/v1/charges?expand[]=customer", headers)
        assert verdict.kind is DenyKind.INSUFFICIENT_PERMISSION

    def test_policy_can_be_disabled(self):
        checker = PermissionChecker(KEY, UPSTREAM_SECRET, require_full_access_to_expand=False)
        headers = bearer((Access.READ, Resource.CHARGES))
        assert checker.check("GET", "/v1/charges/ch_1?expand[]=customer", headers).allowed

    @pytest.mark.parametrize(
        "target, expected",
        [
            ("/v1/charges?expand[]=customer", True),
            ("/v1/charges?expand%5B%5D=customer", True),
            ("/v1/charges?expand[0]=customer", True),
            ("/v1/charges?expand=customer", True),
            ("/v1/charges?limit=3&expand[]=", False),
            ("/v1/charges?expanded=1", False),
            ("/v1/charges", False),
        ],
    )
    def test_detection(self, target, expected):
        assert wants_expansion(target) is expected


class TestRouteSwap:
    def test_replace_routes(self, checker):
        headers = bearer((Access.READ, Resource.PRODUCT))
        assert not checker.check("GET", "/v2/items", headers).allowed

        checker.replace_routes(RouteTable([("/v2/items", Resource.PRODUCT), ("/", Resource.ALL)]))
        assert checker.check("GET", "/v2/items", headers).allowed
        assert checker.routes.classify("/v1/products") is Resource.ALL


def test_empty_keys_rejected():
    with pytest.raises(ValueError):
        PermissionChecker(b"", UPSTREAM_SECRET)
    with pytest.raises(ValueError):
        PermissionChecker(KEY, "")
