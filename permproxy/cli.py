"""
Command line entry points.

Issue a credential for a client::

    $ STRIPE_KEY=sk_test_... permproxy sign --grant read:customers --grant rw:charges
    AAAAAAAAADQ_...

and run the proxy in front of the upstream API::

    $ STRIPE_KEY=sk_test_... permproxy serve --listen :9090

Point the client SDK at the proxy and use the credential as its API key.
"""

from __future__ import annotations

from typing import Optional, Tuple

import click

from .config import ConfigError, load_config
from .credentials import CredentialError, sign, verify
from .permissions import MAX_RESOURCES, Permission, Resource, parse_grants


def _load(**overrides):
    try:
        return load_config(**overrides)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


def _split_listen(listen: Optional[str]) -> Tuple[Optional[str], Optional[int]]:
    if not listen:
        return None, None
    host, sep, port = listen.rpartition(":")
    if not sep or not port.isdigit():
        raise click.BadParameter("expected HOST:PORT or :PORT", param_hint="--listen")
    return host or "0.0.0.0", int(port)


@click.group()
def cli() -> None:
    """Permission-scoped credentials in front of the payment API."""


@cli.command()
@click.option("--listen", default=None, help="Interface and port on which to listen, e.g. :9090")
@click.option("--uri", default=None, help="Upstream API URI to talk to.")
@click.option("--cert", default=None, help="Path to the PEM encoded SSL certificate chain file")
@click.option("--key", default=None, help="Path to the PEM encoded SSL private key file")
def serve(listen: Optional[str], uri: Optional[str], cert: Optional[str],
          key: Optional[str]) -> None:
    """Run the reverse proxy server."""
    from .core import run_proxy

    host, port = _split_listen(listen)
    config = _load(listen_host=host, listen_port=port, upstream_uri=uri,
                   tls_cert=cert, tls_key=key)
    run_proxy(config)


@cli.command("sign")
@click.option("--input", "input_", type=int, default=None,
              help="Integer representation of permissions vector")
@click.option("--grant", "grants", multiple=True, metavar="ACCESS:RESOURCE[,...]",
              help="Grants to include, e.g. read:customers,w:charges or rw:all (repeatable)")
def sign_cmd(input_: Optional[int], grants: Tuple[str, ...]) -> None:
    """Sign a permissions vector for a client."""
    config = _load()
    try:
        permission = Permission(input_ if input_ is not None else (0 if grants else 1))
        for text in grants:
            for access, resource in parse_grants(text):
                permission.set_access(access, resource)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    click.echo(sign(permission, config.signing_key))


@cli.command()
@click.argument("credential")
def inspect(credential: str) -> None:
    """Verify a credential and list what it grants."""
    config = _load()
    try:
        permission = verify(credential, config.signing_key)
    except CredentialError as e:
        raise click.ClickException(f"credential rejected: {e}") from e

    click.echo(f"vector: {permission.encoded}")
    for resource, access in permission.grants():
        name = resource.name if isinstance(resource, Resource) else f"<unknown {resource}>"
        click.echo(f"{access.name.lower():<10} {name.lower()}")


@cli.command()
def resources() -> None:
    """List resource identifiers and their bit positions."""
    for res in Resource:
        click.echo(f"{int(res):>2}  bits {2 * int(res)}-{2 * int(res) + 1}  {res.name.lower()}")
    click.echo(f"capacity: {len(Resource)}/{MAX_RESOURCES}")
