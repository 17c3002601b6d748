"""``cx stacks ssl``: add or replace a stack's SSL certificate."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from ..api.models import LETS_ENCRYPT_SSL_CERTIFICATE_TYPE, MANUAL_SSL_CERTIFICATE_TYPE, SslCertificate
from ..errors import CxError
from .common import ENVIRONMENT_OPTION, STACK_OPTION, handle_errors
from .state import get_state

ssl_app = typer.Typer(help="Commands to work with SSL certificates.", no_args_is_help=True)


def _read(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def build_certificate(
    cert_type: Optional[str],
    domains: Optional[str],
    cert: Optional[Path],
    key: Optional[Path],
    intermediate: Optional[Path],
) -> SslCertificate:
    """Assemble the certificate payload for ``cert_type``, reading PEM files from disk."""
    if cert_type == LETS_ENCRYPT_SSL_CERTIFICATE_TYPE:
        if not domains:
            raise CxError(
                "No domains names specified. Please use the --domains flag to specify a list of comma separated domain names."
            )
        return SslCertificate(type=LETS_ENCRYPT_SSL_CERTIFICATE_TYPE, server_names=domains)

    if cert_type == MANUAL_SSL_CERTIFICATE_TYPE:
        if cert is None:
            raise CxError("No certificate file specified. Please use the --cert flag to specify it.")
        certificate = _read(cert)
        if key is None:
            raise CxError("No key file specified. Please use the --key flag to specify it.")
        return SslCertificate(
            type=MANUAL_SSL_CERTIFICATE_TYPE,
            server_names=domains or "",
            certificate=certificate,
            key=_read(key),
            intermediate_certificate=_read(intermediate) if intermediate else None,
        )

    raise CxError(
        "Please ensure that you specify the SSL certificate type with the --type flag "
        f"(one of '{LETS_ENCRYPT_SSL_CERTIFICATE_TYPE}', or '{MANUAL_SSL_CERTIFICATE_TYPE}')."
    )


@ssl_app.command("add")
@handle_errors
def add_certificate(
    ctx: typer.Context,
    cert_type: Optional[str] = typer.Option(
        None,
        "--type",
        help=f"Type of the SSL certificate: {LETS_ENCRYPT_SSL_CERTIFICATE_TYPE} or {MANUAL_SSL_CERTIFICATE_TYPE}.",
    ),
    cert: Optional[Path] = typer.Option(None, "--cert", help="SSL certificate file (manual certificates)."),
    key: Optional[Path] = typer.Option(None, "--key", help="SSL key file (manual certificates)."),
    intermediate: Optional[Path] = typer.Option(
        None, "--intermediate", help="SSL intermediate certificate file (optional, manual certificates)."
    ),
    domains: Optional[str] = typer.Option(
        None, "--domains", help="Comma separated domain names the certificate applies to."
    ),
    overwrite: bool = typer.Option(False, "--overwrite", help="Update the existing SSL certificate if there is one."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Add an SSL certificate to a stack.

    Examples:

        cx stacks ssl add -s my-stack --type lets_encrypt --domains 'web.domain.com,api.domain.com'

        cx stacks ssl add -s my-stack --type manual --cert cert.pem --key key.pem --intermediate chain.pem
    """
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    client = state.client

    existing = client.ssl_certificates.list(stack.uid)
    if existing and not overwrite:
        raise CxError(
            "SSL certificate already exists for this application. "
            "Please use the --overwrite flag if you want to overwrite the existing certificate."
        )

    certificate = build_certificate(cert_type, domains, cert, key, intermediate)
    if existing:
        client.ssl_certificates.update(stack.uid, existing[0].uuid or "", certificate)
        typer.echo("Updating SSL certificate...")
    else:
        client.ssl_certificates.create(stack.uid, certificate)
        typer.echo("Creating SSL certificate...")
