"""Operator CLI for the TaiHub identity directory.

Why:
    The owner account is created once through the setup flow. Operators still
    need a way to check that state, bootstrap the owner from a shell (e.g. on a
    fresh deployment without browser access) and prune staff accounts.

Usage:
    taihub-identity status
    taihub-identity init-owner --phone 9000000001 --name Admin
    taihub-identity list-staff
    taihub-identity remove-staff 8000000002

The backing store is chosen like the web app does (IDENTITY_BACKEND,
SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY). Passwords are never printed.
"""

from __future__ import annotations

import logging

import click

try:
    # Prefer absolute import path used by the web layer during tests
    from identity_access.domain import ROLE_OWNER, AlreadyInitialized, Principal, StoreFailure
    from identity_access.service import IdentityAccessService
except ImportError:  # pragma: no cover - fallback when executed as a package module
    from backend.identity_access.domain import ROLE_OWNER, AlreadyInitialized, Principal, StoreFailure  # type: ignore
    from backend.identity_access.service import IdentityAccessService  # type: ignore


logger = logging.getLogger("taihub.tools.identity_admin")

# The CLI acts with owner authority; it runs with service-role credentials.
OPERATOR = Principal(id="operator", name="operator", role=ROLE_OWNER)


def _mask_phone(phone: str) -> str:
    return f"***{phone[-4:]}" if len(phone) > 4 else "***"


def _build_store():
    """Return the identity store for the configured backend (same rules as the web app)."""
    try:
        from web.config import IDENTITY_BACKENDS, identity_backend
        from web.identity_wiring import build_identity_store
    except ImportError:  # pragma: no cover
        from backend.web.config import IDENTITY_BACKENDS, identity_backend  # type: ignore
        from backend.web.identity_wiring import build_identity_store  # type: ignore

    if identity_backend() not in IDENTITY_BACKENDS:
        raise click.ClickException(f"unknown IDENTITY_BACKEND '{identity_backend()}'")
    return build_identity_store()


def _load_service(ctx: click.Context) -> IdentityAccessService:
    service: IdentityAccessService = ctx.obj["service"]
    service.ensure_loaded()
    if service.is_unreachable:
        raise click.ClickException("identity store unreachable")
    return service


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Inspect and administer the owner credential and staff directory."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    if "service" not in ctx.obj:
        ctx.obj["service"] = IdentityAccessService(_build_store())


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Report whether setup is required and how many staff accounts exist."""
    service = _load_service(ctx)
    owner = service.directory.owner
    if owner is None:
        click.echo("setup required: yes")
    else:
        click.echo("setup required: no")
        click.echo(f"owner: {owner.name} ({_mask_phone(owner.phone)})")
    click.echo(f"staff: {len(service.directory.staff)}")


@cli.command("init-owner")
@click.option("--phone", required=True, help="Owner phone number (10 digits).")
@click.option("--name", required=True, help="Owner display name.")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True, help="Owner password.")
@click.pass_context
def init_owner(ctx: click.Context, phone: str, name: str, password: str) -> None:
    """Create the owner credential (only while setup is required)."""
    service = _load_service(ctx)
    try:
        cred = service.initialize_owner(phone, password, name)
    except AlreadyInitialized:
        raise click.ClickException("owner already initialized")
    except ValueError as exc:
        raise click.ClickException(str(exc))
    except StoreFailure as exc:
        logger.error("Owner initialization failed (%s)", exc.operation)
        raise click.ClickException(f"store failure: {exc.operation}")
    click.echo(f"owner created: {cred.name}")


@cli.command("list-staff")
@click.pass_context
def list_staff(ctx: click.Context) -> None:
    """Print staff accounts with their granted domains."""
    service = _load_service(ctx)
    records = sorted(service.list_staff(OPERATOR), key=lambda r: r.phone)
    if not records:
        click.echo("no staff accounts")
        return
    for rec in records:
        granted = [name for name, allowed in rec.permissions.to_dict().items() if allowed]
        click.echo(f"{rec.phone}\t{rec.name}\t{','.join(granted) or '-'}")


@cli.command("remove-staff")
@click.argument("phone")
@click.pass_context
def remove_staff(ctx: click.Context, phone: str) -> None:
    """Delete the staff account with PHONE (no-op when absent)."""
    service = _load_service(ctx)
    try:
        service.remove_staff(OPERATOR, phone)
    except StoreFailure as exc:
        logger.error("Staff removal failed (%s)", exc.operation)
        raise click.ClickException(f"store failure: {exc.operation}")
    click.echo(f"removed: {_mask_phone(phone)}")
    click.echo("running servers stop accepting it after their next directory refresh (IDENTITY_REFRESH_SECONDS)")


__all__ = ["OPERATOR", "cli"]


if __name__ == "__main__":  # pragma: no cover
    cli()
