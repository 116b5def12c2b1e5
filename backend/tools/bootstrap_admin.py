"""Promote an existing identity to administrator.

Why:
    Self-registration only ever grants `student` or `teacher`. The first
    administrator (and any later one) is created by an operator with direct
    access to the identity provider and the database.

Usage:
    python -m backend.tools.bootstrap_admin --email principal@school.example --name "Head Office"

    or, when the subject id is known:

    python -m backend.tools.bootstrap_admin --user-id 8f573bca-... --name "Head Office"

Notes:
    - Idempotent: rerunning leaves the same claims and profile.
    - Writes claims `{role: admin, verified: true}` first, then the profile.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Optional, Tuple

import click

from backend.identity_access.domain import Claims, IdentityAccessError, Profile
from backend.identity_access.ports import IdentityStoreProtocol, ProfileStoreProtocol

LOG = logging.getLogger("brainplus.tools.bootstrap_admin")


def promote_to_admin(
    identity: IdentityStoreProtocol,
    profiles: ProfileStoreProtocol,
    *,
    user_id: str,
    name: str,
    email: str = "",
) -> Profile:
    # Fails with NotFound before anything is written when the identity is unknown.
    identity.get_claims(user_id)
    identity.set_claims(user_id, Claims(role="admin", verified=True))
    existing = profiles.get_profile(user_id)
    if existing is not None:
        partial = {"role": "admin", "verified": True}
        if name:
            partial["name"] = name
        profile = profiles.update_profile(user_id, partial)
    else:
        doc = {
            "name": name,
            "role": "admin",
            "verified": True,
            "createdAt": datetime.now(tz=timezone.utc),
        }
        if email:
            doc["email"] = email
        profile = profiles.put_profile(user_id, doc)
    LOG.info("bootstrap_admin.promoted principal=%s", user_id)
    return profile


def _build_stores(db_dsn: Optional[str]) -> Tuple[IdentityStoreProtocol, ProfileStoreProtocol]:
    from backend.identity_access.admin_client import KeycloakIdentityStore
    from backend.identity_access.oidc import load_oidc_config
    from backend.identity_access.stores_db import DBProfileStore

    return KeycloakIdentityStore(load_oidc_config()), DBProfileStore(dsn=db_dsn)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--email", required=False, help="Email of the identity to promote.")
@click.option("--user-id", required=False, help="Subject id of the identity to promote.")
@click.option("--name", required=True, help="Display name stored on the admin profile.")
@click.option("--db-dsn", envvar="DATABASE_URL", required=False, help="Service-role DSN (defaults to DATABASE_URL).")
def cli(email: str | None, user_id: str | None, name: str, db_dsn: str | None) -> None:
    """Grant the admin role (verified) to an existing identity."""
    if bool(email) == bool(user_id):
        raise click.ClickException("Provide exactly one of --email or --user-id")
    if not name.strip():
        raise click.ClickException("--name must not be empty")
    identity, profiles = _build_stores(db_dsn)
    try:
        if email:
            user_id = identity.find_user_id(email)  # type: ignore[attr-defined]
            if not user_id:
                raise click.ClickException(f"No identity found for {email}")
        profile = promote_to_admin(identity, profiles, user_id=user_id or "", name=name.strip(), email=email or "")
    except IdentityAccessError as exc:
        raise click.ClickException(f"Promotion failed: {exc.code} ({exc.detail})")
    click.echo(f"Promoted {profile.id} to admin (verified).")


if __name__ == "__main__":  # pragma: no cover - manual entry
    cli()
