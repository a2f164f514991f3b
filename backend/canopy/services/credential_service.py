# Overview: Credential Resolver; turns a site or org/state into a bound registry client.

"""
Registry Credential Service

WHY: The registry authenticates every call with two keys: the vendor
(integrator) key, which comes from configuration per state, and the
licensee's user key, stored per organization and state in
registry_credentials. A site reaches the registry through the credential of
the facility it is linked to.

RESOLUTION ORDER for the vendor key:
1. REGISTRY_TEST_MODE: the test state's key, sandbox forced for all states
2. REGISTRY_VENDOR_KEY_<STATE>
3. REGISTRY_VENDOR_KEY

All failures raise CredentialError before any registry call is attempted.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import RegistryCredential, Site
from ..registry import RegistryClient, RegistryError
from canopy.time_utils import utcnow


class CredentialError(Exception):
    """Missing, inactive or unusable registry configuration."""
    pass


@dataclass
class ResolvedCredentials:
    vendor_key: str
    user_key: str
    state_code: str
    is_sandbox: bool
    credential_id: int
    license_number: str | None = None
    site_id: int | None = None


def _config_value(key: str) -> str | None:
    value = current_app.config.get(key)
    if value:
        return value
    return os.getenv(key) or None


def is_test_mode() -> bool:
    return bool(current_app.config.get("REGISTRY_TEST_MODE"))


def get_vendor_key_for_state(state_code: str) -> str | None:
    state = state_code.upper()

    if is_test_mode():
        test_state = current_app.config.get("REGISTRY_TEST_STATE", "AK").upper()
        test_key = _config_value(f"REGISTRY_VENDOR_KEY_{test_state}")
        if test_key:
            return test_key

    return _config_value(f"REGISTRY_VENDOR_KEY_{state}") or _config_value("REGISTRY_VENDOR_KEY")


def get_base_url(state_code: str, is_sandbox: bool) -> str:
    state = state_code.lower()
    if is_test_mode() or is_sandbox:
        if is_test_mode():
            state = current_app.config.get("REGISTRY_TEST_STATE", "AK").lower()
        template = current_app.config["REGISTRY_SANDBOX_BASE_URL_TEMPLATE"]
    else:
        template = current_app.config["REGISTRY_BASE_URL_TEMPLATE"]
    return template.format(state=state)


def _resolve(credential: RegistryCredential, *, license_number=None, site_id=None) -> ResolvedCredentials:
    if not credential.is_active:
        raise CredentialError("Registry credentials are inactive. Please update them in settings.")

    vendor_key = get_vendor_key_for_state(credential.state_code)
    if not vendor_key:
        raise CredentialError(f"No registry vendor key configured for state {credential.state_code}")

    return ResolvedCredentials(
        vendor_key=vendor_key,
        user_key=credential.user_api_key,
        state_code=credential.state_code,
        is_sandbox=is_test_mode() or bool(credential.is_sandbox),
        credential_id=credential.id,
        license_number=license_number,
        site_id=site_id,
    )


def get_site_registry_credentials(site_id: int, org_id: int) -> ResolvedCredentials:
    """
    Resolve the credentials of the facility a site is linked to.

    Raises CredentialError with a user-facing message for every
    misconfiguration.
    """
    site = db.session.query(Site).filter_by(id=site_id, org_id=org_id).first()
    if not site:
        raise CredentialError("Site not found")

    if not site.is_linked:
        raise CredentialError("Site is not linked to a registry facility. Please link the site first.")

    if not site.registry_credential_id:
        raise CredentialError("Site has no registry credentials configured. Please re-link the site to a facility.")

    credential = db.session.query(RegistryCredential).filter_by(
        id=site.registry_credential_id,
        org_id=org_id,
    ).first()
    if not credential:
        raise CredentialError("Registry credentials not found for this site")

    return _resolve(credential, license_number=site.registry_license_number, site_id=site.id)


def get_org_credential(org_id: int, state_code: str | None) -> RegistryCredential:
    if not state_code:
        raise CredentialError("Site has no state configured")

    credential = db.session.query(RegistryCredential).filter_by(
        org_id=org_id,
        state_code=state_code.upper(),
    ).first()
    if not credential:
        raise CredentialError(f"No registry credentials configured for state {state_code.upper()}")
    return credential


def get_state_registry_credentials(site_id: int, org_id: int) -> ResolvedCredentials:
    """
    Org-level credentials for the site's state, not bound to a license.

    Used for facility discovery, which must work before the site is linked.
    """
    site = db.session.query(Site).filter_by(id=site_id, org_id=org_id).first()
    if not site:
        raise CredentialError("Site not found")

    credential = get_org_credential(org_id, site.state_code)
    return _resolve(credential, site_id=site.id)


def build_client(credentials: ResolvedCredentials) -> RegistryClient:
    """Default client factory: a RegistryClient bound to the resolved license."""
    return RegistryClient(
        vendor_key=credentials.vendor_key,
        user_key=credentials.user_key,
        base_url=get_base_url(credentials.state_code, credentials.is_sandbox),
        license_number=credentials.license_number,
        timeout=current_app.config.get("REGISTRY_TIMEOUT_SECONDS", 30.0),
    )


def save_org_credential(
    *,
    org_id: int,
    state_code: str,
    user_api_key: str,
    is_sandbox: bool = False,
) -> RegistryCredential:
    """Create or rotate the organization's credential for a state."""
    state = (state_code or "").strip().upper()
    if len(state) != 2:
        raise CredentialError("state_code must be a two-letter state code")
    if not user_api_key or not user_api_key.strip():
        raise CredentialError("user_api_key is required")

    credential = db.session.query(RegistryCredential).filter_by(org_id=org_id, state_code=state).first()
    if credential:
        credential.user_api_key = user_api_key.strip()
        credential.is_sandbox = is_sandbox
        credential.is_active = True
        credential.validated_at = None
        credential.validation_error = None
    else:
        credential = RegistryCredential(
            org_id=org_id,
            state_code=state,
            user_api_key=user_api_key.strip(),
            is_sandbox=is_sandbox,
            is_active=True,
        )
        db.session.add(credential)

    db.session.commit()
    return credential


def validate_credential(credential: RegistryCredential, *, client_factory=build_client) -> tuple[bool, str | None, list[dict]]:
    """
    Probe the registry with the credential and record the outcome.

    Returns (is_valid, error_message, facilities).
    """
    resolved = _resolve(credential)
    client = client_factory(resolved)
    try:
        facilities = client.validate_credentials()
    except RegistryError as e:
        credential.validated_at = None
        credential.validation_error = e.message
        db.session.commit()
        return False, e.message, []
    finally:
        close = getattr(client, "close", None)
        if close:
            close()

    credential.validated_at = utcnow()
    credential.validation_error = None
    db.session.commit()
    return True, None, facilities
