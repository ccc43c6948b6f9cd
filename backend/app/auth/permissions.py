"""Capabilities for the billing API.

Design:
  - Each role has a set of DEFAULT capabilities (defined here, not in DB).
  - The identity service may grant/revoke individual capabilities per user;
    ``resolve_permissions(role, overrides)`` computes the effective set.
  - The effective set is embedded in the JWT so checks are token-only.

Naming: `<resource>.<action>`
"""

from __future__ import annotations


# ── All known capabilities ──────────────────────────────────

ALL_CAPABILITIES: set[str] = {
    "invoices.read",
    "invoices.write",         # create / edit drafts and open invoices
    "invoices.finalize",      # assign a legal invoice number
    "invoices.cancel",

    "payments.read",
    "payments.write",         # record / edit entries, gateway verify
    "payments.reverse",
}


# ── Role → default capabilities ─────────────────────────────

ROLE_DEFAULTS: dict[str, set[str]] = {
    "owner": ALL_CAPABILITIES.copy(),

    "accountant": {
        "invoices.read", "invoices.write", "invoices.finalize",
        "payments.read", "payments.write",
    },

    "viewer": {
        "invoices.read",
        "payments.read",
    },
}


# ── Resolution ──────────────────────────────────────────────

def resolve_permissions(
    role: str,
    custom_overrides: dict[str, bool] | None = None,
) -> list[str]:
    """Compute effective capabilities for a user.

    1. Start with the role's defaults.
    2. Apply custom_overrides: {cap: True} adds, {cap: False} removes.
    3. Return a sorted list (for stable JWT claims).
    """
    base = ROLE_DEFAULTS.get(role, set()).copy()

    if custom_overrides:
        for perm, granted in custom_overrides.items():
            if perm not in ALL_CAPABILITIES:
                continue  # ignore unknown capabilities
            if granted:
                base.add(perm)
            else:
                base.discard(perm)

    return sorted(base)


def has_permission(user_permissions: list[str] | set[str] | frozenset[str], required: str) -> bool:
    """Check whether a capability set satisfies a requirement."""
    return required in user_permissions
