"""Permission set for the grower payment API.

Design:
  - Each role has a set of DEFAULT permissions (defined here, not in DB).
  - Per-user overrides ({perm: True/False}) are applied by
    `resolve_permissions` when the token is issued.
  - The effective set is embedded in the JWT so checks are token-only.

Permission naming: `<resource>.<action>`
"""

from __future__ import annotations


# ── All known permissions ───────────────────────────────────

ALL_PERMISSIONS: set[str] = {
    # Payment runs, batches, cheques
    "financials.read",
    "financials.write",

    # Advance cheques and deductions
    "advances.read",
    "advances.write",
}


# ── Role → default permissions ──────────────────────────────

ROLE_DEFAULTS: dict[str, set[str]] = {
    "administrator": ALL_PERMISSIONS.copy(),

    "accountant": {
        "financials.read", "financials.write",
        "advances.read", "advances.write",
    },

    "viewer": {
        "financials.read",
        "advances.read",
    },
}


# ── Resolution ──────────────────────────────────────────────

def resolve_permissions(
    role: str,
    custom_overrides: dict[str, bool] | None = None,
) -> list[str]:
    """Compute effective permissions for a user.

    1. Start with the role's defaults.
    2. Apply custom_overrides: {perm: True} adds, {perm: False} removes.
    3. Return a sorted list (for stable JWT claims).
    """
    base = ROLE_DEFAULTS.get(role, set()).copy()

    if custom_overrides:
        for perm, granted in custom_overrides.items():
            if perm not in ALL_PERMISSIONS:
                continue
            if granted:
                base.add(perm)
            else:
                base.discard(perm)

    return sorted(base)


def has_permission(user_permissions: list[str] | set[str], required: str) -> bool:
    """Check whether a permission set satisfies a requirement."""
    return required in user_permissions
