"""
Permission Catalog — static default permission bundle per administrator level.

Pure data and pure functions: no database access, no I/O. Every bundle
returned here is fully populated (all three categories, every flag boolean).

Categories:
  users         — create/modify per target kind, delete_users, view_all_users
  organization  — school and branch lifecycle, visibility, departments
  settings      — company/school/branch settings, audit log access, export

Merge policy (used by the resolver):
  Override fragments are additive. A ``True`` leaf in an overlay always
  wins; a ``False`` leaf never downgrades a ``True`` already present.
"""

from __future__ import annotations

import copy

from orgadmin.core.exceptions import ValidationError
from orgadmin.models.admin import AdminLevel

PERMISSION_KEYS: dict[str, tuple[str, ...]] = {
    "users": (
        "create_entity_admin",
        "create_sub_admin",
        "create_school_admin",
        "create_branch_admin",
        "create_teacher",
        "create_student",
        "modify_entity_admin",
        "modify_sub_admin",
        "modify_school_admin",
        "modify_branch_admin",
        "modify_teacher",
        "modify_student",
        "delete_users",
        "view_all_users",
    ),
    "organization": (
        "create_school",
        "modify_school",
        "delete_school",
        "create_branch",
        "modify_branch",
        "delete_branch",
        "view_all_schools",
        "view_all_branches",
        "manage_departments",
    ),
    "settings": (
        "manage_company_settings",
        "manage_school_settings",
        "manage_branch_settings",
        "view_audit_logs",
        "export_data",
    ),
}

PERMISSION_CATEGORIES = tuple(PERMISSION_KEYS)

_LEVEL_FLAG_SUFFIX = {
    AdminLevel.ENTITY_ADMIN: "entity_admin",
    AdminLevel.SUB_ENTITY_ADMIN: "sub_admin",
    AdminLevel.SCHOOL_ADMIN: "school_admin",
    AdminLevel.BRANCH_ADMIN: "branch_admin",
}


def _bundle(granted: dict[str, set[str]]) -> dict:
    """Build a full bundle where only the listed keys are True."""
    return {
        category: {key: key in granted.get(category, set()) for key in keys}
        for category, keys in PERMISSION_KEYS.items()
    }


def _all_except(denied: dict[str, set[str]]) -> dict:
    return {
        category: {key: key not in denied.get(category, set()) for key in keys}
        for category, keys in PERMISSION_KEYS.items()
    }


_DEFAULTS: dict[AdminLevel, dict] = {
    # Full tenant authority, including other entity admins.
    AdminLevel.ENTITY_ADMIN: _all_except({}),
    AdminLevel.SUB_ENTITY_ADMIN: _all_except({
        "users": {"create_entity_admin", "modify_entity_admin"},
        "settings": {"manage_company_settings"},
    }),
    # view_all_schools is False: the scope adapter limits them to assigned schools.
    AdminLevel.SCHOOL_ADMIN: _bundle({
        "users": {
            "create_branch_admin", "create_teacher", "create_student",
            "modify_branch_admin", "modify_teacher", "modify_student",
            "view_all_users",
        },
        "organization": {
            "create_branch", "modify_branch", "view_all_branches", "manage_departments",
        },
        "settings": {
            "manage_school_settings", "manage_branch_settings",
            "view_audit_logs", "export_data",
        },
    }),
    AdminLevel.BRANCH_ADMIN: _bundle({
        "users": {"create_teacher", "create_student", "modify_teacher", "modify_student"},
        "organization": {"modify_branch"},
        "settings": {"manage_branch_settings"},
    }),
}


def default_permissions_for(level) -> dict:
    """Return a fresh, fully populated default bundle for *level*.

    Unknown levels resolve to the minimal (all-False) bundle.
    """
    try:
        level = AdminLevel.parse(level)
    except ValueError:
        return minimal_permissions()
    return copy.deepcopy(_DEFAULTS[level])


def minimal_permissions() -> dict:
    """The all-False bundle — what an unknown administrator resolves to."""
    return _bundle({})


def create_flag_for_level(level) -> str:
    """``users.create_*`` key guarding creation of an administrator at *level*."""
    return f"create_{_LEVEL_FLAG_SUFFIX[AdminLevel.parse(level)]}"


def modify_flag_for_level(level) -> str:
    """``users.modify_*`` key guarding modification of an administrator at *level*."""
    return f"modify_{_LEVEL_FLAG_SUFFIX[AdminLevel.parse(level)]}"


# ═════════════════════════════════════════════════════════════════════════════
# Shape validation & merging
# ═════════════════════════════════════════════════════════════════════════════


def validate_permission_set(permissions, *, partial: bool = False) -> dict:
    """Check the shape of a permission bundle and return it unchanged.

    ``partial=False`` requires all three categories and every key.
    ``partial=True`` accepts override fragments: any subset of known
    categories and keys.

    Raises:
        ValidationError: non-mapping input, unknown or missing category,
            unknown or missing key, or a non-boolean leaf.
    """
    if not isinstance(permissions, dict):
        raise ValidationError("Permissions must be an object")

    errors: dict[str, str] = {}
    for category, leaves in permissions.items():
        if category not in PERMISSION_KEYS:
            errors[category] = "unknown permission category"
            continue
        if not isinstance(leaves, dict):
            errors[category] = "category must be an object"
            continue
        for key, value in leaves.items():
            path = f"{category}.{key}"
            if key not in PERMISSION_KEYS[category]:
                errors[path] = "unknown permission"
            elif not isinstance(value, bool):
                errors[path] = "must be a boolean"

    if not partial:
        for category, keys in PERMISSION_KEYS.items():
            leaves = permissions.get(category)
            if not isinstance(leaves, dict):
                errors.setdefault(category, "missing permission category")
                continue
            for key in keys:
                if key not in leaves:
                    errors[f"{category}.{key}"] = "missing permission"

    if errors:
        raise ValidationError("Invalid permissions structure", details=errors)
    return permissions


def merge_permissions(base: dict, overlay: dict | None) -> dict:
    """True-biased OR-merge of *overlay* onto *base*; returns a new bundle.

    Only known categories/keys with boolean values in the overlay are
    considered. A True leaf turns the flag on; a False leaf is ignored.
    """
    merged = copy.deepcopy(base)
    if not overlay or not isinstance(overlay, dict):
        return merged
    for category, leaves in overlay.items():
        if category not in PERMISSION_KEYS or not isinstance(leaves, dict):
            continue
        target = merged.setdefault(category, {})
        for key, value in leaves.items():
            if key in PERMISSION_KEYS[category] and value is True:
                target[key] = True
    return merged


def permission_differences(old: dict | None, new: dict | None) -> dict:
    """Return ``{"category.key": {"old": bool, "new": bool}}`` for changed leaves.

    Missing leaves count as False on either side.
    """
    old = old or {}
    new = new or {}
    diff: dict[str, dict] = {}
    for category, keys in PERMISSION_KEYS.items():
        for key in keys:
            before = bool((old.get(category) or {}).get(key, False))
            after = bool((new.get(category) or {}).get(key, False))
            if before != after:
                diff[f"{category}.{key}"] = {"old": before, "new": after}
    return diff


def granted_flags(fragment: dict | None, previous: dict | None = None) -> list[str]:
    """Dotted keys *fragment* turns on that are not already on in *previous*."""
    previous = previous or {}
    granted = []
    for category, keys in PERMISSION_KEYS.items():
        leaves = (fragment or {}).get(category) or {}
        before = previous.get(category) or {}
        for key in keys:
            if leaves.get(key) is True and before.get(key) is not True:
                granted.append(f"{category}.{key}")
    return granted


def flag(permissions: dict, dotted: str) -> bool:
    """Look up ``"category.key"`` in a bundle; anything missing is False."""
    category, _, key = dotted.partition(".")
    return bool((permissions.get(category) or {}).get(key, False))


# ── Tab gating (organisation screens) ─────────────────────────────────────────

_TAB_RULES: dict[str, tuple[str, ...]] = {
    "structure": (
        "organization.view_all_schools", "organization.view_all_branches",
        "organization.create_school", "organization.create_branch",
    ),
    "schools": (
        "organization.view_all_schools", "organization.create_school",
        "organization.modify_school", "organization.delete_school",
    ),
    "branches": (
        "organization.view_all_branches", "organization.create_branch",
        "organization.modify_branch", "organization.delete_branch",
    ),
    "admins": (
        "users.view_all_users",
        "users.create_entity_admin", "users.create_sub_admin",
        "users.create_school_admin", "users.create_branch_admin",
        "users.modify_entity_admin", "users.modify_sub_admin",
        "users.modify_school_admin", "users.modify_branch_admin",
    ),
    "teachers": ("users.create_teacher", "users.modify_teacher", "users.view_all_users"),
    "students": ("users.create_student", "users.modify_student", "users.view_all_users"),
}


def can_access_tab(tab_id: str, permissions: dict) -> bool:
    """True if any flag gating *tab_id* is set; unknown tabs are closed."""
    rules = _TAB_RULES.get(tab_id)
    if not rules:
        return False
    return any(flag(permissions, dotted) for dotted in rules)
