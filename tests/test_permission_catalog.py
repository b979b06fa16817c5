"""
Permission catalog tests — default bundles, shape validation, merge policy.

Covers:
  - every level's default bundle is complete and all-boolean
  - level-specific defaults (entity / sub-entity / school / branch)
  - validate_permission_set (full and partial)
  - merge_permissions true-biased OR contract
  - permission_differences, flag lookup, tab gating
"""

import pytest

from orgadmin.core.exceptions import ValidationError
from orgadmin.models.admin import AdminLevel
from orgadmin.services.permission_catalog import (
    PERMISSION_KEYS,
    can_access_tab,
    create_flag_for_level,
    default_permissions_for,
    flag,
    merge_permissions,
    minimal_permissions,
    modify_flag_for_level,
    permission_differences,
    validate_permission_set,
)


def _all_leaves(bundle):
    return [
        (category, key, bundle[category][key])
        for category, keys in PERMISSION_KEYS.items()
        for key in keys
    ]


class TestDefaults:

    @pytest.mark.parametrize("level", list(AdminLevel))
    def test_bundle_is_complete_and_boolean(self, level):
        bundle = default_permissions_for(level)
        assert set(bundle) == set(PERMISSION_KEYS)
        for category, keys in PERMISSION_KEYS.items():
            assert set(bundle[category]) == set(keys)
        assert all(isinstance(v, bool) for _, _, v in _all_leaves(bundle))
        validate_permission_set(bundle)

    def test_flag_count(self):
        assert sum(len(keys) for keys in PERMISSION_KEYS.values()) == 28

    def test_entity_admin_has_everything(self):
        bundle = default_permissions_for("entity_admin")
        assert all(v for _, _, v in _all_leaves(bundle))
        assert bundle["users"]["modify_entity_admin"] is True

    def test_sub_entity_admin_exclusions(self):
        bundle = default_permissions_for(AdminLevel.SUB_ENTITY_ADMIN)
        assert bundle["users"]["create_entity_admin"] is False
        assert bundle["users"]["modify_entity_admin"] is False
        assert bundle["settings"]["manage_company_settings"] is False
        denied = [(c, k) for c, k, v in _all_leaves(bundle) if not v]
        assert len(denied) == 3

    def test_school_admin_defaults(self):
        bundle = default_permissions_for("school_admin")
        assert bundle["users"]["create_branch_admin"] is True
        assert bundle["users"]["create_school_admin"] is False
        assert bundle["users"]["create_sub_admin"] is False
        assert bundle["users"]["delete_users"] is False
        assert bundle["organization"]["modify_school"] is False
        assert bundle["organization"]["view_all_schools"] is False

    def test_branch_admin_defaults(self):
        bundle = default_permissions_for("branch_admin")
        users = bundle["users"]
        assert users["create_teacher"] and users["create_student"]
        assert users["modify_teacher"] and users["modify_student"]
        for suffix in ("entity_admin", "sub_admin", "school_admin", "branch_admin"):
            assert users[f"create_{suffix}"] is False
            assert users[f"modify_{suffix}"] is False
        assert users["view_all_users"] is False
        assert bundle["settings"]["manage_branch_settings"] is True
        assert bundle["settings"]["manage_school_settings"] is False

    def test_defaults_are_fresh_copies(self):
        first = default_permissions_for("branch_admin")
        first["users"]["delete_users"] = True
        assert default_permissions_for("branch_admin")["users"]["delete_users"] is False

    def test_unknown_level_is_minimal(self):
        assert default_permissions_for("superuser") == minimal_permissions()

    def test_minimal_is_all_false(self):
        assert not any(v for _, _, v in _all_leaves(minimal_permissions()))

    def test_level_flag_names(self):
        assert create_flag_for_level("sub_entity_admin") == "create_sub_admin"
        assert modify_flag_for_level(AdminLevel.BRANCH_ADMIN) == "modify_branch_admin"


class TestValidation:

    def test_rejects_non_mapping(self):
        with pytest.raises(ValidationError):
            validate_permission_set(["users"])

    def test_rejects_missing_category(self):
        bundle = default_permissions_for("entity_admin")
        del bundle["settings"]
        with pytest.raises(ValidationError) as exc:
            validate_permission_set(bundle)
        assert "settings" in exc.value.details

    def test_rejects_non_boolean_leaf(self):
        bundle = default_permissions_for("entity_admin")
        bundle["users"]["delete_users"] = "yes"
        with pytest.raises(ValidationError) as exc:
            validate_permission_set(bundle)
        assert "users.delete_users" in exc.value.details

    def test_rejects_unknown_key_in_fragment(self):
        with pytest.raises(ValidationError):
            validate_permission_set({"users": {"launch_rockets": True}}, partial=True)

    def test_accepts_partial_fragment(self):
        fragment = {"settings": {"export_data": True}}
        assert validate_permission_set(fragment, partial=True) is fragment

    def test_full_mode_rejects_fragment(self):
        with pytest.raises(ValidationError):
            validate_permission_set({"settings": {"export_data": True}})


class TestMerge:

    def test_true_override_wins_over_false_default(self):
        base = default_permissions_for("school_admin")
        merged = merge_permissions(base, {"users": {"delete_users": True}})
        assert merged["users"]["delete_users"] is True

    def test_false_override_never_downgrades(self):
        base = default_permissions_for("school_admin")
        merged = merge_permissions(base, {"users": {"create_branch_admin": False}})
        assert merged["users"]["create_branch_admin"] is True

    def test_merge_does_not_mutate_inputs(self):
        base = default_permissions_for("branch_admin")
        overlay = {"organization": {"create_school": True}}
        merge_permissions(base, overlay)
        assert base["organization"]["create_school"] is False

    def test_unknown_and_non_boolean_overlay_leaves_ignored(self):
        base = minimal_permissions()
        merged = merge_permissions(base, {"users": {"delete_users": 1, "bogus": True}, "extra": {}})
        assert merged == minimal_permissions()

    def test_none_overlay(self):
        base = default_permissions_for("branch_admin")
        assert merge_permissions(base, None) == base


class TestHelpers:

    def test_differences(self):
        old = {"users": {"delete_users": False}}
        new = {"users": {"delete_users": True}, "settings": {"export_data": False}}
        assert permission_differences(old, new) == {
            "users.delete_users": {"old": False, "new": True},
        }

    def test_flag_lookup(self):
        bundle = default_permissions_for("school_admin")
        assert flag(bundle, "users.create_branch_admin") is True
        assert flag(bundle, "users.unknown") is False
        assert flag({}, "settings.export_data") is False

    def test_tab_access(self):
        branch = default_permissions_for("branch_admin")
        school = default_permissions_for("school_admin")
        assert can_access_tab("teachers", branch) is True
        assert can_access_tab("admins", branch) is False
        assert can_access_tab("admins", school) is True
        assert can_access_tab("schools", school) is False
        assert can_access_tab("nonexistent", default_permissions_for("entity_admin")) is False
