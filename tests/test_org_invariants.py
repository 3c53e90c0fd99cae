"""Tests for organization, workspace and project membership invariants."""

import pytest

from ledgerguard.core.invariants import InvariantChecker, InvariantMode, InvariantViolationError
from ledgerguard.schemas.invariants import GhostMember
from ledgerguard.services import OrgInvariants
from ledgerguard.store import Collections


@pytest.fixture
def permissive(store):
    return OrgInvariants(store, InvariantChecker(mode=InvariantMode.PERMISSIVE))


@pytest.fixture
def strict(store):
    return OrgInvariants(store, InvariantChecker(mode=InvariantMode.STRICT))


@pytest.fixture
def org(store, make_workspace):
    """org-1 with an owner (u-1) and a member (u-2), one org workspace and one personal."""
    store.seed(
        Collections.ORGANIZATION_MEMBERS,
        "om-1",
        {"organization_id": "org-1", "user_id": "u-1", "role": "OWNER"},
    )
    store.seed(
        Collections.ORGANIZATION_MEMBERS,
        "om-2",
        {"organization_id": "org-1", "user_id": "u-2", "role": "MEMBER"},
    )
    store.seed(
        Collections.ORGANIZATION_MEMBERS,
        "om-9",
        {"organization_id": "org-2", "user_id": "u-9", "role": "OWNER"},
    )
    make_workspace("ws-1", organization_id="org-1")
    make_workspace("ws-personal", organization_id=None, user_id="u-1")


# ─── Checker modes ───────────────────────────────────────────────────────────

class TestCheckerModes:
    def test_strict_raises(self):
        checker = InvariantChecker(mode=InvariantMode.STRICT)
        with pytest.raises(InvariantViolationError):
            checker.check_invariant(False, "X", lambda: "broken")
        assert checker.violations == []

    def test_permissive_records(self):
        checker = InvariantChecker(mode=InvariantMode.PERMISSIVE)
        violation = checker.check_invariant(False, "X", lambda: "broken", {"k": 1})

        assert violation is not None
        assert violation.context == {"k": 1}
        assert checker.violations == [violation]

    def test_message_built_only_on_failure(self):
        checker = InvariantChecker(mode=InvariantMode.STRICT)

        def explode():
            raise AssertionError("message should not be built")

        assert checker.check_invariant(True, "X", explode) is None

    @pytest.mark.asyncio
    async def test_async_condition_error_is_violation(self):
        checker = InvariantChecker(mode=InvariantMode.PERMISSIVE)

        async def condition():
            raise RuntimeError("db down")

        violation = await checker.check_invariant_async(condition, "X", lambda: "broken")
        assert "db down" in violation.message

    def test_mode_follows_settings(self, settings):
        assert settings.strict_invariants is True
        production = settings.model_copy(update={"environment": "production"})
        assert production.strict_invariants is False
        forced = production.model_copy(update={"invariant_mode": "strict"})
        assert forced.strict_invariants is True


# ─── Workspace membership ────────────────────────────────────────────────────

class TestWorkspaceMembership:
    @pytest.mark.asyncio
    async def test_member_of_owning_org(self, permissive, org):
        assert await permissive.validate_workspace_member("om-2", "ws-1") is None

    @pytest.mark.asyncio
    async def test_member_of_other_org(self, permissive, org):
        violation = await permissive.validate_workspace_member("om-9", "ws-1")
        assert violation.invariant == "WORKSPACE_ORG_MATCH"
        assert violation.context["org_member_org_id"] == "org-2"

    @pytest.mark.asyncio
    async def test_missing_org_member_is_mismatch(self, permissive, org):
        violation = await permissive.validate_workspace_member("om-gone", "ws-1")
        assert violation.invariant == "WORKSPACE_ORG_MATCH"

    @pytest.mark.asyncio
    async def test_personal_workspace_rejects_org_members(self, strict, org):
        with pytest.raises(InvariantViolationError) as exc_info:
            await strict.validate_workspace_member("om-1", "ws-personal")
        assert exc_info.value.invariant == "WORKSPACE_MEMBER_ORG_REQUIRED"

    @pytest.mark.asyncio
    async def test_user_org_membership(self, permissive, org):
        assert await permissive.validate_user_org_membership_for_workspace("u-2", "ws-1") is None
        assert await permissive.validate_user_org_membership_for_workspace("u-9", "ws-personal") is None

        violation = await permissive.validate_user_org_membership_for_workspace("u-9", "ws-1")
        assert violation.invariant == "USER_ORG_MEMBERSHIP_REQUIRED"


# ─── Ownership ───────────────────────────────────────────────────────────────

class TestOwnership:
    @pytest.mark.asyncio
    async def test_org_has_owner(self, permissive, org):
        assert await permissive.validate_org_has_owner("org-1") is None

        violation = await permissive.validate_org_has_owner("org-empty")
        assert violation.invariant == "ORG_MUST_HAVE_OWNER"

    @pytest.mark.asyncio
    async def test_cannot_remove_last_owner(self, strict, org):
        with pytest.raises(InvariantViolationError) as exc_info:
            await strict.validate_not_last_owner("org-1", "om-1")
        assert exc_info.value.invariant == "CANNOT_REMOVE_LAST_OWNER"

    @pytest.mark.asyncio
    async def test_removing_non_owner_or_second_owner(self, strict, store, org):
        assert await strict.validate_not_last_owner("org-1", "om-2") is None

        store.seed(
            Collections.ORGANIZATION_MEMBERS,
            "om-3",
            {"organization_id": "org-1", "user_id": "u-3", "role": "OWNER"},
        )
        assert await strict.validate_not_last_owner("org-1", "om-1") is None

    def test_owner_access(self, permissive):
        assert permissive.assert_owner_has_full_access("OWNER", True) is None
        assert permissive.assert_owner_has_full_access("MEMBER", False) is None

        violation = permissive.assert_owner_has_full_access("OWNER", False, {"path": "/x"})
        assert violation.invariant == "OWNER_ACCESS_BLOCKED"
        assert violation.context["path"] == "/x"

    def test_owner_permissions(self, permissive):
        assert permissive.assert_owner_has_all_permissions("OWNER", ["a", "b"], 2) is None
        assert permissive.assert_owner_has_all_permissions("MEMBER", [], 2) is None

        violation = permissive.assert_owner_has_all_permissions("OWNER", ["a"], 2)
        assert violation.invariant == "OWNER_MISSING_PERMISSIONS"
        assert violation.context["permission_count"] == 1


# ─── Projects ────────────────────────────────────────────────────────────────

class TestProjects:
    @pytest.fixture
    def project(self, store, org):
        store.seed(Collections.PROJECTS, "p-1", {"workspace_id": "ws-1", "name": "Site"})
        store.seed(Collections.PROJECT_TEAMS, "t-1", {"project_id": "p-1", "name": "Core"})
        store.seed(
            Collections.PROJECT_MEMBERS,
            "pm-1",
            {"project_id": "p-1", "user_id": "u-2", "status": "ACTIVE"},
        )

    def test_membership_or_override(self, permissive):
        assert permissive.assert_project_membership_required(True, False) is None
        assert permissive.assert_project_membership_required(False, True) is None

        violation = permissive.assert_project_membership_required(False, False)
        assert violation.invariant == "PROJECT_ACCESS_WITHOUT_MEMBERSHIP"

    @pytest.mark.asyncio
    async def test_team_boundaries(self, permissive, project):
        assert await permissive.assert_team_belongs_to_project("t-1", "p-1") is None

        crossing = await permissive.assert_team_belongs_to_project("t-1", "p-2")
        assert crossing.invariant == "TEAM_CROSSES_PROJECT_BOUNDARY"

        missing = await permissive.assert_team_belongs_to_project("t-gone", "p-1")
        assert missing.invariant == "TEAM_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_team_add_requires_project_membership(self, permissive, project):
        assert await permissive.assert_user_is_project_member_before_team_add("u-2", "p-1") is None

        violation = await permissive.assert_user_is_project_member_before_team_add("u-1", "p-1")
        assert violation.invariant == "TEAM_ADD_WITHOUT_PROJECT_MEMBERSHIP"

    @pytest.mark.asyncio
    async def test_cross_org_access(self, permissive, project):
        assert await permissive.assert_no_cross_org_project_access("u-2", "p-1", "org-1") is None

        mismatch = await permissive.assert_no_cross_org_project_access("u-2", "p-1", "org-2")
        assert mismatch.invariant == "CROSS_ORG_PROJECT_ACCESS"

        outsider = await permissive.assert_no_cross_org_project_access("u-9", "p-1", "org-1")
        assert outsider.invariant == "PROJECT_ACCESS_WITHOUT_ORG_MEMBERSHIP"


# ─── Audits and ghost members ────────────────────────────────────────────────

class TestAudits:
    @pytest.mark.asyncio
    async def test_self_checks_never_raise(self, strict, store, org):
        store.seed(Collections.MEMBERS, "m-1", {"workspace_id": "ws-1", "user_id": "u-2", "org_member_id": "om-2"})
        store.seed(Collections.MEMBERS, "m-2", {"workspace_id": "ws-1", "user_id": "u-9", "org_member_id": "om-9"})
        store.seed(Collections.MEMBERS, "m-3", {"workspace_id": "ws-1", "user_id": "u-5", "org_member_id": None})

        report = await strict.run_org_invariant_self_checks("org-1")

        assert report.passed is False
        assert [v.invariant for v in report.violations] == [
            "WORKSPACE_ORG_MATCH",
            "USER_ORG_MEMBERSHIP_REQUIRED",
        ]

    @pytest.mark.asyncio
    async def test_self_checks_on_healthy_org(self, permissive, org):
        report = await permissive.run_org_invariant_self_checks("org-1")
        assert report.passed is True

    @pytest.mark.asyncio
    async def test_ghost_members(self, permissive, store, org):
        store.seed(Collections.MEMBERS, "m-ok", {"workspace_id": "ws-1", "user_id": "u-2"})
        store.seed(Collections.MEMBERS, "m-left", {"workspace_id": "ws-1", "user_id": "u-5"})
        store.seed(Collections.MEMBERS, "m-orphan", {"workspace_id": "ws-gone", "user_id": "u-2"})
        store.seed(Collections.MEMBERS, "m-personal", {"workspace_id": "ws-personal", "user_id": "u-5"})

        ghosts = await permissive.find_ghost_workspace_members()

        assert {(g.member_id, g.reason) for g in ghosts} == {
            ("m-left", "USER_NOT_IN_ORG"),
            ("m-orphan", "WORKSPACE_NOT_FOUND"),
        }

    @pytest.mark.asyncio
    async def test_cleanup_dry_run_keeps_records(self, permissive, store):
        store.seed(Collections.MEMBERS, "m-1", {"workspace_id": "ws-gone", "user_id": "u-1"})
        ghosts = [
            GhostMember(member_id="m-1", user_id="u-1", workspace_id="ws-gone", reason="WORKSPACE_NOT_FOUND")
        ]

        result = await permissive.cleanup_ghost_members(ghosts)
        assert result.deleted == 1
        assert len(store.all(Collections.MEMBERS)) == 1

        result = await permissive.cleanup_ghost_members(ghosts, dry_run=False)
        assert result.deleted == 1
        assert store.all(Collections.MEMBERS) == []

    @pytest.mark.asyncio
    async def test_cleanup_reports_failures(self, permissive):
        ghosts = [
            GhostMember(member_id="m-gone", user_id="u-1", workspace_id="ws-1", reason="USER_NOT_IN_ORG")
        ]

        result = await permissive.cleanup_ghost_members(ghosts, dry_run=False)
        assert result.deleted == 0
        assert result.errors == ["Failed to delete m-gone: Document m-gone not found in members"]
