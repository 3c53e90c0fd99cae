"""Organization, workspace and project membership invariants.

Every check goes through the injected ``InvariantChecker``: strict mode
raises on the first violation, permissive mode records it and returns it.
Each method returns the violation it recorded, or None when the invariant
holds.
"""

import logging
from typing import Any

from ledgerguard.core.invariants import InvariantChecker, InvariantViolationError
from ledgerguard.models.organization import OrganizationRole
from ledgerguard.schemas.invariants import (
    CleanupResult,
    GhostMember,
    InvariantReport,
    ViolationRead,
)
from ledgerguard.store import Collections, DocumentNotFoundError, DocumentStore, Query, StoreError

logger = logging.getLogger(__name__)


class OrgInvariants:
    """Membership invariants backed by the document store."""

    def __init__(self, store: DocumentStore, checker: InvariantChecker) -> None:
        self.store = store
        self.checker = checker

    async def _is_org_member(self, organization_id: str, user_id: str) -> bool:
        memberships = await self.store.list(
            Collections.ORGANIZATION_MEMBERS,
            [
                Query.equal("organization_id", organization_id),
                Query.equal("user_id", user_id),
            ],
            limit=1,
        )
        return memberships.total > 0

    async def _owner_count(self, organization_id: str) -> int:
        owners = await self.store.list(
            Collections.ORGANIZATION_MEMBERS,
            [
                Query.equal("organization_id", organization_id),
                Query.equal("role", OrganizationRole.OWNER.value),
            ],
            limit=2,
        )
        return owners.total

    # Workspace membership

    async def validate_workspace_member(
        self,
        org_member_id: str,
        workspace_id: str,
    ) -> InvariantViolationError | None:
        """A workspace member must come from the organization owning the workspace.

        Personal workspaces cannot carry organization-backed members.
        """
        workspace = await self.store.get(Collections.WORKSPACES, workspace_id)
        organization_id = workspace.get("organization_id")

        if not organization_id:
            return self.checker.check_invariant(
                False,
                "WORKSPACE_MEMBER_ORG_REQUIRED",
                lambda: "Organization-backed workspace members cannot join personal workspaces",
                {"workspace_id": workspace_id, "org_member_id": org_member_id},
            )

        try:
            org_member = await self.store.get(Collections.ORGANIZATION_MEMBERS, org_member_id)
        except DocumentNotFoundError:
            org_member = {}

        member_org_id = org_member.get("organization_id")
        return self.checker.check_invariant(
            member_org_id == organization_id,
            "WORKSPACE_ORG_MATCH",
            lambda: (
                "Workspace member's org member must belong to the same organization "
                "as the workspace"
            ),
            {
                "org_member_id": org_member_id,
                "workspace_id": workspace_id,
                "org_member_org_id": member_org_id,
                "workspace_org_id": organization_id,
            },
        )

    async def validate_user_org_membership_for_workspace(
        self,
        user_id: str,
        workspace_id: str,
    ) -> InvariantViolationError | None:
        """Organization workspaces are only reachable by organization members."""
        workspace = await self.store.get(Collections.WORKSPACES, workspace_id)
        organization_id = workspace.get("organization_id")
        if not organization_id:
            return None

        return self.checker.check_invariant(
            await self._is_org_member(organization_id, user_id),
            "USER_ORG_MEMBERSHIP_REQUIRED",
            lambda: "User must be an org member to access org workspace",
            {
                "user_id": user_id,
                "workspace_id": workspace_id,
                "organization_id": organization_id,
            },
        )

    # Ownership

    async def validate_org_has_owner(self, organization_id: str) -> InvariantViolationError | None:
        return self.checker.check_invariant(
            await self._owner_count(organization_id) >= 1,
            "ORG_MUST_HAVE_OWNER",
            lambda: "Organization must have at least one OWNER",
            {"organization_id": organization_id},
        )

    async def validate_not_last_owner(
        self,
        organization_id: str,
        org_member_id_to_remove: str,
    ) -> InvariantViolationError | None:
        """Removing an OWNER must leave at least one other OWNER."""
        member = await self.store.get(Collections.ORGANIZATION_MEMBERS, org_member_id_to_remove)
        if member.get("role") != OrganizationRole.OWNER.value:
            return None

        return self.checker.check_invariant(
            await self._owner_count(organization_id) > 1,
            "CANNOT_REMOVE_LAST_OWNER",
            lambda: "Cannot remove the last OWNER from organization",
            {
                "organization_id": organization_id,
                "org_member_id_to_remove": org_member_id_to_remove,
            },
        )

    def assert_owner_has_full_access(
        self,
        role: str | None,
        has_org_access: bool,
        context: dict[str, Any] | None = None,
    ) -> InvariantViolationError | None:
        """An OWNER denied organization access is a permission logic bug."""
        return self.checker.check_invariant(
            not (role == OrganizationRole.OWNER.value and not has_org_access),
            "OWNER_ACCESS_BLOCKED",
            lambda: "CRITICAL: Organization OWNER has been denied access. This is a logic error.",
            {"role": role, "has_org_access": has_org_access, **(context or {})},
        )

    def assert_owner_has_all_permissions(
        self,
        role: str | None,
        permissions: list[str],
        expected_minimum: int,
        context: dict[str, Any] | None = None,
    ) -> InvariantViolationError | None:
        return self.checker.check_invariant(
            not (role == OrganizationRole.OWNER.value and len(permissions) < expected_minimum),
            "OWNER_MISSING_PERMISSIONS",
            lambda: (
                f"CRITICAL: OWNER has {len(permissions)} permissions "
                f"but expected at least {expected_minimum}"
            ),
            {
                "role": role,
                "permission_count": len(permissions),
                "expected_minimum": expected_minimum,
                **(context or {}),
            },
        )

    # Projects

    def assert_project_membership_required(
        self,
        has_project_membership: bool,
        has_admin_override: bool,
        context: dict[str, Any] | None = None,
    ) -> InvariantViolationError | None:
        return self.checker.check_invariant(
            has_project_membership or has_admin_override,
            "PROJECT_ACCESS_WITHOUT_MEMBERSHIP",
            lambda: "User attempted to access project without membership or admin override",
            context,
        )

    async def assert_team_belongs_to_project(
        self,
        team_id: str,
        expected_project_id: str,
    ) -> InvariantViolationError | None:
        """Teams never cross project boundaries."""
        try:
            team = await self.store.get(Collections.PROJECT_TEAMS, team_id)
        except DocumentNotFoundError as e:
            return self.checker.check_invariant(
                False,
                "TEAM_NOT_FOUND",
                lambda: "Referenced team does not exist",
                {"team_id": team_id, "expected_project_id": expected_project_id, "error": str(e)},
            )

        return self.checker.check_invariant(
            team.get("project_id") == expected_project_id,
            "TEAM_CROSSES_PROJECT_BOUNDARY",
            lambda: "Team does not belong to the expected project",
            {
                "team_id": team_id,
                "expected_project_id": expected_project_id,
                "actual_project_id": team.get("project_id"),
            },
        )

    async def assert_user_is_project_member_before_team_add(
        self,
        user_id: str,
        project_id: str,
    ) -> InvariantViolationError | None:
        memberships = await self.store.list(
            Collections.PROJECT_MEMBERS,
            [
                Query.equal("project_id", project_id),
                Query.equal("user_id", user_id),
                Query.equal("status", "ACTIVE"),
            ],
            limit=1,
        )
        return self.checker.check_invariant(
            memberships.total > 0,
            "TEAM_ADD_WITHOUT_PROJECT_MEMBERSHIP",
            lambda: "Cannot add user to project team: user is not a project member",
            {"user_id": user_id, "project_id": project_id},
        )

    async def assert_no_cross_org_project_access(
        self,
        user_id: str,
        project_id: str,
        expected_org_id: str,
    ) -> InvariantViolationError | None:
        """The project's organization must be the expected one, and the user a member of it."""
        project = await self.store.get(Collections.PROJECTS, project_id)
        workspace = await self.store.get(Collections.WORKSPACES, project["workspace_id"])
        organization_id = workspace.get("organization_id")
        if not organization_id:
            return None

        org_mismatch = self.checker.check_invariant(
            organization_id == expected_org_id,
            "CROSS_ORG_PROJECT_ACCESS",
            lambda: "Project workspace org does not match expected org",
            {
                "project_id": project_id,
                "workspace_id": project["workspace_id"],
                "expected_org_id": expected_org_id,
                "actual_org_id": organization_id,
            },
        )

        not_member = self.checker.check_invariant(
            await self._is_org_member(organization_id, user_id),
            "PROJECT_ACCESS_WITHOUT_ORG_MEMBERSHIP",
            lambda: "User is not a member of the project's organization",
            {
                "user_id": user_id,
                "project_id": project_id,
                "organization_id": organization_id,
            },
        )
        return org_mismatch or not_member

    # Audits

    async def run_org_invariant_self_checks(self, organization_id: str) -> InvariantReport:
        """Audit an organization: ownership plus every member of its workspaces.

        Never raises for a violation, whatever the checker mode.
        """
        violations: list[InvariantViolationError] = []

        async def collect(check) -> None:
            try:
                violation = await check
            except InvariantViolationError as e:
                violation = e
            except StoreError as e:
                logger.warning("Org self-check for %s could not run: %s", organization_id, e)
                return
            if violation is not None:
                violations.append(violation)

        await collect(self.validate_org_has_owner(organization_id))

        workspaces = await self.store.list(
            Collections.WORKSPACES,
            [Query.equal("organization_id", organization_id)],
            limit=100,
        )
        for workspace in workspaces.documents:
            members = await self.store.list(
                Collections.MEMBERS,
                [Query.equal("workspace_id", workspace["id"])],
                limit=1000,
            )
            for member in members.documents:
                if member.get("org_member_id"):
                    await collect(
                        self.validate_workspace_member(member["org_member_id"], workspace["id"])
                    )
                else:
                    await collect(
                        self.validate_user_org_membership_for_workspace(
                            member["user_id"], workspace["id"]
                        )
                    )

        return InvariantReport(
            passed=not violations,
            violations=[ViolationRead.model_validate(v.to_dict()) for v in violations],
        )

    # Ghost memberships

    async def find_ghost_workspace_members(self, limit: int = 1000) -> list[GhostMember]:
        """Members whose workspace is gone, or who left the owning organization."""
        ghosts: list[GhostMember] = []
        members = await self.store.list(Collections.MEMBERS, limit=limit)

        if members.total > limit:
            logger.warning("Ghost scan covers %d of %d members", limit, members.total)

        for member in members.documents:
            try:
                workspace = await self.store.get(Collections.WORKSPACES, member["workspace_id"])
            except DocumentNotFoundError:
                ghosts.append(
                    GhostMember(
                        member_id=member["id"],
                        user_id=member["user_id"],
                        workspace_id=member["workspace_id"],
                        reason="WORKSPACE_NOT_FOUND",
                    )
                )
                continue

            organization_id = workspace.get("organization_id")
            if organization_id and not await self._is_org_member(organization_id, member["user_id"]):
                ghosts.append(
                    GhostMember(
                        member_id=member["id"],
                        user_id=member["user_id"],
                        workspace_id=member["workspace_id"],
                        reason="USER_NOT_IN_ORG",
                    )
                )

        return ghosts

    async def cleanup_ghost_members(
        self,
        ghosts: list[GhostMember],
        dry_run: bool = True,
    ) -> CleanupResult:
        """Delete ghost member records. A dry run only counts them."""
        deleted = 0
        errors: list[str] = []

        for ghost in ghosts:
            if dry_run:
                logger.info(
                    "Would delete ghost member %s (%s)", ghost.member_id, ghost.reason
                )
                deleted += 1
                continue
            try:
                await self.store.delete(Collections.MEMBERS, ghost.member_id)
                deleted += 1
            except StoreError as e:
                errors.append(f"Failed to delete {ghost.member_id}: {e}")

        if not dry_run:
            logger.info("Deleted %d ghost members (%d errors)", deleted, len(errors))
        return CleanupResult(deleted=deleted, errors=errors)
