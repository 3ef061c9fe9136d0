"""
Profile Assignment Engine - links drivers and carriers to rate profiles.

At most one assignment per subject carries the default flag. The flag is
only ever changed through the clear-then-set helpers in this module.
"""

from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from freightcore.core.context import RequestContext
from freightcore.core.errors import InvariantViolation, NotFoundError
from freightcore.data.models.enums import ProfileType
from freightcore.data.models.organization import CarrierPartnership
from freightcore.data.models.rates import ProfileAssignment, RateProfile
from freightcore.engines.base import BaseEngine


def _clear_default(session: Session, subject_type: ProfileType, subject_id: str) -> None:
    session.execute(
        update(ProfileAssignment)
        .where(
            ProfileAssignment.subject_type == subject_type,
            ProfileAssignment.subject_id == subject_id,
            ProfileAssignment.is_default.is_(True),
        )
        .values(is_default=False)
    )


def set_default(session: Session, assignment: ProfileAssignment) -> None:
    """Make ``assignment`` the subject's only default."""
    _clear_default(session, assignment.subject_type, assignment.subject_id)
    session.flush()
    session.refresh(assignment)
    assignment.is_default = True


class ProfileAssignmentEngine(BaseEngine):
    """Profile Assignment Engine for drivers and carrier partnerships."""

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the profile assignment engine."""
        super().__init__(engine_name="assignments", **kwargs)

    def _validate_subject(
        self, session: Session, ctx: RequestContext, subject_type: ProfileType, subject_id: str
    ) -> None:
        if subject_type is ProfileType.CARRIER:
            partnership = session.get(CarrierPartnership, int(subject_id))
            if partnership is None or partnership.org_id != ctx.org_id:
                raise NotFoundError("Carrier partnership", subject_id)

    def _get_assignment(self, session: Session, ctx: RequestContext, assignment_id: int) -> ProfileAssignment:
        assignment = session.get(ProfileAssignment, assignment_id)
        if assignment is None or assignment.org_id != ctx.org_id:
            raise NotFoundError("Assignment", assignment_id)
        return assignment

    def get_for_subject(self, subject_type: ProfileType, subject_id: str) -> list[ProfileAssignment]:
        """A subject's assignments, default first."""
        with self.db.session() as session:
            assignments = session.scalars(
                select(ProfileAssignment)
                .where(
                    ProfileAssignment.subject_type == subject_type,
                    ProfileAssignment.subject_id == subject_id,
                )
                .order_by(ProfileAssignment.id)
            ).all()
        return sorted(assignments, key=lambda a: not a.is_default)

    def assign_profile(
        self,
        ctx: RequestContext,
        subject_type: ProfileType,
        subject_id: str,
        profile_id: int,
        is_default: Optional[bool] = None,
    ) -> ProfileAssignment:
        """
        Assign a rate profile to a driver or carrier partnership.

        The subject's first assignment becomes the default unless told
        otherwise.

        Args:
            ctx: Caller identity
            subject_type: DRIVER or CARRIER
            subject_id: Driver id, or carrier partnership id
            profile_id: Profile to assign
            is_default: Explicit default flag

        Returns:
            The new assignment

        Raises:
            NotFoundError: If the profile or partnership is not in the organization
            InvariantViolation: On a profile type mismatch or a duplicate assignment
        """
        subject_id = str(subject_id)
        label = "driver" if subject_type is ProfileType.DRIVER else "carrier"

        with self.db.session() as session:
            profile = session.get(RateProfile, profile_id)
            if profile is None or profile.org_id != ctx.org_id:
                raise NotFoundError("Rate profile", profile_id)
            self._validate_subject(session, ctx, subject_type, subject_id)

            if profile.profile_type is not subject_type:
                raise InvariantViolation(
                    f"Cannot assign a {profile.profile_type.value.lower()} profile to a {label}"
                )

            existing = session.scalars(
                select(ProfileAssignment).where(
                    ProfileAssignment.subject_type == subject_type,
                    ProfileAssignment.subject_id == subject_id,
                )
            ).all()
            if any(a.profile_id == profile_id for a in existing):
                raise InvariantViolation(f"This profile is already assigned to the {label}")

            should_be_default = is_default if is_default is not None else not existing

            assignment = ProfileAssignment(
                org_id=ctx.org_id,
                subject_type=subject_type,
                subject_id=subject_id,
                profile_id=profile_id,
                is_default=False,
                assigned_by=ctx.user_id,
            )
            session.add(assignment)
            session.flush()
            if should_be_default:
                set_default(session, assignment)
            assignment_id = assignment.id

        self.logger.info(
            "profile_assigned",
            subject_type=subject_type.value,
            subject_id=subject_id,
            profile_id=profile_id,
            is_default=should_be_default,
        )
        self.audit(
            ctx,
            "profileAssignment",
            assignment_id,
            "created",
            f"Assigned profile {profile.name} to {label} {subject_id}",
        )
        return assignment

    def set_default_assignment(self, ctx: RequestContext, assignment_id: int) -> ProfileAssignment:
        """Make one assignment the subject's default, clearing any other."""
        with self.db.session() as session:
            assignment = self._get_assignment(session, ctx, assignment_id)
            set_default(session, assignment)

        self.audit(ctx, "profileAssignment", assignment_id, "set_default", "Set default pay profile")
        return assignment

    def unset_default_assignment(self, ctx: RequestContext, assignment_id: int) -> ProfileAssignment:
        """Clear the default flag of an assignment. No-op if it is not the default."""
        with self.db.session() as session:
            assignment = self._get_assignment(session, ctx, assignment_id)
            if not assignment.is_default:
                return assignment
            assignment.is_default = False

        self.audit(ctx, "profileAssignment", assignment_id, "unset_default", "Cleared default pay profile")
        return assignment

    def remove_assignment(self, ctx: RequestContext, assignment_id: int) -> int:
        """Delete an assignment."""
        with self.db.session() as session:
            assignment = self._get_assignment(session, ctx, assignment_id)
            session.delete(assignment)

        self.audit(ctx, "profileAssignment", assignment_id, "deleted", "Removed pay profile assignment")
        return assignment_id

    def execute(
        self, ctx: RequestContext, subject_type: ProfileType, subject_id: str, profile_id: int
    ) -> ProfileAssignment:
        """Assign a profile."""
        return self.assign_profile(ctx, subject_type, subject_id, profile_id)
