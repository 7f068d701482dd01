"""Follow-up task management."""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from flask import current_app

from congregation import db
from congregation.models.follow_up import (
    ContactAttempt, ContactMethod, ContactOutcome, FollowUp, FollowUpOutcome,
    FollowUpPriority, FollowUpReason, FollowUpStatus
)
from congregation.models.member import Member, MemberRole
from congregation.services.notification_service import NotificationKind, get_notifier
from congregation.utils.errors import InvalidTransition, NotFound, ValidationError
from congregation.utils.permissions import (
    Permission, ResourceKind, ensure_owner_or_permitted, ensure_permission, has_permission
)
from congregation.utils import clock
from congregation.utils.transactions import run_atomic
from congregation.utils.validators import Validator

logger = logging.getLogger(__name__)

# Tried in order when assigning new follow-ups
COORDINATOR_ROLES = (MemberRole.ADMIN, MemberRole.SUPER_ADMIN, MemberRole.PASTOR)

class FollowUpService:
    """Service for creating and working follow-up tasks."""

    @staticmethod
    def find_coordinator() -> Optional[Member]:
        """First active member holding a coordinator role."""
        for role in COORDINATOR_ROLES:
            coordinator = Member.query.filter_by(role=role, is_active=True).order_by(Member.id).first()
            if coordinator:
                return coordinator
        return None

    @staticmethod
    def absence_priority(consecutive_absences: int,
                         current: FollowUpPriority = None) -> FollowUpPriority:
        """Priority for a consecutive-absence task; urgent is never downgraded."""
        if current == FollowUpPriority.URGENT:
            return current
        if consecutive_absences >= current_app.config.get('FOLLOW_UP_HIGH_PRIORITY_THRESHOLD', 3):
            return FollowUpPriority.HIGH
        return FollowUpPriority.MEDIUM

    @staticmethod
    def _upsert_auto_follow_up(member: Member, missed_occurrences: List[Dict],
                               now: datetime) -> Tuple[FollowUp, bool]:
        """Find-else-create the open absence task without committing.

        Returns the task and whether it was created.
        """
        missed = list(missed_occurrences)
        task = FollowUp.find_open(member.id, FollowUpReason.CONSECUTIVE_ABSENCES)

        if task:
            task.missed_occurrences = missed
            task.consecutive_absences = len(missed)
            task.priority = FollowUpService.absence_priority(len(missed), task.priority)
            return task, False

        coordinator = FollowUpService.find_coordinator()
        if coordinator is None:
            logger.warning("No active coordinator; follow-up for member %s left unassigned", member.id)

        task = FollowUp(
            member_id=member.id,
            reason=FollowUpReason.CONSECUTIVE_ABSENCES,
            missed_occurrences=missed,
            consecutive_absences=len(missed),
            assigned_to_id=coordinator.id if coordinator else None,
            priority=FollowUpService.absence_priority(len(missed)),
            status=FollowUpStatus.PENDING,
            due_date=now + timedelta(days=current_app.config.get('FOLLOW_UP_DUE_DAYS', 2))
        )
        db.session.add(task)
        # Claims the open-task slot for this member
        db.session.flush()
        return task, True

    @staticmethod
    def create_or_update_auto_follow_up(member_id: int, missed_occurrences: List[Dict],
                                        now: datetime = None) -> FollowUp:
        """Open or refresh the consecutive-absence task for a member."""
        now = clock.resolve(now)

        def work():
            member = Member.get_by_id(member_id)
            if not member:
                raise NotFound("Member not found")
            return FollowUpService._upsert_auto_follow_up(member, missed_occurrences, now)

        task, created = run_atomic(
            work,
            retries=current_app.config.get('CHECKIN_MAX_RETRIES', 3),
            retry_on_integrity=True,
            label=f"follow-up upsert member={member_id}"
        )

        if created:
            logger.info("Created follow-up %s for member %s", task.id, member_id)
            FollowUpService.notify_assigned(task)
        return task

    @staticmethod
    def create(caller: Member, member_id: int, reason, priority=None, due_date: datetime = None,
               assigned_to_id: int = None, custom_reason: str = None,
               now: datetime = None) -> FollowUp:
        """Open a follow-up by hand (pastoral staff).

        Consecutive-absence tasks belong to the absence check and cannot be
        opened here.
        """
        ensure_permission(caller.role, Permission.CREATE_FOLLOWUPS)

        reason = Validator.enum_value(FollowUpReason, reason, 'reason')
        if reason == FollowUpReason.CONSECUTIVE_ABSENCES:
            raise ValidationError("Consecutive-absence follow-ups are opened by the absence check")
        if reason == FollowUpReason.CUSTOM and not (custom_reason or '').strip():
            raise ValidationError("A custom reason is required")

        member = Member.get_by_id(member_id)
        if not member:
            raise NotFound("Member not found")

        if assigned_to_id is not None:
            assignee = Member.get_by_id(assigned_to_id)
            if not assignee or not assignee.is_active:
                raise NotFound("Assignee not found")
        else:
            assignee = FollowUpService.find_coordinator()

        now = clock.resolve(now)
        task = FollowUp(
            member_id=member.id,
            reason=reason,
            custom_reason=custom_reason,
            assigned_to_id=assignee.id if assignee else None,
            created_by_id=caller.id,
            priority=Validator.enum_value(FollowUpPriority, priority, 'priority') if priority
            else FollowUpPriority.MEDIUM,
            status=FollowUpStatus.PENDING,
            due_date=clock.resolve(due_date) if due_date
            else now + timedelta(days=current_app.config.get('FOLLOW_UP_DUE_DAYS', 2))
        )
        db.session.add(task)
        db.session.commit()

        logger.info("Follow-up %s (%s) opened for member %s by %s",
                    task.id, reason.value, member.id, caller.id)
        FollowUpService.notify_assigned(task)
        return task

    @staticmethod
    def notify_assigned(task: FollowUp) -> None:
        """Tell the coordinator about a new task."""
        if task.assigned_to_id is None:
            return
        get_notifier().notify(task.assigned_to_id, NotificationKind.FOLLOW_UP_ASSIGNED, {
            'follow_up_id': task.id,
            'member_id': task.member_id,
            'member_name': task.member.full_name,
            'reason': task.reason.value,
            'priority': task.priority.value,
            'consecutive_absences': task.consecutive_absences,
            'due_date': task.due_date.isoformat()
        })

    @staticmethod
    def _get_task(task_id: int, caller: Optional[Member]) -> FollowUp:
        task = FollowUp.get_by_id(task_id)
        if not task:
            raise NotFound("Follow-up not found")
        if caller is not None:
            ensure_owner_or_permitted(
                ResourceKind.FOLLOW_UP, task, caller.id, caller.role,
                Permission.MANAGE_FOLLOWUPS,
                "Not authorized to work this follow-up"
            )
        return task

    @staticmethod
    def add_contact_attempt(task_id: int, method, outcome, notes: str = None,
                            contacted_by: Member = None, date: datetime = None) -> FollowUp:
        """Log an outreach attempt; a successful contact starts a pending task."""
        task = FollowUpService._get_task(task_id, contacted_by)
        if not task.is_open:
            raise InvalidTransition(f"Follow-up is {task.status.value}")

        attempt = ContactAttempt(
            date=clock.resolve(date),
            method=Validator.enum_value(ContactMethod, method, 'contact method'),
            outcome=Validator.enum_value(ContactOutcome, outcome, 'contact outcome'),
            notes=notes,
            contacted_by_id=contacted_by.id if contacted_by else None
        )
        task.contact_attempts.append(attempt)

        if attempt.outcome == ContactOutcome.SUCCESSFUL and task.status == FollowUpStatus.PENDING:
            task.status = FollowUpStatus.IN_PROGRESS

        db.session.commit()
        return task

    @staticmethod
    def complete(task_id: int, outcome, notes: str = None, caller: Member = None,
                 now: datetime = None) -> FollowUp:
        """Close a task with an outcome."""
        if not outcome:
            raise ValidationError("Outcome is required")

        task = FollowUpService._get_task(task_id, caller)
        if not task.can_transition_to(FollowUpStatus.COMPLETED):
            raise InvalidTransition(f"Cannot complete a {task.status.value} follow-up")

        task.status = FollowUpStatus.COMPLETED
        task.completed_date = clock.resolve(now)
        task.outcome = Validator.enum_value(FollowUpOutcome, outcome, 'outcome')
        task.outcome_notes = notes

        db.session.commit()
        logger.info("Follow-up %s completed: %s", task.id, task.outcome.value)
        return task

    @staticmethod
    def cancel(task_id: int, reason: str = None, caller: Member = None) -> FollowUp:
        task = FollowUpService._get_task(task_id, caller)
        if not task.can_transition_to(FollowUpStatus.CANCELLED):
            raise InvalidTransition(f"Cannot cancel a {task.status.value} follow-up")

        task.status = FollowUpStatus.CANCELLED
        task.cancellation_reason = reason

        db.session.commit()
        return task

    @staticmethod
    def list_for(caller: Member, status=None, priority=None) -> List[FollowUp]:
        """Tasks visible to the caller, earliest due first."""
        query = FollowUp.query
        if not has_permission(caller.role, Permission.VIEW_ALL_FOLLOWUPS):
            query = query.filter(FollowUp.assigned_to_id == caller.id)
        if status:
            query = query.filter(FollowUp.status == Validator.enum_value(FollowUpStatus, status, 'status'))
        if priority:
            query = query.filter(
                FollowUp.priority == Validator.enum_value(FollowUpPriority, priority, 'priority')
            )
        return query.order_by(FollowUp.due_date.asc(), FollowUp.id.asc()).all()
