"""Walk-in visitor check-in and conversion to members."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from congregation import db
from congregation.models.attendance import (
    MIGRATED_NOTE, AttendanceRecord, AttendanceStatus, CheckInMethod
)
from congregation.models.member import Member, MemberRole
from congregation.models.service import Service
from congregation.models.visitor import VisitorAttendance, VisitorRecord, VisitorSource
from congregation.services.checkin_service import CheckInResult, CheckInService
from congregation.services.engagement_service import refresh_member_stats
from congregation.services.notification_service import NotificationKind, get_notifier
from congregation.utils.errors import (
    AlreadyConverted, DuplicateCheckIn, InvalidToken, NotFound, ValidationError
)
from congregation.utils.helpers import ordinal, parse_date
from congregation.utils import clock
from congregation.utils.transactions import run_atomic
from congregation.utils.validators import Validator

logger = logging.getLogger(__name__)

@dataclass
class CheckInOutcome:
    """Result of a public quick check-in."""
    message: str
    user_exists: bool
    check_in: Optional[CheckInResult] = None
    visitor: Optional[VisitorRecord] = None
    is_first_visit: bool = False
    invite_sent: bool = False

    def to_dict(self) -> Dict:
        data = {'user_exists': self.user_exists}
        if self.check_in is not None:
            member = self.check_in.member
            data.update(self.check_in.to_dict())
            data['member'] = {
                'id': member.id,
                'name': member.full_name,
                'membership_id': member.membership_id,
                'attendance_rate': member.attendance_rate
            }
        if self.visitor is not None:
            data['is_first_time_visitor'] = self.is_first_visit
            data['is_returning_visitor'] = not self.is_first_visit
            data['invite_sent'] = self.invite_sent
            data['visitor'] = {
                'id': self.visitor.id,
                'name': self.visitor.full_name,
                'visit_count': self.visitor.visit_count
            }
        return data

class VisitorService:
    """Service for the public visitor flow."""

    @staticmethod
    def _member_for(phone: str, email: Optional[str]) -> Optional[Member]:
        member = Member.find_by_contact(phone, email)
        if member:
            return member

        converted = VisitorRecord.query.filter_by(phone=phone, converted_to_user=True).first()
        if converted and converted.linked_member_id:
            return converted.linked_member
        return None

    @staticmethod
    def _prepare_invite(visitor: VisitorRecord, now: datetime) -> Optional[str]:
        """Issue the registration token once per record; caller commits."""
        if not visitor.email or visitor.registration_invite_sent:
            return None
        visitor.registration_invite_token = VisitorRecord.generate_invite_token()
        visitor.registration_invite_sent = True
        visitor.registration_invite_sent_at = now
        return visitor.registration_invite_token

    @staticmethod
    def quick_check_in(identity: Dict, service_id: int, location: Optional[Dict] = None,
                       device_info: Optional[Dict] = None, source=VisitorSource.MANUAL,
                       now: datetime = None) -> CheckInOutcome:
        """Check in a walk-in by name and phone, without an account."""
        now = clock.resolve(now)
        person = Validator.clean_identity(
            identity.get('first_name'), identity.get('last_name'),
            identity.get('phone'), identity.get('email')
        )
        source = Validator.enum_value(VisitorSource, source, 'source')

        service = Service.get_by_id(service_id)
        if not service or not service.is_available:
            raise NotFound("Service not found or inactive")

        member = VisitorService._member_for(person['phone'], person['email'])
        if member:
            method = CheckInMethod.QR if source == VisitorSource.QR_SCAN else CheckInMethod.MANUAL
            result = CheckInService.submit_check_in(
                member.id, service.id, time=now, method=method,
                location=location, device_info=device_info
            )
            return CheckInOutcome(
                message=f"Welcome back, {member.first_name}! You've been checked in successfully.",
                user_exists=True,
                check_in=result
            )

        day = now.date()

        def work():
            visitor = VisitorRecord.query.filter_by(phone=person['phone']).first()
            entry = VisitorAttendance(service_id=service.id, date=day, check_in_time=now)

            if visitor:
                if visitor.has_attended(service.id, day):
                    raise DuplicateCheckIn("You have already checked in for this service today")
                visitor.attendances.append(entry)
                visitor.visit_count += 1
                visitor.last_visit = now
                if person['email'] and not visitor.email:
                    visitor.email = person['email']
                first_visit = False
            else:
                visitor = VisitorRecord(
                    first_name=person['first_name'],
                    last_name=person['last_name'],
                    phone=person['phone'],
                    email=person['email'],
                    visit_count=1,
                    first_visit=now,
                    last_visit=now,
                    source=source,
                    device_info=device_info
                )
                visitor.attendances.append(entry)
                db.session.add(visitor)
                first_visit = True

            token = VisitorService._prepare_invite(visitor, now)
            return visitor, first_visit, token

        # A lost race on the phone or entry constraint retries into the
        # returning-visitor path
        visitor, first_visit, token = run_atomic(
            work,
            retries=current_app.config.get('CHECKIN_MAX_RETRIES', 3),
            retry_on_integrity=True,
            label=f"visitor check-in phone={person['phone']} service={service_id}"
        )

        if token:
            get_notifier().notify(visitor.id, NotificationKind.REGISTRATION_INVITE, {
                'email': visitor.email,
                'first_name': visitor.first_name,
                'last_name': visitor.last_name,
                'token': token,
                'visit_count': visitor.visit_count,
                'is_first_visit': first_visit
            })

        logger.info("Visitor %s checked in to service %s (visit %d)",
                    visitor.id, service_id, visitor.visit_count)

        if first_visit:
            message = f"Welcome, {visitor.first_name}! You've been checked in successfully."
        else:
            message = (f"Welcome back, {visitor.first_name}! "
                       f"This is your {ordinal(visitor.visit_count)} visit.")

        return CheckInOutcome(
            message=message,
            user_exists=False,
            visitor=visitor,
            is_first_visit=first_visit,
            invite_sent=token is not None
        )

    @staticmethod
    def complete_registration(token: str, password: str, additional_info: Optional[Dict] = None,
                              now: datetime = None) -> Member:
        """Promote an invited visitor to a member, migrating their visits."""
        now = clock.resolve(now)
        if not token:
            raise InvalidToken()
        Validator.require(Validator.validate_password(
            password, current_app.config.get('MEMBER_PASSWORD_MIN_LENGTH', 8)
        ))
        info = additional_info or {}

        def work():
            visitor = VisitorRecord.query.filter_by(registration_invite_token=token).first()
            if not visitor:
                raise InvalidToken()
            if visitor.converted_to_user:
                raise AlreadyConverted()
            if Member.find_by_contact(visitor.phone, visitor.email):
                raise AlreadyConverted("An account with this phone number or email already exists. "
                                       "Please login instead.")

            entries = list(visitor.attendances)
            member = Member(
                first_name=visitor.first_name,
                last_name=visitor.last_name,
                phone=visitor.phone,
                email=visitor.email,
                role=MemberRole.MEMBER,
                membership_id=Member.generate_membership_id(),
                joined_date=now,
                gender=info.get('gender'),
                date_of_birth=parse_date(info.get('date_of_birth')),
                address=info.get('address'),
                total_services=len(entries),
                total_present=len(entries),
                last_attendance=visitor.last_visit if entries else None
            )
            member.set_password(password)
            refresh_member_stats(member, now)
            db.session.add(member)
            db.session.flush()

            for entry in entries:
                db.session.add(AttendanceRecord(
                    member_id=member.id,
                    service_id=entry.service_id,
                    calendar_date=entry.date,
                    check_in_time=entry.check_in_time,
                    status=AttendanceStatus.PRESENT,
                    method=CheckInMethod.MANUAL,
                    is_migrated=True,
                    notes=MIGRATED_NOTE
                ))

            visitor.converted_to_user = True
            visitor.linked_member_id = member.id
            visitor.conversion_date = now
            return member

        try:
            member = run_atomic(work, retries=1, label="visitor registration")
        except IntegrityError:
            raise AlreadyConverted()

        logger.info("Converted visitor to member %s (%s)", member.id, member.membership_id)
        get_notifier().notify(member.id, NotificationKind.WELCOME, {
            'email': member.email,
            'name': member.full_name,
            'membership_id': member.membership_id,
            'qr_data': CheckInService.member_qr_payload(member)
        })
        return member

    @staticmethod
    def check_existence(phone: str = None, email: str = None) -> Dict:
        """Whether a phone/email belongs to a member, a returning visitor, or nobody."""
        phone = phone.strip() if phone else None
        email = email.strip().lower() if email else None
        if not phone and not email:
            raise ValidationError("Phone number or email required")

        member = Member.find_by_contact(phone, email)
        if member:
            return {
                'exists': True,
                'is_registered_user': True,
                'name': member.full_name,
                'membership_id': member.membership_id,
                'needs_login': True
            }

        filters = []
        if phone:
            filters.append(VisitorRecord.phone == phone)
        if email:
            filters.append(VisitorRecord.email == email)
        visitor = VisitorRecord.query.filter(db.or_(*filters)).first()
        if visitor:
            return {
                'exists': True,
                'is_registered_user': False,
                'is_returning_visitor': True,
                'name': visitor.full_name,
                'visit_count': visitor.visit_count,
                'has_email': bool(visitor.email),
                'can_quick_check_in': True
            }

        return {
            'exists': False,
            'is_registered_user': False,
            'is_returning_visitor': False
        }
