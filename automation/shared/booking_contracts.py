"""Shared exam, account and batch contracts for poller, orchestrator, and executors."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple


# ----------------------------------------------------------------------
# Error taxonomy
# ----------------------------------------------------------------------
class ExamBotError(Exception):
    """Base class for errors raised by the monitoring and booking core."""


class CaptureExhaustedError(ExamBotError):
    """Every endpoint capture attempt failed; the polling session cannot start."""


class TransientNetworkError(ExamBotError):
    """An endpoint fetch failed in a way that the next tick may recover from."""

    def __init__(self, message: str, *, invalidates_endpoint: bool = False) -> None:
        super().__init__(message)
        self.invalidates_endpoint = invalidates_endpoint


class CallbackError(ExamBotError):
    """An injected poller handler raised; logged and never propagated."""


class AccountTaskError(ExamBotError):
    """One account's booking task failed or timed out."""


class ResourceExhaustionError(AccountTaskError):
    """No resource slot became free within the retry budget."""


class BookingFlowError(AccountTaskError):
    """The booking executor could not complete the site flow."""


class ModulesUnavailableError(BookingFlowError):
    """Required exam modules are fully booked or disabled."""

    def __init__(self, modules: Sequence[str]) -> None:
        super().__init__(f"Required modules not available: {', '.join(modules)}")
        self.modules = tuple(modules)


# ----------------------------------------------------------------------
# Monitoring contracts
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class MonitoringTarget:
    """What a polling session is watching for.

    ``target_time`` is the instant the booking window is expected to open.
    Intervals are expressed in seconds.
    """

    target_time: datetime
    poll_interval: float = 5.0
    max_duration: float = 30 * 60.0
    priority_tags: Tuple[str, ...] = field(default_factory=tuple)
    stop_on_first_match: bool = True

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.max_duration <= 0:
            raise ValueError("max_duration must be positive")
        object.__setattr__(self, "priority_tags", tuple(self.priority_tags))


@dataclass(frozen=True)
class ExamRecord:
    """A single exam entry returned by the exam finder endpoint.

    Only the fields the poller inspects are typed; everything else stays in
    ``raw`` so new keys pass through untouched.
    """

    record_id: Optional[str]
    window_start: Optional[datetime]
    location: str = ""
    event_name: str = ""
    window_end: Optional[datetime] = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_processable(self) -> bool:
        return bool(self.record_id)

    def describe(self) -> str:
        event = self.event_name or "Unknown"
        location = self.location or "Unknown Location"
        if self.record_id:
            return f"{event} at {location} (OID: {self.record_id[:8]}...)"
        return f"{event} at {location} (No OID yet)"


# ----------------------------------------------------------------------
# Account contracts
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class ExamModules:
    """Exam modules an account wants to register for."""

    read: bool = False
    hear: bool = False
    write: bool = False
    speak: bool = False

    def as_checkbox_map(self) -> Dict[str, bool]:
        """Map module flags onto the checkbox ids used by the booking page."""

        return {
            "reading": self.read,
            "listening": self.hear,
            "writing": self.write,
            "speaking": self.speak,
        }

    def required(self) -> Tuple[str, ...]:
        return tuple(name for name, wanted in self.as_checkbox_map().items() if wanted)


@dataclass(frozen=True)
class Address:
    street: str
    city: str
    postal_code: str
    house_no: str


@dataclass(frozen=True)
class Phone:
    country_code: str
    number: str


@dataclass(frozen=True)
class Account:
    """A pre-registered candidate account used to book an exam seat."""

    account_id: str
    owner_id: str
    first_name: str
    last_name: str
    email: str
    password: str
    date_of_birth: date
    address: Address
    phone: Phone
    modules: ExamModules = field(default_factory=ExamModules)
    active: bool = True

    @property
    def label(self) -> str:
        return f"{self.first_name} {self.last_name} - {self.email}"

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Account":
        """Build an account from its persisted JSON representation."""

        details = payload.get("details") or {}
        dob = details.get("dob") or {}
        address = details.get("address") or {}
        phone = details.get("phone") or {}
        modules = payload.get("modules") or {}

        return cls(
            account_id=str(payload["id"]),
            owner_id=str(payload.get("owner_id", "")),
            first_name=payload["first_name"],
            last_name=payload["last_name"],
            email=payload["email"],
            password=payload["password"],
            date_of_birth=date(int(dob["year"]), int(dob["month"]), int(dob["day"])),
            address=Address(
                street=address.get("street", ""),
                city=address.get("city", ""),
                postal_code=address.get("postal_code", ""),
                house_no=address.get("house_no", ""),
            ),
            phone=Phone(
                country_code=phone.get("country_code", ""),
                number=phone.get("number", ""),
            ),
            modules=ExamModules(
                read=bool(modules.get("read", False)),
                hear=bool(modules.get("hear", False)),
                write=bool(modules.get("write", False)),
                speak=bool(modules.get("speak", False)),
            ),
            active=bool(payload.get("active", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.account_id,
            "owner_id": self.owner_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "password": self.password,
            "active": self.active,
            "modules": {
                "read": self.modules.read,
                "hear": self.modules.hear,
                "write": self.modules.write,
                "speak": self.modules.speak,
            },
            "details": {
                "dob": {
                    "day": self.date_of_birth.day,
                    "month": self.date_of_birth.month,
                    "year": self.date_of_birth.year,
                },
                "address": {
                    "street": self.address.street,
                    "city": self.address.city,
                    "postal_code": self.address.postal_code,
                    "house_no": self.address.house_no,
                },
                "phone": {
                    "country_code": self.phone.country_code,
                    "number": self.phone.number,
                },
            },
        }


# ----------------------------------------------------------------------
# Booking results
# ----------------------------------------------------------------------
class BookingOutcome(Enum):
    """Result of one executor run that did not raise."""

    SUCCESS = "success"
    PAYMENT_HANDOFF = "payment_handoff"


class BatchOutcome(Enum):
    """Classification of a finished batch used for schedule status."""

    SUCCESS = "success"
    PARTIAL = "partial"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class BatchResult:
    """Aggregate counters of one orchestrated batch."""

    schedule_id: str
    match_id: str
    submitted_count: int
    processed_count: int
    success_count: int
    error_count: int
    stopped: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def outcome(self) -> BatchOutcome:
        if self.stopped:
            return BatchOutcome.STOPPED
        if self.submitted_count and self.success_count == self.submitted_count:
            return BatchOutcome.SUCCESS
        if self.success_count > 0:
            return BatchOutcome.PARTIAL
        return BatchOutcome.FAILED

    def as_dict(self) -> Dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "match_id": self.match_id,
            "submitted_count": self.submitted_count,
            "processed_count": self.processed_count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "stopped": self.stopped,
            "outcome": self.outcome.value,
        }
