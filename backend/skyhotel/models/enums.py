from enum import Enum


class Channel(str, Enum):
    NEW_USER = "NEW_USER"
    PLATINUM = "PLATINUM"
    CORPORATE = "CORPORATE"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"
    PENDING = "PENDING"


class OrderStatus(str, Enum):
    PROCESSING = "PROCESSING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class ExecutionStatus(str, Enum):
    PLAN_PENDING = "PLAN_PENDING"
    QUEUED = "QUEUED"
    SUBMITTING = "SUBMITTING"
    WAIT_CONFIRM = "WAIT_CONFIRM"
    ORDERED = "ORDERED"
    DONE = "DONE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class MonitorStatus(str, Enum):
    MONITORING = "MONITORING"
    REACHED = "REACHED"
    PAUSED = "PAUSED"


class LedgerReason(str, Enum):
    ADMIT = "ADMIT"
    CREDIT = "CREDIT"
    ADJUST = "ADJUST"


class BlacklistSeverity(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class BlacklistStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RESOLVED = "RESOLVED"
