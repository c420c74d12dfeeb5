from .db import db
from .user import User, Role, user_roles
from .session import Session
from .audit_log import AuditLog
from .activity import Activity
from .booking import Booking
from .slot_counter import SlotCounter
