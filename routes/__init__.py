from .health import health_bp
from .auth import auth_bp
from .activities import activity_bp
from .booking import booking_bp
