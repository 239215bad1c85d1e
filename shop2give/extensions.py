"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit — we apply per-route
)

# Bearer tokens only, there is no cookie session to protect.
login_manager.session_protection = None


@login_manager.request_loader
def load_user_from_request(request):
    """Resolve the bearer token on the request to an AuthUser.

    Imports lazily to avoid circular deps.
    """
    from shop2give.services.auth_service import authenticate_request

    return authenticate_request(request)


@login_manager.unauthorized_handler
def unauthorized():
    """JSON 401 (via the ApiError handler) instead of a redirect to a login view."""
    from shop2give.errors import AuthError

    raise AuthError("Unauthorized")
