"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

import hashlib

from flask import jsonify
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
    default_limits=[],  # per-route limits only
    storage_uri="memory://",
)


def hash_api_token(token):
    """SHA-256 hex digest of a bearer token (only the digest is stored)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@login_manager.request_loader
def load_user_from_request(request):
    """Authenticate API calls from an `Authorization: Bearer <token>` header.

    Imports lazily to avoid circular deps.
    """
    from hotmess.models.user import User

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[len("Bearer "):].strip()
    if not token:
        return None

    return User.query.filter_by(
        api_token_hash=hash_api_token(token), is_active=True
    ).first()


@login_manager.unauthorized_handler
def unauthorized():
    """JSON 401 instead of a login-page redirect."""
    return jsonify(error="unauthorized", message="Authentication required."), 401
