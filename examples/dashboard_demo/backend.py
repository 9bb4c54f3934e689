import hmac

from flask import Flask, abort, g, jsonify, request
from flask_cors import CORS

from edge_gate import (
    EdgeGate,
    GateExtension,
    GateSettings,
    RequestContext,
    configure_logging,
    set_early_access_cookie,
)

from examples.dashboard_demo.app_config import CORS_ORIGINS, STARTUP_SETTINGS


def create_app(gate: EdgeGate | None = None, settings: GateSettings | None = None) -> Flask:
    """
    Create the dashboard backend with the edge gate mounted.

    Args:
        gate: Pre-built gate (tests inject one with fixed settings).
        settings: Start-up settings for logging and the early-access password.

    Returns:
        Flask: Configured Flask application instance
    """
    settings = settings or STARTUP_SETTINGS
    configure_logging(settings.log_level, settings.log_json)

    app = Flask(__name__)
    ext = GateExtension(gate or EdgeGate(GateSettings.from_env))
    ext.init_app(app)

    CORS(
        app,
        origins=CORS_ORIGINS,
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
        methods=["GET", "POST", "OPTIONS"],
        max_age=3600,
    )

    # Stand-in for the layouts collection of the document store.
    layouts: dict[str, list[str]] = {}

    def current_user_id() -> str:
        identity = g.get("identity") or ext.gate.identify(RequestContext.from_request(request))
        if identity is None:
            abort(401)
        return identity.user_id

    @app.get("/waitlist")
    def waitlist():
        return jsonify({"page": "waitlist"})

    @app.get("/login")
    def login():
        return jsonify({"page": "login", "callbackUrl": request.args.get("callbackUrl")})

    @app.get("/dashboard")
    @app.get("/dashboard/<path:section>")
    def dashboard(section: str = ""):
        return jsonify({"page": "dashboard", "section": section, "user": g.identity.user_id})

    @app.get("/")
    def home():
        return jsonify({"page": "home"})

    @app.get("/api/layout")
    def get_layout():
        return jsonify({"features": layouts.get(current_user_id(), [])})

    @app.post("/api/layout")
    def save_layout():
        user_id = current_user_id()
        features = (request.get_json(silent=True) or {}).get("features")
        if not isinstance(features, list):
            return jsonify({"message": "Invalid features format"}), 400
        layouts[user_id] = [str(f) for f in features]
        return jsonify({"success": True})

    @app.post("/api/early-access")
    def early_access():
        expected = settings.early_access_password
        password = (request.get_json(silent=True) or {}).get("password")
        if not expected or not isinstance(password, str) or not hmac.compare_digest(
            password.encode(), expected.encode()
        ):
            return jsonify({"message": "Incorrect password"}), 401
        response = jsonify({"message": "Access granted"})
        return set_early_access_cookie(response, secure=not settings.development)

    @app.post("/api/user/avatar-upload")
    @ext.limit(route="avatar-upload", max_requests=5)
    def avatar_upload():
        return jsonify({"user": current_user_id(), "uploaded": True})

    @app.errorhandler(401)
    def unauthorized(error):
        return jsonify({"status": "denied", "message": "Unauthorized"}), 401

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"status": "error", "message": "Resource not found."}), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify(
            {
                "status": "error",
                "message": "An unexpected error occurred. Please try again later.",
            }
        ), 500

    return app
