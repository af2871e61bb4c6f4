import logging
from types import SimpleNamespace
from typing import Optional

from flask import Flask, Response, current_app, g, jsonify, request

from .auth import PortalAuth, admin_required, user_required
from .config import Settings
from .db import create_db_engine, init_db, make_session_factory
from .envelope import Envelope
from .errors import LicenseServerError, NotFoundError, ValidationError
from .lifecycle import LicenseManager, LicensePatch
from .store import LicenseStore
from .verification import LicenseVerifier

logger = logging.getLogger(__name__)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _services():
    return current_app.extensions["license_server"]


def create_app(settings: Optional[Settings] = None) -> Flask:
    settings = (settings or Settings()).validate()
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    engine = create_db_engine(settings.DATABASE_URL, echo=settings.SQLALCHEMY_ECHO)
    init_db(engine)
    store = LicenseStore(make_session_factory(engine))

    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.SECRET_KEY
    app.extensions["license_server"] = SimpleNamespace(
        settings=settings,
        engine=engine,
        store=store,
        verifier=LicenseVerifier(Envelope(settings.AES_SECRET_KEY), store),
        manager=LicenseManager(store),
        auth=PortalAuth(store, settings.SECRET_KEY, settings.SESSION_MAX_AGE),
    )

    @app.errorhandler(LicenseServerError)
    def handle_error(exc: LicenseServerError):
        if exc.status_code >= 500:
            logger.error("request failed: %s", exc.message)
            return jsonify({"error": "An unexpected error occurred"}), exc.status_code
        return jsonify({"error": exc.message}), exc.status_code

    @app.get("/")
    def root():
        return {"ok": True, "msg": "license server running"}

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    # ------------------------- verification API -------------------------

    @app.post("/api/license-verification/verify")
    def verify():
        result = _services().verifier.verify(request.get_data(as_text=True))
        mimetype = "text/plain" if result.encrypted else "application/json"
        return Response(result.body, status=result.status, mimetype=mimetype)

    # ----------------------------- admin API ----------------------------

    @app.post("/api/admin/auth/login")
    def admin_login():
        data = _json_body()
        token, created = _services().auth.login_admin(data.get("username"), data.get("password"))
        return jsonify({"success": True, "token": token}), (201 if created else 200)

    @app.get("/api/admin/users")
    @admin_required
    def list_users():
        return jsonify([
            dict(user.to_dict(), licenseCount=count)
            for user, count in _services().store.list_users()
        ])

    @app.post("/api/admin/users")
    @admin_required
    def create_user():
        user = _services().manager.create_user(_json_body().get("username"))
        return jsonify(dict(user.to_dict(), licenseCount=0)), 201

    @app.get("/api/admin/users/<user_id>")
    @admin_required
    def get_user(user_id):
        services = _services()
        user = services.store.find_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        licenses = services.store.list_user_licenses(user_id)
        return jsonify(dict(user.to_dict(), licenses=[lic.to_dict() for lic in licenses]))

    @app.delete("/api/admin/users/<user_id>")
    @admin_required
    def delete_user(user_id):
        _services().manager.delete_user(user_id)
        return jsonify({"success": True, "message": "User and associated licenses deleted successfully"})

    @app.get("/api/admin/licenses")
    @admin_required
    def list_licenses():
        return jsonify([lic.to_dict(username=lic.user.username) for lic in _services().store.list_licenses()])

    @app.post("/api/admin/licenses")
    @admin_required
    def create_license():
        data = _json_body()
        lic = _services().manager.create_license(
            data.get("userId"),
            data.get("softwareName"),
            data.get("expirationDate"),
            data.get("hardwareBindingEnabled") or False,
        )
        return jsonify(lic.to_dict(username=lic.user.username)), 201

    @app.get("/api/admin/licenses/<license_id>")
    @admin_required
    def get_license(license_id):
        lic = _services().store.find_by_id(license_id)
        if lic is None:
            raise NotFoundError("License not found")
        return jsonify(lic.to_dict(username=lic.user.username))

    @app.patch("/api/admin/licenses/<license_id>")
    @admin_required
    def update_license(license_id):
        patch = LicensePatch.from_json(_json_body())
        lic = _services().manager.edit_license(license_id, patch)
        return jsonify(lic.to_dict(username=lic.user.username))

    @app.post("/api/admin/licenses/<license_id>/revoke")
    @admin_required
    def revoke_license(license_id):
        lic = _services().manager.revoke_license(license_id)
        return jsonify(lic.to_dict(username=lic.user.username))

    @app.get("/api/admin/dashboard/stats")
    @admin_required
    def dashboard_stats():
        services = _services()
        return jsonify(services.store.stats(services.manager.clock(), settings.EXPIRING_SOON_DAYS))

    # ------------------------------ user API ----------------------------

    @app.post("/api/user/auth/login")
    def user_login():
        token = _services().auth.login_user(_json_body().get("userHash"))
        return jsonify({"success": True, "token": token})

    @app.get("/api/user/licenses")
    @user_required
    def my_licenses():
        return jsonify([lic.to_dict() for lic in _services().store.list_user_licenses(g.session["id"])])

    @app.get("/api/user/licenses/<license_id>")
    @user_required
    def my_license(license_id):
        lic = _services().store.find_by_id(license_id)
        if lic is None or lic.user_id != g.session["id"]:
            raise NotFoundError("License not found")
        return jsonify(lic.to_dict())

    logger.info("license server ready (database: %s)", engine.url.render_as_string(hide_password=True))
    return app
