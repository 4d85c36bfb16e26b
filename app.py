import logging

from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix

from config import Config
from extensions import db, limiter, migrate
from ledger.errors import LedgerError


def create_app(config_object=Config):
    app = Flask(__name__)

    # Load configuration from Config (or a test subclass)
    app.config.from_object(config_object)

    # Trust reverse proxy headers for scheme/host when enabled
    if app.config.get("TRUST_PROXY", True):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)  # type: ignore[assignment]

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # Models must be imported before Flask-Migrate autogenerates
    import models  # noqa: F401
    from routes.academic_year_routes import academic_year_bp
    from routes.audit_routes import audit_bp
    from routes.carry_forward_routes import carry_forward_bp
    from routes.fee_routes import fee_bp
    from routes.payment_routes import payment_bp

    app.register_blueprint(academic_year_bp)
    app.register_blueprint(fee_bp)
    app.register_blueprint(payment_bp)
    app.register_blueprint(carry_forward_bp)
    app.register_blueprint(audit_bp)

    @app.errorhandler(LedgerError)
    def _ledger_error(exc):
        if exc.http_status >= 500:
            app.logger.warning("%s: %s", exc.code, exc.message)
        return jsonify(exc.to_dict()), exc.http_status

    @app.after_request
    def _set_security_headers(resp):
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        resp.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        return resp

    @app.route("/health")
    def health():
        return jsonify({"ok": True})

    return app


app = create_app()

if __name__ == "__main__":
    app.run(debug=True)
