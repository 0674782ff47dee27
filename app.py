import logging

from flask import Flask, jsonify, request

from config import Config
from errors import register_error_handlers
from mailer import init_mailer
from models import db, utcnow
from storage import init_storage
from utils import load_encryption_key

logger = logging.getLogger(__name__)


# ==========================================================
# ⚙️ APP SETUP
# ==========================================================
def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.init_app(app)
    init_storage(app)
    init_mailer(app)
    app.extensions["encryption_key"] = load_encryption_key(app.config.get("ENCRYPTION_KEY_B64"))

    from auth import auth_bp
    from documents import documents_bp
    from shares import shares_bp
    app.register_blueprint(auth_bp)
    app.register_blueprint(documents_bp)
    app.register_blueprint(shares_bp)
    register_error_handlers(app)

    @app.after_request
    def add_cors_headers(response):
        if request.path.startswith("/api/"):
            response.headers["Access-Control-Allow-Origin"] = app.config["FRONTEND_URL"]
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        return response

    @app.route("/api/health")
    def health():
        return jsonify({"status": "OK", "timestamp": utcnow().isoformat() + "Z"})

    @app.route("/")
    def home():
        return f"{app.config['APP_NAME']} backend is running!"

    with app.app_context():
        db.create_all()

    if app.config.get("SCHEDULER_ENABLED"):
        from reminders import start_scheduler
        start_scheduler(app)

    logger.info("%s started with %s storage", app.config["APP_NAME"], app.extensions["document_storage"].name)
    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=8080, debug=True)
