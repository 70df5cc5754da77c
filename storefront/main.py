# storefront/main.py
import logging
import time

from flask import Flask, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from storefront.config import Config
from storefront.database import Base, close_db, engine
from storefront.errors import StorefrontError
from storefront.blueprints.abandoned import abandoned_bp
from storefront.blueprints.auth import admin_required
from storefront.blueprints.catalog import catalog_bp
from storefront.blueprints.orders import orders_bp
from storefront.observability import (
    check_database_health,
    configure_logging,
    ensure_request_id,
    get_metrics_snapshot,
    increment_counter,
    observe_latency,
)

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
app.register_blueprint(orders_bp)
app.register_blueprint(abandoned_bp)
app.register_blueprint(catalog_bp)

logger = logging.getLogger(__name__)


# Initialize database tables
def init_database():
    """Initialize database tables"""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables initialized successfully")
    except SQLAlchemyError as e:
        logger.exception("Error initializing database: %s", e)

# Initialize database on startup
init_database()


@app.before_request
def before_request_logging():
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={
            "method": request.method,
            "endpoint": request.endpoint or request.path,
        },
    )

@app.after_request
def after_request_logging(response):
    started = getattr(g, 'request_started_at', None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000
        observe_latency(
            "http_request_latency_ms",
            duration_ms,
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
    response.headers[Config.REQUEST_ID_HEADER] = getattr(g, "request_id", "")
    return response

@app.teardown_appcontext
def teardown_db(exception):
    try:
        close_db(exception)
    except RuntimeError:
        # Handle case where we're outside of application context during tests
        pass


@app.errorhandler(StorefrontError)
def handle_storefront_error(error: StorefrontError):
    if error.status_code >= 500:
        logger.error("Request failed: %s", error)
    increment_counter("http_domain_errors_total", labels={"type": type(error).__name__})
    return jsonify(error.to_dict()), error.status_code


@app.route('/health', methods=['GET'])
def health():
    db_status = check_database_health()
    overall = "UP" if db_status.get("status") == "UP" else "DEGRADED"
    status_code = 200 if overall == "UP" else 503
    return jsonify({
        "status": overall,
        "components": {
            "database": db_status
        }
    }), status_code

@app.route('/admin/metrics', methods=['GET'])
@admin_required
def admin_metrics():
    return jsonify(get_metrics_snapshot())
