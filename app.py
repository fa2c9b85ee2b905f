"""
Investment Tracker API.
Tracks investment and bank accounts, currency positions and daily profit and
loss, with JWT authentication and optional TOTP two-factor login.
"""

import atexit
import logging
import os
import time
from datetime import datetime, timezone

from dotenv import load_dotenv
from flask import Flask, Request, g, jsonify, request, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import BadRequest, HTTPException

from auth import jwt
from config import load_config
from database import init_database
from exchange_rates import ExchangeRateService
from last_update import LastUpdateService
from performance_history import PerformanceHistoryService
from scheduler import SchedulerService
from two_factor import TwoFactorService
from routes.auth_routes import auth_bp
from routes.account_routes import accounts_bp
from routes.currency_routes import currencies_bp
from routes.performance_routes import performance_bp
from routes.two_factor_routes import two_factor_bp

logger = logging.getLogger(__name__)

API_METHODS = ['GET', 'POST', 'PUT', 'PATCH', 'DELETE']


class InvalidJSON(BadRequest):
    description = 'Invalid JSON'


class JSONRequest(Request):
    """Request whose malformed JSON bodies become a plain 400 "Invalid JSON"."""

    def on_json_loading_failed(self, e):
        if e is None:
            return super().on_json_loading_failed(e)
        raise InvalidJSON()


def configure_logging(level):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    )


def _utc_now_iso():
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def register_http_hooks(app):
    """Security headers, request logging and JSON error responses."""
    is_production = app.config['ENV_NAME'] == 'production'

    @app.before_request
    def start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'no-referrer'
        response.headers['Cross-Origin-Opener-Policy'] = 'same-origin'
        if is_production:
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

        if not is_production:
            elapsed = (time.perf_counter() - g.get('request_started', time.perf_counter())) * 1000
            logger.info('%s %s %s %.1fms', request.method, request.path, response.status_code, elapsed)
        return response

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        if e.code == 404 and request.path.startswith('/api/'):
            return jsonify({'error': 'API route not found'}), 404
        return jsonify({'error': e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        body = {'error': 'Internal server error'}
        if not is_production:
            body['details'] = str(e)
        return jsonify(body), 500


def register_client(app):
    """Serve the single-page client for every non-API GET path."""
    build_path = os.path.abspath(app.config['CLIENT_BUILD_PATH'])

    @app.route('/api', defaults={'path': ''}, methods=API_METHODS)
    @app.route('/api/<path:path>', methods=API_METHODS)
    def api_not_found(path):
        return jsonify({'error': 'API route not found'}), 404

    @app.route('/', defaults={'path': ''}, methods=['GET'])
    @app.route('/<path:path>', methods=['GET'])
    def client(path):
        if path and os.path.isfile(os.path.join(build_path, path)):
            return send_from_directory(build_path, path)
        if os.path.isfile(os.path.join(build_path, 'index.html')):
            return send_from_directory(build_path, 'index.html')
        return jsonify({'error': 'Client build not found'}), 404


def create_app(overrides=None):
    """Application factory."""
    config = load_config()
    config.update(overrides or {})

    app = Flask(__name__, static_folder=None)
    app.request_class = JSONRequest
    app.config.update(config)
    configure_logging(app.config['LOG_LEVEL'])

    started_at = time.time()

    # Initialize extensions
    database = init_database(app)
    jwt.init_app(app)
    CORS(app, origins=app.config['CORS_ORIGIN'], supports_credentials=True)

    # Services
    last_updates = LastUpdateService(app.config['LAST_UPDATE_FILE'])
    last_updates.initialize()
    exchange_rates = ExchangeRateService(database, last_updates)
    performance_history = PerformanceHistoryService(exchange_rates)
    two_factor = TwoFactorService(
        issuer=app.config['TOTP_ISSUER'],
        encryption_key=app.config['TWO_FACTOR_ENCRYPTION_KEY'],
        bcrypt_rounds=app.config['BCRYPT_ROUNDS']
    )
    scheduler = SchedulerService(app, performance_history, exchange_rates, last_updates)

    app.extensions.update({
        'last_updates': last_updates,
        'exchange_rates': exchange_rates,
        'performance_history': performance_history,
        'two_factor': two_factor,
        'scheduler': scheduler,
    })

    # Blueprints
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(accounts_bp, url_prefix='/api/accounts')
    app.register_blueprint(currencies_bp, url_prefix='/api/currencies')
    app.register_blueprint(performance_bp, url_prefix='/api/performance')
    app.register_blueprint(two_factor_bp, url_prefix='/api/2fa')

    @app.route('/health', methods=['GET'])
    def health():
        """Health check endpoint."""
        return jsonify({
            'status': 'OK',
            'timestamp': _utc_now_iso(),
            'uptime': round(time.time() - started_at, 3)
        })

    register_http_hooks(app)
    register_client(app)

    if app.config['SCHEDULER_ENABLED']:
        scheduler.initialize()
        atexit.register(scheduler.stop)
    if not app.testing:
        atexit.register(last_updates.shutdown)

    logger.info('Investment Tracker API ready (%s)', app.config['ENV_NAME'])
    return app


def main():
    load_dotenv()
    app = create_app()
    port = app.config['PORT']
    logger.info('Server running on port %s', port)
    app.run(host='0.0.0.0', port=port, threaded=True)


if __name__ == '__main__':
    main()
