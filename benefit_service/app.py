import logging
from flask import Flask, jsonify
from flasgger import Swagger
from werkzeug.exceptions import HTTPException
from benefit_service.config import Config
from benefit_service.errors import BenefitError
from benefit_service.extensions import LOCKING_EXTENSION, db
from benefit_service.models import Benefit  # Register model
from benefit_service.observability import configure_logging, register_request_logging
from benefit_service.services.concurrency import build_locking_strategy

logger = logging.getLogger(__name__)


def register_error_handlers(app):

    @app.errorhandler(BenefitError)
    def handle_benefit_error(e):
        if e.http_status >= 500:
            logger.error('%s: %s', e.kind, e.message, extra={'event': 'error', 'outcome': e.kind})
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'kind': e.name.upper().replace(' ', '_'), 'message': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception('Unhandled error', extra={'event': 'error', 'outcome': 'INTERNAL_ERROR'})
        return jsonify({'kind': 'INTERNAL_ERROR', 'message': 'Internal server error'}), 500


def create_app(config_overrides=None):
    app = Flask(__name__)

    # Configuration
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app.config['LOG_LEVEL'], app.config['LOG_FORMAT'])

    # Initialize Extensions
    db.init_app(app)
    app.extensions[LOCKING_EXTENSION] = build_locking_strategy(app.config)

    Swagger(app)

    register_error_handlers(app)
    register_request_logging(app)

    # Register Blueprints
    from benefit_service.routes.benefits import benefits_bp
    app.register_blueprint(benefits_bp, url_prefix='/api/v1/benefits')

    @app.route('/health')
    def health():
        """
        Health check endpoint
        ---
        tags:
          - Health
        responses:
          200:
            description: Service is healthy
          503:
            description: Service is unhealthy (DB connection failed)
        """
        try:
            db.session.execute(db.text('SELECT 1'))
            return {"service": "benefit-service", "status": "healthy"}, 200
        except Exception as e:
            db.session.rollback()
            return {"service": "benefit-service", "status": "unhealthy", "error": str(e)}, 503

    if app.config['CREATE_SCHEMA']:
        with app.app_context():
            db.create_all()

    logger.info(
        'benefit-service ready, concurrency strategy: %s', app.extensions[LOCKING_EXTENSION].name,
        extra={'event': 'startup'},
    )
    return app


if __name__ == '__main__':
    app = create_app()
    app.run(host='0.0.0.0', port=5000)
