"""
Structured logging for the benefit service.

- configure_logging installs a JSON (or plain text) formatter once per process
- register_request_logging logs every request with method, path, status and duration
- transfer_span wraps a Transfer Engine call and logs its outcome
"""

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from flask import g, request
from benefit_service.errors import BenefitError

logger = logging.getLogger(__name__)
transfer_logger = logging.getLogger('benefit_service.transfers')

STRUCTURED_FIELDS = (
    'event', 'outcome', 'benefit_id', 'benefit_ids', 'from_id', 'to_id',
    'amount', 'attempt', 'duration_ms', 'method', 'path', 'status',
)

_HANDLER_MARKER = '_benefit_service_handler'


class JSONFormatter(logging.Formatter):

    def format(self, record):
        log = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            value = record.__dict__.get(key)
            if value is not None:
                log[key] = value
        if record.exc_info:
            log['exception'] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def configure_logging(level='INFO', fmt='json'):
    """Attach one handler to the root logger; later calls only adjust it."""
    root = logging.getLogger()
    handler = next((h for h in root.handlers if getattr(h, _HANDLER_MARKER, False)), None)
    if handler is None:
        handler = logging.StreamHandler()
        setattr(handler, _HANDLER_MARKER, True)
        root.addHandler(handler)
    if fmt == 'json':
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))


def register_request_logging(app):

    @app.before_request
    def _start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def _log_request(response):
        started = g.pop('request_started', None)
        duration_ms = round((time.perf_counter() - started) * 1000, 2) if started else None
        logger.info(
            '%s %s -> %s', request.method, request.path, response.status_code,
            extra={
                'event': 'request',
                'method': request.method,
                'path': request.path,
                'status': response.status_code,
                'duration_ms': duration_ms,
            },
        )
        return response


@contextmanager
def transfer_span(from_id, to_id, amount):
    fields = {
        'event': 'transfer',
        'from_id': str(from_id),
        'to_id': str(to_id),
        'amount': str(amount),
    }
    started = time.perf_counter()
    transfer_logger.info('Transfer requested', extra=fields)
    try:
        yield
    except BenefitError as e:
        fields['duration_ms'] = round((time.perf_counter() - started) * 1000, 2)
        transfer_logger.warning('Transfer rejected: %s', e.message, extra={**fields, 'outcome': e.kind})
        raise
    except Exception:
        fields['duration_ms'] = round((time.perf_counter() - started) * 1000, 2)
        transfer_logger.exception('Transfer failed', extra={**fields, 'outcome': 'ERROR'})
        raise
    fields['duration_ms'] = round((time.perf_counter() - started) * 1000, 2)
    transfer_logger.info('Transfer committed', extra={**fields, 'outcome': 'OK'})
