from flask import Blueprint, request, jsonify, current_app
from marketplace.actor import Actor
from marketplace.services.reconciliation_service import run_nightly_jobs
import hmac
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('cron', __name__)


def _authorized() -> bool:
    secret = current_app.config.get('CRON_SECRET')
    header = request.headers.get('Authorization') or ''
    if not secret or not header.startswith('Bearer '):
        return False
    token = header[len('Bearer '):]
    return hmac.compare_digest(token.encode(), secret.encode())


@bp.route('/api/cron/nightly', methods=['GET', 'POST'])
def nightly():
    if not _authorized():
        logger.warning("Rejected nightly cron call from %s",
                       request.remote_addr)
        return jsonify({'error': 'Unauthorized'}), 401

    summary = run_nightly_jobs(actor=Actor.system(), triggered_by='cron')
    return jsonify(summary)
