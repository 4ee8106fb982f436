import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    """Normalize DRF error bodies to ``{'error': code, 'message': detail}``."""
    resp = drf_exception_handler(exc, context)
    if resp is None:
        view = context.get('view')
        logger.exception(f"Unhandled error in {view.__class__.__name__ if view else 'view'}: {exc}")
        return Response({'error': 'server_error', 'message': 'An unexpected error occurred'}, status=500)

    if isinstance(resp.data, dict) and 'detail' in resp.data:
        code = getattr(resp.data['detail'], 'code', 'api_error')
        message = str(resp.data['detail'])
    else:
        code = 'validation_error' if resp.status_code == 400 else 'api_error'
        message = resp.data
    resp.data = {'error': code, 'message': message}
    return resp
