"""
Quart application exposing the personalized content pipeline over HTTP.
"""
import logging
from typing import Optional

from pydantic import ValidationError
from quart import Quart, jsonify, request
from quart_cors import cors

from core.errors import StoreUnavailableError
from core.schemas import PersonalizedContentRequest
from services.config import load_config
from workflows.base import ContentPipeline
from workflows.pipeline_factory import create_pipeline_from_config

logger = logging.getLogger(__name__)

app = Quart(__name__)
app = cors(app)

pipeline: Optional[ContentPipeline] = None


def get_pipeline() -> ContentPipeline:
    """Get or create the pipeline instance."""
    global pipeline
    if pipeline is None:
        pipeline = create_pipeline_from_config(load_config())
    return pipeline


def error_response(error: str, message: str, status: int):
    return jsonify({'error': error, 'message': message}), status


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first['msg']}" if location else first["msg"]


# ==================== API Routes ====================

@app.route('/api/personalized-content', methods=['POST'])
async def api_personalized_content():
    """Generate (or serve cached) personalized digest for a user."""
    data = await request.get_json(silent=True)
    if not isinstance(data, dict):
        return error_response('invalid_request', 'Request body must be a JSON object', 400)

    try:
        content_request = PersonalizedContentRequest.model_validate(data)
    except ValidationError as e:
        return error_response('invalid_request', _validation_message(e), 400)

    try:
        response = await get_pipeline().run(content_request)
    except StoreUnavailableError as e:
        logger.error(f"Content store unavailable: {e}")
        return error_response('store_unavailable', 'Content store is temporarily unavailable', 503)
    except Exception as e:
        logger.exception(f"Unhandled error for user {content_request.user_id}: {e}")
        return error_response('internal_error', 'Unexpected error while generating content', 500)

    return jsonify(response.to_dict())


@app.route('/health')
async def health():
    """Liveness plus generation service reachability."""
    current = get_pipeline()
    llm = getattr(current, 'llm', None)
    generation_ok = await llm.health_check() if llm is not None else False
    return jsonify({
        'status': 'ok',
        'pipeline': current.name,
        'generation_service': 'up' if generation_ok else 'down',
    })


# ==================== Error Handlers ====================

@app.errorhandler(404)
async def not_found(error):
    return error_response('not_found', 'Resource not found', 404)


@app.errorhandler(405)
async def method_not_allowed(error):
    return error_response('method_not_allowed', 'Method not allowed', 405)


@app.errorhandler(500)
async def server_error(error):
    return error_response('internal_error', 'Unexpected server error', 500)
