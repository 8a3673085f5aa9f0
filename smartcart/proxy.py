import json
import logging
import re
from typing import Any, Dict, List, Optional

import requests
from fastapi import APIRouter, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from .config import Settings

logger = logging.getLogger(__name__)

PROXY_PATH = '/functions/v1/analyze-product'

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Headers': 'authorization, x-client-info, apikey, content-type',
    'Access-Control-Allow-Methods': 'POST, OPTIONS',
}

ANALYZE_PROMPT = '''Analyze this image and identify any products, food items, or objects visible. For each item identified, provide:
1. Product/Item name
2. Category (e.g., Food, Beverage, Electronics, etc.)
3. Brief description
4. Estimated confidence level (as percentage)
5. Any nutritional or ingredient information if it's a food item

Format the response as a JSON array of objects with these fields: name, category, description, confidence, additionalInfo.'''

REALTIME_PROMPT = '''Identify every retail product visible in this camera frame. Be brief and consistent between frames.
For each product provide: name, brand (if readable), category, a one sentence description, an estimated retail price (e.g. "$2.99"),
confidence (0-100), and for food items a short list of main ingredients and a one line nutritional summary.

Respond ONLY with a JSON array of objects with these fields: name, brand, category, description, price, confidence, ingredients, nutritionalInfo.
Respond with [] if no products are visible.'''

INGREDIENTS_IMAGE_PROMPT = '''Look at this image and identify any food items or products. For each food item found, provide detailed ingredient information including:
1. Main ingredients typically used
2. Common additives or preservatives
3. Nutritional highlights
4. Allergen warnings if applicable

Respond in JSON format with an array of objects containing: name, ingredients, nutritional_info, allergens.'''

INGREDIENTS_TEXT_PROMPT = '''List the ingredients needed to prepare "{query}". The dish may come from any cuisine in the world.

Respond ONLY with a JSON object with these fields:
food_name (string), main_ingredients (array of strings), raw_materials (array of strings),
spices_seasonings (array of strings), optional_ingredients (array of strings).'''

PROMPTS = {
    'analyze': ANALYZE_PROMPT,
    'realtime-scan': REALTIME_PROMPT,
    'ingredients': INGREDIENTS_IMAGE_PROMPT,
}

_CODE_FENCE = re.compile(r'^```(?:json)?\s*(.*?)\s*```$', re.DOTALL)


class ProxyError(Exception):
    pass


class AnalyzeRequest(BaseModel):
    imageData: Optional[str] = None
    type: str = 'analyze'
    query: Optional[str] = None


def build_messages(request: AnalyzeRequest) -> List[Dict[str, Any]]:
    """
    Selects the prompt for the request type and attaches the image or query

    returns:
        List[dict]: Chat messages for the upstream model
    """
    if request.type not in PROMPTS:
        raise ProxyError(f'Unsupported analysis type: {request.type}')

    # Text-only ingredient lookup
    if request.type == 'ingredients' and not request.imageData:
        query = (request.query or '').strip()
        if not query:
            raise ProxyError('A query is required when no image is provided')
        return [{'role': 'user', 'content': INGREDIENTS_TEXT_PROMPT.format(query=query)}]

    if not request.imageData:
        raise ProxyError(f'imageData is required for {request.type} requests')

    return [
        {
            'role': 'user',
            'content': [
                {'type': 'text', 'text': PROMPTS[request.type]},
                {'type': 'image_url', 'image_url': {'url': request.imageData, 'detail': 'high'}},
            ],
        }
    ]


def parse_model_reply(reply: str) -> Any:
    """Parses the model's reply as JSON, falling back to a text message"""
    text = reply.strip()
    match = _CODE_FENCE.match(text)
    if match:
        text = match.group(1)

    try:
        return json.loads(text)
    except ValueError as e:
        logger.warning(f'JSON parse error: {e}')
        return {'error': False, 'message': reply, 'items': []}


def call_model(messages: List[Dict[str, Any]], settings: Settings) -> str:
    """Sends the chat request to the upstream model and returns the reply text"""
    if not settings.openai_api_key:
        raise ProxyError('OPENAI_API_KEY is not set')

    response = requests.post(
        f'{settings.openai_base_url.rstrip("/")}/chat/completions',
        headers={
            'Authorization': f'Bearer {settings.openai_api_key}',
            'Content-Type': 'application/json',
        },
        json={
            'model': settings.openai_model,
            'messages': messages,
            'max_tokens': 1000,
            'temperature': 0.3,
        },
        timeout=settings.upstream_timeout,
    )

    if not response.ok:
        logger.error(f'OpenAI API error: {response.text}')
        raise ProxyError(f'OpenAI API error: {response.status_code}')

    try:
        data = response.json()
        return data['choices'][0]['message']['content'] or ''
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise ProxyError(f'Unexpected OpenAI response: {e}') from e


def error_response(message: str) -> JSONResponse:
    return JSONResponse(status_code=500, content={'error': True, 'message': message}, headers=CORS_HEADERS)


def create_proxy_router(settings: Settings) -> APIRouter:
    router = APIRouter()

    # Preflight for browser callers
    @router.options(PROXY_PATH)
    def analyze_product_preflight():
        return Response(status_code=200, headers=CORS_HEADERS)

    # Forwards an image or text query to the vision model
    @router.post(PROXY_PATH)
    async def analyze_product(request: Request):
        try:
            payload = AnalyzeRequest.model_validate(await request.json())
        except ValueError as e:
            logger.error(f'Invalid analyze-product request: {e}')
            return error_response(f'Invalid request body: {e}')

        logger.info(f'Request type: {payload.type}')
        try:
            messages = build_messages(payload)
            # requests is blocking, keep it off the event loop
            reply = await run_in_threadpool(call_model, messages, settings)
        except ProxyError as e:
            logger.error(f'Error in analyze-product: {e}')
            return error_response(str(e))
        except requests.RequestException as e:
            logger.error(f'Error in analyze-product: {e}')
            return error_response(f'Upstream request failed: {e}')

        return JSONResponse(content={'success': True, 'analysis': parse_model_reply(reply)}, headers=CORS_HEADERS)

    return router


def create_proxy_app(settings: Optional[Settings] = None) -> FastAPI:
    """Standalone proxy deployment"""
    settings = settings or Settings.from_env()
    app = FastAPI()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=['*'],
        allow_methods=['*'],
        allow_headers=['*'],
    )
    app.include_router(create_proxy_router(settings))
    return app


