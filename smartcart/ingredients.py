import logging
from typing import Any, List, Literal

from pydantic import BaseModel

from .detect import AnalysisError, AnalysisMode
from .detection import IngredientsResult, ItemsResult
from .notify import Notifier
from .store import RetailStore, StoreError

logger = logging.getLogger(__name__)


class IngredientLookup(BaseModel):
    food_item: str
    ingredients: List[str]
    source: Literal['ai', 'database', 'none', 'error']


def _not_found_lines(query: str) -> List[str]:
    return [
        f'Sorry, I couldn\'t find ingredients for "{query}".',
        'Please try:',
        '• A more specific food name',
        '• Different spelling',
        '• Use the camera scanner for visual analysis',
    ]


def _error_lines(query: str) -> List[str]:
    return [
        f'Error searching for "{query}".',
        'Please check your internet connection',
        'Or try the camera scanner',
    ]


async def lookup_ingredients(query: str, client: Any, store: RetailStore, notifier: Notifier) -> IngredientLookup:
    """
    Finds the ingredients of a food item

    The AI text query is tried first, the raw materials table is the fallback
    when the analysis service fails.

    args:
        query (str): Food item name, e.g. "Biryani"
        client: AnalysisClient used for the text query
        store (RetailStore): Raw materials table used as fallback
        notifier (Notifier): Receives the outcome notification
    returns:
        IngredientLookup: Ingredient lines and where they came from
    raises:
        ValueError: Query is empty
    """
    query = (query or '').strip()
    if not query:
        notifier.error('Error', 'Please enter a food item name')
        raise ValueError('Please enter a food item name')

    try:
        result = await client.analyze(query, AnalysisMode.INGREDIENTS)
    except AnalysisError as e:
        logger.warning(f'AI ingredient lookup failed for {query!r}, using database: {e}')
        return _lookup_database(query, store, notifier)

    if isinstance(result, IngredientsResult):
        food_item = result.report.food_name or query
        ingredients = result.report.ingredients
        notifier.notify('AI Analysis Complete!', f'Found {len(ingredients)} ingredients for {food_item}')
        return IngredientLookup(food_item=food_item, ingredients=ingredients, source='ai')

    # Simpler shapes, a list of items or a plain message
    if isinstance(result, ItemsResult) and result.items:
        ingredients = [item.name for item in result.items]
    elif result.message:
        ingredients = [result.message]
    else:
        ingredients = [f'Found information for {query}']
    notifier.notify('AI Analysis', 'Ingredient information retrieved using AI')
    return IngredientLookup(food_item=query, ingredients=ingredients, source='ai')


def _lookup_database(query: str, store: RetailStore, notifier: Notifier) -> IngredientLookup:
    try:
        material = store.find_raw_material(query)
    except StoreError as e:
        logger.error(f'Raw material lookup failed for {query!r}: {e}')
        notifier.error('Search Error', 'Failed to search for ingredients')
        return IngredientLookup(food_item=query, ingredients=_error_lines(query), source='error')

    if material is None:
        notifier.error('Not Found', 'Try a different food name or use the camera scanner')
        return IngredientLookup(food_item=query, ingredients=_not_found_lines(query), source='none')

    notifier.notify('Found in Database!', f'Ingredients for {material.food_item} retrieved from local database')
    return IngredientLookup(food_item=material.food_item, ingredients=material.ingredients, source='database')
