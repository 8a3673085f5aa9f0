import json
import re
import time
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

# Keys the model uses for the item name across prompt variants
NAME_KEYS = ('name', 'product', 'product_name', 'item', 'food_name', 'ingredient')
INGREDIENT_REPORT_KEYS = ('main_ingredients', 'raw_materials', 'spices_seasonings', 'optional_ingredients')


def coerce_confidence(value: Any) -> float:
    """
    Converts an AI-reported confidence into a 0-100 percentage

    Accepts numbers, strings like '95%' and fractions like 0.93.
    Missing or unparsable values become 0.
    """
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, str):
        match = re.search(r'-?\d+(?:\.\d+)?', value)
        if not match:
            return 0.0
        value = float(match.group())
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0

    # Fractions are reported on a 0-1 scale
    if 0.0 < confidence < 1.0:
        confidence *= 100
    return max(0.0, min(100.0, confidence))


def _as_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        parts = [part.strip() for part in value.split(',')]
        return [part for part in parts if part] or None
    if isinstance(value, list):
        items = []
        for entry in value:
            if isinstance(entry, dict):
                entry = next((entry[k] for k in NAME_KEYS if entry.get(k)), None)
            if entry is not None and str(entry).strip():
                items.append(str(entry).strip())
        return items or None
    return [str(value)]


def _as_text(value: Any) -> Optional[str]:
    if value is None or value == '':
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


# Data model for a single recognized item
class Detection(BaseModel):
    model_config = ConfigDict(frozen=False)

    name: str
    category: str = 'Unknown'
    description: str = ''
    confidence: float = Field(default=0.0, ge=0, le=100)
    brand: Optional[str] = None
    price: Optional[str] = None
    ingredients: Optional[List[str]] = None
    nutritional_info: Optional[str] = None
    allergens: Optional[List[str]] = None
    additional_info: Optional[str] = None
    captured_at: float = Field(default_factory=time.monotonic)

    @field_validator('confidence', mode='before')
    @classmethod
    def _coerce_confidence(cls, value):
        return coerce_confidence(value)

    @classmethod
    def from_raw(cls, raw: Any, captured_at: Optional[float] = None) -> Optional['Detection']:
        """Builds a detection from whatever shape the model returned for one item"""
        if isinstance(raw, str):
            raw = {'name': raw}
        if not isinstance(raw, dict):
            return None

        name = next((raw[k] for k in NAME_KEYS if isinstance(raw.get(k), str) and raw[k].strip()), None)
        if name is None:
            return None

        price = raw.get('price', raw.get('estimated_price'))
        if isinstance(price, (int, float)) and not isinstance(price, bool):
            price = f'{price:.2f}'

        fields = {
            'name': name.strip(),
            'category': _as_text(raw.get('category')) or 'Unknown',
            'description': _as_text(raw.get('description')) or '',
            'confidence': raw.get('confidence'),
            'brand': _as_text(raw.get('brand')),
            'price': _as_text(price),
            'ingredients': _as_list(raw.get('ingredients')),
            'nutritional_info': _as_text(raw.get('nutritional_info', raw.get('nutritionalInfo'))),
            'allergens': _as_list(raw.get('allergens')),
            'additional_info': _as_text(raw.get('additionalInfo', raw.get('additional_info'))),
        }
        if captured_at is not None:
            fields['captured_at'] = captured_at
        return cls(**fields)


class IngredientReport(BaseModel):
    food_name: str
    main_ingredients: List[str] = []
    raw_materials: List[str] = []
    spices_seasonings: List[str] = []
    optional_ingredients: List[str] = []

    @property
    def ingredients(self) -> List[str]:
        """All ingredient lists merged in order with duplicates removed"""
        merged = self.main_ingredients + self.raw_materials + self.spices_seasonings + self.optional_ingredients
        return list(dict.fromkeys(merged))


class ItemsResult(BaseModel):
    kind: Literal['items'] = 'items'
    items: List[Detection]
    message: Optional[str] = None


class MessageResult(BaseModel):
    kind: Literal['message'] = 'message'
    message: str
    items: List[Detection] = []


class IngredientsResult(BaseModel):
    kind: Literal['ingredients'] = 'ingredients'
    report: IngredientReport
    items: List[Detection] = []
    message: Optional[str] = None


AnalysisResult = Annotated[Union[ItemsResult, MessageResult, IngredientsResult], Field(discriminator='kind')]
AnalysisResultAdapter = TypeAdapter(AnalysisResult)


def _detections(raw_items: List[Any], captured_at: Optional[float]) -> List[Detection]:
    detections = []
    for raw in raw_items:
        detection = Detection.from_raw(raw, captured_at)
        if detection is not None:
            detections.append(detection)
    return detections


def _is_ingredient_report(raw: Dict[str, Any]) -> bool:
    return any(isinstance(raw.get(key), list) for key in INGREDIENT_REPORT_KEYS)


def normalize_analysis(raw: Any, captured_at: Optional[float] = None, fallback_name: str = '') -> AnalysisResult:
    """
    Normalizes an `analysis` payload from the inference proxy into a tagged result

    args:
        raw: Parsed `analysis` value, a list, dict or plain string
        captured_at (float): Monotonic capture time stamped onto every detection
        fallback_name (str): Food name used when an ingredient report has none
    returns:
        AnalysisResult: ItemsResult, MessageResult or IngredientsResult
    """
    if raw is None:
        return MessageResult(message='No analysis returned')

    if isinstance(raw, str):
        return MessageResult(message=raw.strip() or 'Empty analysis returned')

    if isinstance(raw, list):
        return ItemsResult(items=_detections(raw, captured_at))

    if not isinstance(raw, dict):
        return MessageResult(message=str(raw))

    message = raw.get('message') if isinstance(raw.get('message'), str) else None

    if _is_ingredient_report(raw):
        report = IngredientReport(
            food_name=raw.get('food_name') or raw.get('name') or fallback_name or 'Unknown',
            **{key: _as_list(raw.get(key)) or [] for key in INGREDIENT_REPORT_KEYS},
        )
        return IngredientsResult(report=report, message=message)

    if isinstance(raw.get('items'), list):
        items = _detections(raw['items'], captured_at)
        if not items and message:
            return MessageResult(message=message)
        return ItemsResult(items=items, message=message)

    # A single item returned as an object
    single = Detection.from_raw(raw, captured_at)
    if single is not None:
        return ItemsResult(items=[single])

    # Lists wrapped under an unexpected key, e.g. {"products": [...]}
    for value in raw.values():
        if isinstance(value, list) and value and isinstance(value[0], dict):
            return ItemsResult(items=_detections(value, captured_at), message=message)

    if message:
        return MessageResult(message=message)
    return MessageResult(message=json.dumps(raw, ensure_ascii=False))
