import pytest

from smartcart.detection import (
    AnalysisResultAdapter,
    Detection,
    IngredientsResult,
    ItemsResult,
    MessageResult,
    coerce_confidence,
    normalize_analysis,
)


@pytest.mark.parametrize('value, expected', [
    (95, 95.0),
    ('95%', 95.0),
    ('87.5 %', 87.5),
    (0.93, 93.0),
    (150, 100.0),
    (-3, 0.0),
    (None, 0.0),
    ('high', 0.0),
    (True, 0.0),
])
def test_coerce_confidence(value, expected):
    assert coerce_confidence(value) == pytest.approx(expected)


def test_detection_from_raw_maps_fields():
    detection = Detection.from_raw({
        'name': 'Coca Cola 500ml',
        'brand': 'Coca-Cola',
        'category': 'Beverage',
        'price': 1.5,
        'confidence': '98%',
        'ingredients': 'water, sugar, caffeine',
        'nutritionalInfo': '210 kcal',
        'additionalInfo': {'caffeine': '34mg'},
    }, captured_at=12.0)

    assert detection.name == 'Coca Cola 500ml'
    assert detection.price == '1.50'
    assert detection.confidence == 98
    assert detection.ingredients == ['water', 'sugar', 'caffeine']
    assert detection.nutritional_info == '210 kcal'
    assert '34mg' in detection.additional_info
    assert detection.captured_at == 12.0


def test_detection_without_name_is_skipped():
    assert Detection.from_raw({'category': 'Food'}) is None
    assert Detection.from_raw(42) is None


def test_list_analysis_becomes_items():
    result = normalize_analysis([
        {'name': 'Bread Loaf', 'confidence': 95},
        {'category': 'nameless'},
        'Milk Carton 1L',
    ])

    assert isinstance(result, ItemsResult)
    assert [item.name for item in result.items] == ['Bread Loaf', 'Milk Carton 1L']


def test_text_analysis_becomes_message():
    result = normalize_analysis('I can see a kitchen counter but no products.')

    assert isinstance(result, MessageResult)
    assert result.items == []


def test_fallback_reply_with_empty_items_is_message():
    result = normalize_analysis({'error': False, 'message': 'No products visible', 'items': []})

    assert isinstance(result, MessageResult)
    assert result.message == 'No products visible'


def test_ingredient_report_uses_fallback_name():
    result = normalize_analysis({
        'main_ingredients': ['pasta', 'tomato'],
        'raw_materials': ['tomato', 'olive oil'],
        'spices_seasonings': ['basil'],
    }, fallback_name='Pasta')

    assert isinstance(result, IngredientsResult)
    assert result.report.food_name == 'Pasta'
    assert result.report.ingredients == ['pasta', 'tomato', 'olive oil', 'basil']


def test_single_object_and_wrapped_lists():
    single = normalize_analysis({'name': 'Chocolate Bar', 'confidence': 0.96})
    wrapped = normalize_analysis({'products': [{'name': 'Apple'}, {'name': 'Pear'}]})

    assert [item.name for item in single.items] == ['Chocolate Bar']
    assert single.items[0].confidence == pytest.approx(96)
    assert [item.name for item in wrapped.items] == ['Apple', 'Pear']


def test_result_union_discriminates_on_kind():
    result = AnalysisResultAdapter.validate_python({'kind': 'message', 'message': 'hello'})
    assert isinstance(result, MessageResult)
