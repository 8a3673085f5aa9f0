import pytest

from smartcart.store import NotFound, RetailStore, StoreError


def test_product_crud(store):
    apple = store.create_product('Apple', 0.5, 10)
    store.create_product('banana', 0.25, 0)

    assert [p.name for p in store.list_products()] == ['Apple', 'banana']
    assert [p.name for p in store.list_products(in_stock_only=True)] == ['Apple']
    assert [p.name for p in store.list_products(search='nan')] == ['banana']

    updated = store.update_product(apple.id, price=0.6, name=None)
    assert updated.name == 'Apple'
    assert store.get_product(apple.id).price == 0.6

    store.delete_product(apple.id)
    with pytest.raises(NotFound):
        store.get_product(apple.id)


def test_missing_product_operations_raise(store):
    with pytest.raises(NotFound):
        store.set_product_quantity('missing', 3)
    with pytest.raises(NotFound):
        store.delete_product('missing')


def test_find_product_by_name_ignores_case(store):
    store.create_product('Coca Cola 500ml', 1.5, 3)
    assert store.find_product_by_name('coca cola 500ML').price == 1.5
    assert store.find_product_by_name('Pepsi') is None


def test_orders_newest_first_with_items(store):
    soap = store.create_product('Soap', 2.0, 5)
    first = store.insert_order({'customer_name': 'A', 'subtotal': 2, 'tax': 0.16, 'total': 2.16})
    store.insert_order_items([{
        'order_id': first.id, 'product_id': soap.id, 'quantity': 1, 'unit_price': 2.0, 'total_price': 2.0,
    }])
    second = store.insert_order({'customer_name': 'B', 'subtotal': 4, 'tax': 0.32, 'total': 4.32})

    orders = store.list_orders()
    assert [o.id for o in orders] == [second.id, first.id]
    assert orders[1].order_items[0].product_name == 'Soap'
    assert orders[0].order_items == []


def test_deleted_product_keeps_order_item(store):
    soap = store.create_product('Soap', 2.0, 5)
    order = store.insert_order({'customer_name': 'A', 'subtotal': 2, 'tax': 0.16, 'total': 2.16})
    store.insert_order_items([{
        'order_id': order.id, 'product_id': soap.id, 'quantity': 1, 'unit_price': 2.0, 'total_price': 2.0,
    }])

    store.delete_product(soap.id)

    item = store.get_order(order.id).order_items[0]
    assert item.product_id is None
    assert item.unit_price == 2.0


def test_order_items_need_existing_order(store):
    with pytest.raises(StoreError):
        store.insert_order_items([{
            'order_id': 'missing', 'product_id': None, 'quantity': 1, 'unit_price': 1.0, 'total_price': 1.0,
        }])


def test_raw_material_lookup(store):
    store.add_raw_material('Chicken Biryani', ['rice', 'chicken', 'saffron'])
    store.add_raw_material('Pasta Carbonara', ['pasta', 'egg', 'pecorino'])

    assert store.find_raw_material('biryani').ingredients == ['rice', 'chicken', 'saffron']
    assert store.find_raw_material('sushi') is None
    assert [m.food_item for m in store.list_raw_materials()] == ['Chicken Biryani', 'Pasta Carbonara']


def test_unopenable_database_raises(tmp_path):
    with pytest.raises(StoreError):
        RetailStore(tmp_path / 'missing-dir' / 'store.db')
