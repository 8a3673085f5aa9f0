import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

from .results import DetectionStore
from .store import RetailStore

CONFIRMED_CONFIDENCE = 90


def _revenue(orders: List[Dict[str, Any]], today: date, days: int = 7) -> Dict[str, Any]:
    """Revenue for today and per day over the last `days` days, oldest first"""
    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    if not orders:
        return {'today': 0.0, 'daily': [{'date': d.isoformat(), 'revenue': 0.0} for d in window]}

    df = pd.DataFrame(orders)
    df['day'] = pd.to_datetime(df['created_at'], utc=True, format='ISO8601').dt.date
    per_day = df.groupby('day')['total'].sum()

    daily = [{'date': d.isoformat(), 'revenue': float(per_day.get(d, 0.0))} for d in window]
    return {'today': float(per_day.get(today, 0.0)), 'daily': daily}


def recent_detections(detections: DetectionStore, limit: int = 5) -> List[Dict[str, Any]]:
    now = time.monotonic()
    return [
        {
            'product': detection.name,
            'confidence': detection.confidence,
            'status': 'confirmed' if detection.confidence >= CONFIRMED_CONFIDENCE else 'reviewing',
            'seconds_ago': max(0, int(now - detection.captured_at)),
        }
        for detection in detections.current()[:limit]
    ]


def build_dashboard(
    store: RetailStore,
    detections: DetectionStore,
    low_stock_threshold: int = 5,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Summary figures for the dashboard page

    args:
        store (RetailStore): Inventory and order source
        detections (DetectionStore): Live scanner results
        low_stock_threshold (int): Products below this quantity count as low stock
        today (date): Day treated as today, UTC date when omitted
    returns:
        dict: Inventory, sales and scanner figures
    """
    today = today or datetime.now(timezone.utc).date()
    products = store.list_products()
    orders = [order.model_dump(exclude={'order_items'}) for order in store.list_orders()]
    revenue = _revenue(orders, today)

    return {
        'products': len(products),
        'units_in_stock': sum(product.quantity for product in products),
        'low_stock': sum(1 for product in products if product.quantity < low_stock_threshold),
        'orders': len(orders),
        'revenue_today': revenue['today'],
        'revenue_last_7_days': revenue['daily'],
        'scans': detections.scans,
        'detected': detections.count,
        'recent_detections': recent_detections(detections),
    }
