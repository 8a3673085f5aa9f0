import io
import logging
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Union

import pandas as pd

from .store import RetailStore

logger = logging.getLogger(__name__)

# Accepted spellings for each product column, after normalization
NAME_COLUMNS = ['name', 'productname', 'product', 'productdescription', 'description']
PRICE_COLUMNS = ['price', 'unitprice', 'retailprice']
QUANTITY_COLUMNS = ['quantity', 'qty', 'stock', 'onhand']

EXPORT_COLUMNS = ['id', 'name', 'price', 'quantity']


class CatalogError(ValueError):
    pass


def _find_column(columns: List[str], candidates: List[str]) -> Optional[str]:
    for col in candidates:
        if col in columns:
            return col
    return None


def read_product_frame(source: Union[str, Path, BinaryIO], filename: Optional[str] = None) -> pd.DataFrame:
    """
    Reads a product list spreadsheet into a normalized DataFrame

    args:
        source: Path or file-like object holding CSV or Excel data
        filename (str): Original file name, used to pick the reader for uploads
    returns:
        pd.DataFrame: Columns name, price, quantity
    """
    name = str(filename or (source if isinstance(source, (str, Path)) else ''))
    if isinstance(source, bytes):
        source = io.BytesIO(source)

    try:
        if name.lower().endswith(('.xlsx', '.xls')):
            df = pd.read_excel(source)
        else:
            df = pd.read_csv(source)
    except (ValueError, OSError) as e:
        raise CatalogError(f'Could not read product list: {e}') from e

    # Normalize column names (remove whitespace, convert to lowercase)
    df.columns = [str(col).strip().lower().replace(' ', '').replace('_', '') for col in df.columns]

    name_col = _find_column(list(df.columns), NAME_COLUMNS)
    price_col = _find_column(list(df.columns), PRICE_COLUMNS)
    if name_col is None or price_col is None:
        raise CatalogError('Product list needs a name and a price column')
    quantity_col = _find_column(list(df.columns), QUANTITY_COLUMNS)

    products = pd.DataFrame({
        'name': df[name_col].fillna('').astype(str).str.strip(),
        'price': pd.to_numeric(df[price_col], errors='coerce'),
        'quantity': pd.to_numeric(df[quantity_col], errors='coerce') if quantity_col else 0,
    })
    products['quantity'] = products['quantity'].fillna(0).clip(lower=0).astype(int)

    # Rows without a name or a usable price are skipped
    invalid = (products['name'] == '') | products['price'].isna() | (products['price'] < 0)
    if invalid.any():
        logger.warning(f'Skipping {int(invalid.sum())} invalid rows in product list')
    return products[~invalid].reset_index(drop=True)


def import_products(
    store: RetailStore,
    source: Union[str, Path, BinaryIO, bytes],
    filename: Optional[str] = None,
) -> Dict[str, int]:
    """
    Imports a product list, updating products that already exist by name

    returns:
        dict: Counts of created, updated and total rows
    """
    df = read_product_frame(source, filename)
    created = updated = 0
    for row in df.to_dict('records'):
        existing = store.find_product_by_name(row['name'])
        if existing is None:
            store.create_product(row['name'], float(row['price']), int(row['quantity']))
            created += 1
        else:
            store.update_product(existing.id, price=float(row['price']), quantity=int(row['quantity']))
            updated += 1

    logger.info(f'Imported product list: {created} created, {updated} updated')
    return {'created': created, 'updated': updated, 'total': created + updated}


def export_products(store: RetailStore) -> str:
    """Current inventory as CSV text"""
    products = [product.model_dump() for product in store.list_products()]
    df = pd.DataFrame(products, columns=EXPORT_COLUMNS)
    return df.to_csv(index=False)
