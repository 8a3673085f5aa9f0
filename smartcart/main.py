import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from .camera import CameraError, MediaCapture
from .cart import Cart, CartError, CheckoutError, CustomerInfoRequired, EmptyCartError, StockLimitError, checkout
from .cart_item import Customer, ProductInput, ProductUpdate
from .catalog import CatalogError, export_products, import_products
from .config import Settings
from .dashboard import build_dashboard
from .detect import AnalysisClient
from .ingredients import lookup_ingredients
from .invoice import invoice_filename, render_invoice_pdf
from .notify import Notifier
from .proxy import create_proxy_router
from .results import DetectionStore
from .scanner import ScanLoop, ScanMode
from .store import NotFound, RetailStore, StoreError

logger = logging.getLogger(__name__)

# Interval at which websocket clients are checked for new detections
DETECTION_POLL_INTERVAL = 0.5

CART_ERROR_TITLES = {
    StockLimitError: 'Stock limit reached',
    EmptyCartError: 'Empty cart',
    CustomerInfoRequired: 'Customer info required',
}


@dataclass
class Services:
    settings: Settings
    notifier: Notifier
    store: RetailStore
    detections: DetectionStore
    client: AnalysisClient
    capture: MediaCapture
    scanner: ScanLoop
    cart: Cart


class CartItemRequest(BaseModel):
    product_id: str


class QuantityRequest(BaseModel):
    quantity: int


class ScannerStartRequest(BaseModel):
    mode: ScanMode = ScanMode.REALTIME


def get_services(request: Request) -> Services:
    return request.app.state.services


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'status': 'error', 'message': message})


router = APIRouter()


"""
Get endpoint to fetch product list
"""
@router.get('/products')
def get_products(in_stock: bool = False, search: Optional[str] = None, services: Services = Depends(get_services)):
    try:
        products = services.store.list_products(in_stock_only=in_stock, search=search)
    except StoreError as e:
        logger.error(f'Error loading product list: {e}')
        services.notifier.error('Error', 'Failed to fetch products')
        return error_response(500, str(e))
    return [product.model_dump() for product in products]


@router.post('/products', status_code=201)
def create_product(body: ProductInput, services: Services = Depends(get_services)):
    try:
        product = services.store.create_product(body.name, body.price, body.quantity)
    except StoreError as e:
        logger.error(f'Error creating product: {e}')
        services.notifier.error('Error', f'Failed to add product: {e}')
        return error_response(500, str(e))
    services.notifier.notify('Product added', f'{product.name} added to inventory')
    return product.model_dump()


@router.put('/products/{product_id}')
def update_product(product_id: str, body: ProductUpdate, services: Services = Depends(get_services)):
    try:
        product = services.store.update_product(product_id, **body.model_dump())
    except NotFound as e:
        return error_response(404, str(e))
    except StoreError as e:
        logger.error(f'Error updating product {product_id}: {e}')
        services.notifier.error('Error', f'Failed to update product: {e}')
        return error_response(500, str(e))
    services.notifier.notify('Product updated', f'{product.name} has been updated')
    return product.model_dump()


@router.delete('/products/{product_id}')
def delete_product(product_id: str, services: Services = Depends(get_services)):
    try:
        services.store.delete_product(product_id)
    except NotFound as e:
        return error_response(404, str(e))
    except StoreError as e:
        logger.error(f'Error deleting product {product_id}: {e}')
        services.notifier.error('Error', f'Failed to delete product: {e}')
        return error_response(500, str(e))
    services.cart.remove(product_id)
    return {'status': 'success', 'id': product_id}


"""
Post endpoint to import a product list spreadsheet (CSV or Excel)
"""
@router.post('/products/import')
async def import_product_list(file: UploadFile = File(...), services: Services = Depends(get_services)):
    content = await file.read()
    try:
        counts = import_products(services.store, content, filename=file.filename)
    except CatalogError as e:
        services.notifier.error('Import failed', str(e))
        return error_response(400, str(e))
    except StoreError as e:
        logger.error(f'Error importing product list: {e}')
        services.notifier.error('Import failed', str(e))
        return error_response(500, str(e))
    services.notifier.notify('Products imported', f'{counts["created"]} added, {counts["updated"]} updated')
    return counts


@router.get('/products/export')
def export_product_list(services: Services = Depends(get_services)):
    try:
        csv_text = export_products(services.store)
    except StoreError as e:
        logger.error(f'Error exporting products: {e}')
        services.notifier.error('Error', 'Failed to export products')
        return error_response(500, str(e))
    return Response(
        content=csv_text,
        media_type='text/csv',
        headers={'Content-Disposition': 'attachment; filename="products.csv"'},
    )


"""
Cart endpoints, quantities are capped by recorded stock
"""
@router.get('/cart')
def get_cart(services: Services = Depends(get_services)):
    return services.cart.summary()


def _cart_error(services: Services, error: CartError) -> JSONResponse:
    services.notifier.error(CART_ERROR_TITLES.get(type(error), 'Error'), str(error))
    return error_response(400, str(error))


@router.post('/cart/items')
def add_cart_item(body: CartItemRequest, services: Services = Depends(get_services)):
    try:
        product = services.store.get_product(body.product_id)
        existing = services.cart.get(product.id)
        services.cart.add(product)
    except NotFound as e:
        return error_response(404, str(e))
    except StoreError as e:
        return error_response(500, str(e))
    except CartError as e:
        return _cart_error(services, e)

    if existing is not None:
        services.notifier.notify('Added to cart', f'{product.name} quantity increased')
    else:
        services.notifier.notify('Added to cart', f'{product.name} added to cart')
    return services.cart.summary()


@router.put('/cart/items/{product_id}')
def update_cart_item(product_id: str, body: QuantityRequest, services: Services = Depends(get_services)):
    try:
        product = services.store.get_product(product_id)
        services.cart.update_quantity(product, body.quantity)
    except NotFound as e:
        return error_response(404, str(e))
    except StoreError as e:
        return error_response(500, str(e))
    except CartError as e:
        return _cart_error(services, e)
    return services.cart.summary()


@router.delete('/cart/items/{product_id}')
def remove_cart_item(product_id: str, services: Services = Depends(get_services)):
    services.cart.remove(product_id)
    return services.cart.summary()


"""
Post endpoint to check out the cart and record the order
"""
@router.post('/checkout')
def checkout_cart(customer: Customer, services: Services = Depends(get_services)):
    try:
        order = checkout(services.cart, customer, services.store)
    except CartError as e:
        return _cart_error(services, e)
    except CheckoutError as e:
        services.notifier.error('Error', str(e))
        return JSONResponse(
            status_code=500,
            content={'status': 'error', 'message': str(e), 'stage': e.stage, 'order_id': e.order_id},
        )

    services.notifier.notify('Order completed!', f'Order #{order.short_id} has been processed successfully')
    return order.model_dump()


@router.get('/orders')
def get_orders(services: Services = Depends(get_services)):
    try:
        orders = services.store.list_orders()
    except StoreError as e:
        services.notifier.error('Error', 'Failed to fetch orders')
        return error_response(500, str(e))
    return [order.model_dump() for order in orders]


"""
Get endpoint to download an order invoice as PDF
"""
@router.get('/orders/{order_id}/invoice')
def get_invoice(order_id: str, services: Services = Depends(get_services)):
    try:
        order = services.store.get_order(order_id)
    except NotFound as e:
        services.notifier.error('Error', 'Invoice not found')
        return error_response(404, str(e))
    except StoreError as e:
        services.notifier.error('Error', str(e))
        return error_response(500, str(e))

    try:
        pdf = render_invoice_pdf(order, currency=services.settings.currency_symbol)
    except Exception as e:
        logger.error(f'Error generating invoice for order {order_id}: {e}')
        services.notifier.error('Error', 'Failed to generate PDF')
        return error_response(500, 'Failed to generate PDF')
    return Response(
        content=pdf,
        media_type='application/pdf',
        headers={'Content-Disposition': f'attachment; filename="{invoice_filename(order)}"'},
    )


@router.get('/raw-materials')
def get_raw_materials(services: Services = Depends(get_services)):
    try:
        materials = services.store.list_raw_materials()
    except StoreError as e:
        logger.error(f'Error fetching items: {e}')
        services.notifier.error('Error', 'Failed to fetch raw materials')
        return error_response(500, str(e))
    return [material.model_dump() for material in materials]


"""
Get endpoint to look up the ingredients of any food item
"""
@router.get('/raw-materials/search')
async def search_raw_materials(q: str = '', services: Services = Depends(get_services)):
    try:
        lookup = await lookup_ingredients(q, services.client, services.store, services.notifier)
    except ValueError as e:
        return error_response(400, str(e))
    return lookup.model_dump()


"""
Scanner endpoints, the camera runs on the server
"""
@router.post('/scanner/start')
async def start_scanner(body: Optional[ScannerStartRequest] = None, services: Services = Depends(get_services)):
    mode = body.mode if body is not None else ScanMode.REALTIME
    try:
        await services.scanner.start(mode)
    except CameraError as e:
        return error_response(503, str(e))
    return services.scanner.status()


@router.post('/scanner/stop')
async def stop_scanner(services: Services = Depends(get_services)):
    stopped = await services.scanner.stop()
    return dict(services.scanner.status(), stopped=stopped)


@router.post('/scanner/scan')
async def scan_now(services: Services = Depends(get_services)):
    try:
        result = await services.scanner.scan_now()
    except CameraError as e:
        return error_response(503, str(e))
    return {
        'result': result.model_dump() if result is not None else None,
        'status': services.scanner.status(),
    }


@router.get('/scanner/status')
def scanner_status(services: Services = Depends(get_services)):
    return services.scanner.status()


def _detections_payload(services: Services) -> dict:
    return {
        'version': services.detections.version,
        'scans': services.detections.scans,
        'items': [detection.model_dump() for detection in services.detections.current()],
    }


@router.get('/scanner/detections')
def get_detections(services: Services = Depends(get_services)):
    return _detections_payload(services)


"""
Websocket endpoint pushing the detection set whenever it changes
"""
@router.websocket('/ws/detections')
async def detections_websocket(websocket: WebSocket):
    services: Services = websocket.app.state.services
    await websocket.accept()

    version = None
    try:
        while True:
            if services.detections.version != version:
                version = services.detections.version
                await websocket.send_json(_detections_payload(services))

            # Waiting on receive doubles as the poll delay and notices disconnects, payloads are ignored
            try:
                message = await asyncio.wait_for(websocket.receive(), timeout=DETECTION_POLL_INTERVAL)
            except asyncio.TimeoutError:
                continue
            if message['type'] == 'websocket.disconnect':
                raise WebSocketDisconnect(message.get('code', 1000))
    except WebSocketDisconnect:
        logger.info('Detections websocket closed')


@router.get('/dashboard')
def get_dashboard(services: Services = Depends(get_services)):
    try:
        return build_dashboard(services.store, services.detections, services.settings.low_stock_threshold)
    except StoreError as e:
        logger.error(f'Error building dashboard: {e}')
        services.notifier.error('Error', 'Failed to load dashboard')
        return error_response(500, str(e))


@router.get('/notifications')
def get_notifications(drain: bool = True, services: Services = Depends(get_services)):
    notifications = services.notifier.drain() if drain else services.notifier.recent()
    return [notification.model_dump() for notification in notifications]


def build_services(
    settings: Settings,
    store: Optional[RetailStore] = None,
    capture: Optional[MediaCapture] = None,
    client: Optional[AnalysisClient] = None,
) -> Services:
    notifier = Notifier()
    store = store or RetailStore(settings.database_path)
    detections = DetectionStore()
    client = client or AnalysisClient(settings.proxy_url, timeout=settings.analysis_timeout)
    capture = capture or MediaCapture(settings.camera_source, settings.camera_width, settings.camera_height)
    scanner = ScanLoop(capture, client, detections, notifier, settings)
    return Services(
        settings=settings,
        notifier=notifier,
        store=store,
        detections=detections,
        client=client,
        capture=capture,
        scanner=scanner,
        cart=Cart(tax_rate=settings.tax_rate),
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RetailStore] = None,
    capture: Optional[MediaCapture] = None,
    client: Optional[AnalysisClient] = None,
) -> FastAPI:
    """
    Builds the application with its services

    args:
        settings (Settings): Configuration, read from the environment when omitted
        store, capture, client: Optional replacements for the default services
    returns:
        FastAPI: Application with the API and the analyze-product proxy mounted
    """
    settings = settings or Settings.from_env()
    services = build_services(settings, store, capture, client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.scanner.stop(notify=False)
        await services.client.close()
        services.store.close()

    app = FastAPI(title='smartcart', lifespan=lifespan)
    app.state.services = services

    # Enable CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=['*'],
        allow_methods=['*'],
        allow_headers=['*'],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return error_response(400, str(exc.errors()))

    app.include_router(router)
    app.include_router(create_proxy_router(settings))
    return app


def serve():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(name)s %(levelname)s %(message)s')
    uvicorn.run('smartcart.main:create_app', factory=True, host='0.0.0.0', port=8000)


if __name__ == '__main__':
    serve()
