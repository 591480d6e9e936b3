import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from analytics import AnalyticsAggregator
from auth import AuthGate, LoginRateLimiter, check_csrf, issue_csrf_token
from billing import BillingGenerator
from config import get_settings
from database import get_session, init_db
from errors import RateLimitError, StoreError, ValidationError, status_code_for
from inventory import InventoryStore
from models import User
from orders import OrderEngine
from receipts import render_receipt
from repository import Repository
from schemas import (
    BillOut,
    CategoryCreate,
    CategoryItemsRequest,
    CategoryOut,
    CategoryUpdate,
    CreateBillRequest,
    CreateOrderRequest,
    CsrfOut,
    DailySalesOut,
    DashboardOut,
    InitializeRequest,
    ItemCreate,
    ItemOut,
    ItemUpdate,
    LoginRequest,
    MetricsOut,
    OrderOut,
    SessionOut,
    SettingsOut,
    SettingsUpdate,
    TodayStatsOut,
    UpdateBillRequest,
    UpdateOrderRequest,
    UserOut,
)
from store_settings import get_store_settings, update_store_settings

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("store")

CSRF_HEADER = "X-CSRF-Token"
SAFE_METHODS = ("GET", "HEAD", "OPTIONS")
SESSION_MAX_AGE = 10 * 365 * 24 * 60 * 60

login_limiter = LoginRateLimiter(settings.login_max_attempts, settings.login_window_seconds)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_db()
    logger.info("store API ready")
    yield


app = FastAPI(title="Store Manager API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------- errors --------------------

@app.exception_handler(StoreError)
async def store_error_handler(_request: Request, exc: StoreError):
    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimitError) else None
    return JSONResponse({"error": exc.message}, status_code=status_code_for(exc), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{where}: {first.get('msg')}" if where else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse({"error": message}, status_code=400)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# -------------------- dependencies --------------------

def get_repo(session: Session = Depends(get_session)) -> Repository:
    return Repository(session)


def require_session(request: Request, repo: Repository = Depends(get_repo)) -> Optional[User]:
    if get_settings().auth_disabled:
        return None
    return AuthGate(repo, login_limiter).verify_session(request.cookies.get(get_settings().session_cookie_name))


def require_csrf(request: Request) -> None:
    if get_settings().auth_disabled or request.method in SAFE_METHODS:
        return
    check_csrf(request.cookies.get(get_settings().csrf_cookie_name), request.headers.get(CSRF_HEADER))


api = APIRouter(prefix="/api", dependencies=[Depends(require_session), Depends(require_csrf)])
public = APIRouter(prefix="/api/auth")


@app.get("/")
def root():
    return {"service": "Store Manager API", "status": "ok"}


# -------------------- auth --------------------

@public.post("/initialize", response_model=UserOut, status_code=201)
def initialize(payload: InitializeRequest, repo: Repository = Depends(get_repo)):
    user = AuthGate(repo, login_limiter).initialize(payload.password, payload.name, payload.email)
    return UserOut.from_model(user)


@public.post("/login", response_model=SessionOut)
def login(payload: LoginRequest, request: Request, response: Response, repo: Repository = Depends(get_repo)):
    client_key = request.client.host if request.client else "unknown"
    gate = AuthGate(repo, login_limiter)
    token = gate.login(payload.password, payload.session_type, client_key=client_key)
    response.set_cookie(
        get_settings().session_cookie_name,
        token.encode(),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        samesite="strict",
        secure=get_settings().secure_cookies,
        path="/",
    )
    return SessionOut(is_valid=True, user=UserOut.from_model(gate.verify_session(token.encode())))


@public.post("/logout", dependencies=[Depends(require_csrf)])
def logout(request: Request, response: Response, repo: Repository = Depends(get_repo)):
    AuthGate(repo, login_limiter).logout(request.cookies.get(get_settings().session_cookie_name))
    response.delete_cookie(get_settings().session_cookie_name, path="/")
    return {"success": True}


@public.get("/session", response_model=SessionOut)
def verify_session(request: Request, repo: Repository = Depends(get_repo)):
    user = AuthGate(repo, login_limiter).verify_session(request.cookies.get(get_settings().session_cookie_name))
    return SessionOut(is_valid=True, user=UserOut.from_model(user))


@public.get("/csrf", response_model=CsrfOut)
def csrf_token(response: Response):
    token = issue_csrf_token()
    response.set_cookie(get_settings().csrf_cookie_name, token, samesite="strict", path="/")
    return CsrfOut(csrf_token=token)


# -------------------- items --------------------

@api.get("/items", response_model=List[ItemOut])
def list_items(
    search: Optional[str] = None,
    in_stock: Optional[bool] = Query(None, alias="inStock"),
    repo: Repository = Depends(get_repo),
):
    return [ItemOut.from_model(i) for i in InventoryStore(repo).list_items(search=search, in_stock=in_stock)]


@api.get("/items/uncategorized", response_model=List[ItemOut])
def uncategorized_items(repo: Repository = Depends(get_repo)):
    return [ItemOut.from_model(i) for i in InventoryStore(repo).uncategorized_items()]


@api.post("/items", response_model=ItemOut, status_code=201)
def create_item(payload: ItemCreate, repo: Repository = Depends(get_repo)):
    item = InventoryStore(repo).create_item(
        payload.name, payload.price, payload.quantity, weight=payload.weight, in_stock=payload.in_stock
    )
    return ItemOut.from_model(item)


@api.get("/items/{item_id}", response_model=ItemOut)
def get_item(item_id: str, repo: Repository = Depends(get_repo)):
    return ItemOut.from_model(InventoryStore(repo).get_item(item_id))


@api.put("/items/{item_id}", response_model=ItemOut)
def update_item(item_id: str, payload: ItemUpdate, repo: Repository = Depends(get_repo)):
    item = InventoryStore(repo).update_item(item_id, **payload.model_dump(exclude_unset=True))
    return ItemOut.from_model(item)


@api.delete("/items/{item_id}", status_code=204)
def delete_item(item_id: str, repo: Repository = Depends(get_repo)):
    InventoryStore(repo).delete_item(item_id)
    return Response(status_code=204)


# -------------------- categories --------------------

@api.get("/categories", response_model=List[CategoryOut])
def list_categories(repo: Repository = Depends(get_repo)):
    store = InventoryStore(repo)
    counts = store.category_item_counts()
    return [CategoryOut.from_model(c, counts.get(c.id, 0)) for c in store.list_categories()]


@api.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryCreate, repo: Repository = Depends(get_repo)):
    category = InventoryStore(repo).create_category(payload.name, payload.color, payload.sort_order)
    return CategoryOut.from_model(category, 0)


@api.put("/categories/{category_id}", response_model=CategoryOut)
def update_category(category_id: str, payload: CategoryUpdate, repo: Repository = Depends(get_repo)):
    category = InventoryStore(repo).update_category(category_id, **payload.model_dump(exclude_unset=True))
    return CategoryOut.from_model(category)


@api.delete("/categories/{category_id}", status_code=204)
def delete_category(category_id: str, repo: Repository = Depends(get_repo)):
    InventoryStore(repo).delete_category(category_id)
    return Response(status_code=204)


@api.put("/categories/{category_id}/items", response_model=CategoryOut)
def set_category_items(category_id: str, payload: CategoryItemsRequest, repo: Repository = Depends(get_repo)):
    category = InventoryStore(repo).set_category_items(category_id, payload.item_ids)
    return CategoryOut.from_model(category)


# -------------------- orders --------------------

@api.get("/orders", response_model=List[OrderOut])
def list_orders(
    status: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    repo: Repository = Depends(get_repo),
):
    return [OrderOut.from_model(o) for o in OrderEngine(repo).list_orders(status=status, limit=limit)]


@api.post("/orders", response_model=OrderOut, status_code=201)
def create_order(payload: CreateOrderRequest, repo: Repository = Depends(get_repo)):
    order = OrderEngine(repo).create_order(
        payload.customer_name,
        [line.model_dump() for line in payload.items],
        custom_message=payload.custom_message,
    )
    return OrderOut.from_model(order)


@api.get("/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: str, repo: Repository = Depends(get_repo)):
    return OrderOut.from_model(OrderEngine(repo).get_order(order_id))


@api.put("/orders/{order_id}", response_model=OrderOut)
def update_order(order_id: str, payload: UpdateOrderRequest, repo: Repository = Depends(get_repo)):
    engine = OrderEngine(repo)
    with repo.transaction():
        order = engine.update_order(order_id, payload.customer_name, payload.custom_message)
        if payload.status is not None:
            order = engine.update_order_status(order_id, payload.status, payload.payment_method)
    return OrderOut.from_model(order)


@api.delete("/orders/{order_id}", status_code=204)
def delete_order(order_id: str, repo: Repository = Depends(get_repo)):
    OrderEngine(repo).delete_order(order_id)
    return Response(status_code=204)


# -------------------- bills --------------------

@api.get("/bills", response_model=List[BillOut])
def list_bills(repo: Repository = Depends(get_repo)):
    return [BillOut.from_model(b, with_order=True) for b in BillingGenerator(repo).list_bills()]


@api.post("/bills", response_model=BillOut, status_code=201)
def create_bill(payload: CreateBillRequest, repo: Repository = Depends(get_repo)):
    tax_rate = payload.tax_rate / 100 if payload.tax_rate is not None else None
    bill = OrderEngine(repo).bill_order(
        payload.order_id,
        payload.payment_method,
        total_amount=payload.total_amount,
        taxes=payload.taxes,
        tax_rate=tax_rate,
    )
    return BillOut.from_model(bill, with_order=True)


@api.get("/bills/{bill_id}", response_model=BillOut)
def get_bill(bill_id: str, repo: Repository = Depends(get_repo)):
    return BillOut.from_model(BillingGenerator(repo).get_bill(bill_id), with_order=True)


@api.patch("/bills/{bill_id}", response_model=BillOut)
def update_bill(bill_id: str, payload: UpdateBillRequest, repo: Repository = Depends(get_repo)):
    return BillOut.from_model(BillingGenerator(repo).mark_paid(bill_id, payload.is_paid), with_order=True)


@api.get("/bills/{bill_id}/receipt", response_class=PlainTextResponse)
def bill_receipt(bill_id: str, repo: Repository = Depends(get_repo)):
    bill = BillingGenerator(repo).get_bill(bill_id)
    return PlainTextResponse(render_receipt(bill, bill.order, get_store_settings(repo)))


# -------------------- analytics --------------------

@api.get("/analytics/daily-sales", response_model=List[DailySalesOut])
def daily_sales(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    repo: Repository = Depends(get_repo),
):
    if not start_date or not end_date:
        raise ValidationError("Start date and end date are required")
    return [DailySalesOut.from_result(d) for d in AnalyticsAggregator(repo).daily_sales(start_date, end_date)]


@api.get("/analytics/metrics", response_model=MetricsOut)
def metrics(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    repo: Repository = Depends(get_repo),
):
    return MetricsOut.from_result(AnalyticsAggregator(repo).metrics(start_date, end_date))


@api.get("/analytics/today", response_model=TodayStatsOut)
def today_stats(repo: Repository = Depends(get_repo)):
    return TodayStatsOut.from_result(AnalyticsAggregator(repo).today_stats())


@api.get("/dashboard", response_model=DashboardOut)
def dashboard(repo: Repository = Depends(get_repo)):
    return DashboardOut.from_result(AnalyticsAggregator(repo).dashboard())


# -------------------- settings --------------------

@api.get("/settings", response_model=SettingsOut)
def read_settings(repo: Repository = Depends(get_repo)):
    return SettingsOut.from_model(get_store_settings(repo))


@api.put("/settings", response_model=SettingsOut)
def write_settings(payload: SettingsUpdate, repo: Repository = Depends(get_repo)):
    return SettingsOut.from_model(update_store_settings(repo, **payload.model_dump(exclude_unset=True)))


app.include_router(public)
app.include_router(api)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
