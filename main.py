from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import aclosing, asynccontextmanager
from typing import List, Optional
import logging

import config
from auth import get_current_user
from availability import NON_SEAT_TABLE_IDS, Snapshot, read_snapshot, seat_ids, snapshots, sort_table_ids
from checkout import CheckoutAttempt, CheckoutState
from database import DocumentStore, get_store
from errors import BackendError, ValidationError
from history import list_history
from reservations import ReservationCoordinator
from schemas import (
    Cafe, MenuItem, Voucher, PaymentMethod, User, Table,
    OrderLine, OrderRecord, PaymentBreakdown,
    ReservationCreate, ReservationRecord, ReservationOut,
    SessionStart, SessionOut, CartItemIn, VoucherChoice, PaymentMethodChoice,
    CheckoutIn, CheckoutOut,
)
from session import ReservationSession, SessionRegistry

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("api")

registry = SessionRegistry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    registry.close_all()


app = FastAPI(title="Brewspot API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Upper bound on how long starting a session waits for the first table snapshot.
FIRST_SNAPSHOT_TIMEOUT = 5.0


def get_sessions() -> SessionRegistry:
    return registry


def current_session(user: User = Depends(get_current_user), sessions: SessionRegistry = Depends(get_sessions)) -> ReservationSession:
    session = sessions.get(user.uid)
    if session is None:
        raise HTTPException(status_code=404, detail="No reservation in progress")
    return session


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(BackendError)
async def backend_error_handler(request: Request, exc: BackendError):
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": exc.message})


def _tables(snapshot: Snapshot) -> List[Table]:
    return [Table(id=t, booked=snapshot[t]) for t in sort_table_ids(seat_ids(snapshot))]


def _session_out(session: ReservationSession) -> SessionOut:
    return SessionOut(
        cafe_id=session.cafe_id,
        tables=_tables(session.feed.snapshot),
        selected=session.selection.selected,
        can_proceed=session.selection.can_proceed,
        cart=session.cart.lines_for(session.cafe_id),
        voucher=session.voucher,
        payment_method=session.payment_method,
        feed_error=session.feed.last_error,
    )


def _checkout_out(attempt: CheckoutAttempt, response: Response) -> CheckoutOut:
    if attempt.state in (CheckoutState.FAILED_ORDER, CheckoutState.FAILED_BOOKING):
        response.status_code = 502
    return CheckoutOut(
        state=attempt.state.value,
        order_id=attempt.order_id,
        breakdown=attempt.breakdown,
        error=attempt.error,
        failed_tables=attempt.failed_tables,
    )


@app.get("/")
def root():
    return {"message": "Brewspot API running"}


@app.get("/test")
async def test_db(store: DocumentStore = Depends(get_store)):
    try:
        collections = await store.list_collections()
        return {
            "backend": "fastapi",
            "database": "mongodb",
            "connection_status": "ok",
            "collections": collections,
        }
    except BackendError as e:
        return {"backend": "fastapi", "database": "mongodb", "connection_status": f"error: {e}"}


# ============== CAFES ==================
@app.get("/cafes", response_model=List[Cafe])
async def list_cafes(store: DocumentStore = Depends(get_store)):
    docs = await store.get_documents("cafe", sort=[("name", 1)])
    return [Cafe.model_validate(d) for d in docs]


@app.get("/cafes/{cafe_id}", response_model=Cafe)
async def get_cafe(cafe_id: str, store: DocumentStore = Depends(get_store)):
    doc = await store.get_document("cafe", cafe_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Cafe not found")
    return Cafe.model_validate(doc)


@app.get("/cafes/{cafe_id}/menu", response_model=List[MenuItem])
async def get_menu(cafe_id: str, store: DocumentStore = Depends(get_store)):
    docs = await store.get_documents("menu_item", {"cafeId": cafe_id}, sort=[("name", 1)])
    return [MenuItem.model_validate(d) for d in docs]


# ============== TABLES ==================
@app.get("/cafes/{cafe_id}/tables", response_model=List[Table])
async def table_status(cafe_id: str, store: DocumentStore = Depends(get_store)):
    return _tables(await read_snapshot(store, cafe_id))


@app.websocket("/ws/cafes/{cafe_id}/tables")
async def table_updates(websocket: WebSocket, cafe_id: str, store: DocumentStore = Depends(get_store)):
    await websocket.accept()
    try:
        async with aclosing(snapshots(store, cafe_id)) as stream:
            async for snap in stream:
                await websocket.send_json([t.model_dump(by_alias=True) for t in _tables(snap)])
    except WebSocketDisconnect:
        logger.debug("Table watcher for cafe %s disconnected", cafe_id)
    except BackendError as e:
        logger.warning("Table stream for cafe %s failed: %s", cafe_id, e)
        await websocket.close(code=1011, reason=e.message[:120])


# ============== SESSION ==================
@app.post("/session", response_model=SessionOut)
async def start_session(
    body: SessionStart,
    user: User = Depends(get_current_user),
    sessions: SessionRegistry = Depends(get_sessions),
    store: DocumentStore = Depends(get_store),
):
    cafe = await store.get_document("cafe", body.cafe_id)
    if not cafe:
        raise HTTPException(status_code=404, detail="Cafe not found")
    session = sessions.open(user.uid, body.cafe_id, store)
    await session.feed.wait_ready(FIRST_SNAPSHOT_TIMEOUT)
    return _session_out(session)


@app.get("/session", response_model=SessionOut)
async def get_session(session: ReservationSession = Depends(current_session)):
    return _session_out(session)


@app.delete("/session")
async def end_session(user: User = Depends(get_current_user), sessions: SessionRegistry = Depends(get_sessions)):
    sessions.close(user.uid)
    return {"status": "closed"}


@app.post("/session/tables/{table_id}/toggle", response_model=SessionOut)
async def toggle_table(table_id: str, session: ReservationSession = Depends(current_session)):
    if table_id in NON_SEAT_TABLE_IDS:
        raise ValidationError(f"{table_id} is not a bookable table")
    session.selection.toggle(table_id)
    return _session_out(session)


@app.delete("/session/tables", response_model=SessionOut)
async def clear_tables(session: ReservationSession = Depends(current_session)):
    session.selection.clear()
    return _session_out(session)


@app.post("/session/feed/retry", response_model=SessionOut)
async def retry_feed(session: ReservationSession = Depends(current_session)):
    session.feed.retry()
    await session.feed.wait_ready(FIRST_SNAPSHOT_TIMEOUT)
    return _session_out(session)


# ============== RESERVATIONS ==================
@app.post("/reservations", response_model=ReservationOut)
async def create_reservation(
    body: ReservationCreate,
    user: User = Depends(get_current_user),
    sessions: SessionRegistry = Depends(get_sessions),
    store: DocumentStore = Depends(get_store),
):
    session = sessions.get(user.uid)
    coordinator = session.reservations if session is not None else ReservationCoordinator(store)
    reservation_id = await coordinator.create_reservation(
        cafe_id=body.cafe_id,
        cafe_name=body.cafe_name,
        user_id=user.uid,
        user_name=body.user_name,
        date=body.date,
        time=body.time,
        total_guests=body.total_guests,
        selected_tables=body.selected_tables,
    )
    return ReservationOut(reservation_id=reservation_id)


@app.get("/reservations/{reservation_id}", response_model=ReservationRecord)
async def get_reservation(
    reservation_id: str,
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    record = await ReservationCoordinator(store).get_reservation(reservation_id)
    if record is None or record.user_id != user.uid:
        raise HTTPException(status_code=404, detail="Reservation not found")
    return record


# ============== CART ==================
@app.get("/cart", response_model=List[OrderLine])
async def get_cart(session: ReservationSession = Depends(current_session)):
    return session.cart.lines_for(session.cafe_id)


@app.post("/cart/items", response_model=List[OrderLine])
async def add_to_cart(
    body: CartItemIn,
    session: ReservationSession = Depends(current_session),
    store: DocumentStore = Depends(get_store),
):
    doc = await store.get_document("menu_item", body.menu_item_id)
    if not doc:
        raise HTTPException(status_code=404, detail=f"Item {body.menu_item_id} not found")
    item = MenuItem.model_validate(doc)
    if item.cafe_id != session.cafe_id:
        raise ValidationError(f"Item {item.id} is not on the menu of cafe {session.cafe_id}")
    session.cart.add(item)
    return session.cart.lines_for(session.cafe_id)


@app.delete("/cart/items/{menu_item_id}", response_model=List[OrderLine])
async def remove_from_cart(menu_item_id: str, session: ReservationSession = Depends(current_session)):
    session.cart.remove(menu_item_id, session.cafe_id)
    return session.cart.lines_for(session.cafe_id)


# ============== VOUCHERS & PAYMENT METHODS ==================
@app.get("/vouchers", response_model=List[Voucher])
async def list_vouchers(store: DocumentStore = Depends(get_store)):
    return [Voucher.model_validate(d) for d in await store.get_documents("voucher")]


@app.post("/session/voucher", response_model=SessionOut)
async def choose_voucher(
    body: VoucherChoice,
    session: ReservationSession = Depends(current_session),
    store: DocumentStore = Depends(get_store),
):
    if body.voucher_id is None:
        session.voucher = None
    else:
        doc = await store.get_document("voucher", body.voucher_id)
        if not doc:
            raise HTTPException(status_code=404, detail="Voucher not found")
        session.voucher = Voucher.model_validate(doc)
    return _session_out(session)


@app.get("/payment-methods", response_model=List[PaymentMethod])
async def list_payment_methods(store: DocumentStore = Depends(get_store)):
    return [PaymentMethod.model_validate(d) for d in await store.get_documents("payment")]


@app.post("/session/payment-method", response_model=SessionOut)
async def choose_payment_method(
    body: PaymentMethodChoice,
    session: ReservationSession = Depends(current_session),
    store: DocumentStore = Depends(get_store),
):
    if body.payment_method_id is None:
        session.payment_method = None
    else:
        doc = await store.get_document("payment", body.payment_method_id)
        if not doc:
            raise HTTPException(status_code=404, detail="Payment method not found")
        session.payment_method = PaymentMethod.model_validate(doc)
    return _session_out(session)


# ============== CHECKOUT ==================
@app.get("/checkout/quote", response_model=PaymentBreakdown)
async def checkout_quote(session: ReservationSession = Depends(current_session)):
    return session.pricing.compute(session.cart.lines_for(session.cafe_id), session.voucher, cafe_id=session.cafe_id)


@app.post("/checkout", response_model=CheckoutOut)
async def checkout(
    body: CheckoutIn,
    response: Response,
    user: User = Depends(get_current_user),
    session: ReservationSession = Depends(current_session),
    store: DocumentStore = Depends(get_store),
):
    cafe = await store.get_document("cafe", session.cafe_id)
    attempt = await session.checkout.checkout(
        user,
        session.cafe_id,
        body.reservation_id,
        session.payment_method,
        session.voucher,
        cafe_name=cafe.get("name", "") if cafe else "",
    )
    return _checkout_out(attempt, response)


@app.post("/checkout/retry", response_model=CheckoutOut)
async def retry_checkout(response: Response, session: ReservationSession = Depends(current_session)):
    attempt = session.last_attempt
    if attempt is None or attempt.state not in (CheckoutState.FAILED_ORDER, CheckoutState.FAILED_BOOKING):
        raise HTTPException(status_code=409, detail="No failed checkout to retry")
    attempt = await session.checkout.retry(attempt)
    return _checkout_out(attempt, response)


# ============== HISTORY ==================
@app.get("/history", response_model=List[OrderRecord])
async def history(
    q: Optional[str] = Query(default=None, description="Filter by cafe name"),
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    return await list_history(store, user.uid, query=q)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
