import logging
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from aggregation import DashboardRanges
from balances import is_liability, total_balance
from bulk import (
    BulkMutation,
    BulkOperationInProgress,
    SideChannel,
    update_category,
    update_review,
)
from categories import CATEGORY_CODES, category_label, resolve_category
from config import get_settings
from csrf import CSRF_HEADER, generate_csrf_token, validate_csrf_token
from csv_utils import export_filename, export_transactions
from database import get_session_factory
from filters import TransactionFilters
from formatting import (
    date_group_label,
    format_amount,
    format_balance,
    normalize_merchant_name,
)
from models import Entity, Transaction
from notes_sync import NotesSyncClient
from pagination import FetchState
from periods import DateRange, resolve_date_range, year_range
from receipts import ReceiptUploadClient, ReceiptUploadError, receipts_by_transaction
from schemas import (
    AccountRecord,
    BulkAction,
    BulkActionIn,
    CategoryChangeIn,
    ReceiptMatch,
    ReviewIn,
    TagIn,
    TransactionRecord,
)
from services import AccountService, EntityService, ReceiptService, TagService
from store import SQLAlchemyTransactionStore, StoreError
from workspace import LedgerWorkspace

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger Engine")

# entity ids with a bulk action still running
_bulk_in_flight: set[str] = set()


def get_db() -> Iterator[Session]:
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def get_entity(db: Session, entity_id: str) -> Entity:
    entity = db.get(Entity, entity_id)
    if not entity:
        raise HTTPException(status_code=404, detail="Entity not found")
    return entity


def require_csrf(request: Request, tenant_id: str) -> None:
    if not validate_csrf_token(request.headers.get(CSRF_HEADER, ""), tenant_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


def range_from_request(request: Request) -> DateRange:
    try:
        return resolve_date_range(
            request.query_params.get("period"),
            request.query_params.get("start"),
            request.query_params.get("end"),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    return TransactionFilters(
        account_id=request.query_params.get("account") or None,
        category=request.query_params.get("category") or None,
        query=request.query_params.get("q") or None,
        tag_ids=frozenset(t for t in request.query_params.getlist("tag") if t),
    )


def accounts_for(db: Session, entity_id: str) -> list[AccountRecord]:
    return [
        AccountRecord.model_validate(acc)
        for acc in AccountService(db, entity_id).list_active()
    ]


def fetch_payload(state: FetchState) -> dict[str, object]:
    return {
        "error": state.error,
        "page": state.page,
        "total_count": state.total_count,
        "has_more": state.has_more,
    }


async def open_workspace(
    db: Session,
    entity_id: str,
    date_range: DateRange,
) -> tuple[LedgerWorkspace, FetchState]:
    workspace = LedgerWorkspace(SQLAlchemyTransactionStore(db))
    workspace.set_accounts(accounts_for(db, entity_id))
    state = await workspace.load(entity_id, date_range)
    return workspace, state


def serialize_transaction(
    txn: TransactionRecord,
    *,
    balance: Optional[float] = None,
    tag_ids: Optional[set[str]] = None,
    receipts: Optional[list[ReceiptMatch]] = None,
) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": txn.date,
        "merchant": normalize_merchant_name(txn.merchant_name or txn.name),
        "name": txn.name,
        "category": resolve_category(txn),
        "amount": txn.signed_amount,
        "amount_display": format_amount(txn.amount),
        "is_income": txn.is_income,
        "account_id": txn.account_id,
        "institution_name": txn.institution_name,
        "pending": txn.pending,
        "review_status": txn.review_status.value if txn.review_status else None,
        "review_notes": txn.review_notes,
        "balance": balance,
        "balance_display": format_balance(balance),
        "balance_negative": balance is not None and balance < 0,
        "tags": sorted(tag_ids or ()),
        "receipts": receipts or [],
    }


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"store_error: path={request.url.path} error={exc}")
    return JSONResponse(
        status_code=502, content={"detail": str(exc) or "Store unavailable"}
    )


@app.get("/api/csrf-token")
def csrf_token(tenant_id: str):
    return {"token": generate_csrf_token(tenant_id), "header": CSRF_HEADER}


@app.get("/api/categories")
def list_categories():
    return [{"code": code, "label": category_label(code)} for code in CATEGORY_CODES]


@app.get("/api/tenants/{tenant_id}/entities")
def list_entities(tenant_id: str, db: Session = Depends(get_db)):
    entities = EntityService(db, tenant_id).list_all()
    return [
        {"id": e.id, "name": e.name, "entity_type": e.entity_type, "ein": e.ein}
        for e in entities
    ]


@app.get("/api/tenants/{tenant_id}/tags")
def list_tags(tenant_id: str, db: Session = Depends(get_db)):
    return [
        {"id": tag.id, "name": tag.name, "color": tag.color}
        for tag in TagService(db, tenant_id).list_all()
    ]


@app.post("/api/tenants/{tenant_id}/tags")
def create_tag(
    tenant_id: str, payload: TagIn, request: Request, db: Session = Depends(get_db)
):
    require_csrf(request, tenant_id)
    try:
        tag = TagService(db, tenant_id).create(payload.name, payload.color)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"id": tag.id, "name": tag.name, "color": tag.color}


@app.put("/api/transactions/{transaction_id}/tags/{tag_id}")
def attach_tag(
    transaction_id: str, tag_id: str, request: Request, db: Session = Depends(get_db)
):
    txn = db.get(Transaction, transaction_id)
    if not txn:
        raise HTTPException(status_code=404, detail="Transaction not found")
    require_csrf(request, txn.tenant_id)
    try:
        TagService(db, txn.tenant_id).attach(transaction_id, tag_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"ok": True}


@app.delete("/api/transactions/{transaction_id}/tags/{tag_id}")
def detach_tag(
    transaction_id: str, tag_id: str, request: Request, db: Session = Depends(get_db)
):
    txn = db.get(Transaction, transaction_id)
    if not txn:
        raise HTTPException(status_code=404, detail="Transaction not found")
    require_csrf(request, txn.tenant_id)
    try:
        TagService(db, txn.tenant_id).detach(transaction_id, tag_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"ok": True}


@app.get("/api/entities/{entity_id}/accounts")
def list_accounts(entity_id: str, db: Session = Depends(get_db)):
    get_entity(db, entity_id)
    accounts = accounts_for(db, entity_id)
    return {
        "accounts": [
            {
                "id": acc.id,
                "plaid_account_id": acc.plaid_account_id,
                "label": acc.label,
                "type": acc.type.value,
                "is_liability": is_liability(acc.type),
                "balance_current": acc.balance_current,
                "balance_display": format_balance(acc.balance_current),
                "institution_name": acc.institution_name,
            }
            for acc in accounts
        ],
        "total_balance": total_balance(accounts),
    }


@app.get("/api/entities/{entity_id}/dashboard")
async def dashboard(entity_id: str, request: Request, db: Session = Depends(get_db)):
    get_entity(db, entity_id)
    date_range = range_from_request(request)
    year_param = request.query_params.get("year")
    comparison_year = None
    if year_param:
        try:
            comparison_year = int(year_param)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid year") from exc

    fetch_range = date_range
    if comparison_year is not None:
        year = year_range(comparison_year)
        fetch_range = DateRange(
            "dashboard", min(date_range.start, year.start), max(date_range.end, year.end)
        )
    workspace, state = await open_workspace(db, entity_id, fetch_range)
    panels = workspace.dashboard(
        DashboardRanges(
            kpis=date_range,
            income_expenses=date_range,
            categories=date_range,
            comparison_year=comparison_year,
        )
    )
    return {
        "period": {
            "slug": date_range.slug,
            "start": date_range.date_from,
            "end": date_range.date_to,
        },
        "fetch": fetch_payload(state),
        "panels": {
            name: {"data": panel.data, "error": panel.error}
            for name, panel in panels.items()
        },
    }


@app.get("/api/entities/{entity_id}/transactions")
async def transactions(entity_id: str, request: Request, db: Session = Depends(get_db)):
    get_entity(db, entity_id)
    date_range = range_from_request(request)
    workspace, state = await open_workspace(db, entity_id, date_range)
    workspace.table.set_filters(filters_from_request(request))
    try:
        page = int(request.query_params.get("page", "1"))
    except ValueError:
        page = 1
    workspace.table.go_to_page(page)
    show_balance = request.query_params.get("running_balance", "true").lower() != "false"
    rows, reliable = workspace.balance_page(enabled=show_balance)

    stored = [
        ReceiptMatch.model_validate(r)
        for r in ReceiptService(db, entity_id).list_recent()
    ]
    receipts = receipts_by_transaction(stored)
    tag_map = workspace.table.tag_map

    items = [
        serialize_transaction(
            row.transaction,
            balance=row.balance,
            tag_ids=tag_map.get(row.transaction.id),
            receipts=receipts.get(row.transaction.id),
        )
        for row in rows
    ]
    groups = [
        {"date": day, "label": date_group_label(day), "ids": [t.id for t in txns]}
        for day, txns in workspace.table.grouped_page().items()
    ]
    totals = workspace.table.totals()
    return {
        "items": items,
        "groups": groups,
        "page": workspace.table.current_page,
        "total_pages": workspace.table.total_pages,
        "filtered_count": len(workspace.table.filtered()),
        "totals": {
            "income": totals.income,
            "expenses": totals.expenses,
            "net": totals.net,
        },
        "running_balance": {"enabled": show_balance, "reliable": reliable},
        "fetch": fetch_payload(state),
    }


@app.get("/api/entities/{entity_id}/transactions/export")
async def export_endpoint(entity_id: str, request: Request, db: Session = Depends(get_db)):
    get_entity(db, entity_id)
    date_range = range_from_request(request)
    workspace, state = await open_workspace(db, entity_id, date_range)
    if state.error:
        raise HTTPException(status_code=502, detail=state.error)
    workspace.table.set_filters(filters_from_request(request))
    ids = [i for i in (request.query_params.get("ids") or "").split(",") if i]
    if ids:
        wanted = set(ids)
        rows = [txn for txn in workspace.table.filtered() if txn.id in wanted]
    else:
        rows = workspace.table.filtered()
    csv_text = export_transactions(rows)
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@app.post("/api/entities/{entity_id}/transactions/bulk")
async def bulk_action(
    entity_id: str,
    payload: BulkActionIn,
    request: Request,
    db: Session = Depends(get_db),
):
    entity = get_entity(db, entity_id)
    require_csrf(request, entity.tenant_id)
    try:
        mutation = BulkMutation(payload.action, payload.category)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if entity_id in _bulk_in_flight:
        raise HTTPException(status_code=409, detail="A bulk action is already running")
    _bulk_in_flight.add(entity_id)
    try:
        workspace, state = await open_workspace(
            db, entity_id, range_from_request(request)
        )
        if state.error:
            raise HTTPException(status_code=502, detail=state.error)
        try:
            result = await workspace.bulk.apply(mutation, payload.ids)
        except BulkOperationInProgress as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
    finally:
        _bulk_in_flight.discard(entity_id)

    if not result.ok:
        raise HTTPException(status_code=502, detail=result.error)
    if result.action == BulkAction.export:
        return StreamingResponse(
            iter([result.export or ""]),
            media_type="text/csv",
            headers={
                "Content-Disposition": f'attachment; filename="{export_filename()}"'
            },
        )
    return {
        "action": result.action.value,
        "requested": result.requested,
        "updated": len(result.stored),
        "merged": result.updated,
        "items": [serialize_transaction(t) for t in result.stored],
    }


@app.patch("/api/transactions/{transaction_id}/category")
async def change_category(
    transaction_id: str,
    payload: CategoryChangeIn,
    request: Request,
    db: Session = Depends(get_db),
):
    txn = db.get(Transaction, transaction_id)
    if not txn:
        raise HTTPException(status_code=404, detail="Transaction not found")
    require_csrf(request, txn.tenant_id)
    workspace = LedgerWorkspace(SQLAlchemyTransactionStore(db))
    workspace.ledger.replace([TransactionRecord.model_validate(txn)])
    updated = await update_category(
        workspace.store, workspace.ledger, transaction_id, payload.category
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return serialize_transaction(updated)


@app.patch("/api/transactions/{transaction_id}/review")
async def review_transaction(
    transaction_id: str,
    payload: ReviewIn,
    request: Request,
    db: Session = Depends(get_db),
):
    txn = db.get(Transaction, transaction_id)
    if not txn:
        raise HTTPException(status_code=404, detail="Transaction not found")
    require_csrf(request, txn.tenant_id)
    workspace = LedgerWorkspace(SQLAlchemyTransactionStore(db))
    workspace.ledger.replace([TransactionRecord.model_validate(txn)])
    side_channel = SideChannel(NotesSyncClient())
    updated = await update_review(
        workspace.store,
        workspace.ledger,
        transaction_id,
        payload.status,
        payload.notes,
        side_channel=side_channel,
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return serialize_transaction(updated)


@app.post("/api/receipts/upload")
def upload_receipt(
    request: Request,
    file: UploadFile = File(...),
    entity_id: str = Form(""),
    tenant_id: str = Form(""),
):
    auth = request.headers.get("authorization", "")
    if not auth.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing authorization header")
    if not entity_id or not tenant_id:
        raise HTTPException(status_code=400, detail="Missing entity_id or tenant_id")
    client = ReceiptUploadClient()
    try:
        match = client.upload(
            filename=file.filename or "receipt",
            content=file.file.read(),
            content_type=file.content_type or "application/octet-stream",
            entity_id=entity_id,
            tenant_id=tenant_id,
            token=auth[len("Bearer ") :],
        )
    except ReceiptUploadError as exc:
        logger.error(f"receipt_upload_failed: entity_id={entity_id} error={exc}")
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    return match


@app.get("/api/entities/{entity_id}/receipts")
def list_receipts(entity_id: str, db: Session = Depends(get_db)):
    get_entity(db, entity_id)
    return [
        ReceiptMatch.model_validate(r)
        for r in ReceiptService(db, entity_id).list_recent()
    ]
