import logging
from datetime import date
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, init_db
from models import (
    CategoryType,
    RecurringStatus,
    RecurringType,
    TransactionStatus,
    TransactionType,
)
from periods import parse_month
from recurrence import local_today
from schemas import (
    AccountIn,
    AccountOut,
    AccountUpdate,
    AttachmentOut,
    AuthOut,
    BillOut,
    BillPaymentIn,
    BillUndoIn,
    BudgetIn,
    BudgetOut,
    BudgetUpdate,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    LoginIn,
    NotificationOut,
    RecurringExpenseIn,
    RecurringExpenseOut,
    RecurringExpenseUpdate,
    RecurringSummaryOut,
    RegisterIn,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
    UserIn,
    UserOut,
    UserUpdate,
)
from seed import seed_defaults
from services import (
    AccountService,
    AttachmentService,
    AuthenticationError,
    AuthService,
    BudgetService,
    CategoryService,
    ConflictError,
    DashboardService,
    NotFoundError,
    NotificationService,
    RecurringExpenseService,
    TransactionFilters,
    TransactionService,
    UserService,
)
from uploads import UploadService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
settings = get_settings()

app = FastAPI(title="FinControl")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.frontend_origins or ["*"],
    allow_credentials=bool(settings.frontend_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)
app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
templates = Jinja2Templates(directory=BASE_DIR / "templates")

upload_service = UploadService(settings)
if not upload_service.is_cloudinary:
    settings.upload_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_upload_service() -> UploadService:
    return upload_service


@app.on_event("startup")
def startup_event():
    init_db()
    with SessionLocal() as session:
        seed_defaults(session)
    logger.info(f"startup: upload_mode={upload_service.mode}")


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, AuthenticationError):
        return HTTPException(status_code=401, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def render(request: Request, template: str, context: dict[str, object]) -> HTMLResponse:
    return templates.TemplateResponse(request, template, context)


@app.get("/", response_class=HTMLResponse)
def dashboard_page(request: Request, db: Session = Depends(get_db)):
    today = local_today()
    return render(
        request,
        "dashboard.html",
        {
            "month": parse_month(None, today=today).slug,
            "accounts": AccountService(db).list_all(include_inactive=False),
            "categories": CategoryService(db).list_all(),
            "unread": len(NotificationService(db).list_all(unread_only=True)),
        },
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/dashboard")
def dashboard_data(db: Session = Depends(get_db)):
    return DashboardService(db).get_data()


# Accounts


@app.post("/accounts", response_model=AccountOut, status_code=201)
def create_account(payload: AccountIn, db: Session = Depends(get_db)):
    return AccountService(db).create(payload)


@app.get("/accounts", response_model=list[AccountOut])
def list_accounts(db: Session = Depends(get_db)):
    return AccountService(db).list_all()


@app.get("/accounts/{account_id}", response_model=AccountOut)
def get_account(account_id: int, db: Session = Depends(get_db)):
    try:
        return AccountService(db).get(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/accounts/{account_id}", response_model=AccountOut)
def update_account(account_id: int, payload: AccountUpdate, db: Session = Depends(get_db)):
    try:
        return AccountService(db).update(account_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/accounts/{account_id}", status_code=204)
def delete_account(account_id: int, db: Session = Depends(get_db)):
    try:
        AccountService(db).delete(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/accounts/{account_id}/recalculate", response_model=AccountOut)
def recalculate_account(account_id: int, db: Session = Depends(get_db)):
    try:
        return AccountService(db).recalculate(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc


# Categories


@app.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/categories", response_model=list[CategoryOut])
def list_categories(
    type: Optional[CategoryType] = None, db: Session = Depends(get_db)
):
    return CategoryService(db).list_all(type)


@app.get("/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).get(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int, payload: CategoryUpdate, db: Session = Depends(get_db)
):
    try:
        return CategoryService(db).update(category_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Transactions


@app.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(payload: TransactionIn, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    account_id: Optional[int] = None,
    category_id: Optional[int] = None,
    parent_transaction_id: Optional[int] = None,
    date_from: Optional[date] = Query(default=None, alias="from"),
    date_to: Optional[date] = Query(default=None, alias="to"),
    db: Session = Depends(get_db),
):
    filters = TransactionFilters(
        type=type,
        status=status,
        account_id=account_id,
        category_id=category_id,
        parent_transaction_id=parent_transaction_id,
        date_from=date_from,
        date_to=date_to,
    )
    return TransactionService(db).list_all(filters)


@app.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).get(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int, payload: TransactionUpdate, db: Session = Depends(get_db)
):
    try:
        return TransactionService(db).update(transaction_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch("/transactions/{transaction_id}/pay", response_model=TransactionOut)
def pay_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).pay(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    uploads: UploadService = Depends(get_upload_service),
):
    try:
        TransactionService(db, uploads=uploads).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Budgets


@app.post("/budgets", response_model=BudgetOut, status_code=201)
def create_budget(payload: BudgetIn, db: Session = Depends(get_db)):
    service = BudgetService(db)
    try:
        return service.to_out(service.create(payload))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/budgets", response_model=list[BudgetOut])
def list_budgets(active_only: bool = False, db: Session = Depends(get_db)):
    service = BudgetService(db)
    return [service.to_out(budget) for budget in service.list_all(active_only)]


@app.get("/budgets/{budget_id}", response_model=BudgetOut)
def get_budget(budget_id: int, db: Session = Depends(get_db)):
    service = BudgetService(db)
    try:
        return service.to_out(service.get(budget_id))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(budget_id: int, payload: BudgetUpdate, db: Session = Depends(get_db)):
    service = BudgetService(db)
    try:
        return service.to_out(service.update(budget_id, payload))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/budgets/{budget_id}", status_code=204)
def delete_budget(budget_id: int, db: Session = Depends(get_db)):
    try:
        BudgetService(db).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Recurring expenses and bills


@app.post("/recurring-expenses", response_model=RecurringExpenseOut, status_code=201)
def create_recurring_expense(payload: RecurringExpenseIn, db: Session = Depends(get_db)):
    try:
        return RecurringExpenseService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/recurring-expenses", response_model=list[RecurringExpenseOut])
def list_recurring_expenses(
    type: Optional[RecurringType] = None,
    status: Optional[RecurringStatus] = None,
    db: Session = Depends(get_db),
):
    return RecurringExpenseService(db).list_all(type, status)


@app.get("/recurring-expenses/summary", response_model=RecurringSummaryOut)
def recurring_summary(db: Session = Depends(get_db)):
    return RecurringExpenseService(db).summary()


@app.get("/recurring-expenses/bills", response_model=list[BillOut])
def recurring_bills(month: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        return RecurringExpenseService(db).bills(month)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/recurring-expenses/{expense_id}", response_model=RecurringExpenseOut)
def get_recurring_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        return RecurringExpenseService(db).get(expense_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/recurring-expenses/{expense_id}", response_model=RecurringExpenseOut)
def update_recurring_expense(
    expense_id: int, payload: RecurringExpenseUpdate, db: Session = Depends(get_db)
):
    try:
        return RecurringExpenseService(db).update(expense_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/recurring-expenses/{expense_id}", status_code=204)
def delete_recurring_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        RecurringExpenseService(db).delete(expense_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post(
    "/recurring-expenses/{expense_id}/pay",
    response_model=TransactionOut,
    status_code=201,
)
def pay_recurring_expense(
    expense_id: int, payload: BillPaymentIn, db: Session = Depends(get_db)
):
    try:
        txn = RecurringExpenseService(db).pay_bill(expense_id, payload)
        return TransactionService(db).get(txn.id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post(
    "/recurring-expenses/{expense_id}/undo-pay", response_model=RecurringExpenseOut
)
def undo_recurring_payment(
    expense_id: int, payload: BillUndoIn, db: Session = Depends(get_db)
):
    try:
        return RecurringExpenseService(db).undo_pay(expense_id, payload.month)
    except ValueError as exc:
        raise http_error(exc) from exc


# Notifications


@app.get("/notifications", response_model=list[NotificationOut])
def list_notifications(unread_only: bool = False, db: Session = Depends(get_db)):
    return NotificationService(db).list_all(unread_only)


@app.post("/notifications/read-all")
def read_all_notifications(db: Session = Depends(get_db)):
    return {"updated": NotificationService(db).mark_all_read()}


@app.get("/notifications/{notification_id}", response_model=NotificationOut)
def get_notification(notification_id: int, db: Session = Depends(get_db)):
    try:
        return NotificationService(db).get(notification_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch("/notifications/{notification_id}/read", response_model=NotificationOut)
def read_notification(notification_id: int, db: Session = Depends(get_db)):
    try:
        return NotificationService(db).mark_read(notification_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/notifications/{notification_id}", status_code=204)
def delete_notification(notification_id: int, db: Session = Depends(get_db)):
    try:
        NotificationService(db).delete(notification_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Attachments


@app.get(
    "/attachments/transaction/{transaction_id}", response_model=list[AttachmentOut]
)
def list_attachments(
    transaction_id: int,
    db: Session = Depends(get_db),
    uploads: UploadService = Depends(get_upload_service),
):
    try:
        return AttachmentService(db, uploads).list_for_transaction(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post(
    "/attachments/transaction/{transaction_id}",
    response_model=AttachmentOut,
    status_code=201,
)
async def upload_attachment(
    transaction_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    uploads: UploadService = Depends(get_upload_service),
):
    content = await file.read()
    try:
        return AttachmentService(db, uploads).create(
            transaction_id, content, file.filename or "file", file.content_type
        )
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/attachments/{attachment_id}", response_model=AttachmentOut)
def get_attachment(
    attachment_id: int,
    db: Session = Depends(get_db),
    uploads: UploadService = Depends(get_upload_service),
):
    try:
        return AttachmentService(db, uploads).get(attachment_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/attachments/{attachment_id}", status_code=204)
def delete_attachment(
    attachment_id: int,
    db: Session = Depends(get_db),
    uploads: UploadService = Depends(get_upload_service),
):
    try:
        AttachmentService(db, uploads).delete(attachment_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Users and auth


@app.post("/users", response_model=UserOut, status_code=201)
def create_user(payload: UserIn, db: Session = Depends(get_db)):
    try:
        return UserService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/users", response_model=list[UserOut])
def list_users(db: Session = Depends(get_db)):
    return UserService(db).list_all()


@app.get("/users/{user_id}", response_model=UserOut)
def get_user(user_id: int, db: Session = Depends(get_db)):
    try:
        return UserService(db).get(user_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/users/{user_id}", response_model=UserOut)
def update_user(user_id: int, payload: UserUpdate, db: Session = Depends(get_db)):
    try:
        return UserService(db).update(user_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/users/{user_id}", status_code=204)
def delete_user(user_id: int, db: Session = Depends(get_db)):
    try:
        UserService(db).delete(user_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/users/{user_id}/avatar", response_model=UserOut)
async def upload_avatar(
    user_id: int,
    avatar: UploadFile = File(...),
    db: Session = Depends(get_db),
    uploads: UploadService = Depends(get_upload_service),
):
    content = await avatar.read()
    try:
        return UserService(db).set_avatar(
            user_id, content, avatar.filename or "", uploads
        )
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/auth/register", response_model=AuthOut, status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    try:
        user = AuthService(db).register(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return AuthOut(user=UserOut.model_validate(user))


@app.post("/auth/login", response_model=AuthOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    try:
        user = AuthService(db).login(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return AuthOut(user=UserOut.model_validate(user))


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
