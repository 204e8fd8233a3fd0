import logging

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from models import Space
from recurrence import local_now, process_space_now
from scheduler import SchedulerManager
from services import BudgetService, ExpenseService, MoneyAccountService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Budgit")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def current_space(space_id: int, db: Session = Depends(get_db)) -> Space:
    space = db.get(Space, space_id)
    if not space:
        raise HTTPException(status_code=404, detail="Space not found")
    # Bring recurring rules current so the numbers below include anything a
    # missed tick would have posted.
    process_space_now(db, space.id, local_now())
    return space


@app.get("/spaces/{space_id}/balance")
def space_balance(space: Space = Depends(current_space), db: Session = Depends(get_db)):
    accounts = MoneyAccountService(db, space.id)
    balance = ExpenseService(db, space.id).balance()
    allocated = accounts.total_allocated()
    return {
        "space_id": space.id,
        "balance_cents": balance,
        "allocated_cents": allocated,
        "available_cents": balance - allocated,
        "accounts": [
            {
                "id": row.account.id,
                "name": row.account.name,
                "balance_cents": row.balance_cents,
            }
            for row in accounts.list_with_balances()
        ],
    }


@app.get("/spaces/{space_id}/budgets")
def space_budgets(space: Space = Depends(current_space), db: Session = Depends(get_db)):
    rows = BudgetService(db, space.id).budgets_with_spent(local_now())
    return [
        {
            "id": row.budget.id,
            "tags": [tag.name for tag in row.budget.tags],
            "period": row.budget.period.value,
            "period_start": row.period.start.isoformat(),
            "period_end": row.period.end.isoformat(),
            "amount_cents": row.budget.amount_cents,
            "spent_cents": row.spent_cents,
            "remaining_cents": row.remaining_cents,
            "percentage": round(row.percentage, 2),
            "status": row.status.value,
        }
        for row in rows
    ]
