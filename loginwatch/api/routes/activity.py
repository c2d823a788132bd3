"""Login activity routes: audit log listing and lockout state."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import case, extract, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...dependencies import get_auth_gate, get_current_user, get_db
from ...engine.auth_gate import AuthGate
from ...engine.identity import unpack_address
from ...models.login_activity import STATUS_FAILURE, STATUS_SUCCESS, LoginActivity
from ...utils.logging import get_logger

logger = get_logger("api.activity")

router = APIRouter(prefix="/activity", tags=["activity"])

MAX_SEARCH_LENGTH = 100

SORTABLE_COLUMNS = {
    "login": LoginActivity.login,
    "ip": LoginActivity.ip,
    "status": LoginActivity.status,
    "log_date": LoginActivity.log_date,
    "id": LoginActivity.id,
}

STATUS_FILTERS = {
    "success": STATUS_SUCCESS,
    "failure": STATUS_FAILURE,
}


def _month_range(date: str | None) -> tuple[datetime, datetime] | None:
    """Parse ``YYYY-MM`` into a half-open [start, end) range. Invalid input yields None."""
    if not date or "-" not in date:
        return None
    year_raw, month_raw = date.strip().split("-", 1)
    try:
        year, month = int(year_raw), int(month_raw)
    except ValueError:
        return None
    if not 1 <= year <= 9998 or not 1 <= month <= 12:
        return None
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def _conditions(search: str | None, date: str | None, status: str | None = None) -> list:
    conditions = []
    term = (search or "").strip()[:MAX_SEARCH_LENGTH]
    if term:
        conditions.append(LoginActivity.login.contains(term, autoescape=True))
    if status in STATUS_FILTERS:
        conditions.append(LoginActivity.status == STATUS_FILTERS[status])
    month = _month_range(date)
    if month:
        conditions.append(LoginActivity.log_date >= month[0])
        conditions.append(LoginActivity.log_date < month[1])
    return conditions


def _serialize(row: LoginActivity) -> dict:
    return {
        "id": row.id,
        "login": row.login,
        "ip": unpack_address(row.ip),
        "status": "success" if row.status == STATUS_SUCCESS else "failure",
        "log_date": row.log_date.isoformat(),
    }


@router.get("/logs")
async def get_activity_logs(
    search: str | None = None,
    status: str | None = None,
    date: str | None = None,
    orderby: str = "log_date",
    order: str = "desc",
    page: int = Query(1, ge=1),
    per_page: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """List login attempts with filtering, sorting, and pagination."""
    conditions = _conditions(search, date, status)

    column = SORTABLE_COLUMNS.get(orderby, LoginActivity.log_date)
    direction = column.asc() if order.lower() == "asc" else column.desc()

    total = (
        await db.execute(select(func.count()).select_from(LoginActivity).where(*conditions))
    ).scalar_one()

    query = (
        select(LoginActivity)
        .where(*conditions)
        .order_by(direction, LoginActivity.id.desc())
        .limit(per_page)
        .offset((page - 1) * per_page)
    )
    rows = (await db.execute(query)).scalars().all()

    return {
        "items": [_serialize(r) for r in rows],
        "total": total,
        "page": page,
        "per_page": per_page,
    }


@router.get("/counts")
async def get_activity_counts(
    search: str | None = None,
    date: str | None = None,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """Totals of all, successful, and failed attempts for the search/date filters."""
    query = select(
        func.count(),
        func.coalesce(func.sum(case((LoginActivity.status == STATUS_SUCCESS, 1), else_=0)), 0),
        func.coalesce(func.sum(case((LoginActivity.status == STATUS_FAILURE, 1), else_=0)), 0),
    ).where(*_conditions(search, date))

    total, successes, failures = (await db.execute(query)).one()
    return {"total": total, "successes": successes, "failures": failures}


@router.get("/months")
async def get_activity_months(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """Distinct year/month pairs with recorded activity, newest first."""
    year = extract("year", LoginActivity.log_date).label("year")
    month = extract("month", LoginActivity.log_date).label("month")
    query = select(year, month).distinct().order_by(year.desc(), month.desc())

    rows = (await db.execute(query)).all()
    return [{"year": int(r.year), "month": int(r.month)} for r in rows if r.year]


@router.get("/lockouts")
async def get_lockout_state(
    username: str | None = None,
    address: str | None = None,
    gate: AuthGate = Depends(get_auth_gate),
    current_user: dict = Depends(get_current_user),
):
    """Current lockout state per scope. Disabled scopes are reported as null."""
    identity = gate.resolve_identity(username, address)
    state: dict[str, dict | None] = {"ip": None, "user": None}

    for scope, value in identity.scopes():
        locked, unlock_at = await gate.limiter.is_blocked(scope, value)
        state[scope.value] = {
            "locked": locked,
            "unlock_at": unlock_at,
            "attempts": await gate.limiter.attempts(scope, value),
        }
    return state


@router.delete("/lockouts")
async def clear_lockout(
    username: str | None = None,
    address: str | None = None,
    gate: AuthGate = Depends(get_auth_gate),
    current_user: dict = Depends(get_current_user),
):
    """Clear counters and locks for the given identities."""
    identity = gate.resolve_identity(username, address)
    cleared = []
    for scope, value in identity.scopes():
        await gate.limiter.record_success(scope, value)
        cleared.append(scope.value)

    logger.info("lockout_cleared", scopes=cleared, actor=current_user.get("sub"))
    return {"cleared": cleared}
