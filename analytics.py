"""
Reporting aggregates for the admin dashboard.

Everything here is a pure function over entity lists already fetched from a
store, so the same numbers come out whichever backend produced the rows.
``now`` is injectable everywhere for deterministic tests.
"""
import calendar
import logging
import math
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from storage import EntityStore, Record, as_utc, utcnow

logger = logging.getLogger(__name__)

MONTHS_WINDOW = 6
TREND_WINDOW_DAYS = 30
TOP_SERVICES_LIMIT = 5
PROJECT_STATUSES = ["analysis", "design", "backend", "deployment", "completed"]


def _paid(orders: Iterable[Record]) -> List[Record]:
    return [o for o in orders if o.get("payment_status") == "completed"]


def _month_key(value: Optional[datetime]) -> Optional[Tuple[int, int]]:
    value = as_utc(value)
    if value is None:
        return None
    return value.year, value.month


def month_buckets(now: Optional[datetime] = None, count: int = MONTHS_WINDOW) -> List[Tuple[int, int]]:
    """Trailing ``(year, month)`` keys, oldest first, ending at the current month."""
    now = as_utc(now) or utcnow()
    year, month = now.year, now.month
    keys = []
    for _ in range(count):
        keys.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def _label(key: Tuple[int, int]) -> Dict[str, object]:
    year, month = key
    return {"year": year, "month": month, "name": calendar.month_abbr[month]}


def start_of_month(now: Optional[datetime] = None) -> datetime:
    now = as_utc(now) or utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def round_half_up(value: float) -> int:
    # Halves go toward +infinity: 12.5 -> 13, -0.5 -> 0
    return int(math.floor(value + 0.5))


def percentage(part: float, total: float) -> int:
    if not total:
        return 0
    return round_half_up(part / total * 100)


def compute_trend(recent: float, previous: float) -> int:
    if previous > 0:
        trend = (recent - previous) / previous * 100
    elif recent > 0:
        trend = 100
    else:
        trend = 0
    if not math.isfinite(trend):
        return 0
    return round_half_up(trend)


def revenue_by_month(orders: List[Record], now: Optional[datetime] = None) -> List[Record]:
    buckets = {key: 0 for key in month_buckets(now)}
    for order in _paid(orders):
        key = _month_key(order.get("created_at"))
        if key in buckets:
            buckets[key] += order.get("price") or 0
    return [{**_label(key), "revenue": revenue} for key, revenue in buckets.items()]


def orders_by_month(orders: List[Record], now: Optional[datetime] = None) -> List[Record]:
    buckets = {key: {"total": 0, "completed": 0, "pending": 0} for key in month_buckets(now)}
    for order in orders:
        bucket = buckets.get(_month_key(order.get("created_at")))
        if bucket is None:
            continue
        bucket["total"] += 1
        if order.get("payment_status") == "completed":
            bucket["completed"] += 1
        else:
            bucket["pending"] += 1
    return [{**_label(key), **counts} for key, counts in buckets.items()]


def client_growth(clients: List[Record], now: Optional[datetime] = None) -> List[Record]:
    """New clients per month plus a running total within the window."""
    buckets = {key: 0 for key in month_buckets(now)}
    for client in clients:
        key = _month_key(client.get("created_at"))
        if key in buckets:
            buckets[key] += 1
    series = []
    cumulative = 0
    for key, new_clients in buckets.items():
        cumulative += new_clients
        series.append({**_label(key), "new_clients": new_clients, "total_clients": cumulative})
    return series


def revenue_trend(orders: List[Record], now: Optional[datetime] = None) -> Record:
    now = as_utc(now) or utcnow()
    recent_start = now - timedelta(days=TREND_WINDOW_DAYS)
    previous_start = now - timedelta(days=2 * TREND_WINDOW_DAYS)
    recent = previous = 0
    for order in _paid(orders):
        created_at = as_utc(order.get("created_at"))
        if created_at is None:
            continue
        if created_at >= recent_start:
            recent += order.get("price") or 0
        elif created_at >= previous_start:
            previous += order.get("price") or 0
    return {
        "recent_revenue": recent,
        "previous_revenue": previous,
        "revenue_trend": compute_trend(recent, previous),
    }


def top_services(orders: List[Record], limit: int = TOP_SERVICES_LIMIT) -> List[Record]:
    # sorted() is stable: ties keep the order in which services were first seen
    totals: Dict[str, Record] = {}
    for order in orders:
        entry = totals.setdefault(order.get("service_name"), {"count": 0, "revenue": 0})
        entry["count"] += 1
        if order.get("payment_status") == "completed":
            entry["revenue"] += order.get("price") or 0
    ranked = sorted(totals.items(), key=lambda item: item[1]["revenue"], reverse=True)
    return [{"name": name, **data} for name, data in ranked[:limit]]


def projects_by_status(projects: List[Record]) -> List[Record]:
    counts = {status: 0 for status in PROJECT_STATUSES}
    for project in projects:
        counts[project.get("status")] = counts.get(project.get("status"), 0) + 1
    return [{"status": status, "count": count} for status, count in counts.items() if count > 0]


def performance_metrics(orders: List[Record], projects: List[Record], courses: List[Record],
                        students: List[Record], now: Optional[datetime] = None) -> Record:
    paid = _paid(orders)
    revenue = sum(o.get("price") or 0 for o in paid)
    completed_projects = [p for p in projects if p.get("status") == "completed"]
    metrics = {
        "avg_order_value": round_half_up(revenue / len(paid)) if paid else 0,
        "completion_rate": percentage(len(paid), len(orders)),
        "project_completion_rate": percentage(len(completed_projects), len(projects)),
        "active_courses_count": len([c for c in courses if c.get("is_active")]),
        "enrollment_rate": round_half_up(len(students) / len(courses)) if courses and students else 0,
    }
    metrics.update(revenue_trend(orders, now))
    return metrics


def employee_productivity(employees: List[Record], tasks: List[Record]) -> List[Record]:
    by_employee: Dict[str, List[Record]] = {}
    for task in tasks:
        by_employee.setdefault(task.get("employee_id"), []).append(task)
    report = []
    for employee in employees:
        own = by_employee.get(employee["id"], [])
        done = [t for t in own if t.get("is_completed")]
        report.append({
            "employee_id": employee["id"],
            "full_name": employee.get("full_name"),
            "total_tasks": len(own),
            "completed_tasks": len(done),
            "completion_rate": percentage(len(done), len(own)),
            "hours_remaining": sum(t.get("hours_remaining") or 0 for t in own if not t.get("is_completed")),
            "projects": len({t.get("project_id") for t in own}),
        })
    report.sort(key=lambda row: row["completion_rate"], reverse=True)
    return report


def orders_missing_invoice(orders: List[Record], invoices: List[Record]) -> List[Record]:
    """Paid orders that never got an invoice (interrupted two-step payment writes)."""
    invoiced = {inv.get("order_id") for inv in invoices}
    return [o for o in _paid(orders) if o["id"] not in invoiced]


def financial_report(orders: List[Record], invoices: List[Record],
                     now: Optional[datetime] = None) -> Record:
    paid = _paid(orders)
    month_start = start_of_month(now)
    by_method: Dict[str, int] = {}
    for order in paid:
        method = order.get("payment_method") or "unknown"
        by_method[method] = by_method.get(method, 0) + (order.get("price") or 0)
    missing = orders_missing_invoice(orders, invoices)
    if missing:
        logger.warning("%d paid order(s) have no invoice", len(missing))
    return {
        "total_revenue": sum(o.get("price") or 0 for o in paid),
        "pending_revenue": sum(o.get("price") or 0 for o in orders
                               if o.get("payment_status") != "completed"
                               and o.get("status") != "cancelled"),
        "monthly_revenue": sum(o.get("price") or 0 for o in paid
                               if as_utc(o.get("created_at")) and as_utc(o["created_at"]) >= month_start),
        "invoiced_total": sum(inv.get("amount") or 0 for inv in invoices),
        "invoice_count": len(invoices),
        "revenue_by_payment_method": by_method,
        "orders_missing_invoice": [o["id"] for o in missing],
    }


def dashboard_stats(orders: List[Record], students: List[Record], clients: List[Record],
                    projects: List[Record], enrollments: List[Record],
                    now: Optional[datetime] = None) -> Record:
    month_start = start_of_month(now)
    paid = _paid(orders)
    return {
        "total_orders": len(orders),
        "total_students": len(students),
        "total_clients": len(clients),
        "total_projects": len(projects),
        "total_revenue": sum(o.get("price") or 0 for o in paid),
        "monthly_revenue": sum(o.get("price") or 0 for o in paid
                               if as_utc(o.get("created_at")) and as_utc(o["created_at"]) >= month_start),
        "pending_orders": len([o for o in orders if o.get("status") != "completed"]),
        "active_projects": len([p for p in projects if p.get("status") != "completed"]),
        "completed_courses": len([e for e in enrollments if e.get("status") == "completed"]),
    }


def build_report(store: EntityStore, now: Optional[datetime] = None) -> Record:
    """Admin analytics payload assembled from one pass over the store."""
    now = as_utc(now) or utcnow()
    orders = store.list_orders()
    projects = store.list_projects()
    clients = store.list_clients()
    return {
        "stats": store.get_dashboard_stats(now),
        "revenue_by_month": revenue_by_month(orders, now),
        "orders_by_month": orders_by_month(orders, now),
        "client_growth": client_growth(clients, now),
        "projects_by_status": projects_by_status(projects),
        "top_services": top_services(orders),
        "performance": performance_metrics(orders, projects, store.list_courses(),
                                           store.list_students(), now),
        "productivity": employee_productivity(store.list_employees(), store.list_employee_tasks()),
        "financial": financial_report(orders, store.list_invoices(), now),
    }
