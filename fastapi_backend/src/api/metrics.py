"""Dashboard and portfolio aggregations over rows already loaded from the database."""
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

_CENTS = Decimal("0.01")


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0))


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# PUBLIC_INTERFACE
def entrepreneur_metrics(
    projects: Iterable[Mapping[str, Any]],
    raised_by_project: Mapping[int, Any],
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Headline numbers for an entrepreneur's dashboard."""
    today = today or date.today()
    projects = list(projects)

    active = 0
    funded = 0
    total = Decimal("0")
    for p in projects:
        raised = _money(raised_by_project.get(p["id"]))
        total += raised
        if _as_date(p["end_date"]) >= today:
            active += 1
        if raised >= _money(p["funding_goal"]):
            funded += 1

    return {
        "totalProjects": len(projects),
        "activeProjects": active,
        "fundedProjects": funded,
        "totalFunding": total,
    }


# PUBLIC_INTERFACE
def recent_projects(projects: Iterable[Mapping[str, Any]], limit: int = 5) -> List[Mapping[str, Any]]:
    """Newest projects first, capped at ``limit``."""
    return sorted(projects, key=lambda p: p["created_at"], reverse=True)[:limit]


def _counted(investments: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    # Cancelled investments never count toward totals.
    return [i for i in investments if i.get("investment_status") != "cancelled"]


def _percent(part: Decimal, goal: Decimal) -> Decimal:
    share = part * 100 / goal if goal > 0 else Decimal("0")
    return share.quantize(_CENTS, ROUND_HALF_UP)


# PUBLIC_INTERFACE
def investment_summary(investments: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    investments = _counted(investments)
    total = sum((_money(i["investment_amount"]) for i in investments), Decimal("0"))
    average = (total / len(investments)).quantize(_CENTS, ROUND_HALF_UP) if investments else Decimal("0")
    return {
        "total_invested": total,
        "investment_count": len(investments),
        "active_investments": sum(1 for i in investments if i.get("investment_status") == "active"),
        "projects_backed": len({i["project_id"] for i in investments}),
        "average_investment": average,
    }


# PUBLIC_INTERFACE
def build_portfolio(investments: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """
    Group an investor's investments by project.

    Each row must carry the joined project columns ``title``, ``category``,
    ``funding_goal``, ``end_date`` and the owner's ``user_id``, plus the
    project-wide aggregates ``current_funding`` (raised from all investors)
    and ``total_investors``. ``percent_of_goal`` is the investor's own
    contribution as a share of the goal; ``funding_progress`` is
    ``current_funding`` as a share of it. Items are ordered by most recent
    investment first.
    """
    grouped: Dict[int, Dict[str, Any]] = {}
    for inv in _counted(investments):
        item = grouped.get(inv["project_id"])
        if item is None:
            item = grouped[inv["project_id"]] = {
                "project_id": inv["project_id"],
                "user_id": inv["user_id"],
                "title": inv["title"],
                "category": inv["category"],
                "funding_goal": _money(inv["funding_goal"]),
                "end_date": _as_date(inv["end_date"]),
                "current_funding": _money(inv.get("current_funding")),
                "total_investors": int(inv.get("total_investors") or 0),
                "investment_amount": Decimal("0"),
                "investment_count": 0,
                "last_investment_date": inv["investment_date"],
            }
        item["investment_amount"] += _money(inv["investment_amount"])
        item["investment_count"] += 1
        if inv["investment_date"] > item["last_investment_date"]:
            item["last_investment_date"] = inv["investment_date"]

    for item in grouped.values():
        item["percent_of_goal"] = _percent(item["investment_amount"], item["funding_goal"])
        item["funding_progress"] = _percent(item["current_funding"], item["funding_goal"])

    return sorted(grouped.values(), key=lambda i: i["last_investment_date"], reverse=True)
