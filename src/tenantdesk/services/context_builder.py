from __future__ import annotations

"""Turn a recipient's portfolio into the context block fed to the assistant.

The output is not size-capped here; :class:`AIQueryClient` applies the cap so
that every caller gets the same budget.
"""

from typing import Dict, List, Optional

from ..domain.portfolio import PortfolioSnapshot


def _money(value: Optional[float]) -> str:
    if value is None:
        return "$N/A"
    if float(value).is_integer():
        return f"${int(value)}"
    return f"${value:.2f}"


def build_portfolio_context(snapshot: PortfolioSnapshot) -> str:
    account = snapshot.account
    lines: List[str] = ["=== USER ACCOUNT INFO ==="]
    lines.append(f"• Phone Number: {account.phone_number}")
    lines.append(f"• Profile Name: {account.profile_name or 'N/A'}")
    lines.append(f"• Subscription: {account.subscription or 'N/A'}")
    lines.append(f"• Verified: {'Yes' if account.verified else 'No'}")
    if account.verified_date:
        lines.append(f"• Verified Date: {account.verified_date}")
    lines.append("")

    lines.append("=== PROPERTIES ===")
    property_names: Dict[str, str] = {}
    for prop in snapshot.properties:
        property_names[prop.id] = prop.name
        units = prop.units if prop.units is not None else "?"
        lines.append(
            f'• "{prop.name}" at {prop.address or "N/A"}, {units} unit(s), total {_money(prop.total_amount)}'
        )
    lines.append("")

    lines.append("=== UNITS ===")
    unit_numbers: Dict[str, str] = {}
    for unit in snapshot.units:
        unit_numbers[unit.id] = unit.unit_number
        owner = property_names.get(unit.property_id or "", "Unknown")
        lines.append(f'• Unit "{unit.unit_number}", belongs to "{owner}", rent: {_money(unit.rent_amount)}')
    lines.append("")

    lines.append("=== TENANTS ===")
    for tenant in snapshot.tenants:
        assigned = unit_numbers.get(tenant.unit_id or "", "None")
        lines.append(
            f'• Tenant "{tenant.name}", monthly rent: {_money(tenant.rent_amount)}, assigned to {assigned}'
        )
    lines.append("")
    return "\n".join(lines)
