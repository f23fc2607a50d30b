"""
Named default commission splits, keyed by role type.
Each template sums to 100.
"""

from decimal import Decimal

from residuals.errors import InvalidRequestError
from residuals.models.enums import RoleType
from residuals.schemas.assignments import AssignmentTemplate, RoleSplit, TemplateSplit

ASSIGNMENT_TEMPLATES: dict[str, list[tuple[RoleType, Decimal]]] = {
    "Standard Sales Split": [
        (RoleType.AGENT, Decimal("60")),
        (RoleType.SALES_MANAGER, Decimal("25")),
        (RoleType.PARTNER, Decimal("15")),
    ],
    "High Performer Split": [
        (RoleType.AGENT, Decimal("70")),
        (RoleType.SALES_MANAGER, Decimal("20")),
        (RoleType.COMPANY, Decimal("10")),
    ],
    "Team Leader Split": [
        (RoleType.AGENT, Decimal("50")),
        (RoleType.SALES_MANAGER, Decimal("30")),
        (RoleType.PARTNER, Decimal("15")),
        (RoleType.ASSOCIATION, Decimal("5")),
    ],
    "New Agent Split": [
        (RoleType.AGENT, Decimal("40")),
        (RoleType.SALES_MANAGER, Decimal("35")),
        (RoleType.PARTNER, Decimal("25")),
    ],
}


def list_templates() -> list[AssignmentTemplate]:
    return [
        AssignmentTemplate(
            name=name,
            splits=[TemplateSplit(role_type=role_type.value, percentage=pct) for role_type, pct in splits],
        )
        for name, splits in ASSIGNMENT_TEMPLATES.items()
    ]


def resolve_template(name: str, role_ids_by_type: dict[str, int]) -> list[RoleSplit]:
    """
    Turn a template into concrete role splits.
    role_ids_by_type maps a role type ("agent", "partner", ...) to the role
    receiving that share for the merchants being assigned.
    """
    if name not in ASSIGNMENT_TEMPLATES:
        raise InvalidRequestError(f"Unknown assignment template '{name}'")

    splits = []
    missing = []
    for role_type, pct in ASSIGNMENT_TEMPLATES[name]:
        role_id = role_ids_by_type.get(role_type.value)
        if role_id is None:
            missing.append(role_type.value)
            continue
        splits.append(RoleSplit(role_id=role_id, percentage=pct))
    if missing:
        raise InvalidRequestError(f"Template '{name}' needs roles for: {', '.join(missing)}")
    return splits
