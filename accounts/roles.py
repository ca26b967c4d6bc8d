"""
Role and capability model.

Every role check in the project goes through the predicates in this
module; views, permission classes and the route middleware never keep
their own role lists.  All functions are pure: the same role always
yields the same answer, and anything that is not a known role (``None``,
an empty string, a misspelling) is denied.
"""
from __future__ import annotations

from typing import Iterable, Optional

from django.db import models


class Role(models.TextChoices):
    SUPERADMIN = "superadmin", "Super Administrator"
    DOCTOR = "doctor", "Doctor"
    NURSE = "nurse", "Nurse"
    RECEPTIONIST = "receptionist", "Receptionist"
    LAB_TECH = "lab_tech", "Lab Technician"
    PHARMACIST = "pharmacist", "Pharmacist"
    ACCOUNTANT = "accountant", "Accountant"
    PATIENT = "patient", "Patient"


class Status(models.TextChoices):
    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"
    SUSPENDED = "suspended", "Suspended"
    PENDING = "pending", "Pending approval"


STAFF_ROLES = frozenset({
    Role.SUPERADMIN,
    Role.DOCTOR,
    Role.NURSE,
    Role.RECEPTIONIST,
    Role.LAB_TECH,
    Role.PHARMACIST,
    Role.ACCOUNTANT,
})
CLINICAL_ROLES = frozenset({Role.SUPERADMIN, Role.DOCTOR, Role.NURSE})

# Roles a visitor may pick on the signup page; superadmin only comes from setup.
SIGNUP_ROLES = frozenset(Role) - {Role.SUPERADMIN}

VIEW_PATIENTS = "view_patients"
EDIT_PATIENTS = "edit_patients"
MANAGE_USERS = "manage_users"
VIEW_FINANCIALS = "view_financials"
MANAGE_FINANCIALS = "manage_financials"

CAPABILITIES: dict[str, frozenset[Role]] = {
    VIEW_PATIENTS: frozenset({Role.SUPERADMIN, Role.DOCTOR, Role.NURSE, Role.RECEPTIONIST, Role.LAB_TECH}),
    EDIT_PATIENTS: frozenset({Role.SUPERADMIN, Role.DOCTOR, Role.NURSE, Role.RECEPTIONIST}),
    MANAGE_USERS: frozenset({Role.SUPERADMIN}),
    VIEW_FINANCIALS: frozenset({Role.SUPERADMIN, Role.ACCOUNTANT, Role.RECEPTIONIST}),
    MANAGE_FINANCIALS: frozenset({Role.SUPERADMIN, Role.ACCOUNTANT}),
}

LANDING_PAGES = {
    Role.SUPERADMIN: "/superadmin",
    Role.PATIENT: "/patient",
}
STAFF_LANDING_PAGE = "/dashboard"


def parse_role(value: object) -> Optional[Role]:
    """Return the :class:`Role` for ``value`` or ``None`` if it is not one."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value)
    except ValueError:
        return None


def has_permission(role: object, required_roles: Iterable[object]) -> bool:
    """Return True if ``role`` is a known role listed in ``required_roles``."""
    parsed = parse_role(role)
    if parsed is None:
        return False
    return parsed in {parse_role(r) for r in required_roles}


def can(role: object, capability: str) -> bool:
    parsed = parse_role(role)
    if parsed is None:
        return False
    return parsed in CAPABILITIES.get(capability, frozenset())


def capabilities_for(role: object) -> dict[str, bool]:
    """Return every capability flag for ``role``; unknown roles get all False."""
    return {name: can(role, name) for name in CAPABILITIES}


def can_view_patient_data(role: object) -> bool:
    return can(role, VIEW_PATIENTS)


def can_edit_patient_data(role: object) -> bool:
    return can(role, EDIT_PATIENTS)


def can_manage_users(role: object) -> bool:
    return can(role, MANAGE_USERS)


def can_view_financials(role: object) -> bool:
    return can(role, VIEW_FINANCIALS)


def can_manage_financials(role: object) -> bool:
    return can(role, MANAGE_FINANCIALS)


def landing_page_for(role: object) -> str:
    """Where a signed-in principal lands after login or when visiting ``/``."""
    return LANDING_PAGES.get(parse_role(role), STAFF_LANDING_PAGE)
