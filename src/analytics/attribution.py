from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from src.models.performance import Employee, EmployeeReference, EventKind, RawEvent

PLACEHOLDER_NAMES = frozenset({"", "---", "--", "-", "not assigned", "none", "null", "unassigned"})

Attribution = Tuple[Optional[int], Optional[int]]
Resolver = Callable[[RawEvent, "EmployeeIndex"], Optional[Employee]]


def normalize_name(value: str) -> str:
    return " ".join(value.split()).lower()


def parse_employee_id(value: Optional[EmployeeReference]) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.isdecimal():
        return int(text)
    return None


def is_placeholder(value: Optional[EmployeeReference]) -> bool:
    if value is None:
        return True
    if isinstance(value, int):
        return False
    return normalize_name(str(value)) in PLACEHOLDER_NAMES


class EmployeeIndex:
    def __init__(self, employees: Iterable[Employee] = ()) -> None:
        self._by_id: Dict[int, Employee] = {}
        self._by_name: Dict[str, Employee] = {}
        for employee in employees:
            self.add(employee)

    def add(self, employee: Employee) -> None:
        self._by_id[employee.id] = employee
        name_key = normalize_name(employee.display_name)
        if name_key and name_key not in PLACEHOLDER_NAMES:
            self._by_name.setdefault(name_key, employee)

    def __len__(self) -> int:
        return len(self._by_id)

    def by_id(self, employee_id: Optional[int]) -> Optional[Employee]:
        if employee_id is None:
            return None
        return self._by_id.get(employee_id)

    def by_name(self, display_name: Optional[str]) -> Optional[Employee]:
        if not display_name:
            return None
        return self._by_name.get(normalize_name(display_name))

    def lookup(self, value: Optional[EmployeeReference]) -> Optional[Employee]:
        """Numeric values are ids; anything else is a display name."""
        if is_placeholder(value):
            return None
        employee_id = parse_employee_id(value)
        if employee_id is not None:
            return self.by_id(employee_id)
        return self.by_name(str(value))


def explicit_attributee(event: RawEvent, index: EmployeeIndex) -> Optional[Employee]:
    return index.by_id(event.explicit_attributee_id)


def subject_field(role: str) -> Resolver:
    def resolve(event: RawEvent, index: EmployeeIndex) -> Optional[Employee]:
        return index.lookup(event.subject_attribute_fields.get(role))

    resolve.__name__ = f"subject_field_{role}"
    return resolve


ATTRIBUTION_CHAINS: Dict[EventKind, List[Resolver]] = {
    EventKind.AGREEMENT_SIGNED: [
        explicit_attributee,
        subject_field("closer"),
        subject_field("manager"),
        subject_field("scheduler"),
    ],
    EventKind.PAYMENT_INVOICED: [
        explicit_attributee,
        subject_field("finance_sender"),
        subject_field("handler"),
        subject_field("closer"),
    ],
    EventKind.HANDLING_MILESTONE: [
        explicit_attributee,
        subject_field("handler"),
    ],
    EventKind.SCHEDULING_MILESTONE: [
        explicit_attributee,
        subject_field("scheduler"),
        subject_field("manager"),
    ],
}


def resolve_attribution(event: RawEvent, index: EmployeeIndex) -> Attribution:
    """Return (employee_id, department_id); (None, None) when nobody matches."""
    for resolver in ATTRIBUTION_CHAINS.get(event.event_kind, [explicit_attributee]):
        employee = resolver(event, index)
        if employee is not None:
            return employee.id, employee.department_id
    return None, None


def collect_employee_references(events: Iterable[RawEvent]) -> Tuple[Set[int], Set[str]]:
    """Distinct ids and display names the events point at, for one batched lookup each."""
    employee_ids: Set[int] = set()
    display_names: Set[str] = set()
    for event in events:
        if event.explicit_attributee_id is not None:
            employee_ids.add(event.explicit_attributee_id)
        for value in event.subject_attribute_fields.values():
            if is_placeholder(value):
                continue
            employee_id = parse_employee_id(value)
            if employee_id is not None:
                employee_ids.add(employee_id)
            else:
                display_names.add(" ".join(str(value).split()))
    return employee_ids, display_names
