"""
Payroll Component Service

Management of employer-defined salary components and their evaluation for
one employee in one period.

Basic salary, overtime, BPJS and PPh21 are calculated by the engine itself;
their components exist so payslips can label the lines and are never
summed here.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from payroll_engine.models.entities import (
    CalculationType,
    ComponentCategory,
    ComponentType,
    PayrollComponent,
)
from payroll_engine.repositories.base import PayrollRepository
from payroll_engine.services.tax_calculators import round_rupiah
from payroll_engine.utils.error_handling import (
    BusinessRuleException,
    DuplicateEntryException,
    ErrorCode,
    NotFoundException,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Categories whose amounts the engine computes
ENGINE_CATEGORIES = (
    ComponentCategory.BASIC_SALARY,
    ComponentCategory.OVERTIME,
    ComponentCategory.BPJS,
    ComponentCategory.TAX,
)

DEFAULT_SYSTEM_COMPONENTS: List[Dict[str, Any]] = [
    {
        "code": "BASIC",
        "name": "Gaji Pokok",
        "component_type": ComponentType.EARNING,
        "category": ComponentCategory.BASIC_SALARY,
        "is_taxable": True,
        "is_bpjs_base": True,
        "display_order": 0,
    },
    {
        "code": "OVERTIME",
        "name": "Lembur",
        "component_type": ComponentType.EARNING,
        "category": ComponentCategory.OVERTIME,
        "is_taxable": True,
        "display_order": 90,
    },
    {
        "code": "BPJS_KES",
        "name": "BPJS Kesehatan",
        "component_type": ComponentType.DEDUCTION,
        "category": ComponentCategory.BPJS,
        "is_taxable": False,
        "display_order": 100,
    },
    {
        "code": "BPJS_TK",
        "name": "BPJS Ketenagakerjaan",
        "component_type": ComponentType.DEDUCTION,
        "category": ComponentCategory.BPJS,
        "is_taxable": False,
        "display_order": 110,
    },
    {
        "code": "PPH21",
        "name": "PPh Pasal 21",
        "component_type": ComponentType.DEDUCTION,
        "category": ComponentCategory.TAX,
        "is_taxable": False,
        "display_order": 120,
    },
]


@dataclass(frozen=True)
class ComponentBreakdown:
    """Component amounts for one employee, grouped the way the summary needs them."""
    allowances: Decimal = ZERO
    bonuses: Decimal = ZERO
    taxable_earnings: Decimal = ZERO
    bpjs_base_allowances: Decimal = ZERO
    loans: Decimal = ZERO
    other_deductions: Decimal = ZERO
    benefits: Decimal = ZERO
    taxable_benefits: Decimal = ZERO
    lines: Tuple[Mapping[str, Any], ...] = ()


def calculate_employee_components(
    components: List[PayrollComponent],
    base_salary: Decimal,
    employee_amounts: Optional[Mapping[str, Decimal]] = None,
    variables: Optional[Mapping[str, Any]] = None,
) -> ComponentBreakdown:
    """
    Evaluate active components for one employee.

    Args:
        components: The employer's components
        base_salary: Contract base salary used by percentage components
        employee_amounts: Employee-specific amounts keyed by component code;
            codes with no matching component are paid as taxable allowances
        variables: Extra names available to formula components

    Returns:
        ComponentBreakdown
    """
    employee_amounts = dict(employee_amounts or {})
    totals: Dict[str, Decimal] = {
        "allowances": ZERO,
        "bonuses": ZERO,
        "taxable_earnings": ZERO,
        "bpjs_base_allowances": ZERO,
        "loans": ZERO,
        "other_deductions": ZERO,
        "benefits": ZERO,
        "taxable_benefits": ZERO,
    }
    lines = []

    for component in sorted(components, key=lambda c: (c.display_order, c.code)):
        custom = employee_amounts.pop(component.code, None)
        if not component.is_active or component.category in ENGINE_CATEGORIES:
            continue

        amount = component.calculate_amount(base_salary, custom, variables)
        if amount == 0:
            continue

        if component.component_type == ComponentType.EARNING:
            if component.category == ComponentCategory.BONUS:
                totals["bonuses"] += amount
            else:
                totals["allowances"] += amount
            if component.is_taxable:
                totals["taxable_earnings"] += amount
            if component.is_bpjs_base:
                totals["bpjs_base_allowances"] += amount
        elif component.component_type == ComponentType.DEDUCTION:
            if component.category == ComponentCategory.LOAN:
                totals["loans"] += amount
            else:
                totals["other_deductions"] += amount
        else:
            totals["benefits"] += amount
            if component.is_taxable:
                totals["taxable_benefits"] += amount

        lines.append({
            "code": component.code,
            "name": component.name,
            "component_type": component.component_type.value,
            "category": component.category.value,
            "amount": amount,
            "is_taxable": component.is_taxable,
        })

    # Ad-hoc allowances without a component definition
    for code, value in sorted(employee_amounts.items()):
        amount = round_rupiah(Decimal(value))
        if amount <= 0:
            continue
        totals["allowances"] += amount
        totals["taxable_earnings"] += amount
        lines.append({
            "code": code,
            "name": code,
            "component_type": ComponentType.EARNING.value,
            "category": ComponentCategory.ALLOWANCE.value,
            "amount": amount,
            "is_taxable": True,
        })

    return ComponentBreakdown(lines=tuple(lines), **totals)


class PayrollComponentService:
    """CRUD for employer-defined payroll components."""

    def __init__(self, repository: PayrollRepository):
        self.repository = repository

    async def get_component(self, component_id: uuid.UUID) -> PayrollComponent:
        component = await self.repository.get_component(component_id)
        if component is None:
            raise NotFoundException("Payroll component", component_id, code=ErrorCode.COMPONENT_NOT_FOUND)
        return component

    async def list_components(
        self,
        employer_id: uuid.UUID,
        component_type: Optional[ComponentType] = None,
        category: Optional[ComponentCategory] = None,
        is_active: Optional[bool] = None,
    ) -> List[PayrollComponent]:
        return await self.repository.list_components(employer_id, component_type, category, is_active)

    async def create_component(
        self,
        employer_id: uuid.UUID,
        code: str,
        name: str,
        component_type: ComponentType,
        category: ComponentCategory,
        calculation_type: CalculationType = CalculationType.FIXED,
        **options,
    ) -> PayrollComponent:
        code = code.strip().upper()
        if await self.repository.find_component_by_code(employer_id, code):
            raise DuplicateEntryException("Payroll component", "code", code)

        component = PayrollComponent(
            employer_id=employer_id,
            code=code,
            name=name,
            component_type=component_type,
            category=category,
            calculation_type=calculation_type,
            **options,
        )
        component = await self.repository.create_component(component)
        logger.info(f"Created payroll component {code} for employer {employer_id}")
        return component

    async def update_component(self, component_id: uuid.UUID, **changes) -> PayrollComponent:
        component = await self.get_component(component_id)
        if "code" in changes:
            changes["code"] = changes["code"].strip().upper()
            other = await self.repository.find_component_by_code(component.employer_id, changes["code"])
            if other is not None and other.id != component.id:
                raise DuplicateEntryException("Payroll component", "code", changes["code"])
        return await self.repository.update_component(component.update(**changes))

    async def activate_component(self, component_id: uuid.UUID) -> PayrollComponent:
        component = await self.get_component(component_id)
        return await self.repository.update_component(component.activate())

    async def deactivate_component(self, component_id: uuid.UUID) -> PayrollComponent:
        component = await self.get_component(component_id)
        return await self.repository.update_component(component.deactivate())

    async def delete_component(self, component_id: uuid.UUID) -> None:
        component = await self.get_component(component_id)
        if component.is_system_component:
            raise BusinessRuleException(
                message=f"System component '{component.code}' cannot be deleted",
                rule="SYSTEM_COMPONENT_IMMUTABLE",
                code=ErrorCode.CANNOT_DELETE,
            )
        await self.repository.delete_component(component_id)
        logger.info(f"Deleted payroll component {component.code}")

    async def seed_default_components(self, employer_id: uuid.UUID) -> List[PayrollComponent]:
        """Create the system components an employer is missing."""
        created = []
        for definition in DEFAULT_SYSTEM_COMPONENTS:
            if await self.repository.find_component_by_code(employer_id, definition["code"]):
                continue
            component = PayrollComponent(
                employer_id=employer_id,
                is_system_component=True,
                **definition,
            )
            created.append(await self.repository.create_component(component))
        if created:
            logger.info(f"Seeded {len(created)} system payroll components for employer {employer_id}")
        return created
