"""
Payroll Anomaly Detection Service
Rule-based payroll checks with an optional OpenAI review

Critical rule violations are reported immediately. Otherwise the computed
payroll is sent to OpenAI for a second opinion, and the rule findings are
kept if the model is unavailable.
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from payroll_engine.config import settings
from payroll_engine.models.entities import AnomalyDetail, AnomalySeverity, AnomalyType
from payroll_engine.services.collaborators import (
    AnomalyValidator,
    PayrollValidationContext,
    PayrollValidationResult,
)
from payroll_engine.services.tax_calculators import BPJSCalculator, PPh21Calculator, round_rupiah
from payroll_engine.services.tax_calculators.tax_tables import (
    MAX_OVERTIME_HOURS_PER_DAY,
    MAX_OVERTIME_HOURS_PER_WEEK,
)
from payroll_engine.utils.error_handling import OpenAIAPIException

logger = logging.getLogger(__name__)

# Differences below these are rounding noise
AMOUNT_TOLERANCE = Decimal("100")
NET_PAY_TOLERANCE = Decimal("1")
HISTORICAL_VARIANCE_THRESHOLD = Decimal("0.3")
MIN_HISTORY_PERIODS = 3

RULE_ONLY_CONFIDENCE = Decimal("0.7")
RULE_ONLY_REVIEW = "Rule-based validation only (AI unavailable)"

RECOMMENDATIONS = {
    AnomalyType.CALCULATION_ERROR: "Recalculate the employee's payroll and compare with the statutory tables.",
    AnomalyType.MISSING_DATA: "Complete the employee's master data before approving payroll.",
    AnomalyType.UNUSUAL_AMOUNT: "Confirm the amount with HR; it differs from the employee's recent payroll.",
    AnomalyType.COMPLIANCE_ISSUE: "Review the payroll against UMR and labour-law limits.",
    AnomalyType.DATA_MISMATCH: "Reconcile attendance and salary data with the HR system.",
}


class PayrollAnomalyDetector(AnomalyValidator):
    """
    Payroll validation combining deterministic checks and an OpenAI review.
    """

    def __init__(
        self,
        openai_api_key: Optional[str] = None,
        openai_model: Optional[str] = None,
        minimum_wage: Optional[Decimal] = None,
        ai_enabled: Optional[bool] = None,
        client: Any = None,
    ):
        self.openai_api_key = openai_api_key if openai_api_key is not None else settings.openai_api_key
        self.openai_model = openai_model or settings.openai_model
        self.minimum_wage = Decimal(minimum_wage if minimum_wage is not None else settings.payroll_minimum_wage)
        self.ai_enabled = settings.anomaly_validation_enabled if ai_enabled is None else ai_enabled
        self._client = client
        self.bpjs_calculator = BPJSCalculator()
        self.pph21_calculator = PPh21Calculator()

    @property
    def ai_available(self) -> bool:
        return self.ai_enabled and (self._client is not None or bool(self.openai_api_key))

    async def validate(self, context: PayrollValidationContext) -> PayrollValidationResult:
        rule_errors = self.run_rule_checks(context)

        critical = [e for e in rule_errors if e.severity == AnomalySeverity.CRITICAL]
        if critical:
            return self._build_result(
                rule_errors,
                confidence=Decimal("1"),
                review=f"Critical calculation errors detected: {'; '.join(e.description for e in critical)}",
            )

        if not self.ai_available:
            return self._build_result(rule_errors, RULE_ONLY_CONFIDENCE, RULE_ONLY_REVIEW)

        try:
            ai_errors, confidence, review = await self._review_with_openai(context, rule_errors)
        except OpenAIAPIException as e:
            logger.warning(f"AI payroll review failed for employee {context.employee_id}: {e.message}")
            return self._build_result(rule_errors, RULE_ONLY_CONFIDENCE, RULE_ONLY_REVIEW)

        return self._build_result(self._merge(rule_errors, ai_errors), confidence, review)

    # ===========================================
    # RULE-BASED CHECKS
    # ===========================================

    def run_rule_checks(self, context: PayrollValidationContext) -> List[AnomalyDetail]:
        errors: List[AnomalyDetail] = []
        errors.extend(self._check_totals(context))
        errors.extend(self._check_recalculation(context))
        errors.extend(self._check_data(context))
        errors.extend(self._check_history(context))
        errors.extend(self._check_compliance(context))
        return errors

    def _check_totals(self, c: PayrollValidationContext) -> List[AnomalyDetail]:
        errors = []
        if c.net_pay > c.total_earnings:
            errors.append(AnomalyDetail(
                type=AnomalyType.CALCULATION_ERROR,
                severity=AnomalySeverity.CRITICAL,
                description="Net pay exceeds gross pay",
                field="net_pay",
                expected_value=c.total_earnings,
                actual_value=c.net_pay,
            ))

        expected_net = c.total_earnings - c.total_deductions
        if abs(c.net_pay - expected_net) > NET_PAY_TOLERANCE:
            errors.append(AnomalyDetail(
                type=AnomalyType.CALCULATION_ERROR,
                severity=AnomalySeverity.HIGH,
                description="Net pay does not equal gross pay minus deductions",
                field="net_pay",
                expected_value=expected_net,
                actual_value=c.net_pay,
            ))

        if c.net_pay < 0:
            errors.append(AnomalyDetail(
                type=AnomalyType.CALCULATION_ERROR,
                severity=AnomalySeverity.CRITICAL,
                description="Net pay is negative",
                field="net_pay",
                actual_value=c.net_pay,
            ))

        if c.total_earnings < 0:
            errors.append(AnomalyDetail(
                type=AnomalyType.CALCULATION_ERROR,
                severity=AnomalySeverity.CRITICAL,
                description="Total earnings are negative",
                field="total_earnings",
                actual_value=c.total_earnings,
            ))
        return errors

    def _check_recalculation(self, c: PayrollValidationContext) -> List[AnomalyDetail]:
        errors = []
        if c.working_days > 0:
            expected_base = round_rupiah(c.contract_base_salary / c.working_days * c.present_days)
            if abs(expected_base - c.prorated_base_salary) > AMOUNT_TOLERANCE:
                errors.append(AnomalyDetail(
                    type=AnomalyType.DATA_MISMATCH,
                    severity=AnomalySeverity.HIGH,
                    description="Base salary does not match attendance-prorated salary",
                    field="base_salary",
                    expected_value=expected_base,
                    actual_value=c.prorated_base_salary,
                ))

        if not c.bpjs_prorated:
            expected_bpjs = self.bpjs_calculator.calculate(
                c.contract_base_salary, c.bpjs_base_allowances, c.jkk_risk_class
            ).total_employee
            if abs(expected_bpjs - c.bpjs_employee) > AMOUNT_TOLERANCE:
                errors.append(AnomalyDetail(
                    type=AnomalyType.CALCULATION_ERROR,
                    severity=AnomalySeverity.HIGH,
                    description="Employee BPJS contribution differs from the statutory calculation",
                    field="bpjs_employee",
                    expected_value=expected_bpjs,
                    actual_value=c.bpjs_employee,
                ))

        expected_tax = self.pph21_calculator.calculate(
            c.taxable_income, c.bpjs_employee, c.is_married, c.dependent_count
        ).monthly_tax
        if abs(expected_tax - c.pph21) > AMOUNT_TOLERANCE:
            errors.append(AnomalyDetail(
                type=AnomalyType.CALCULATION_ERROR,
                severity=AnomalySeverity.HIGH,
                description="PPh21 differs from the progressive tax calculation",
                field="pph21",
                expected_value=expected_tax,
                actual_value=c.pph21,
            ))
        return errors

    def _check_data(self, c: PayrollValidationContext) -> List[AnomalyDetail]:
        errors = []
        if not c.employment_type:
            errors.append(AnomalyDetail(
                type=AnomalyType.MISSING_DATA,
                severity=AnomalySeverity.MEDIUM,
                description="Employment type is missing",
                field="employment_type",
            ))
        if c.present_days > c.working_days:
            errors.append(AnomalyDetail(
                type=AnomalyType.DATA_MISMATCH,
                severity=AnomalySeverity.HIGH,
                description="Present days exceed working days",
                field="present_days",
                expected_value=Decimal(c.working_days),
                actual_value=Decimal(c.present_days),
            ))
        return errors

    def _check_history(self, c: PayrollValidationContext) -> List[AnomalyDetail]:
        history = c.history
        if history is None or history.periods_count < MIN_HISTORY_PERIODS or history.average_net_pay <= 0:
            return []
        variance = abs(c.net_pay - history.average_net_pay) / history.average_net_pay
        if variance <= HISTORICAL_VARIANCE_THRESHOLD:
            return []
        return [AnomalyDetail(
            type=AnomalyType.UNUSUAL_AMOUNT,
            severity=AnomalySeverity.MEDIUM,
            description=f"Net pay differs {variance * 100:.0f}% from the recent average",
            field="net_pay",
            expected_value=round_rupiah(history.average_net_pay),
            actual_value=c.net_pay,
        )]

    def _check_compliance(self, c: PayrollValidationContext) -> List[AnomalyDetail]:
        errors = []
        near_full_attendance = c.present_days >= c.working_days - 2
        if near_full_attendance and c.net_pay < self.minimum_wage:
            errors.append(AnomalyDetail(
                type=AnomalyType.COMPLIANCE_ISSUE,
                severity=AnomalySeverity.HIGH,
                description="Net pay is below the regional minimum wage (UMR)",
                field="net_pay",
                expected_value=self.minimum_wage,
                actual_value=c.net_pay,
            ))
        if c.max_daily_overtime_hours > MAX_OVERTIME_HOURS_PER_DAY:
            errors.append(AnomalyDetail(
                type=AnomalyType.COMPLIANCE_ISSUE,
                severity=AnomalySeverity.MEDIUM,
                description=f"Overtime exceeds {MAX_OVERTIME_HOURS_PER_DAY} hours in a day",
                field="overtime_hours",
                expected_value=MAX_OVERTIME_HOURS_PER_DAY,
                actual_value=c.max_daily_overtime_hours,
            ))
        if c.max_weekly_overtime_hours > MAX_OVERTIME_HOURS_PER_WEEK:
            errors.append(AnomalyDetail(
                type=AnomalyType.COMPLIANCE_ISSUE,
                severity=AnomalySeverity.MEDIUM,
                description=f"Overtime exceeds {MAX_OVERTIME_HOURS_PER_WEEK} hours in a week",
                field="overtime_hours",
                expected_value=MAX_OVERTIME_HOURS_PER_WEEK,
                actual_value=c.max_weekly_overtime_hours,
            ))
        return errors

    # ===========================================
    # OPENAI REVIEW
    # ===========================================

    def _get_client(self):
        if self._client is None:
            import openai

            self._client = openai.AsyncOpenAI(
                api_key=self.openai_api_key,
                timeout=settings.anomaly_validation_timeout_seconds,
            )
        return self._client

    async def _review_with_openai(
        self,
        context: PayrollValidationContext,
        rule_errors: List[AnomalyDetail],
    ) -> Tuple[List[AnomalyDetail], Decimal, str]:
        prompt = f"""You are an Indonesian payroll auditor familiar with BPJS and PPh21 (UU HPP) rules.
Review this employee's monthly payroll and report calculation errors, missing data,
unusual amounts, compliance issues or data mismatches.

Payroll:
{json.dumps(context.to_dict(), indent=2, default=str)}

Rule-based findings already recorded:
{json.dumps([e.to_dict() for e in rule_errors], indent=2)}

Respond in JSON format:
{{
    "has_errors": true/false,
    "errors": [
        {{
            "type": "calculation_error|missing_data|unusual_amount|compliance_issue|data_mismatch",
            "severity": "low|medium|high|critical",
            "description": "What is wrong",
            "field": "field name or null",
            "expected_value": number or null,
            "actual_value": number or null
        }}
    ],
    "confidence": 0.0 to 1.0,
    "review": "One-paragraph summary"
}}"""

        try:
            client = self._get_client()
            response = await client.chat.completions.create(
                model=self.openai_model,
                messages=[
                    {"role": "system", "content": "You are an Indonesian payroll compliance expert. Always respond with valid JSON."},
                    {"role": "user", "content": prompt},
                ],
                temperature=settings.openai_temperature,
                max_tokens=settings.openai_max_tokens,
                response_format={"type": "json_object"},
            )
            result_text = response.choices[0].message.content or ""
            result = json.loads(result_text.strip())
        except json.JSONDecodeError as e:
            raise OpenAIAPIException("response was not valid JSON", original_error=e)
        except Exception as e:
            raise OpenAIAPIException(str(e), original_error=e)

        errors = [
            error for error in (self._parse_ai_error(item) for item in result.get("errors") or [])
            if error is not None
        ]
        confidence = self._parse_decimal(result.get("confidence"), RULE_ONLY_CONFIDENCE)
        confidence = min(max(confidence, Decimal("0")), Decimal("1"))
        review = str(result.get("review") or "AI review completed")
        return errors, confidence, review

    @staticmethod
    def _parse_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
        if value is None:
            return default
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            return default

    def _parse_ai_error(self, item: Dict[str, Any]) -> Optional[AnomalyDetail]:
        if not isinstance(item, dict) or not item.get("description"):
            return None
        try:
            anomaly_type = AnomalyType(item.get("type"))
        except ValueError:
            anomaly_type = AnomalyType.UNUSUAL_AMOUNT
        try:
            severity = AnomalySeverity(item.get("severity"))
        except ValueError:
            severity = AnomalySeverity.MEDIUM
        return AnomalyDetail(
            type=anomaly_type,
            severity=severity,
            description=str(item["description"]),
            field=item.get("field"),
            expected_value=self._parse_decimal(item.get("expected_value")),
            actual_value=self._parse_decimal(item.get("actual_value")),
        )

    # ===========================================
    # RESULT
    # ===========================================

    @staticmethod
    def _merge(rule_errors: List[AnomalyDetail], ai_errors: List[AnomalyDetail]) -> List[AnomalyDetail]:
        """AI findings on a field already flagged by a rule of the same type are dropped."""
        seen = {(e.type, e.field) for e in rule_errors}
        return rule_errors + [e for e in ai_errors if (e.type, e.field) not in seen]

    @staticmethod
    def generate_recommendations(errors: List[AnomalyDetail]) -> Tuple[str, ...]:
        recommendations = []
        for error in errors:
            recommendation = RECOMMENDATIONS[error.type]
            if recommendation not in recommendations:
                recommendations.append(recommendation)
        if any(e.is_blocking for e in errors):
            recommendations.append("Resolve high and critical anomalies before approving this payroll period.")
        return tuple(recommendations)

    def _build_result(
        self,
        errors: List[AnomalyDetail],
        confidence: Decimal,
        review: str,
    ) -> PayrollValidationResult:
        return PayrollValidationResult(
            has_errors=bool(errors),
            errors=tuple(errors),
            confidence=confidence,
            review_text=review,
            recommendations=self.generate_recommendations(errors),
        )
