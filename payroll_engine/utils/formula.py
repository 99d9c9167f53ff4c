"""
Payroll Engine - Component Formula Evaluation

Evaluates employer-defined component formulas such as
``base_salary * 0.1`` or ``min(base_salary * 0.05, 750000)`` against
named payroll variables. Only arithmetic, comparisons, conditional
expressions and a few whitelisted functions are accepted; anything else is
rejected before evaluation.
"""

import ast
import operator
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping

from payroll_engine.utils.error_handling import ErrorCode, ValidationException


_BINARY_OPERATORS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPERATORS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_COMPARISONS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}

_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "min": min,
    "max": max,
    "abs": abs,
    "round": lambda value, digits=0: round(Decimal(value), int(digits)),
}


class FormulaError(ValidationException):
    """Formula could not be parsed or evaluated"""
    
    def __init__(self, formula: str, reason: str):
        super().__init__(
            message=f"Invalid formula '{formula}': {reason}",
            field="formula",
            code=ErrorCode.INVALID_FORMULA,
            details={"formula": formula, "reason": reason},
        )


class _Evaluator:
    def __init__(self, formula: str, variables: Mapping[str, Any]):
        self.formula = formula
        self.variables = variables
    
    def visit(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Expression):
            return self.visit(node.body)
        
        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise FormulaError(self.formula, f"unsupported constant {node.value!r}")
            return Decimal(str(node.value))
        
        if isinstance(node, ast.Name):
            if node.id not in self.variables:
                raise FormulaError(self.formula, f"unknown variable '{node.id}'")
            return Decimal(str(self.variables[node.id]))
        
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
            return _BINARY_OPERATORS[type(node.op)](self.visit(node.left), self.visit(node.right))
        
        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
            return _UNARY_OPERATORS[type(node.op)](self.visit(node.operand))
        
        if isinstance(node, ast.Compare):
            left = self.visit(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                if type(op) not in _COMPARISONS:
                    raise FormulaError(self.formula, "unsupported comparison")
                right = self.visit(comparator)
                if not _COMPARISONS[type(op)](left, right):
                    return False
                left = right
            return True
        
        if isinstance(node, ast.BoolOp):
            values = [self.visit(value) for value in node.values]
            if isinstance(node.op, ast.And):
                return all(values)
            return any(values)
        
        if isinstance(node, ast.IfExp):
            return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)
        
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS or node.keywords:
                raise FormulaError(self.formula, "only min, max, abs and round may be called")
            return _FUNCTIONS[node.func.id](*[self.visit(arg) for arg in node.args])
        
        raise FormulaError(self.formula, f"unsupported expression '{type(node).__name__}'")


def evaluate_formula(formula: str, variables: Mapping[str, Any]) -> Decimal:
    """
    Evaluate a component formula.
    
    Args:
        formula: Arithmetic expression
        variables: Values for the names used in the expression
    
    Returns:
        Result as Decimal
    
    Raises:
        FormulaError: on syntax errors, disallowed constructs, unknown
            variables or arithmetic failures
    """
    try:
        tree = ast.parse(formula.strip(), mode="eval")
    except SyntaxError as e:
        raise FormulaError(formula, f"syntax error at column {e.offset}")
    
    try:
        result = _Evaluator(formula, variables).visit(tree)
    except (ZeroDivisionError, InvalidOperation, TypeError) as e:
        raise FormulaError(formula, str(e) or type(e).__name__)
    
    if isinstance(result, bool):
        return Decimal(int(result))
    return Decimal(result)
