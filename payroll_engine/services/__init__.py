"""
Payroll Engine - Services Package

Business logic services. Import services from their modules directly.
"""
