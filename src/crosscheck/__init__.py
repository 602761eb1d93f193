# src/crosscheck/__init__.py

"""
Paquete principal del cross-check de planes.

Las reglas concretas viven en `crosscheck.checks`.
El árbol de reglas y la evaluación de un plan están en `crosscheck.engine`.
"""

from .rules import Finding, Rule, RuleGroup, Severity  # noqa: F401
