# src/crosscheck/reporting.py

"""
reporting.py
============

Reporte legible en consola de un ReviewResult.

Controlado vía crosscheck.config.get_reporting_config():
  - colores ANSI por severidad
  - severidad mínima mostrada
  - resumen final con conteos
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from crosscheck.config import get_reporting_config
from crosscheck.engine import ReviewResult
from crosscheck.rules import Finding, Severity


# ------------------------------------------------------------
# Helpers de estilo
# ------------------------------------------------------------

def _color(text: str, severity: Severity, cfg: Dict[str, Any]) -> str:
    if not cfg.get("use_colors", True):
        return text
    color = {
        Severity.ERROR: cfg.get("color_error", "\033[91m"),
        Severity.WARNING: cfg.get("color_warning", "\033[93m"),
        Severity.INFO: cfg.get("color_info", "\033[92m"),
    }[severity]
    reset = cfg.get("color_reset", "\033[0m")
    return f"{color}{text}{reset}"


def _min_rank(cfg: Dict[str, Any]) -> int:
    try:
        return Severity(cfg.get("min_severity", "Info")).rank
    except ValueError:
        return Severity.INFO.rank


def _visible(findings: List[Finding], cfg: Dict[str, Any]) -> List[Finding]:
    limit = _min_rank(cfg)
    return [f for f in findings if f.severity.rank <= limit]


# ------------------------------------------------------------
# API
# ------------------------------------------------------------

def format_finding(finding: Finding, cfg: Optional[Dict[str, Any]] = None) -> str:
    cfg = cfg if cfg is not None else get_reporting_config()
    width = int(cfg.get("category_width", 38))
    tag = _color(f"[{finding.severity.value.upper():7s}]", finding.severity, cfg)
    return f"{tag} {finding.category:<{width}} {finding.message}"


def format_review_report(result: ReviewResult, cfg: Optional[Dict[str, Any]] = None) -> str:
    """Texto completo del reporte (una línea por hallazgo + resumen)."""
    cfg = cfg if cfg is not None else get_reporting_config()
    lines: List[str] = [f"=== Plan cross-check: {result.plan_id} ==="]

    shown = _visible(result.findings, cfg)
    if not shown:
        lines.append("(sin hallazgos que mostrar)")
    lines.extend(format_finding(f, cfg) for f in shown)

    if cfg.get("show_summary", True):
        lines.append("")
        lines.append(
            f"Resumen: {result.num_errors} error(es), "
            f"{result.num_warnings} warning(s), {result.num_info} info"
        )
    return "\n".join(lines)


def print_review_report(result: ReviewResult, cfg: Optional[Dict[str, Any]] = None) -> None:
    print(format_review_report(result, cfg))
