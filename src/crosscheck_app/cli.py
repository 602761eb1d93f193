# src/crosscheck_app/cli.py

"""
CLI del cross-check de planes.

Uso típico:

    crosscheck-review --rtplan RP.dcm --rtstruct RS.dcm --ct ./CT --course RT1_Prostata

Qué hace:
  1) Configura logging (dictConfig) y carga la config efectiva
     (defaults + overrides JSON opcionales).
  2) Construye el PlanSnapshot desde DICOM.
  3) Evalúa el árbol de reglas y agrega los hallazgos.
  4) Imprime el reporte en consola (o JSON con --json).

Códigos de salida:
  0 = sin errores, 1 = archivos de entrada inexistentes / config inválida,
  2 = la revisión contiene algún hallazgo de severidad Error.
"""

from __future__ import annotations

import argparse
import json
import logging.config
import sys
from typing import List, Optional

from crosscheck.config import build_effective_config, get_crosscheck_logger, get_logging_config, validate_config
from crosscheck.engine import evaluate_plan
from crosscheck.reporting import print_review_report
from plan_model.dicom_snapshot import load_plan_snapshot

logger = get_crosscheck_logger("crosscheck.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crosscheck-review",
        description="Cross-check de parámetros de un plan de radioterapia.",
    )
    parser.add_argument("--rtplan", required=True, help="Ruta al RTPLAN (.dcm).")
    parser.add_argument("--rtstruct", default=None, help="Ruta al RTSTRUCT (.dcm), opcional.")
    parser.add_argument("--ct", default=None, help="Carpeta con la serie CT, opcional.")
    parser.add_argument("--rtdose", default=None, help="Ruta al RTDOSE (.dcm), opcional.")
    parser.add_argument("--course", default="", help="ID del curso (no viene en DICOM).")
    parser.add_argument(
        "--overrides",
        default=None,
        help="JSON de overrides ({'rules': ..., 'params': ...}).",
    )
    parser.add_argument("--json", action="store_true", help="Vuelca los hallazgos como JSON.")
    parser.add_argument("--verbose", action="store_true", help="Logging DEBUG.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.config.dictConfig(get_logging_config(verbose=args.verbose))

    effective = build_effective_config(overrides_path=args.overrides)
    check = validate_config(effective)
    for msg in check["warnings"]:
        logger.warning("Config: %s", msg)
    if not check["ok"]:
        for msg in check["errors"]:
            logger.error("Config: %s", msg)
        return 1

    try:
        plan = load_plan_snapshot(
            args.rtplan,
            rtstruct_path=args.rtstruct,
            ct_folder=args.ct,
            rtdose_path=args.rtdose,
            course_id=args.course,
        )
    except FileNotFoundError as exc:
        logger.error("%s", exc)
        return 1

    result = evaluate_plan(plan, effective=effective)

    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    else:
        print_review_report(result)

    return 2 if result.has_errors else 0


if __name__ == "__main__":
    sys.exit(main())
