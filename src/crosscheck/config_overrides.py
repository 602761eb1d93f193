"""
crosscheck.config_overrides
---------------------------

Capa ligera para manejar overrides de configuración (JSON) sin tocar
los diccionarios base definidos en crosscheck.config.

Schema del JSON (crosscheck_overrides.json):

{
  "rules": {
    "CollisionRule": false,
    "OptimizationRule": true
  },
  "params": {
    "COLLISION_CONFIG": {
      "EDGE": {
        "error_cm": 38.5,
        "warning_cm": 37.5
      }
    },
    "DOSE_CONFIG": {
      "grid_max_cm": 0.25
    }
  }
}

- "rules": activa/desactiva reglas por nombre.
- "params": merge profundo sobre las secciones de parámetros. Las listas
  se reemplazan completas; las claves desconocidas se ignoran.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict
import json
import copy

# Ruta por defecto (mismo directorio que crosscheck/config.py)
OVERRIDES_FILE = Path(__file__).resolve().parent / "crosscheck_overrides.json"

DEFAULT_OVERRIDES: Dict[str, Any] = {
    "rules": {},
    "params": {},
}


# ---------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------

def load_overrides(path: str | Path | None = None) -> Dict[str, Any]:
    """
    Lee el archivo de overrides (JSON) y devuelve un dict
    siempre con claves 'rules' y 'params'.

    Si no existe o está roto, devuelve DEFAULT_OVERRIDES.
    """
    p = Path(path) if path is not None else OVERRIDES_FILE

    if not p.exists():
        return copy.deepcopy(DEFAULT_OVERRIDES)

    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return copy.deepcopy(DEFAULT_OVERRIDES)

    if not isinstance(data, dict):
        return copy.deepcopy(DEFAULT_OVERRIDES)

    if not isinstance(data.get("rules"), dict):
        data["rules"] = {}
    if not isinstance(data.get("params"), dict):
        data["params"] = {}
    return data


def save_overrides(overrides: Dict[str, Any], path: str | Path | None = None) -> None:
    """
    Guarda el dict de overrides en disco (solo 'rules' y 'params').
    """
    p = Path(path) if path is not None else OVERRIDES_FILE

    to_dump = {
        "rules": overrides.get("rules", {}),
        "params": overrides.get("params", {}),
    }

    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        json.dump(to_dump, f, ensure_ascii=False, indent=2)


# ---------------------------------------------------------------------
# Aplicar overrides sobre una config efectiva ya clonada
# ---------------------------------------------------------------------

def _deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> None:
    """
    Merge IN PLACE de patch sobre base.

    Solo se sobreescriben claves que ya existen en base: un typo en el
    JSON no crea parámetros nuevos que nadie lee.
    """
    for key, val in patch.items():
        if key not in base:
            continue
        if isinstance(base[key], dict) and isinstance(val, dict):
            _deep_merge(base[key], val)
        else:
            base[key] = copy.deepcopy(val)


def apply_overrides_to_config(
    effective: Dict[str, Any],
    overrides: Dict[str, Any],
) -> None:
    """
    Modifica IN PLACE la config efectiva ({"rules": ..., "params": ...})
    aplicando lo que venga en overrides.
    """
    # ---- Reglas ----
    rules = effective.setdefault("rules", {})
    for rule_name, enabled in (overrides.get("rules") or {}).items():
        if rule_name not in rules:
            continue
        rules[rule_name] = bool(enabled)

    # ---- Parámetros ----
    params = effective.setdefault("params", {})
    for section, patch in (overrides.get("params") or {}).items():
        if section not in params:
            continue
        if isinstance(params[section], dict) and isinstance(patch, dict):
            _deep_merge(params[section], patch)
        elif isinstance(params[section], list) and isinstance(patch, list):
            params[section] = copy.deepcopy(patch)
