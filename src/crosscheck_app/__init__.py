# src/crosscheck_app/__init__.py

"""
Capa de aplicación: CLI `crosscheck-review` sobre crosscheck.engine.
"""
