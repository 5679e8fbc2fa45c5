"""
SysGuard - Checks Package

Holds the hardening baseline catalog (baseline.yaml) loaded by
sysguard.core.catalog.
"""
