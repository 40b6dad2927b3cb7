"""
SQLAlchemy 2.0 usage checks

Validates that the volapi modules:
1. Import successfully
2. Don't use the legacy Query API (session.query(...).filter(...))
"""
import importlib
import re
from pathlib import Path

import pytest

PACKAGE_ROOT = Path(__file__).resolve().parent.parent / "volapi"

MODULES = [
    "volapi.models",
    "volapi.database",
    "volapi.services.record_store",
    "volapi.services.reference_tracker",
    "volapi.services.reservation_manager",
    "volapi.services.volume_manager",
    "volapi.api.volumes",
    "volapi.api.reservations",
    "volapi.api.ping",
    "volapi.service",
]


@pytest.mark.parametrize("module_name", MODULES)
def test_module_imports(module_name):
    importlib.import_module(module_name)


@pytest.mark.parametrize("path", sorted(PACKAGE_ROOT.rglob("*.py")), ids=lambda p: p.name)
def test_no_legacy_query_api(path):
    content = path.read_text(encoding="utf-8")
    assert not re.findall(r"\.query\([^)]*\)", content)
