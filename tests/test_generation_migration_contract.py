from __future__ import annotations

from pathlib import Path

from sqlalchemy import UniqueConstraint

from catalogstudio.storage.db import Base, load_models


MIGRATION_PATH = Path(__file__).resolve().parents[1] / "migrations" / "versions" / "20261017_0001_generation_core.py"


def test_generation_migration_declares_every_mapped_table_and_index() -> None:
    load_models()
    source = MIGRATION_PATH.read_text(encoding="utf-8")

    for table in Base.metadata.sorted_tables:
        assert f'"{table.name}"' in source, table.name
        for index in table.indexes:
            if index.name:
                assert f'"{index.name}"' in source, index.name
        for constraint in table.constraints:
            if isinstance(constraint, UniqueConstraint) and constraint.name:
                assert f'"{constraint.name}"' in source, constraint.name


def test_generation_migration_is_the_root_revision_and_reversible() -> None:
    source = MIGRATION_PATH.read_text(encoding="utf-8")

    assert 'revision = "20261017_0001"' in source
    assert "down_revision = None" in source
    assert "def downgrade()" in source
    assert 'op.drop_table("tenants")' in source
