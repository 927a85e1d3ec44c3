import importlib.util
from pathlib import Path

BACKEND = Path(__file__).resolve().parents[2]


def _checker():
    module_spec = importlib.util.spec_from_file_location(
        "check_migration_chain", BACKEND / "scripts" / "check_migration_chain.py"
    )
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


REVISION = '''"""{slug}"""
from alembic import op

revision = "{rev}"
down_revision = {down}


def upgrade() -> None:
    pass


def downgrade() -> None:
    pass
'''


def _write(directory, rev, down, slug="step"):
    down_literal = "None" if down is None else f'"{down}"'
    (directory / f"{rev}_{slug}.py").write_text(REVISION.format(slug=slug, rev=rev, down=down_literal))


def test_shipped_chain_has_single_head():
    heads, errors = _checker().check(BACKEND / "alembic" / "versions")
    assert errors == []
    assert len(heads) == 1


def test_linear_chain_passes(tmp_path):
    _write(tmp_path, "0001", None)
    _write(tmp_path, "0002", "0001")
    heads, errors = _checker().check(tmp_path)
    assert heads == ["0002"]
    assert errors == []


def test_branch_and_dangling_parent_are_reported(tmp_path):
    _write(tmp_path, "0001", None)
    _write(tmp_path, "0002", "0001")
    _write(tmp_path, "0003", "0001")
    _write(tmp_path, "0004", "0099")
    _, errors = _checker().check(tmp_path)
    assert any("missing down_revision 0099" in e for e in errors)
    assert any("Expected exactly one head" in e for e in errors)


def test_misnamed_file_is_reported(tmp_path):
    _write(tmp_path, "0001", None)
    (tmp_path / "0001_step.py").rename(tmp_path / "initial.py")
    _, errors = _checker().check(tmp_path)
    assert errors == ["initial.py: file name does not start with revision id 0001"]
