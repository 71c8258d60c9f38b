"""Guards against the test suite touching real data.

Running the tests must never write to:
- ./data (app config)
- ./db (the production SQLite database)

Every test gets a temporary database from the autouse ``isolated_state``
fixture in conftest.py.
"""

import hashlib
import os
import re
from pathlib import Path

import pytest

from smartpromptiq.db.database import DEFAULT_DB_PATH, get_db_path

TESTS_DIR = Path(__file__).parent

PROTECTED_DIRS = ["data", "db"]


def _fingerprint(path: Path) -> str | None:
    """Hash relative paths, sizes and mtimes under a directory.

    Returns None if the directory doesn't exist.
    """
    if not path.exists():
        return None

    hasher = hashlib.sha256()
    for root, dirs, files in os.walk(path):
        dirs.sort()
        for filename in sorted(files):
            filepath = Path(root) / filename
            stat = filepath.stat()
            hasher.update(str(filepath.relative_to(path)).encode())
            hasher.update(f"{stat.st_size}:{int(stat.st_mtime)}".encode())
    return hasher.hexdigest()


@pytest.fixture(scope="module")
def protected_state():
    """Fingerprints of protected directories when this module starts."""
    return {name: _fingerprint(Path(name)) for name in PROTECTED_DIRS}


class TestProtectedDirectories:
    """./data and ./db are left exactly as they were."""

    @pytest.mark.parametrize("name", PROTECTED_DIRS)
    def test_not_created_or_modified(self, protected_state, name):
        before = protected_state[name]
        after = _fingerprint(Path(name))

        if before is None and after is not None:
            pytest.fail(f"./{name} was created during the test run. Use tmp_path.")
        if before != after:
            pytest.fail(f"./{name} was modified during the test run. Use tmp_path.")


class TestIsolation:
    """Meta-tests for the temporary database setup."""

    def test_database_is_temporary(self, isolated_state, tmp_path):
        """The active database lives under the per-test tmp_path."""
        assert get_db_path() == isolated_state
        assert tmp_path in get_db_path().parents
        assert get_db_path() != DEFAULT_DB_PATH

    def test_no_default_database_in_tests(self):
        """No test module opens the default database."""
        violations = []
        for test_file in sorted(TESTS_DIR.glob("test_*.py")):
            if test_file.name == Path(__file__).name:
                continue
            content = test_file.read_text()
            if re.search(r"\binit_db\(\)", content):
                violations.append(f"{test_file.name}: init_db() without a path")
            if 'Path("db")' in content or "Path('db')" in content:
                violations.append(f"{test_file.name}: hardcoded ./db path")

        if violations:
            pytest.fail("Tests may touch the real database:\n" + "\n".join(violations))
