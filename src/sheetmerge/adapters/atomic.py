import contextlib
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager

from openpyxl import Workbook

from sheetmerge.adapters.formula_cache import FormulaResults, write_formula_results


@contextmanager
def atomic_path(path: str, tmp_dir: str | None = None, suffix: str = ".partial") -> Iterator[str]:
    """Yield a temporary path that replaces ``path`` once the block succeeds."""

    dname = os.path.dirname(os.path.abspath(path)) or "."
    os.makedirs(dname, exist_ok=True)
    temp_root = tmp_dir or dname
    os.makedirs(temp_root, exist_ok=True)

    if os.stat(dname).st_dev != os.stat(temp_root).st_dev:
        raise OSError(
            "Temporary directory must reside on the same filesystem as the destination for atomic writes."
        )

    fd, tmp = tempfile.mkstemp(dir=temp_root, prefix=".tmp-", suffix=suffix)
    os.close(fd)
    try:
        yield tmp
        os.replace(tmp, path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.remove(tmp)


class WorkbookFileSink:
    def __init__(self, tmp_dir: str | None = None) -> None:
        self.tmp_dir = tmp_dir

    def save(
        self,
        workbook: Workbook,
        out_path: str,
        formula_results: FormulaResults | None = None,
    ) -> None:
        with atomic_path(out_path, self.tmp_dir, suffix=".xlsx") as tmp:
            workbook.save(tmp)
            if formula_results:
                write_formula_results(tmp, formula_results)
