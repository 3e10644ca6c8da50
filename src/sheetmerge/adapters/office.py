"""XLSX → ODS conversion for merge results."""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from collections.abc import Sequence

import pandas as pd

from sheetmerge.adapters.atomic import atomic_path
from sheetmerge.adapters.json_logger import JsonLogger
from sheetmerge.core.errors import SheetMergeError

_STDERR_TAIL = 500


def find_office_binary(candidates: Sequence[str]) -> str | None:
    for name in candidates:
        found = shutil.which(name)
        if found:
            return found
    return None


class OfficeOdsExporter:
    """Convert with a headless LibreOffice, or through pandas' ``odf`` engine when none is installed.

    The pandas path keeps cell values only; formatting survives the
    LibreOffice path alone.
    """

    def __init__(
        self,
        binaries: Sequence[str] = ("soffice", "libreoffice"),
        timeout: float = 120.0,
        tmp_dir: str | None = None,
        logger: JsonLogger | None = None,
    ) -> None:
        self.binaries = tuple(binaries)
        self.timeout = timeout
        self.tmp_dir = tmp_dir
        self._logger = logger or JsonLogger("sheetmerge.office")

    def export(self, xlsx_path: str, ods_path: str) -> None:
        binary = find_office_binary(self.binaries)
        if binary is None:
            self._logger.warn("ods_export_fallback", reason="office binary not found")
            self._export_with_pandas(xlsx_path, ods_path)
            return
        self._export_with_office(binary, xlsx_path, ods_path)

    def _export_with_office(self, binary: str, xlsx_path: str, ods_path: str) -> None:
        outdir = tempfile.mkdtemp(prefix="sheetmerge-ods-", dir=self.tmp_dir)
        try:
            cmd = [binary, "--headless", "--convert-to", "ods", "--outdir", outdir, xlsx_path]
            try:
                proc = subprocess.run(cmd, capture_output=True, timeout=self.timeout, check=False)
            except subprocess.TimeoutExpired as exc:
                raise SheetMergeError("ODS conversion timed out.") from exc
            base = os.path.splitext(os.path.basename(xlsx_path))[0]
            produced = os.path.join(outdir, base + ".ods")
            if proc.returncode != 0 or not os.path.exists(produced):
                detail = proc.stderr.decode("utf-8", errors="replace")[-_STDERR_TAIL:].strip()
                raise SheetMergeError(f"ODS conversion failed{': ' + detail if detail else '.'}")
            os.makedirs(os.path.dirname(os.path.abspath(ods_path)) or ".", exist_ok=True)
            shutil.move(produced, ods_path)
            self._logger.info("ods_exported", path=ods_path, converter=os.path.basename(binary))
        finally:
            shutil.rmtree(outdir, ignore_errors=True)

    def _export_with_pandas(self, xlsx_path: str, ods_path: str) -> None:
        frames = pd.read_excel(xlsx_path, sheet_name=None, header=None, engine="openpyxl")
        with atomic_path(ods_path, self.tmp_dir, suffix=".ods") as tmp:
            with pd.ExcelWriter(tmp, engine="odf") as writer:
                for name, frame in frames.items():
                    frame.to_excel(writer, sheet_name=name, header=False, index=False)
        self._logger.info("ods_exported", path=ods_path, converter="pandas")
