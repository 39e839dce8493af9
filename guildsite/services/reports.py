"""
ReportStore Class - Abuse reports on disk

Each report gets its own directory named after its id, holding report.json
and the optional evidence file.
"""

import json
import os
from typing import List, Optional

from guildsite.models.data_models import Report
from guildsite.utils.helpers import ensure_dir, now_ms, safe_filename
from guildsite.utils.logger import get_logger

log = get_logger("services.reports")

REPORT_FILE = "report.json"


class ReportStore:
    def __init__(self, reports_dir: str):
        self.reports_dir = reports_dir

    def save(
        self,
        reporter: Optional[str],
        reported: Optional[str],
        reason: Optional[str],
        evidence_name: Optional[str] = None,
        evidence: Optional[bytes] = None,
    ) -> Report:
        report_id = self._new_id()
        report_dir = os.path.join(self.reports_dir, report_id)
        ensure_dir(report_dir)

        evidence_file = None
        if evidence_name and evidence is not None:
            evidence_file = safe_filename(evidence_name)
            if evidence_file == REPORT_FILE:
                evidence_file = f"evidence_{evidence_file}"
            with open(os.path.join(report_dir, evidence_file), "wb") as f:
                f.write(evidence)

        report = Report(
            id=report_id,
            reporter=reporter,
            reported=reported,
            reason=reason,
            evidence_file=evidence_file,
        )
        with open(os.path.join(report_dir, REPORT_FILE), "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, ensure_ascii=False, indent=2)

        log.info("Saved report %s", report_id)
        return report

    def list(self) -> List[Report]:
        """All readable reports, newest first"""
        try:
            folders = os.listdir(self.reports_dir)
        except FileNotFoundError:
            return []

        reports: List[Report] = []
        for folder in folders:
            report = self._load(folder)
            if report:
                reports.append(report)

        reports.sort(key=lambda r: int(r.id) if r.id.isdigit() else 0, reverse=True)
        return reports

    def _load(self, folder: str) -> Optional[Report]:
        report_dir = os.path.join(self.reports_dir, folder)
        if not os.path.isdir(report_dir):
            return None

        try:
            with open(os.path.join(report_dir, REPORT_FILE), "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            log.warning("Skipping unreadable report %s: %s", folder, e)
            return None

        evidence = next((n for n in sorted(os.listdir(report_dir)) if n != REPORT_FILE), None)
        return Report(
            id=folder,
            reporter=raw.get("reporter"),
            reported=raw.get("reported"),
            reason=raw.get("reason"),
            evidence_file=evidence,
        )

    def _new_id(self) -> str:
        # millisecond ids, bumped when two reports land in the same millisecond
        candidate = now_ms()
        while os.path.exists(os.path.join(self.reports_dir, str(candidate))):
            candidate += 1
        return str(candidate)
