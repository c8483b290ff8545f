# feature_audit.py
"""
Static feature audit over a folder of downloaded stylesheets and pages.

A detector is a label plus a regular expression. Every ``*.css`` file is
scanned line by line against ``CSS_DETECTORS`` (and ``@media`` lines are
collected on the side), every ``*.html`` file against ``HTML_DETECTORS``.
The report lists what each file uses, then whether each feature shows up
anywhere in the site at all.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from pathlib import Path
from typing import Iterable, Optional, Union

logger = logging.LoggerAdapter(logging.getLogger("stylecrawl.audit"), extra={"site": "audit"})


@dataclasses.dataclass(frozen=True)
class Detector:
    label: str
    pattern: re.Pattern


CSS_DETECTORS: tuple[Detector, ...] = (
    Detector("Flexbox or Grid", re.compile(r"display:\s*(?:inline-)?(?:flex|grid)")),
    Detector("CSS variables", re.compile(r"var\(--")),
    Detector("fallback fonts", re.compile(r"font-family:.*?,")),
    Detector("relative units", re.compile(r"\d(?:r?em|vh|vw|%)|calc\(")),
    Detector("dynamic viewport units", re.compile(r"dvw|dvh")),
    Detector("animations", re.compile(r"@keyframes|animation:")),
    Detector("transitions", re.compile(r"transition:")),
    Detector("transforms", re.compile(r"transform:")),
    Detector("advanced color functions", re.compile(r"(?<![\w-])color\(|color-mix\(")),
    Detector("has(), is(), or where() pseudo-classes", re.compile(r":(?:has|is|where)\(")),
)

HTML_DETECTORS: tuple[Detector, ...] = (
    Detector("<img> tag", re.compile(r"<img\b", re.I)),
    Detector("<picture> tag", re.compile(r"<picture\b", re.I)),
)

MEDIA_QUERY_RE = re.compile(r"@media\b")


@dataclasses.dataclass(frozen=True)
class LineMatch:
    line_number: int
    text: str


@dataclasses.dataclass
class FileAudit:
    path: Path
    matches: dict[str, list[LineMatch]] = dataclasses.field(default_factory=dict)

    def first(self, label: str) -> Optional[LineMatch]:
        hits = self.matches.get(label)
        return hits[0] if hits else None

    def in_line_order(self) -> list[tuple[str, LineMatch]]:
        flat = [(label, m) for label, hits in self.matches.items() for m in hits]
        return sorted(flat, key=lambda item: item[1].line_number)


@dataclasses.dataclass
class AuditReport:
    detectors: tuple[Detector, ...]
    files: list[FileAudit] = dataclasses.field(default_factory=list)
    media_queries: list[str] = dataclasses.field(default_factory=list)

    def first_match(self, label: str) -> Optional[tuple[FileAudit, LineMatch]]:
        for audit in self.files:
            match = audit.first(label)
            if match:
                return audit, match
        return None

    def found(self, label: str) -> bool:
        return self.first_match(label) is not None

    @property
    def missing(self) -> list[str]:
        return [d.label for d in self.detectors if not self.found(d.label)]


def audit_files(
    paths: Iterable[Union[str, Path]],
    detectors: Iterable[Detector],
    collect_media: bool = False,
) -> AuditReport:
    report = AuditReport(detectors=tuple(detectors))
    for path in paths:
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Could not read {path}: {e}")
            continue
        audit = FileAudit(path=path)
        for number, line in enumerate(content.splitlines(), start=1):
            for detector in report.detectors:
                if detector.pattern.search(line):
                    audit.matches.setdefault(detector.label, []).append(LineMatch(number, line.strip()))
            if collect_media and MEDIA_QUERY_RE.search(line):
                report.media_queries.append(line.strip())
        report.files.append(audit)
    return report


def list_files(folder: Union[str, Path], suffix: str) -> list[Path]:
    folder = Path(folder)
    if not folder.is_dir():
        return []
    return sorted(p for p in folder.glob(f"*{suffix}") if p.is_file())


def audit_directory(folder: Union[str, Path]) -> tuple[AuditReport, AuditReport]:
    """Audit every stylesheet and page in ``folder``; returns (css, html) reports."""
    css_report = audit_files(list_files(folder, ".css"), CSS_DETECTORS, collect_media=True)
    html_report = audit_files(list_files(folder, ".html"), HTML_DETECTORS)
    return css_report, html_report


def _sentence_case(label: str) -> str:
    return label[:1].upper() + label[1:]


def render_report(css_report: AuditReport, html_report: AuditReport) -> str:
    lines = ["", "CSS ANALYSIS:", ""]
    for audit in css_report.files:
        lines.append(f"Analyzing {audit.path}...")
        for detector in css_report.detectors:
            match = audit.first(detector.label)
            if match:
                lines.append(f"  - {detector.label} (line {match.line_number})")

    lines.append("")
    for detector in css_report.detectors:
        hit = css_report.first_match(detector.label)
        if hit:
            lines.append(f"✓ Uses {detector.label}: ")
            lines.append(hit[1].text)
        else:
            lines.append(f"✗ {_sentence_case(detector.label)} not used.")

    lines.extend(["", "Media queries:"])
    lines.extend(css_report.media_queries)

    lines.extend(["", "", "HTML ANALYSIS:", ""])
    for audit in html_report.files:
        lines.append(f"Analyzing {audit.path}...")
        for label, match in audit.in_line_order():
            lines.append(f"- {label} found on line {match.line_number}: {match.text}")
    return "\n".join(lines)
