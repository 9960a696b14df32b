"""Severity ordering, summaries and filtering over findings."""

from __future__ import annotations

from collections.abc import Iterable

from governed_infra.domain.models import SEVERITY_ORDER, Finding, normalize_severity


def scan_summary(findings: Iterable[Finding]) -> dict[str, object]:
    by_severity: dict[str, int] = {}
    total = 0
    for finding in findings:
        severity = normalize_severity(finding.severity)
        by_severity[severity] = by_severity.get(severity, 0) + 1
        total += 1
    return {"total": total, "bySeverity": by_severity}


def filter_findings(
    findings: list[Finding],
    min_severity: str | None = None,
    exclude_codes: Iterable[str] | None = None,
) -> list[Finding]:
    excluded = {code.upper() for code in exclude_codes or ()}
    threshold = SEVERITY_ORDER.get(normalize_severity(min_severity), 0) if min_severity else 0
    kept: list[Finding] = []
    for finding in findings:
        if finding.code.upper() in excluded:
            continue
        if SEVERITY_ORDER[normalize_severity(finding.severity)] < threshold:
            continue
        kept.append(finding)
    return kept
