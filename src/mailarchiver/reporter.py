"""Reporter for generating Markdown/HTML run reports."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from jinja2 import BaseLoader, Environment

if TYPE_CHECKING:
    from mailarchiver.archiver import RunReport

logger = logging.getLogger(__name__)


MARKDOWN_TEMPLATE = """# Mail Archiver Report

**Generated:** {{ report.started_at.strftime('%Y-%m-%d %H:%M:%S') }}
**Mode:** {{ "simulate" if report.simulate else "live" }}
**Cutoff:** {{ report.cutoff.strftime('%Y-%m-%d %H:%M') }}

## Summary

| Metric | Count |
|--------|-------|
| Accounts Processed | {{ report.stats.accounts_processed }} |
| Accounts Skipped | {{ report.stats.accounts_skipped }} |
| Messages Processed | {{ report.stats.processed }} |
| Moved | {{ report.stats.moved }} |
| Simulated Moves | {{ report.stats.simulated }} |
| Skipped by Rule | {{ report.stats.skipped }} |
| Too Recent | {{ report.stats.too_recent }} |
| Errors | {{ report.stats.errors }} |
{% for account in report.accounts %}

## {{ account.name }}

**Status:** {{ account.status.value }}{% if account.archive_root %} | **Archive root:** {{ account.archive_root }}{% endif %}
{% if account.error %}

> {{ account.error }}
{% endif %}
{% set archived = account.decisions | selectattr("destination") | list %}
{% if archived %}

| Received | Subject | Outcome | Destination |
|----------|---------|---------|-------------|
{% for item in archived %}
| {{ item.received_time.strftime('%Y-%m-%d %H:%M') }} | {{ item.subject[:50] }}{% if item.subject|length > 50 %}...{% endif %} | {{ item.outcome.value }} | {{ item.destination }} |
{% endfor %}
{% endif %}
{% endfor %}
{% set failed = report.decisions | selectattr("error") | list %}
{% if failed %}

## Errors

| Account | Received | Subject | Error |
|---------|----------|---------|-------|
{% for item in failed %}
| {{ item.account }} | {{ item.received_time.strftime('%Y-%m-%d %H:%M') }} | {{ item.subject[:40] }}{% if item.subject|length > 40 %}...{% endif %} | {{ item.error }} |
{% endfor %}
{% endif %}

---
*Report generated by mailarchiver*
"""


HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Mail Archiver Report</title>
    <style>
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            line-height: 1.6;
            max-width: 1200px;
            margin: 0 auto;
            padding: 20px;
            background: #f5f5f5;
            color: #333;
        }
        h1, h2 { color: #2c3e50; }
        table {
            width: 100%;
            border-collapse: collapse;
            background: white;
            margin-bottom: 20px;
        }
        th, td {
            padding: 8px 12px;
            text-align: left;
            border-bottom: 1px solid #ecf0f1;
        }
        th { background: #34495e; color: white; }
        .error { color: #e74c3c; }
    </style>
</head>
<body>
    <h1>Mail Archiver Report</h1>
    <p><strong>Generated:</strong> {{ report.started_at.strftime('%Y-%m-%d %H:%M:%S') }}</p>
    <p><strong>Mode:</strong> {{ "simulate" if report.simulate else "live" }}</p>
    <p><strong>Cutoff:</strong> {{ report.cutoff.strftime('%Y-%m-%d %H:%M') }}</p>

    <table>
        <tr><th>Metric</th><th>Count</th></tr>
        <tr><td>Accounts Processed</td><td>{{ report.stats.accounts_processed }}</td></tr>
        <tr><td>Accounts Skipped</td><td>{{ report.stats.accounts_skipped }}</td></tr>
        <tr><td>Messages Processed</td><td>{{ report.stats.processed }}</td></tr>
        <tr><td>Moved</td><td>{{ report.stats.moved }}</td></tr>
        <tr><td>Simulated Moves</td><td>{{ report.stats.simulated }}</td></tr>
        <tr><td>Skipped by Rule</td><td>{{ report.stats.skipped }}</td></tr>
        <tr><td>Too Recent</td><td>{{ report.stats.too_recent }}</td></tr>
        <tr><td>Errors</td><td>{{ report.stats.errors }}</td></tr>
    </table>

    {% for account in report.accounts %}
    <h2>{{ account.name }}</h2>
    <p>Status: {{ account.status.value }}{% if account.archive_root %}, archive root: {{ account.archive_root }}{% endif %}</p>
    {% if account.error %}<p class="error">{{ account.error }}</p>{% endif %}
    {% set archived = account.decisions | selectattr("destination") | list %}
    {% if archived %}
    <table>
        <tr><th>Received</th><th>Subject</th><th>Outcome</th><th>Destination</th></tr>
        {% for item in archived %}
        <tr>
            <td>{{ item.received_time.strftime('%Y-%m-%d %H:%M') }}</td>
            <td>{{ item.subject[:60] }}</td>
            <td{% if item.error %} class="error"{% endif %}>{{ item.outcome.value }}</td>
            <td>{{ item.destination }}</td>
        </tr>
        {% endfor %}
    </table>
    {% endif %}
    {% endfor %}
</body>
</html>
"""


class Reporter:
    """Generate reports from a run."""

    def __init__(self):
        """Initialize the reporter."""
        self._env = Environment(loader=BaseLoader(), autoescape=False, trim_blocks=True)
        self._html_env = Environment(loader=BaseLoader(), autoescape=True)
        self._md_template = self._env.from_string(MARKDOWN_TEMPLATE)
        self._html_template = self._html_env.from_string(HTML_TEMPLATE)

    def generate_markdown(self, report: RunReport) -> str:
        """Generate Markdown report."""
        return self._md_template.render(report=report)

    def generate_html(self, report: RunReport) -> str:
        """Generate HTML report."""
        return self._html_template.render(report=report)

    def save_report(
        self,
        report: RunReport,
        output_dir: str | Path,
        formats: list[str] | None = None,
    ) -> list[Path]:
        """Save report to files. Returns list of created files."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        if formats is None:
            formats = ["md"]

        timestamp = report.started_at.strftime("%Y%m%d_%H%M%S")
        created = []

        if "md" in formats or "markdown" in formats:
            md_path = output_dir / f"report_{timestamp}.md"
            md_path.write_text(self.generate_markdown(report), encoding="utf-8")
            created.append(md_path)
            logger.info(f"Saved Markdown report: {md_path}")

        if "html" in formats:
            html_path = output_dir / f"report_{timestamp}.html"
            html_path.write_text(self.generate_html(report), encoding="utf-8")
            created.append(html_path)
            logger.info(f"Saved HTML report: {html_path}")

        return created
