"""
CLI output formatter for human-readable results.
"""

import io
import sys

from rich.console import Console
from rich.text import Text
from rich.theme import Theme

from sqlscanner.core.findings import Finding, ScanResult, Severity


SCANNER_THEME = Theme({
    "critical": "bold white on red",
    "high": "bold red",
    "medium": "bold yellow",
    "low": "cyan",
    "info": "dim",
    "dim": "dim white",
    "path": "bold cyan",
    "expression": "bold magenta",
    "success": "bold green",
    "error": "bold red",
})


def supports_color() -> bool:
    """Check if the terminal supports color output."""
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


class CLIFormatter:
    """
    Formats scan results for human-readable CLI output.
    """

    def __init__(self, use_color: bool = True, verbose: bool = False, include_suppressed: bool = False):
        self.use_color = use_color and supports_color()
        self.verbose = verbose
        self.include_suppressed = include_suppressed

    def _console(self, buffer: io.StringIO) -> Console:
        return Console(
            file=buffer,
            theme=SCANNER_THEME,
            force_terminal=self.use_color,
            no_color=not self.use_color,
            highlight=False,
            width=100,
            soft_wrap=True,
        )

    def format_result(self, result: ScanResult) -> str:
        """Format a complete scan result."""
        buffer = io.StringIO()
        console = self._console(buffer)

        console.rule(Text(" SQL INJECTION SCAN RESULTS ", style="bold"))
        console.print(Text("Summary", style="bold"))
        console.print(f"  Files scanned:     {result.files_scanned}", markup=False)
        console.print(f"  Scan time:         {result.scan_time_seconds:.2f}s", markup=False)
        console.print(f"  Rules applied:     {', '.join(result.rules_applied)}", markup=False)
        console.print()

        if result.total_findings == 0:
            console.print(Text("  No SQL injection risks found.", style="success"))
        else:
            console.print(f"  Findings:          {result.total_findings}", markup=False)
        if result.suppressed_count:
            console.print(f"  Suppressed:        {result.suppressed_count}", markup=False)
        console.print()

        for file_path, file_findings in result.by_file(self.include_suppressed).items():
            console.print(Text(file_path, style="path"))
            for finding in file_findings:
                self._print_finding(console, finding)
            console.print()

        if result.errors:
            console.rule(Text(" ERRORS ", style="error"))
            for error in result.errors:
                console.print(f"  - {error}", markup=False)

        return buffer.getvalue()

    def format_finding(self, finding: Finding) -> str:
        """Format a single finding."""
        buffer = io.StringIO()
        self._print_finding(self._console(buffer), finding)
        return buffer.getvalue()

    def _print_finding(self, console: Console, finding: Finding) -> None:
        label = f"[{finding.severity.value.upper()}]"
        header = Text("  ")
        header.append(label, style=finding.severity.value)
        header.append(" ")
        if finding.suppressed:
            header.append(f"[SUPPRESSED] {finding.title}", style="dim")
        else:
            header.append(finding.title, style="bold")
        console.print(header)

        location = Text(f"  {finding.location.file_path}:{finding.location.start_line}  ", style="dim")
        location.append(finding.expression, style="expression")
        location.append(f"  ({finding.rule_id})", style="dim")
        console.print(location)
        console.print(Text(f"  {finding.description}"))

        if finding.snippet:
            hot = "high" if finding.severity >= Severity.HIGH else "medium"
            for number, line, highlighted in finding.snippet.numbered_lines():
                marker = ">" if highlighted else " "
                console.print(Text(f"  {marker} {number:4} | {line}", style=hot if highlighted else "dim"))

        if finding.remediation and self.verbose:
            console.print(Text("  Remediation:", style="success"))
            console.print(Text(f"    {finding.remediation}"))
