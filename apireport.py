from fastmcp import FastMCP, Context
from typing import Optional

from services.combined_report_aggregator import generate_combined_report
from services.execution_normalizer import ReportError
from services.suite_report_builder import generate_suite_report
from services.temp_cleanup import cleanup_temp
from utils.config import load_config, load_report_settings
from utils.log_utils import setup_logging

setup_logging(load_config())

mcp = FastMCP(name="apireport")


@mcp.tool
async def create_suite_report(input_path: str, output_path: str, title: Optional[str] = None,
                              sla_ms: Optional[int] = None, project_root: Optional[str] = None,
                              ctx: Context = None) -> dict:
    """
    Generate the per-suite HTML report for one Newman run.
    Args:
        input_path: Path to the Newman run JSON.
        output_path: Where to write the suite report (folder names after the
                     anchor folder give the grouping and module).
        title: Optional report title.
        sla_ms: Optional response-time SLA in milliseconds.
        project_root: Optional root holding Temp/ (defaults to PROJECT_ROOT / config).
        ctx: Workflow chaining context.
    Returns:
        dict with suite identity, statistics and written paths, or error info.
    """
    try:
        settings = load_report_settings(project_root=project_root)
        return generate_suite_report(input_path, output_path, title, sla_ms, settings)
    except ReportError as e:
        return {"error": str(e), "input_path": input_path}
    except (OSError, ValueError) as e:
        return {"error": f"Suite report failed: {e}", "input_path": input_path}


@mcp.tool
async def create_combined_report(project_root: Optional[str] = None, ctx: Context = None) -> dict:
    """
    Combine every suite report in Temp/ into the dashboard and email bodies.
    Args:
        project_root: Optional root holding Temp/ and EmailReports/.
        ctx: Workflow chaining context.
    Returns:
        dict with status, output paths and rollups ("NO_REPORTS" when Temp has none), or error info.
    """
    try:
        settings = load_report_settings(project_root=project_root)
        return generate_combined_report(settings)
    except (OSError, ValueError) as e:
        return {"error": f"Combined report failed: {e}"}


@mcp.tool
async def cleanup_temp_reports(project_root: Optional[str] = None, ctx: Context = None) -> dict:
    """
    Remove everything inside Temp/, keeping the folder itself.
    Args:
        project_root: Optional root holding Temp/.
        ctx: Workflow chaining context.
    Returns:
        dict with removed and failed entries, or error info.
    """
    try:
        return cleanup_temp(project_root)
    except (OSError, ValueError) as e:
        return {"error": f"Temp cleanup failed: {e}"}


@mcp.tool
async def get_report_settings(project_root: Optional[str] = None, ctx: Context = None) -> dict:
    """
    Show the resolved report settings (paths, defaults, chart options).
    Args:
        project_root: Optional root override.
        ctx: Workflow chaining context.
    Returns:
        dict of settings with paths as strings.
    """
    settings = load_report_settings(project_root=project_root)
    return {k: str(v) if hasattr(v, "as_posix") else v for k, v in settings.items()}


if __name__ == "__main__":
    try:
        mcp.run("stdio")
    except KeyboardInterrupt:
        print("Shutting down API Report MCP...")
