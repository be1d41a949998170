import yaml
import os
import platform
from typing import Dict, Optional
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()   # PROJECT_ROOT may be supplied through a .env file

DEFAULT_TITLE = "Digital API Automation"
DEFAULT_SLA_MS = 1000
DEFAULT_SOFT_FAIL_MARKER = "+ --> Failing"


def _repo_root() -> str:
    # Assuming this file is at 'repo/utils/config.py', we go up one level.
    return os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))


def load_config():
    repo_root = _repo_root()

    # Platform-specific config mapping
    config_map = {
        'Darwin': 'config.mac.yaml',
        'Windows': 'config.windows.yaml'
    }

    system = platform.system()
    platform_config = config_map.get(system)

    # Use platform-specific config if it exists, otherwise fall back to config.yaml
    candidate_files = [platform_config, 'config.yaml'] if platform_config else ['config.yaml']

    for filename in candidate_files:
        config_path = os.path.join(repo_root, filename)
        if os.path.exists(config_path):
            with open(config_path, 'r', encoding='utf-8') as file:
                try:
                    return yaml.safe_load(file) or {}
                except yaml.YAMLError as e:
                    raise Exception(f"Error parsing '{filename}': {e}")

    raise FileNotFoundError("No valid configuration file found (checked platform-specific and default).")


def load_chart_colors() -> Dict:
    """Load chart color configuration"""
    colors_path = os.path.join(_repo_root(), "chart_colors.yaml")

    if not os.path.exists(colors_path):
        # Return default colors if file missing
        return {
            "primary": "#3b82f6",
            "secondary": "#6366f1",
            "success": "#16a34a",
            "error": "#dc2626",
            "warning": "#f59e0b"
        }

    with open(colors_path, 'r', encoding='utf-8') as file:
        try:
            return yaml.safe_load(file) or {}
        except yaml.YAMLError as e:
            raise Exception(f"Error parsing chart_colors.yaml: {e}")


def resolve_project_root(project_root: Optional[str] = None, config: Optional[Dict] = None) -> Path:
    """
    Determine the working-directory root that holds Temp/ and EmailReports/.

    Priority:
    1. Explicit project_root argument (CLI / MCP tool parameter)
    2. PROJECT_ROOT environment variable
    3. api_report.project_root in config.yaml
    4. The repository directory
    """
    if project_root:
        return Path(project_root).resolve()
    env_root = os.environ.get("PROJECT_ROOT")
    if env_root:
        return Path(env_root).resolve()
    report_cfg = (config or {}).get("api_report") or {}
    if report_cfg.get("project_root"):
        return Path(report_cfg["project_root"]).resolve()
    return Path(_repo_root())


def load_report_settings(project_root: Optional[str] = None,
                         overrides: Optional[Dict] = None,
                         config: Optional[Dict] = None) -> Dict:
    """
    Build the settings dict threaded into every report stage.

    Args:
        project_root: Optional root override (takes precedence over env/config).
        overrides: Optional flat dict of settings that replace config values.
        config: Pre-loaded configuration; loaded from config.yaml when omitted.

    Returns:
        dict with resolved paths, report defaults, and chart options.
    """
    if config is None:
        config = load_config()
    report_cfg = config.get("api_report") or {}
    chart_cfg = config.get("charts") or {}

    root = resolve_project_root(project_root, config)
    templates_path = Path(report_cfg.get("templates_path") or os.path.join(_repo_root(), "templates"))
    if not templates_path.is_absolute():
        templates_path = Path(_repo_root()) / templates_path

    settings = {
        "project_root": root,
        "temp_root": root / report_cfg.get("temp_dir_name", "Temp"),
        "email_root": root / report_cfg.get("email_dir_name", "EmailReports"),
        "templates_path": templates_path,
        "title": report_cfg.get("title", DEFAULT_TITLE),
        "sla_ms": int(report_cfg.get("sla_ms", DEFAULT_SLA_MS)),
        "anchor_dir": report_cfg.get("anchor_dir", "NewManCollectionList"),
        "combined_report_name": report_cfg.get("combined_report_name", "Digital Api Automation Report.html"),
        "soft_fail_marker": report_cfg.get("soft_fail_marker", DEFAULT_SOFT_FAIL_MARKER),
        "skip_marker": report_cfg.get("skip_marker", "skip"),
        "soft_fail_window": int(report_cfg.get("soft_fail_window", 30000)),
        "write_sidecar": bool(report_cfg.get("write_sidecar", True)),
        "charts_enabled": bool(chart_cfg.get("enabled", True)),
        "chart_dpi": int(chart_cfg.get("dpi", 110)),
        "chart_width_px": int(chart_cfg.get("width_px", 640)),
        "chart_bar_height_px": int(chart_cfg.get("bar_height_px", 28)),
        "chart_min_height_px": int(chart_cfg.get("min_height_px", 220)),
        "mcp_version": (config.get("general") or {}).get("mcp_version", "unknown"),
    }
    if overrides:
        settings.update({k: v for k, v in overrides.items() if v is not None})
    return settings


if __name__ == '__main__':
    # For testing purposes, print the resolved settings.
    config = load_config()
    print("Loaded general configuration:")
    print(config)
    print(load_report_settings(config=config))
