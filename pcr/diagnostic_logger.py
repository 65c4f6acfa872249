#!/usr/bin/env python3
"""
Diagnostic Logger for the replication playground

Sets up process-wide logging and collects the errors and warnings raised
by a multi-step run so they can be written out as a JSON report.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("diagnostic")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings):
    """stdout handler, plus a file handler when ``settings.log_file`` is set."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(settings.log_file)))
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # docker SDK and urllib3 are chatty at DEBUG
    for noisy in ("urllib3", "docker"):
        logging.getLogger(noisy).setLevel(logging.INFO)


class DiagnosticLogger:
    """Collects step errors and warnings for one run."""

    def __init__(self):
        self.start_time = datetime.now()
        self.errors = []
        self.warnings = []

    def log_error(self, error_msg: str, context: Optional[Dict[str, Any]] = None):
        self.errors.append({
            "timestamp": datetime.now().isoformat(),
            "error": error_msg,
            "context": context or {},
        })
        logger.error("ERROR: %s", error_msg)
        if context:
            logger.error("Context: %s", json.dumps(context, indent=2, default=str))

    def log_warning(self, warning_msg: str, context: Optional[Dict[str, Any]] = None):
        self.warnings.append({
            "timestamp": datetime.now().isoformat(),
            "warning": warning_msg,
            "context": context or {},
        })
        logger.warning("WARNING: %s", warning_msg)
        if context:
            logger.warning("Context: %s", json.dumps(context, indent=2, default=str))

    def log_success(self, success_msg: str):
        logger.info("SUCCESS: %s", success_msg)

    def log_docker_status(self, runtime, network: str):
        """List the playground's node containers and their state."""
        logger.info("DOCKER DIAGNOSTICS")
        logger.info("-" * 20)
        instances = runtime.list_instances(network)
        logger.info("Node containers on %s: %d", network, len(instances))
        for inst in instances:
            ports = ", ".join(str(p) for p in sorted(inst.published_ports)) or "-"
            logger.info("  - %s (%s) ports: %s", inst.name, inst.state, ports)
        return instances

    def generate_report(self, report_path: Optional[Path] = None) -> Dict[str, Any]:
        report = {
            "start_time": self.start_time.isoformat(),
            "end_time": datetime.now().isoformat(),
            "errors": self.errors,
            "warnings": self.warnings,
            "total_errors": len(self.errors),
            "total_warnings": len(self.warnings),
        }

        logger.info("=" * 60)
        logger.info("DIAGNOSTIC REPORT SUMMARY")
        logger.info("=" * 60)
        logger.info("Total Errors: %d", len(self.errors))
        logger.info("Total Warnings: %d", len(self.warnings))
        if report_path:
            Path(report_path).parent.mkdir(parents=True, exist_ok=True)
            with open(report_path, "w") as f:
                json.dump(report, f, indent=2, default=str)
            logger.info("Report saved to: %s", report_path)
        logger.info("=" * 60)
        return report
