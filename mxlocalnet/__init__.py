"""
MultiversX localnet tooling.

This package contains the `mxl` CLI and the helpers it orchestrates for local
MultiversX development (mxpy, sc-meta, docker compose, terraform and the
security scanners).

Main entry points:
- cli.py - Main CLI application
- runtime_env.py - Settings and per-profile environment helpers
- templates.py - Localnet configuration templates (dev/test/production/ci)
- localnet.py - Start/stop/reset of the mxpy localnet
- backup.py - Backup and recovery of localnet data
- security.py - Contract scanners and audit reports
- monitoring.py - Metrics collection, dashboard and performance report
- reports.py - Markdown summary of test, security and backup results
"""

__version__ = "1.0.0"
