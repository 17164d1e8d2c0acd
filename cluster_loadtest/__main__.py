#!/usr/bin/env python3
"""
Main entry point for running the cluster load-test CLI as a module.

Usage:
    python3 -m cluster_loadtest run --vus 10 --duration 30s
    python3 -m cluster_loadtest provision --name mlops-test-cluster
    python3 -m cluster_loadtest validate
    python3 -m cluster_loadtest extract results/k6-output.log
    python3 -m cluster_loadtest report --input results/report.json --format html
    python3 -m cluster_loadtest cleanup --force
    python3 -m cluster_loadtest info
"""

from .cli import main

if __name__ == "__main__":
    main()
