#!/usr/bin/env python3
"""
Script to delete every stored document of the configured Unity projects,
then index them again.

This script:
1. Opens the configured vector store and embedding provider
2. Deletes all documents belonging to each configured project
3. Re-indexes every project and prints per-project counts
"""

import sys
from pathlib import Path
import logging

from unity_context.config import get_config, setup_logging
from unity_context.service import ContextService

logger = logging.getLogger(__name__)


def main():
    """Main execution."""
    print("=" * 80)
    print("UNITY CONTEXT - REINDEX PROJECTS")
    print("=" * 80)
    print()

    config = get_config()
    setup_logging(config.log_level, config.log_file)

    projects = config.projects
    if not projects:
        logger.error("No projects configured!")
        return 1

    print(f"Found {len(projects)} configured projects:")
    for name, path in projects.items():
        print(f"  - {name}: {path}")
    print()

    service = ContextService.from_config(config)
    results = {}
    try:
        for name, path_str in projects.items():
            project_path = Path(path_str).expanduser()
            if not project_path.exists():
                logger.warning("Project path does not exist: %s", project_path)
                continue

            try:
                results[name] = service.indexer.index_project(project_path, force=True)
            except Exception as e:
                logger.error("Error reindexing %s: %s", name, e)
    finally:
        service.close()

    print()
    print("=" * 80)
    print("REINDEX COMPLETE")
    print("=" * 80)
    print()
    print("Summary:")
    for name, result in results.items():
        print(
            f"  {name}: {result.indexed}/{result.total_files} files indexed, "
            f"{result.errors} errors"
        )

    return 0


if __name__ == "__main__":
    sys.exit(main())
