#!/usr/bin/env python3
"""Re-derive `project.storage_size` from the ACTIVE resources of each project.

Every upload and delete already recomputes usage for its project; this script
repairs projects that have not been touched since a partial failure. Each
project is processed under the same lock uploads and deletes use.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from filestore.app import create_app  # noqa: E402


def parse_args():
    parser = argparse.ArgumentParser(description='Recalculate project storage usage from active resources')
    parser.add_argument('--project-id', type=int, default=None)
    parser.add_argument('--dry-run', action='store_true')
    parser.add_argument('--report-jsonl', type=str, default=None)
    return parser.parse_args()


def _report(fp, *, project_id, action, stored=None, actual=None, error=None):
    if not fp:
        return
    row = {
        'ts': datetime.utcnow().isoformat(),
        'project_id': project_id,
        'action': action,
        'stored': stored,
        'actual': actual,
        'error': error,
    }
    fp.write(json.dumps(row, ensure_ascii=False) + '\n')
    fp.flush()


def main() -> int:
    args = parse_args()
    app = create_app()
    service = app.extensions['filestore']
    metadata, ledger = service.metadata, service.ledger
    report_fp = open(args.report_jsonl, 'a', encoding='utf-8') if args.report_jsonl else None

    stats = {'scanned': 0, 'updated': 0, 'unchanged': 0, 'errors': 0}

    try:
        with app.app_context():
            project_ids = [args.project_id] if args.project_id else metadata.project_ids()
            for project_id in project_ids:
                stats['scanned'] += 1
                try:
                    project = metadata.find_project(project_id)
                    stored = project.storage_size or 0
                    actual = metadata.sum_active_resource_sizes(project_id)

                    if stored == actual:
                        stats['unchanged'] += 1
                        _report(report_fp, project_id=project_id, action='unchanged', stored=stored, actual=actual)
                        continue

                    _report(report_fp, project_id=project_id, action='update', stored=stored, actual=actual)
                    if not args.dry_run:
                        with ledger.locked_project(project_id):
                            ledger.recalculate(project_id)
                    stats['updated'] += 1
                except Exception as exc:
                    metadata.rollback()
                    stats['errors'] += 1
                    _report(report_fp, project_id=project_id, action='error', error=str(exc))
    finally:
        if report_fp:
            report_fp.close()

    print(json.dumps({'timestamp': datetime.utcnow().isoformat(), **stats}, ensure_ascii=False, indent=2))
    return 0 if stats['errors'] == 0 else 1


if __name__ == '__main__':
    raise SystemExit(main())
