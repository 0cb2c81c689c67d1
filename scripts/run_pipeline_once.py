#!/usr/bin/env python3
"""Run one ingestion cycle for testing/debugging."""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from feedcurator import create_app
from feedcurator.pipeline.orchestrator import run_ingestion

if __name__ == '__main__':
    app = create_app()
    reader_ids = [int(arg) for arg in sys.argv[1:]] or None

    print(f"Running ingestion for readers: {reader_ids or 'all active'}...")
    with app.app_context():
        summary = run_ingestion(trigger='manual', reader_ids=reader_ids)
        print(f"Run {summary['run_id']} complete (embeddings ok: {summary['embeddings_ok']})")
        for reader_id, result in summary['readers'].items():
            print(
                f"  reader {reader_id}: {result['new_articles']} new, "
                f"{result['llm_candidates']} sent to LLM ({result['mode']}), "
                f"digest {result['digest_id']} with {result['digest_articles']} articles"
            )
