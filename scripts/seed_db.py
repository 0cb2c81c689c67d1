#!/usr/bin/env python3
"""Load readers with their sources and interests from JSON. Idempotent.

Expected shape:
[{"username": "...", "sources": [{"name": "...", "url": "..."}],
  "interests": [{"category": "...", "description": "...", "weight": 1.0}],
  "exclusions": [{"category": "..."}]}]
"""

import json
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from feedcurator import create_app
from feedcurator.extensions import db
from feedcurator.models.reader import Reader
from feedcurator.models.source import Source, Subscription
from feedcurator.models.user import Exclusion, Interest


def seed_readers(filepath):
    """Create missing readers; add sources, subscriptions and interests not already present."""
    with open(filepath) as f:
        readers = json.load(f)

    added = {'readers': 0, 'sources': 0, 'subscriptions': 0, 'interests': 0, 'exclusions': 0}
    for r in readers:
        reader = Reader.query.filter_by(username=r['username']).first()
        if not reader:
            reader = Reader(username=r['username'])
            db.session.add(reader)
            db.session.flush()
            added['readers'] += 1

        for s in r.get('sources', []):
            source = Source.query.filter_by(url=s['url']).first()
            if not source:
                source = Source(name=s['name'], url=s['url'], max_items=s.get('max_items'))
                db.session.add(source)
                db.session.flush()
                added['sources'] += 1
            if Subscription.query.filter_by(reader_id=reader.id, source_id=source.id).first():
                continue
            db.session.add(Subscription(reader_id=reader.id, source_id=source.id))
            added['subscriptions'] += 1

        for i in r.get('interests', []):
            if Interest.query.filter_by(reader_id=reader.id, category=i['category']).first():
                continue
            db.session.add(Interest(reader_id=reader.id, category=i['category'],
                                    description=i.get('description'), weight=i.get('weight', 1.0)))
            added['interests'] += 1

        for e in r.get('exclusions', []):
            if Exclusion.query.filter_by(reader_id=reader.id, category=e['category']).first():
                continue
            db.session.add(Exclusion(reader_id=reader.id, category=e['category'],
                                     description=e.get('description')))
            added['exclusions'] += 1

    db.session.commit()
    print(", ".join(f"{k}: {v} added" for k, v in added.items()))


if __name__ == '__main__':
    app = create_app()
    project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    path = sys.argv[1] if len(sys.argv) > 1 else os.path.join(project_root, 'seed_readers.json')

    with app.app_context():
        print("Seeding database...")
        seed_readers(path)
        print("Done.")
