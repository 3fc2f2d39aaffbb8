#!/usr/bin/env python3
"""
Create the resolver database tables and list them.
"""

import sys
sys.path.append('.')

from sqlalchemy import inspect

from resolver.config import settings
from resolver.database import create_tables, engine

create_tables()

print(f"Database tables created at {settings.database_url}")

tables = inspect(engine).get_table_names()
print(f"Found {len(tables)} tables:")
for table in tables:
    print(f"  - {table}")
