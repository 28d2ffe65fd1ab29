# pytest: make `import ingestion...` / `import tickdump...` and `tests.helpers` importable
import os
import sys

ROOT = os.path.dirname(os.path.dirname(__file__))
SRC = os.path.join(ROOT, "src")

for p in (SRC, ROOT):
    if p not in sys.path:
        sys.path.insert(0, p)
