"""
Write blank AcroForm templates for every registered form into templates_dir.
Run: python -m scripts.build_templates [--force] (from the project root).
Real SBA PDFs dropped into templates_dir are left alone unless --force is given.
"""
import argparse
import os
import sys

# Add parent so we can import from the project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from services.form_registry import FormRegistry
from services.template_builder import build_template_pdf


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--force", action="store_true", help="overwrite existing template files")
    args = parser.parse_args()

    settings.templates_dir.mkdir(parents=True, exist_ok=True)
    for template in FormRegistry().templates():
        path = settings.templates_dir / template.filename
        if path.exists() and not args.force:
            print(f"- {path} exists, skipped")
            continue
        path.write_bytes(build_template_pdf(template))
        print(f"✓ Wrote {path} ({len(template.fields)} fields)")


if __name__ == "__main__":
    main()
