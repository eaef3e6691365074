#!/usr/bin/env python3
"""Bootstrap a local PackStudio checkout."""

import shutil
import subprocess
import sys
from pathlib import Path

DATA_DIRS = ["data/db", "data/logs"]


def main():
    """Run setup tasks."""
    print("=" * 80)
    print("PackStudio - Setup")
    print("=" * 80)

    if sys.version_info < (3, 10):
        print("Error: Python 3.10 or higher is required")
        sys.exit(1)

    print("\nCreating directories...")
    for dir_path in DATA_DIRS:
        Path(dir_path).mkdir(parents=True, exist_ok=True)
        print(f"  Created {dir_path}")

    print("\nInstalling package with test extras...")
    try:
        subprocess.run(
            [sys.executable, "-m", "pip", "install", "-e", ".[test]"],
            check=True,
        )
    except subprocess.CalledProcessError:
        print("  Failed to install dependencies")
        sys.exit(1)

    env_file = Path(".env")
    if env_file.exists():
        print("\n.env file exists")
    elif Path(".env.example").exists():
        shutil.copy(".env.example", env_file)
        print("\nCreated .env from .env.example - add your API keys and backend URL")
    else:
        print("\n.env.example not found, skipping .env")

    print("\nCreating database tables...")
    try:
        from packstudio.storage.database import Database
        from packstudio.utils.config import get_config

        Database(get_config().database.url)
    except Exception as e:
        print(f"  Failed to initialize database: {e}")
        sys.exit(1)

    print("\n" + "=" * 80)
    print("Setup completed")
    print("=" * 80)
    print("\nNext steps:")
    print("1. Edit .env with OPENAI_API_KEY, GEMINI_API_KEY and BACKEND_* values")
    print("2. python -m packstudio grant-credits <user_id> 20")
    print("3. python -m packstudio api")
    print("4. python -m packstudio scheduler (housekeeping jobs)")


if __name__ == "__main__":
    main()
