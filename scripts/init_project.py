#!/usr/bin/env python3
"""
Initialize the freight dispatch engine.

This script sets up the project by:
- Checking the Python version
- Loading environment variables from .env
- Validating config/config.yaml
- Creating the database schema
- Syncing sequence counters with identifiers already in the database
"""

import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from freight_dispatch.core.config import BusinessConfig, ConfigManager  # noqa: E402
from freight_dispatch.core.logging import configure_logging  # noqa: E402
from freight_dispatch.data.models import SequenceName  # noqa: E402
from freight_dispatch.data.store import create_store  # noqa: E402
from freight_dispatch.engine.sequences import SequenceAllocator  # noqa: E402


def check_python_version() -> bool:
    """Verify Python version is 3.11 or higher."""
    if sys.version_info < (3, 11):
        print(f"❌ Python 3.11+ required. Current version: {sys.version}")
        return False
    print(f"✅ Python version: {sys.version_info.major}.{sys.version_info.minor}")
    return True


def load_env() -> bool:
    """Load .env if present; defaults apply otherwise."""
    env_path = PROJECT_ROOT / ".env"
    if not env_path.exists():
        print("⚠️  .env file not found, using defaults")
        print("   Run: cp .env.example .env")
        return True
    load_dotenv(env_path)
    print("✅ .env loaded")
    return True


def check_config_file() -> bool:
    """Validate config/config.yaml parses and matches the business config schema."""
    config_path = PROJECT_ROOT / "config" / "config.yaml"
    if not config_path.exists():
        print(f"⚠️  {config_path} not found, using defaults")
        return True

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        BusinessConfig.model_validate(raw)
    except Exception as e:
        print(f"❌ Invalid config.yaml: {e}")
        return False

    print("✅ config.yaml is valid")
    return True


def init_database(config: ConfigManager) -> bool:
    """Create tables and raise every counter to the highest identifier in use."""
    configure_logging(config.env.log_level, config.env.log_json)
    try:
        store = create_store(config)
    except Exception as e:
        print(f"❌ Could not open store at {config.env.database_url}: {e}")
        return False

    try:
        sequences = SequenceAllocator(store, config_manager=config)
        for name in SequenceName:
            value = sequences.sync(name)
            print(f"✅ {name.value} counter at {value}")
    except Exception as e:
        print(f"❌ Sequence sync failed: {e}")
        return False
    finally:
        store.close()
    return True


def main() -> int:
    """Run all initialization steps."""
    print("=" * 60)
    print("Freight Dispatch Engine - Initialization")
    print("=" * 60)

    config = ConfigManager(config_dir=PROJECT_ROOT / "config")

    checks = [
        ("Python version", check_python_version),
        (".env file", load_env),
        ("Configuration file", check_config_file),
        ("Database", lambda: init_database(config)),
    ]

    passed = 0
    failed = 0

    for name, check_func in checks:
        print(f"\nChecking {name}...")
        if check_func():
            passed += 1
        else:
            failed += 1
            break

    print("\n" + "=" * 60)
    print(f"Results: {passed} passed, {failed} failed")
    print("=" * 60)

    if failed:
        print("\n❌ Initialization stopped. Please fix the issue above.")
        return 1

    print("\n🎉 Ready. Start the API with:")
    print("   uvicorn freight_dispatch.api:create_app --factory")
    return 0


if __name__ == "__main__":
    sys.exit(main())
