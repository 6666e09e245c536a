#!/usr/bin/env python3
"""
System Setup Checker - Verifies the grouping engine configuration

Checks that every component is configured correctly:
- Python version
- .env file with DATABASE_URL
- PostgreSQL connection
- Grouping tables (posts, topics, narratives, memberships, semantic_similarity)
- Posts available for grouping
"""

import os
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# ANSI colors
GREEN = '\033[0;32m'
RED = '\033[0;31m'
YELLOW = '\033[1;33m'
BLUE = '\033[0;34m'
NC = '\033[0m'  # No Color


def print_status(check_name: str, passed: bool, message: str = ""):
    """Print check status with colors."""
    status = f"{GREEN}✓{NC}" if passed else f"{RED}✗{NC}"
    detail = f" - {message}" if message else ""
    print(f"{status} {check_name}{detail}")


def check_python_version():
    """Check Python version >= 3.9"""
    version = sys.version_info
    passed = version.major == 3 and version.minor >= 9
    version_str = f"{version.major}.{version.minor}.{version.micro}"
    print_status("Python Version", passed, f"v{version_str} {'OK' if passed else 'requires >= 3.9'}")
    return passed


def check_environment_file():
    """Check .env file exists and configures the database."""
    env_file = Path('.env')

    if not env_file.exists():
        print_status(".env File", False, "File not found - copy it from .env.example")
        return False

    from dotenv import load_dotenv
    load_dotenv()

    if os.getenv('DATABASE_URL') or os.getenv('DB_HOST'):
        print_status(".env File", True, "Database settings configured")
        return True

    print_status(".env File", False, "Missing: DATABASE_URL (or DB_HOST/DB_NAME/DB_USER)")
    return False


def check_database_connection():
    """Check PostgreSQL connection."""
    try:
        from src.storage.database import DatabaseManager

        db = DatabaseManager()
        with db.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT version();")
                cur.fetchone()

        db.close()
        print_status("Database Connection", True, "PostgreSQL connected")
        return True

    except Exception as e:
        print_status("Database Connection", False, str(e)[:60])
        return False


def check_grouping_tables():
    """Check that every grouping table exists."""
    try:
        from src.storage.database import DatabaseManager

        db = DatabaseManager()
        missing = db.missing_grouping_tables()
        db.close()

        if not missing:
            print_status("Grouping Tables", True, "All tables present")
            return True

        print_status("Grouping Tables", False, f"Missing: {', '.join(missing)}")
        print(f"  {YELLOW}→ Run: python scripts/backfill_groups.py --init-schema{NC}")
        return False

    except Exception as e:
        print_status("Grouping Tables", False, str(e)[:60])
        return False


def check_posts_available():
    """Check if there are posts with a configuration to group."""
    try:
        from src.storage.database import DatabaseManager

        db = DatabaseManager()
        page = db.get_posts_page(offset=0, limit=1)
        db.close()

        if page:
            print_status("Posts", True, "Posts with a configuration found")
            return True

        print_status("Posts", False, "No posts with a configuration yet")
        return False

    except Exception as e:
        print_status("Posts", False, str(e)[:60])
        return False


def main():
    """Run all checks."""
    print(f"\n{BLUE}{'='*60}{NC}")
    print(f"{BLUE}Grouping Engine - System Setup Check{NC}")
    print(f"{BLUE}{'='*60}{NC}\n")

    checks = [
        ("Python Environment", check_python_version),
        ("Environment File", check_environment_file),
        ("Database Connection", check_database_connection),
        ("Grouping Tables", check_grouping_tables),
        ("Posts", check_posts_available),
    ]

    results = []

    for check_name, check_func in checks:
        try:
            result = check_func()
            results.append((check_name, result))
        except Exception as e:
            print_status(check_name, False, f"Exception: {str(e)[:50]}")
            results.append((check_name, False))

    # Summary
    print(f"\n{BLUE}{'='*60}{NC}")
    passed = sum(1 for _, result in results if result)
    total = len(results)

    if passed == total:
        print(f"{GREEN}✓ All checks passed ({passed}/{total}){NC}")
        print(f"\nNext step:")
        print(f"  python scripts/backfill_groups.py")
        return 0

    failed = total - passed
    print(f"{YELLOW}⚠ {failed} of {total} checks failed{NC}")
    print(f"\nFix the problems above and rerun this script.")
    return 1


if __name__ == "__main__":
    try:
        exit_code = main()
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print(f"\n\n{YELLOW}Interrupted by user{NC}")
        sys.exit(130)
    except Exception as e:
        print(f"\n{RED}Unexpected error: {e}{NC}")
        sys.exit(1)
