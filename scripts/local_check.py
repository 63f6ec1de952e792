# scripts/local_check.py
"""Formatting, lint and type checks before a commit."""

import subprocess
import sys
import tomllib


def run(cmd: str, desc: str) -> bool:
    print(f"\n>> {desc} ...")
    try:
        subprocess.run(cmd, check=True, shell=True)
    except subprocess.CalledProcessError as e:
        print(f"!! {desc} failed ({e.returncode})")
        return False
    return True


def check_toml() -> None:
    try:
        with open("pyproject.toml", "rb") as f:
            tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        print(f"pyproject.toml error: {e}")
        sys.exit(1)
    print("pyproject.toml OK")


if __name__ == "__main__":
    check_toml()
    results = [
        run("python -m black --check src tests scripts", "Black"),
        run("ruff check src tests scripts", "Ruff"),
        run("mypy src/therasched", "Mypy"),
        run("pytest -q", "Tests"),
    ]
    print("\nLocal check " + ("passed." if all(results) else "finished with failures."))
    sys.exit(0 if all(results) else 1)
