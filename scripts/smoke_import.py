"""
Lightweight import smoke test for loadbench-core.

Usage (from repository root):
  python scripts/smoke_import.py
Expected output: lines indicating successful imports.
"""
def main() -> None:
    failures = []

    def try_import(mod):
        try:
            __import__(mod)
            print(f"[OK] import {mod}")
        except Exception as e:
            print(f"[FAIL] import {mod}: {e}")
            return False
        return True

    EXPECTED_IMPORTS = [
        "loadbench_core",
        "loadbench_core.config",
        "loadbench_core.exceptions",
        "loadbench_core.logging_config",
        "loadbench_core.script",
        "loadbench_core.workload",
        "loadbench_core.benchmarking.checks",
        "loadbench_core.benchmarking.metrics",
        "loadbench_core.benchmarking.engine",
        "loadbench_core.scenarios",
    ]

    for t in EXPECTED_IMPORTS:
        if not try_import(t):
            failures.append(t)

    if failures:
        raise SystemExit(f"Smoke import failures: {failures}")
    print("All core smoke imports succeeded.")

if __name__ == "__main__":
    main()
